from __future__ import annotations

import numpy as np

from fastest_kit.config import ModelConfig, OutputScale, OutputSpec


def tiny_config(**overrides) -> ModelConfig:
    """
    32x32 input, one anchor per scale, one category, two 1x1 heads named "a" and "b".
    """

    params = dict(
        input_width=32,
        input_height=32,
        num_category=1,
        anchors=(((10.0, 20.0),), ((30.0, 30.0),)),
        outputs=(OutputSpec("a", OutputScale.FINE), OutputSpec("b", OutputScale.COARSE)),
    )
    params.update(overrides)
    return ModelConfig(**params)


def cell(x: float, y: float, w: float, h: float, obj: float, *cls: float) -> np.ndarray:
    """
    One (1, 1, C) head for a single anchor: [x, y, w, h, obj, class scores...].
    """

    return np.array([x, y, w, h, obj, *cls], dtype=np.float32).reshape(1, 1, -1)
