from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Dict, Union


COCO_CLASSES = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat", "dog",
    "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella",
    "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball", "kite",
    "baseball bat", "baseball glove", "skateboard", "surfboard", "tennis racket", "bottle",
    "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch", "potted plant",
    "bed", "dining table", "toilet", "tv", "laptop", "mouse", "remote", "keyboard", "cell phone",
    "microwave", "oven", "toaster", "sink", "refrigerator", "book", "clock", "vase", "scissors",
    "teddy bear", "hair drier", "toothbrush",
)  # fmt: skip


def coco_class_names() -> Dict[int, str]:
    return dict(enumerate(COCO_CLASSES))


def _load_toml(path: Path) -> Dict[int, str]:
    with open(path, "rb") as f:
        payload = tomllib.load(f)
    classes = payload.get("classes")
    if not isinstance(classes, list) or not all(isinstance(c, str) for c in classes):
        raise ValueError(f"{path}: expected `classes = [\"name\", ...]`")
    return dict(enumerate(classes))


def load_class_names(path: Union[str, Path]) -> Dict[int, str]:
    """
    Load `{category: label}` from a TOML file holding `classes = [...]`.
    Label order is category order.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Class names file not found: {path}")
    if path.suffix.lower() != ".toml":
        raise ValueError(f"{path}: class names must be a .toml file")
    return _load_toml(path)
