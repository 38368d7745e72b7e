from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .types import TargetBox


UNLABELED_COLOR = (2, 255, 0)


def color_for_category(category: int) -> Tuple[int, int, int]:
    """
    Deterministic BGR color per category; unassigned boxes are green.
    """

    if category < 0:
        return UNLABELED_COLOR
    rng = np.random.default_rng(int(category))
    bgr = rng.integers(64, 256, size=3, dtype=np.uint8)
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def draw_detections(
    image_bgr: np.ndarray,
    boxes: Iterable[TargetBox],
    *,
    class_names: Optional[Dict[int, str]] = None,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
) -> np.ndarray:
    """
    Draw boxes with `label score` captions on a BGR image and return the annotated copy.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for box in boxes:
        corners = np.nan_to_num(np.array(box.as_xyxy(), dtype=np.float64))
        x1, x2 = (int(v) for v in np.clip(np.round(corners[[0, 2]]), 0, w - 1))
        y1, y2 = (int(v) for v in np.clip(np.round(corners[[1, 3]]), 0, h - 1))
        color = color_for_category(box.category)
        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness=box_thickness)

        if box.category < 0:
            label = "object"
        elif class_names:
            label = class_names.get(box.category, str(box.category))
        else:
            label = str(box.category)
        if show_score:
            label = f"{label} {box.score:.2f}"

        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
        top = y1 - th - baseline if y1 - th - baseline >= 0 else y1
        cv2.rectangle(out, (x1, top), (min(x1 + tw, w - 1), min(top + th + baseline, h - 1)), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1, min(top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (0, 0, 0),
            thickness=1,
            lineType=cv2.LINE_AA,
        )

    return out
