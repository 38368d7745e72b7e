from typing import Iterable, List

import numpy as np

from .types import TargetBox


def intersection_area(a: TargetBox, b: TargetBox) -> float:
    if a.x1 > b.x2 or a.x2 < b.x1 or a.y1 > b.y2 or a.y2 < b.y1:
        return 0.0

    inter_w = max(0.0, min(a.x2, b.x2) - max(a.x1, b.x1))
    inter_h = max(0.0, min(a.y2, b.y2) - max(a.y1, b.y1))
    return inter_w * inter_h


def iou(a: TargetBox, b: TargetBox) -> float:
    """
    Intersection over union. Pairs with no positive union (degenerate or NaN geometry) score 0.
    """

    inter = intersection_area(a, b)
    union = a.area + b.area - inter
    if not union > 0:
        return 0.0
    return inter / union


def nms(candidates: Iterable[TargetBox], iou_threshold: float) -> List[TargetBox]:
    """
    Greedy per-category NMS over NumPy arrays.

    Candidates are visited by descending score (stable for equal scores). Each kept
    box drops the remaining boxes of its category that overlap it with
    IoU > `iou_threshold`. Kept boxes are returned in the order they were kept.
    """

    boxes = list(candidates)
    if not boxes:
        return []

    xyxy = np.array([box.as_xyxy() for box in boxes], dtype=np.float64)
    scores = np.array([box.score for box in boxes], dtype=np.float64)
    categories = np.array([box.category for box in boxes], dtype=np.int64)

    x1, y1, x2, y2 = xyxy.T
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep = []

    while order.size > 0:
        i = order[0]
        keep.append(i)
        rest = order[1:]

        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
        union = areas[i] + areas[rest] - inter
        with np.errstate(divide="ignore", invalid="ignore"):
            overlap = np.where(union > 0, inter / union, 0.0)

        suppressed = (categories[rest] == categories[i]) & (overlap > iou_threshold)
        order = rest[~suppressed]

    return [boxes[i] for i in keep]
