from __future__ import annotations

import logging
from functools import reduce
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import AnchorTable, ModelConfig
from .errors import InferenceError, ModelConfigError
from .nms import nms
from .types import TargetBox


logger = logging.getLogger(__name__)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-x))


def classify(
    cell_values: Sequence[float],
    anchor_slot: int,
    num_anchor: int,
    num_category: int,
) -> Tuple[int, float]:
    """
    Best category and its confidence (objectness x class score) for one anchor of one cell.

    Cell layout: `[box(4) per anchor..., obj per anchor..., class scores...]`.
    The scan keeps a category only when it beats the running best with a strict `>`,
    starting from 0, so the lowest index wins ties and non-positive or NaN products
    never win. Returns `(-1, 0.0)` when no category has a positive product.
    """

    obj_score = cell_values[4 * num_anchor + anchor_slot]
    cls_offset = 5 * num_anchor

    def keep_best(best: Tuple[int, float], category: int) -> Tuple[int, float]:
        score = cell_values[cls_offset + category] * obj_score
        return (category, score) if score > best[1] else best

    category, score = reduce(keep_best, range(num_category), (-1, 0.0))
    return category, float(score)


def _score_grid(grid: np.ndarray, num_anchor: int, num_category: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorized `classify` over a whole (H, W, C) grid.

    Returns `(categories, scores)`, both shaped (H, W, num_anchor).
    """

    obj = grid[..., 4 * num_anchor : 5 * num_anchor]
    cls = grid[..., 5 * num_anchor : 5 * num_anchor + num_category]
    with np.errstate(over="ignore", invalid="ignore"):
        products = obj[..., :, None] * cls[..., None, :]  # (H, W, A, K)
    products = np.where(products > 0, products, 0)
    categories = np.argmax(products, axis=-1)
    scores = np.take_along_axis(products, categories[..., None], axis=-1)[..., 0]
    categories = np.where(scores > 0, categories, -1)
    return categories, scores


def _squeeze_batch(tensor: np.ndarray, label: str) -> np.ndarray:
    t = np.asarray(tensor)
    if t.ndim == 4:
        if t.shape[0] != 1:
            raise ModelConfigError(f"Batch > 1 is not supported for output {label} (got shape {t.shape}).")
        t = t[0]
    if t.ndim != 3:
        raise ModelConfigError(f"Output {label} must be 3-D (optionally with a batch of 1), got shape {t.shape}.")
    if not np.issubdtype(t.dtype, np.floating):
        t = t.astype(np.float32)
    return t


def decode_scale(
    tensor: np.ndarray,
    scale: int,
    table: AnchorTable,
    scale_w: float,
    scale_h: float,
    thresh: float,
    apply_sigmoid: bool = False,
) -> List[TargetBox]:
    """
    Decode one (H, W, C) output head into candidate boxes scaled by `(scale_w, scale_h)`.

    Boxes come out in row, column, anchor-slot order.
    """

    grid = _squeeze_batch(tensor, str(int(scale)))
    out_h, out_w, out_c = grid.shape
    num_anchor = table.num_anchor
    needed = 5 * num_anchor + table.num_category
    if out_c < needed:
        raise ModelConfigError(
            f"Output scale {int(scale)} has {out_c} channels, need at least {needed} "
            f"for {num_anchor} anchors and {table.num_category} categories."
        )
    stride = table.stride(out_h, out_w)
    logger.debug(
        "scale=%d outH=%d outW=%d outC=%d stride=%d scaleW=%s scaleH=%s",
        int(scale), out_h, out_w, out_c, stride, scale_w, scale_h,
    )

    if apply_sigmoid:
        grid = _sigmoid(grid)

    categories, scores = _score_grid(grid, num_anchor, table.num_category)
    keep = (scores > np.asarray(thresh, dtype=scores.dtype)) & (categories >= 0)
    hs, ws, bs = np.nonzero(keep)
    if hs.size == 0:
        return []

    reg = grid[hs, ws, : 4 * num_anchor].reshape(-1, num_anchor, 4)[np.arange(hs.size), bs]
    reg = reg.astype(np.float64)
    priors = np.asarray(table.anchors[int(scale)], dtype=np.float64)[bs]

    with np.errstate(over="ignore", invalid="ignore"):
        bcx = ((reg[:, 0] * 2.0 - 0.5) + ws) * stride
        bcy = ((reg[:, 1] * 2.0 - 0.5) + hs) * stride
        bw = np.square(reg[:, 2] * 2.0) * priors[:, 0]
        bh = np.square(reg[:, 3] * 2.0) * priors[:, 1]
        x1 = (bcx - 0.5 * bw) * scale_w
        x2 = (bcx + 0.5 * bw) * scale_w
        y1 = (bcy - 0.5 * bh) * scale_h
        y2 = (bcy + 0.5 * bh) * scale_h

    boxes = [
        TargetBox(x1=float(a), y1=float(b), x2=float(c), y2=float(d), score=float(s), category=int(k))
        for a, b, c, d, s, k in zip(x1, y1, x2, y2, scores[hs, ws, bs], categories[hs, ws, bs])
    ]
    for box in boxes:
        logger.debug("candidate scale=%d %s", int(scale), box)
    return boxes


def decode_outputs(
    outputs: Mapping[int, np.ndarray],
    table: AnchorTable,
    scale_w: float,
    scale_h: float,
    thresh: float,
    apply_sigmoid: bool = False,
) -> List[TargetBox]:
    """
    Decode every output head, keyed by `OutputScale`, into one candidate list (scale-major order).
    """

    expected = list(range(table.num_scales))
    if sorted(int(k) for k in outputs.keys()) != expected:
        raise ModelConfigError(
            f"Expected outputs for scales {expected}, got {sorted(int(k) for k in outputs.keys())}."
        )
    boxes: List[TargetBox] = []
    for scale in sorted(outputs.keys(), key=int):
        boxes.extend(decode_scale(outputs[scale], scale, table, scale_w, scale_h, thresh, apply_sigmoid))
    return boxes


def decode_fastestdet(
    tensor: np.ndarray,
    num_category: int,
    frame_size: Tuple[float, float],
    thresh: float,
) -> List[TargetBox]:
    """
    Decode a FastestDet head shaped (5 + K, H, W) into boxes in a `frame_size` (width, height) frame.

    Channel 0 is objectness, 1..4 are raw x/y offsets and width/height, 5.. are class scores.
    The score blends class and objectness as `cls^0.4 * obj^0.6`.
    """

    t = _squeeze_batch(tensor, "fastestdet")
    channels, out_h, out_w = t.shape
    if channels < 5 + num_category:
        raise ModelConfigError(f"FastestDet output has {channels} channels, need at least {5 + num_category}.")
    logger.debug("fastestdet outH=%d outW=%d outC=%d frame=%s", out_h, out_w, channels, frame_size)

    cls = t[5 : 5 + num_category]
    positive = np.where(cls > 0, cls, 0)
    class_idx = np.argmax(positive, axis=0)
    max_score = np.take_along_axis(positive, class_idx[None, ...], axis=0)[0]
    with np.errstate(invalid="ignore"):
        scores = np.power(max_score, 0.4) * np.power(t[0], 0.6)

    keep = scores > np.asarray(thresh, dtype=scores.dtype)
    hs, ws = np.nonzero(keep)
    if hs.size == 0:
        return []

    img_w, img_h = frame_size
    x_off = np.tanh(t[1, hs, ws].astype(np.float64))
    y_off = np.tanh(t[2, hs, ws].astype(np.float64))
    bw = _sigmoid(t[3, hs, ws].astype(np.float64))
    bh = _sigmoid(t[4, hs, ws].astype(np.float64))
    cx = (ws + x_off) / out_w
    cy = (hs + y_off) / out_h

    return [
        TargetBox(
            x1=float((x - w * 0.5) * img_w),
            y1=float((y - h * 0.5) * img_h),
            x2=float((x + w * 0.5) * img_w),
            y2=float((y + h * 0.5) * img_h),
            score=float(s),
            category=int(k),
        )
        for x, y, w, h, s, k in zip(cx, cy, bw, bh, scores[hs, ws], class_idx[hs, ws])
    ]


class FastestPostprocessor:
    """
    Turns the named output tensors of one image into final detections:
    decode -> NMS -> map back to the original image.

    With `resize_mode="stretch"` the decoder scales by `image / input` directly.
    With `resize_mode="letterbox"` boxes are decoded in input pixels and then
    un-padded, un-scaled and clipped to the image.
    """

    def __init__(self, cfg: ModelConfig):
        self.cfg = cfg

    def process(
        self,
        outputs: Mapping[str, np.ndarray],
        orig_size: Tuple[int, int],
        pad: Tuple[float, float] = (0.0, 0.0),
        ratio: Tuple[float, float] = (1.0, 1.0),
        thresh: Optional[float] = None,
    ) -> List[TargetBox]:
        """
        Args:
            outputs: engine outputs keyed by output name
            orig_size: (width, height) of the original image
            pad: (dw, dh) letterbox padding (left/top)
            ratio: (rw, rh) resize ratio used for letterboxing
            thresh: confidence threshold, defaults to `cfg.conf_threshold`
        """

        cfg = self.cfg
        thresh = cfg.conf_threshold if thresh is None else thresh
        missing = [name for name in cfg.output_names if name not in outputs]
        if missing:
            raise InferenceError(f"Engine did not return outputs {missing}.")

        orig_w, orig_h = orig_size
        stretch = cfg.resize_mode == "stretch"

        if cfg.model_type == "fastestdet":
            frame = (orig_w, orig_h) if stretch else (cfg.input_width, cfg.input_height)
            candidates = decode_fastestdet(outputs[cfg.outputs[0].name], cfg.num_category, frame, thresh)
        else:
            if stretch:
                scale_w, scale_h = orig_w / cfg.input_width, orig_h / cfg.input_height
            else:
                scale_w, scale_h = 1.0, 1.0
            by_scale = {spec.scale: outputs[spec.name] for spec in cfg.outputs}
            candidates = decode_outputs(
                by_scale, cfg.anchor_table(), scale_w, scale_h, thresh, apply_sigmoid=cfg.apply_sigmoid
            )

        boxes = nms(candidates, cfg.nms_threshold)
        logger.debug("candidates=%d after_nms=%d", len(candidates), len(boxes))
        if stretch:
            return boxes
        return self._scale_boxes(boxes, orig_size, pad, ratio)

    def _scale_boxes(
        self,
        boxes: List[TargetBox],
        orig_size: Tuple[int, int],
        pad: Tuple[float, float],
        ratio: Tuple[float, float],
    ) -> List[TargetBox]:
        """
        Map boxes from the letterboxed input back to the original image.
        """

        if not boxes:
            return []
        dw, dh = pad
        rw, rh = ratio
        orig_w, orig_h = orig_size
        xyxy = np.array([box.as_xyxy() for box in boxes], dtype=np.float64)
        xyxy[:, [0, 2]] = np.clip((xyxy[:, [0, 2]] - dw) / rw, 0, orig_w - 1)
        xyxy[:, [1, 3]] = np.clip((xyxy[:, [1, 3]] - dh) / rh, 0, orig_h - 1)
        return [
            TargetBox(x1=float(x1), y1=float(y1), x2=float(x2), y2=float(y2), score=box.score, category=box.category)
            for (x1, y1, x2, y2), box in zip(xyxy, boxes)
        ]
