from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Sequence, Tuple, Union

from .errors import ModelConfigError


PathLike = Union[str, Path]
Prior = Tuple[float, float]

MODEL_TYPES = ("yolo-fastestv2", "fastestdet")
CHANNEL_ORDERS = ("bgr", "rgb")
RESIZE_MODES = ("stretch", "letterbox")


class OutputScale(IntEnum):
    """
    Output heads in the order their anchors are listed.
    """

    FINE = 0  # 22x22 for a 352x352 input (stride 16)
    COARSE = 1  # 11x11 (stride 32)


@dataclass(frozen=True)
class OutputSpec:
    name: str
    scale: OutputScale


@dataclass(frozen=True)
class AnchorTable:
    """
    Anchor priors grouped by output scale, plus the model input geometry.

    `anchors[scale][slot]` is the `(width, height)` prior in input pixels.
    """

    anchors: Tuple[Tuple[Prior, ...], ...]
    input_width: int
    input_height: int
    num_category: int

    def __post_init__(self) -> None:
        if not self.anchors:
            raise ModelConfigError("anchor table needs at least one output scale")
        counts = {len(per_scale) for per_scale in self.anchors}
        if len(counts) != 1 or 0 in counts:
            raise ModelConfigError(f"every output scale needs the same non-zero anchor count, got {sorted(counts)}")
        if self.input_width <= 0 or self.input_height <= 0:
            raise ModelConfigError("input_width and input_height must be > 0")
        if self.num_category <= 0:
            raise ModelConfigError("num_category must be > 0")

    @classmethod
    def from_flat(
        cls,
        bias: Sequence[float],
        num_scales: int,
        input_width: int,
        input_height: int,
        num_category: int,
    ) -> "AnchorTable":
        """
        Build from a flat `w0, h0, w1, h1, ...` list, scale 0 first.
        """

        if num_scales <= 0 or len(bias) % (2 * num_scales) != 0:
            raise ModelConfigError(f"{len(bias)} bias values cannot be split into {num_scales} scales of (w, h) pairs")
        pairs = [(float(bias[i]), float(bias[i + 1])) for i in range(0, len(bias), 2)]
        per_scale = len(pairs) // num_scales
        anchors = tuple(tuple(pairs[s * per_scale : (s + 1) * per_scale]) for s in range(num_scales))
        return cls(anchors=anchors, input_width=input_width, input_height=input_height, num_category=num_category)

    @property
    def num_scales(self) -> int:
        return len(self.anchors)

    @property
    def num_anchor(self) -> int:
        return len(self.anchors[0])

    def prior(self, scale: int, slot: int) -> Prior:
        return self.anchors[int(scale)][slot]

    def stride(self, feat_h: int, feat_w: int) -> int:
        """
        Downsampling factor between the model input and a `feat_h x feat_w` feature map.
        """

        if feat_h <= 0 or feat_w <= 0:
            raise ModelConfigError(f"feature map must be non-empty, got {feat_h}x{feat_w}")
        stride = self.input_height // feat_h
        if stride != self.input_width // feat_w:
            raise ModelConfigError(
                f"feature map {feat_h}x{feat_w} does not match input {self.input_height}x{self.input_width}: "
                "height and width strides differ"
            )
        if stride == 0 or self.input_height % feat_h != 0 or self.input_width % feat_w != 0:
            raise ModelConfigError(
                f"input {self.input_height}x{self.input_width} is not a multiple of feature map {feat_h}x{feat_w}"
            )
        return stride


@dataclass(frozen=True)
class ModelConfig:
    """
    Static per-model configuration. Thresholds are defaults and can be overridden per call.
    """

    model_type: str = "yolo-fastestv2"
    input_width: int = 352
    input_height: int = 352
    num_category: int = 80
    anchors: Tuple[Tuple[Prior, ...], ...] = ()
    input_name: str = "input.1"
    outputs: Tuple[OutputSpec, ...] = ()
    nms_threshold: float = 0.25
    conf_threshold: float = 0.3
    num_threads: int = 4
    channel_order: str = "bgr"
    resize_mode: str = "stretch"
    # Set when the exported heads emit logits instead of activated values.
    apply_sigmoid: bool = False

    def __post_init__(self) -> None:
        if self.model_type not in MODEL_TYPES:
            raise ModelConfigError(f"model_type must be one of {MODEL_TYPES}, got {self.model_type!r}")
        if self.input_width <= 0 or self.input_height <= 0:
            raise ModelConfigError("input_width and input_height must be > 0")
        if self.num_category <= 0:
            raise ModelConfigError("num_category must be > 0")
        if not 0.0 <= self.nms_threshold <= 1.0:
            raise ModelConfigError("nms_threshold must be within [0, 1]")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ModelConfigError("conf_threshold must be within [0, 1]")
        if self.num_threads < 1:
            raise ModelConfigError("num_threads must be >= 1")
        if self.channel_order not in CHANNEL_ORDERS:
            raise ModelConfigError(f"channel_order must be one of {CHANNEL_ORDERS}")
        if self.resize_mode not in RESIZE_MODES:
            raise ModelConfigError(f"resize_mode must be one of {RESIZE_MODES}")
        if not self.outputs:
            raise ModelConfigError("at least one output must be configured")

        names = [spec.name for spec in self.outputs]
        if len(set(names)) != len(names):
            raise ModelConfigError(f"output names must be unique, got {names}")
        scales = sorted(int(spec.scale) for spec in self.outputs)
        if scales != list(range(len(self.outputs))):
            raise ModelConfigError(f"output scales must cover 0..{len(self.outputs) - 1} exactly, got {scales}")

        if self.model_type == "fastestdet":
            if len(self.outputs) != 1:
                raise ModelConfigError("fastestdet has a single output head")
            if self.anchors:
                raise ModelConfigError("fastestdet is anchor-free; anchors must be empty")
        else:
            if len(self.anchors) != len(self.outputs):
                raise ModelConfigError(
                    f"{len(self.outputs)} outputs configured but anchors are given for {len(self.anchors)} scales"
                )
            # Validates the anchor shapes.
            self.anchor_table()

    @property
    def output_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.outputs)

    def anchor_table(self) -> AnchorTable:
        if self.model_type != "yolo-fastestv2":
            raise ModelConfigError(f"{self.model_type} has no anchor table")
        return AnchorTable(
            anchors=self.anchors,
            input_width=self.input_width,
            input_height=self.input_height,
            num_category=self.num_category,
        )


YOLO_FASTESTV2_BIAS = (
    12.64, 19.39, 37.88, 51.48, 55.71, 138.31,
    126.91, 78.23, 131.57, 214.55, 279.92, 258.87,
)  # fmt: skip

YOLO_FASTESTV2 = ModelConfig(
    anchors=AnchorTable.from_flat(YOLO_FASTESTV2_BIAS, 2, 352, 352, 80).anchors,
    outputs=(OutputSpec("794", OutputScale.FINE), OutputSpec("796", OutputScale.COARSE)),
)

FASTESTDET = ModelConfig(
    model_type="fastestdet",
    outputs=(OutputSpec("758", OutputScale.FINE),),
    channel_order="rgb",
)

PRESETS: Dict[str, ModelConfig] = {
    "yolo-fastestv2": YOLO_FASTESTV2,
    "fastestdet": FASTESTDET,
}


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ModelConfigError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ModelConfigError(f"{key} must be an integer")
    return int(value)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str) or not value:
        raise ModelConfigError(f"{key} must be a non-empty string")
    return value


def _parse_anchors(value: Any) -> Tuple[Tuple[Prior, ...], ...]:
    if not isinstance(value, list):
        raise ModelConfigError("anchors must be a list (one entry per output scale)")
    parsed = []
    for per_scale in value:
        if not isinstance(per_scale, list):
            raise ModelConfigError("each anchors entry must be a list of [w, h] pairs")
        pairs = []
        for pair in per_scale:
            if (
                not isinstance(pair, list)
                or len(pair) != 2
                or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in pair)
            ):
                raise ModelConfigError(f"anchor prior must be a [w, h] pair of numbers, got {pair!r}")
            pairs.append((float(pair[0]), float(pair[1])))
        parsed.append(tuple(pairs))
    return tuple(parsed)


def _parse_outputs(value: Any) -> Tuple[OutputSpec, ...]:
    if not isinstance(value, list):
        raise ModelConfigError("outputs must be a list of {name, scale} objects")
    specs = []
    for item in value:
        if not isinstance(item, dict) or set(item.keys()) != {"name", "scale"}:
            raise ModelConfigError(f"each output must be an object with exactly 'name' and 'scale', got {item!r}")
        name = _require_str(item, "name")
        scale = _require_int(item, "scale")
        try:
            specs.append(OutputSpec(name, OutputScale(scale)))
        except ValueError as exc:
            raise ModelConfigError(f"unknown output scale {scale}") from exc
    return tuple(specs)


def load_model_config(path: PathLike) -> ModelConfig:
    """
    Load a JSON model config. Keys left out fall back to the preset named by `model_type`.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ModelConfigError(f"Invalid model config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ModelConfigError("Model config must be a JSON object")

    allowed = {
        "model_type",
        "input_width",
        "input_height",
        "num_category",
        "anchors",
        "input_name",
        "outputs",
        "nms_threshold",
        "conf_threshold",
        "num_threads",
        "channel_order",
        "resize_mode",
        "apply_sigmoid",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ModelConfigError(f"Unknown model config keys: {unknown}")

    model_type = payload.get("model_type", "yolo-fastestv2")
    if model_type not in PRESETS:
        raise ModelConfigError(f"model_type must be one of {MODEL_TYPES}, got {model_type!r}")

    overrides: Dict[str, Any] = {}
    for key in ("input_width", "input_height", "num_category", "num_threads"):
        if key in payload:
            overrides[key] = _require_int(payload, key)
    for key in ("nms_threshold", "conf_threshold"):
        if key in payload:
            overrides[key] = _require_number(payload, key)
    for key in ("input_name", "channel_order", "resize_mode"):
        if key in payload:
            overrides[key] = _require_str(payload, key)
    if "apply_sigmoid" in payload:
        if not isinstance(payload["apply_sigmoid"], bool):
            raise ModelConfigError("apply_sigmoid must be a boolean")
        overrides["apply_sigmoid"] = payload["apply_sigmoid"]
    if "anchors" in payload:
        overrides["anchors"] = _parse_anchors(payload["anchors"])
    if "outputs" in payload:
        overrides["outputs"] = _parse_outputs(payload["outputs"])

    return replace(PRESETS[model_type], **overrides)
