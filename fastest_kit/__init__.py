"""
YOLO-Fastest detection harness: inference engine adapters plus the
post-processing that turns raw head tensors into labeled boxes.

Decoding and NMS only need NumPy; resizing and drawing use OpenCV; inference
engines (ncnn, ONNX Runtime, TorchScript) are imported on demand.
"""

from .types import TargetBox
from .errors import InferenceError, ModelConfigError
from .config import (
    FASTESTDET,
    PRESETS,
    YOLO_FASTESTV2,
    AnchorTable,
    ModelConfig,
    OutputScale,
    OutputSpec,
    load_model_config,
)
from .letterbox import letterbox, resize_to_input, stretch
from .nms import intersection_area, iou, nms
from .postprocess import FastestPostprocessor, classify, decode_fastestdet, decode_outputs, decode_scale
from .runtime import DetectionPipeline, load_pipeline, find_project_root, resolve_path
from .metadata import COCO_CLASSES, coco_class_names, load_class_names
from .visualize import draw_detections

__all__ = [
    "TargetBox",
    "InferenceError",
    "ModelConfigError",
    "FASTESTDET",
    "PRESETS",
    "YOLO_FASTESTV2",
    "AnchorTable",
    "ModelConfig",
    "OutputScale",
    "OutputSpec",
    "load_model_config",
    "letterbox",
    "resize_to_input",
    "stretch",
    "intersection_area",
    "iou",
    "nms",
    "FastestPostprocessor",
    "classify",
    "decode_fastestdet",
    "decode_outputs",
    "decode_scale",
    "DetectionPipeline",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "COCO_CLASSES",
    "coco_class_names",
    "load_class_names",
    "draw_detections",
]
