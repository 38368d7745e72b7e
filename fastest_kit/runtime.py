from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import YOLO_FASTESTV2, ModelConfig
from .letterbox import resize_to_input
from .postprocess import FastestPostprocessor
from .types import TargetBox


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Mapping[str, np.ndarray]]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery, so `models/...` resolves the same from any cwd.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        if any((parent / m).exists() for m in markers):
            return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Absolute paths pass through; relative ones resolve against `root`
    (or the project root when `root` is "auto" / None).
    """

    p = Path(path)
    if p.is_absolute():
        return p
    base = find_project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / p).resolve()


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    orig_size: Tuple[int, int]
    ratio: Tuple[float, float]
    pad: Tuple[float, float]


class DetectionPipeline:
    """
    preprocess (resize + normalize) -> inference -> postprocess.

    Takes BGR images (OpenCV-style) as `np.ndarray` and returns `TargetBox`
    objects in original image coordinates, best score first. Holds no per-call
    state, so repeated calls on the same image give the same result.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        cfg: ModelConfig = YOLO_FASTESTV2,
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
    ):
        self._infer_fn = infer_fn
        self.cfg = cfg
        self.backend = backend
        self.backend_name = backend_name
        self.post = FastestPostprocessor(cfg)

    def preprocess(self, image_bgr: np.ndarray) -> PreprocessResult:
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

        orig_h, orig_w = image_bgr.shape[:2]
        img, ratio, pad = resize_to_input(
            image_bgr, (self.cfg.input_width, self.cfg.input_height), self.cfg.resize_mode
        )
        if self.cfg.channel_order == "rgb":
            img = img[:, :, ::-1]

        # zero mean, 1/255 scale, HWC -> NCHW
        blob = img.astype(np.float32) / 255.0
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])

        return PreprocessResult(blob=blob, orig_size=(orig_w, orig_h), ratio=ratio, pad=pad)

    def detect(self, image_bgr: np.ndarray, thresh: Optional[float] = None) -> List[TargetBox]:
        """
        Run detection on one image. `thresh` defaults to the config's `conf_threshold` (0.3).

        Raises `InferenceError` when the engine cannot produce every configured output.
        """

        prep = self.preprocess(image_bgr)
        outputs = self._infer_fn(prep.blob)
        boxes = self.post.process(outputs, orig_size=prep.orig_size, pad=prep.pad, ratio=prep.ratio, thresh=thresh)
        logger.debug("detected %d boxes on %dx%d image", len(boxes), *prep.orig_size)
        return boxes

    __call__ = detect


def _infer_backend(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".param":
        return "ncnn"
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_pipeline(
    model_path: PathLike,
    weights_path: Optional[PathLike] = None,
    *,
    cfg: ModelConfig = YOLO_FASTESTV2,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    ncnn_use_vulkan: bool = False,
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> DetectionPipeline:
    """
    Create a detection pipeline for a model on disk.

        pipe = load_pipeline("models/yolo-fastestv2-opt.param")  # weights: models/yolo-fastestv2-opt.bin

    Args:
        model_path: ncnn `.param`, `.onnx` or TorchScript file; relative paths resolve against `root`
        weights_path: ncnn `.bin` weights; defaults to `model_path` with a `.bin` suffix
        cfg: model configuration (anchors, output names, thresholds)
        backend: "ncnn", "onnxruntime" or "torchscript"; None infers it from the extension
    """

    resolved = resolve_path(model_path, root=root)
    chosen = (backend or _infer_backend(resolved)).lower()
    logger.info("loading %s model %s", chosen, resolved)

    if chosen == "ncnn":
        from .backends.ncnn_backend import NcnnBackend, NcnnBackendConfig

        weights = resolve_path(weights_path, root=root) if weights_path is not None else resolved.with_suffix(".bin")
        ncnn_backend = NcnnBackend(
            resolved,
            weights,
            NcnnBackendConfig(
                input_name=cfg.input_name,
                output_names=cfg.output_names,
                num_threads=cfg.num_threads,
                use_vulkan=ncnn_use_vulkan,
            ),
        )
        return DetectionPipeline(ncnn_backend.infer, cfg, backend=ncnn_backend, backend_name="ncnn")

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        ort_backend = OnnxRuntimeBackend(
            resolved,
            OnnxRuntimeBackendConfig(
                providers=onnx_providers,
                output_names=cfg.output_names,
                num_threads=cfg.num_threads,
            ),
        )
        return DetectionPipeline(ort_backend.infer, cfg, backend=ort_backend, backend_name="onnxruntime")

    if chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        ts_backend = TorchScriptBackend(
            resolved,
            TorchScriptBackendConfig(device=torch_device, output_names=cfg.output_names, num_threads=cfg.num_threads),
        )
        return DetectionPipeline(ts_backend.infer, cfg, backend=ts_backend, backend_name="torchscript")

    raise ValueError(f"Unsupported backend: {backend!r}")
