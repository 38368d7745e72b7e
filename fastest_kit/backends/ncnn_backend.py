from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Sequence, Union

import numpy as np

from ..errors import InferenceError


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class NcnnBackendConfig:
    """
    Configuration for ncnn inference.

    - input_name/output_names: blob names from the `.param` graph
    - num_threads: worker threads used inside ncnn
    - use_vulkan: run on the GPU through ncnn's Vulkan compute path
    """

    input_name: str = "input.1"
    output_names: Sequence[str] = ("794", "796")
    num_threads: int = 4
    use_vulkan: bool = False


class NcnnBackend:
    """
    ncnn runner for `.param` + `.bin` models.

    Expects an NCHW float32 blob shaped (1, 3, H, W) or CHW.
    Output blobs come back as NumPy arrays in ncnn's (c, h, w) order.
    """

    def __init__(self, param_path: PathLike, bin_path: PathLike, cfg: NcnnBackendConfig = NcnnBackendConfig()):
        try:
            import ncnn  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("ncnn is required for the ncnn backend. Install it with `pip install ncnn`.") from e

        self._ncnn = ncnn
        self.param_path = Path(param_path)
        self.bin_path = Path(bin_path)
        for path in (self.param_path, self.bin_path):
            if not path.exists():
                raise FileNotFoundError(str(path))

        self.input_name = cfg.input_name
        self.output_names = tuple(cfg.output_names)

        net = ncnn.Net()
        net.opt.num_threads = cfg.num_threads
        net.opt.use_vulkan_compute = cfg.use_vulkan
        ret = net.load_param(str(self.param_path))
        if ret != 0:
            raise InferenceError(f"ncnn failed to load param file {self.param_path} (status {ret}).")
        ret = net.load_model(str(self.bin_path))
        if ret != 0:
            raise InferenceError(f"ncnn failed to load weights {self.bin_path} (status {ret}).")
        self.net = net
        logger.info("ncnn model ready: %s, %s (threads=%d)", self.param_path, self.bin_path, cfg.num_threads)

    def infer(self, blob: np.ndarray) -> Dict[str, np.ndarray]:
        x = np.asarray(blob, dtype=np.float32)
        if x.ndim == 4:
            if x.shape[0] != 1:
                raise ValueError(f"ncnn backend runs one image at a time, got batch shape {x.shape}.")
            x = x[0]
        x = np.ascontiguousarray(x)

        outputs: Dict[str, np.ndarray] = {}
        with self.net.create_extractor() as ex:
            ret = ex.input(self.input_name, self._ncnn.Mat(x))
            if ret != 0:
                raise InferenceError(f"ncnn input error {ret} for blob {self.input_name!r}.")
            for name in self.output_names:
                ret, mat = ex.extract(name)
                if ret != 0:
                    raise InferenceError(f"ncnn extract error {ret} for output {name!r}.")
                outputs[name] = np.array(mat)
        return outputs
