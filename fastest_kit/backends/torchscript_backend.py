from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Sequence, Union

import numpy as np

from ..errors import InferenceError


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - output_names: names given to the model's outputs, in return order
    - num_threads: CPU threads for torch
    """

    device: str = "cpu"
    output_names: Sequence[str] = ("794", "796")
    num_threads: int = 4


class TorchScriptBackend:
    """
    TorchScript backend using `torch.jit.load`.

    TorchScript outputs carry no names, so they are matched to `output_names` by position.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.output_names = tuple(cfg.output_names)
        if self.device.type == "cpu":
            torch.set_num_threads(cfg.num_threads)

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def infer(self, blob: np.ndarray) -> Dict[str, np.ndarray]:
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device).float().contiguous()

        with torch.no_grad():
            y = self.model(x)

        if not isinstance(y, (tuple, list)):
            y = (y,)
        if len(y) != len(self.output_names):
            raise InferenceError(
                f"TorchScript model returned {len(y)} outputs, expected {len(self.output_names)} "
                f"({list(self.output_names)})."
            )
        return {name: t.detach().to("cpu").numpy() for name, t in zip(self.output_names, y)}
