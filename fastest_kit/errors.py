from __future__ import annotations


class ModelConfigError(ValueError):
    """
    The model configuration does not match the loaded model (stride ratio,
    tensor rank or channel count), or a config value is invalid.
    """


class InferenceError(RuntimeError):
    """
    The inference engine failed to load a model or to produce an output tensor.
    """
