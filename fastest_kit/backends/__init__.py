"""
Optional inference engines for fastest_kit.

Each backend imports its runtime lazily so decoding and NMS stay usable without
any inference engine installed. Every backend's `infer(blob)` takes an NCHW
float32 blob and returns the configured outputs keyed by name.
"""

from __future__ import annotations

__all__ = []
