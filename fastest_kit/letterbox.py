from typing import Tuple

import numpy as np


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for resizing. Install with `pip install opencv-python`.") from e
    return cv2


def stretch(image: np.ndarray, new_shape: Tuple[int, int]):
    """
    Resize to exactly `new_shape` (width, height), ignoring aspect ratio.

    Returns:
        resized: image of shape (new_h, new_w, C)
        ratio: (w_ratio, h_ratio)
        pad: always (0.0, 0.0)
    """
    cv2 = _cv2()
    h, w = image.shape[:2]
    new_w, new_h = new_shape
    if (w, h) != (new_w, new_h):
        image = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
    return image, (new_w / w, new_h / h), (0.0, 0.0)


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int],
    color: Tuple[int, int, int] = (114, 114, 114),
):
    """
    Resize keeping aspect ratio, then pad the short side evenly to `new_shape` (width, height).

    Returns:
        padded: resized + padded image
        ratio: (w_ratio, h_ratio), equal for both axes
        pad: (dw, dh) padding applied left/top (right/bottom get the rest)
    """
    cv2 = _cv2()
    h, w = image.shape[:2]
    new_w, new_h = new_shape

    r = min(new_w / w, new_h / h)
    resized_w, resized_h = int(round(w * r)), int(round(h * r))
    dw = (new_w - resized_w) / 2
    dh = (new_h - resized_h) / 2

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    top, bottom = int(round(dh - 0.1)), int(round(dh + 0.1))
    left, right = int(round(dw - 0.1)), int(round(dw + 0.1))
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    return padded, (r, r), (dw, dh)


def resize_to_input(image: np.ndarray, new_shape: Tuple[int, int], mode: str = "stretch"):
    if mode == "stretch":
        return stretch(image, new_shape)
    if mode == "letterbox":
        return letterbox(image, new_shape)
    raise ValueError(f"Unsupported resize mode: {mode!r}")
