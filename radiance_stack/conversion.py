"""
Conversions between host image buffers and the pipeline's 8-bit bins
"""

import logging
from typing import Union

import numpy as np
import torch

logger = logging.getLogger(__name__)

ImageLike = Union[np.ndarray, torch.Tensor]


def to_uint8_image(image: ImageLike) -> np.ndarray:
    """Quantise a decoded image to 8-bit intensity bins

    Accepts uint8 arrays as-is, float arrays or tensors in the 0-1 range
    (bin = round(value * 255), clamped), and graph-style tensors shaped
    [B, H, W, C] with a single batch entry. Non-finite floats are rejected.

    Returns:
        np.ndarray: uint8 array shaped (H, W, C)
    """
    if isinstance(image, torch.Tensor):
        # Graph tensors are typically [B, H, W, C] in 0-1 range
        if image.dim() == 4:
            if image.shape[0] != 1:
                raise ValueError(f"Expected a single image per tensor, got batch of {image.shape[0]}")
            image = image.squeeze(0)
        image = image.detach().cpu().numpy()

    image = np.asarray(image)
    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    if image.ndim != 3 or image.shape[2] not in (1, 3, 4):
        raise ValueError(f"Image must be 1, 3 or 4 channel, got shape: {image.shape}")
    if image.shape[2] == 1:
        image = np.repeat(image, 3, axis=2)

    if image.dtype == np.uint8:
        return np.ascontiguousarray(image)

    if not np.issubdtype(image.dtype, np.floating):
        raise ValueError(f"Unsupported image dtype {image.dtype}; expected uint8 or float in 0-1")
    if not np.all(np.isfinite(image)):
        raise ValueError(f"Image contains {int(np.count_nonzero(~np.isfinite(image)))} non-finite values")

    image_8bit = np.clip(np.rint(image * 255.0), 0, 255).astype(np.uint8)
    logger.debug(f"Quantised image: shape={image_8bit.shape}, range=[{image_8bit.min()}, {image_8bit.max()}]")
    return image_8bit


def radiance_to_tensor(pixels: np.ndarray) -> torch.Tensor:
    """Wrap linear radiance as a [1, H, W, C] float32 tensor - NO NORMALIZATION"""
    tensor = torch.from_numpy(np.ascontiguousarray(pixels, dtype=np.float32))
    if tensor.dim() == 3:
        tensor = tensor.unsqueeze(0)
    return tensor.float()
