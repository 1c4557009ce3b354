"""
Skin-ratio heuristic.
Cheap pixel-level signal over sampled frames, independent of the classifier.
"""

import numpy as np


def skin_mask(pixels: np.ndarray) -> np.ndarray:
    """
    Boolean mask of skin-toned pixels for an (H, W, 3) RGB array.
    Classic RGB rule: r>95, g>40, b>20, r>g, r>b, |r-g|>15.
    """
    if pixels.ndim != 3 or pixels.shape[2] < 3:
        raise ValueError(f"Expected (H, W, 3) RGB pixels, got shape {pixels.shape}")

    rgb = pixels[..., :3].astype(np.int16)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    return (
        (r > 95) & (g > 40) & (b > 20)
        & (r > g) & (r > b)
        & (np.abs(r - g) > 15)
    )


def skin_ratio(pixels: np.ndarray) -> float:
    """Fraction of pixels in the frame that look like skin."""
    mask = skin_mask(pixels)
    if mask.size == 0:
        return 0.0
    return float(mask.sum()) / float(mask.size)
