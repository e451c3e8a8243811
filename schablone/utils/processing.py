"""
Image processing helpers shared by the detection nodes.

Quantization of gradient orientations and surface normals, depth edge
filtering and integral image lookups. All functions work on numpy arrays and
never return NaN or Inf: degenerate inputs fall back to a finite value.
"""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import cv2
import numpy as np

GRADIENT_BINS = 5
NORMAL_BINS = 8

# OpenCV hue (0-179) used for colors without a reliable hue
HUE_BLUE = 120
HUE_YELLOW = 30

_NORMAL_EPS = 1e-6


def quantize_orientation_gradient(deg: float) -> int:
    """
    Quantize a gradient orientation into one of five 36 degree bins.

    Orientation is axis-unsigned, so ``deg`` and ``deg + 180`` share a bin.
    Any finite angle is accepted and wrapped into [0, 360) first.

    Args:
        deg: Orientation in degrees

    Returns:
        Bin index in [0, 5)
    """
    if not math.isfinite(deg):
        return 0
    return (int(math.floor(deg % 360.0)) % 180) // 36


def quantize_orientation_gradients(deg: np.ndarray) -> np.ndarray:
    """Vectorized quantize_orientation_gradient."""
    deg = np.nan_to_num(np.asarray(deg, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    wrapped = np.floor(np.mod(deg, 360.0)).astype(np.int64)
    return ((wrapped % 180) // 36).astype(np.uint8)


def gradient_maps(gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Central difference gradient orientation bins and magnitudes.

    Uses ``dx = (I[x-1] - I[x+1]) / 2`` and ``dy = (I[y-1] - I[y+1]) / 2``.
    Border pixels get zero magnitude.

    Args:
        gray: Grayscale image (H, W)

    Returns:
        Tuple of (orientation bins uint8 (H, W), magnitude float32 (H, W))
    """
    img = np.asarray(gray, dtype=np.float32)
    dx = np.zeros_like(img)
    dy = np.zeros_like(img)
    dx[1:-1, 1:-1] = (img[1:-1, :-2] - img[1:-1, 2:]) / 2.0
    dy[1:-1, 1:-1] = (img[:-2, 1:-1] - img[2:, 1:-1]) / 2.0

    magnitude = np.hypot(dx, dy).astype(np.float32)
    bins = quantize_orientation_gradients(np.degrees(np.arctan2(dy, dx)))
    return bins, magnitude


def extract_gradient_orientation(gray: np.ndarray, point: Sequence[int]) -> float:
    """
    Gradient orientation in degrees [0, 360) at an interior point.

    Args:
        gray: Grayscale image (H, W)
        point: (x, y) pixel coordinates, at least 1 px away from the border

    Returns:
        Orientation in degrees
    """
    x, y = int(point[0]), int(point[1])
    dx = (float(gray[y, x - 1]) - float(gray[y, x + 1])) / 2.0
    dy = (float(gray[y - 1, x]) - float(gray[y + 1, x])) / 2.0
    return math.degrees(math.atan2(dy, dx)) % 360.0


def _depth_gradients(depth: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Central depth differences where invalid neighbours are replaced by the centre."""
    d = np.asarray(depth, dtype=np.float32)
    padded = np.pad(d, 1, mode="edge")

    left = padded[1:-1, :-2]
    right = padded[1:-1, 2:]
    up = padded[:-2, 1:-1]
    down = padded[2:, 1:-1]

    left = np.where(left > 0, left, d)
    right = np.where(right > 0, right, d)
    up = np.where(up > 0, up, d)
    down = np.where(down > 0, down, d)

    dzdx = (right - left) / 2.0
    dzdy = (down - up) / 2.0

    invalid = ~(d > 0)
    dzdx[invalid] = 0.0
    dzdy[invalid] = 0.0
    return dzdx, dzdy


def quantize_surface_normal(normal: Sequence[float]) -> int:
    """
    Quantize a camera facing surface normal into one of eight octant bins.

    The hemisphere is split into eight 45 degree sectors by the azimuth of the
    normal's (x, y) component. A normal facing the camera head-on has no
    azimuth and lands in bin 0.

    Args:
        normal: Normal vector (nx, ny, nz), any scale

    Returns:
        Bin index in [0, 8)
    """
    nx, ny, nz = (float(v) for v in normal)
    if not (math.isfinite(nx) and math.isfinite(ny) and math.isfinite(nz)):
        return 0
    if math.hypot(nx, ny) <= _NORMAL_EPS * max(abs(nz), 1.0):
        return 0
    azimuth = math.degrees(math.atan2(ny, nx)) % 360.0
    return int(azimuth // 45.0) % NORMAL_BINS


def surface_normal_bins(depth: np.ndarray) -> np.ndarray:
    """
    Quantized surface normal bin of every pixel of a depth map.

    Args:
        depth: Raw depth map (H, W), values <= 0 are invalid

    Returns:
        Normal bins uint8 (H, W)
    """
    dzdx, dzdy = _depth_gradients(depth)
    nx = -dzdx
    ny = -dzdy

    azimuth = np.mod(np.degrees(np.arctan2(ny, nx)), 360.0)
    bins = (np.floor(azimuth / 45.0).astype(np.int64) % NORMAL_BINS).astype(np.uint8)
    bins[np.hypot(nx, ny) <= _NORMAL_EPS] = 0
    return bins


def extract_surface_normal(depth: np.ndarray, point: Sequence[int]) -> np.ndarray:
    """
    Unit surface normal (nx, ny, nz) at a point of a depth map.

    Args:
        depth: Raw depth map (H, W)
        point: (x, y) pixel coordinates

    Returns:
        Normal vector (3,)
    """
    x, y = int(point[0]), int(point[1])
    padded = np.pad(np.asarray(depth, dtype=np.float32), 1, mode="edge")
    dzdx, dzdy = _depth_gradients(padded[y : y + 3, x : x + 3])
    normal = np.array([-dzdx[1, 1], -dzdy[1, 1], 1.0], dtype=np.float64)
    return normal / np.linalg.norm(normal)


def circular_bin_distance(a, b, bins: int):
    """Distance between bin indices on a circular axis of ``bins`` bins."""
    diff = np.abs(np.asarray(a, dtype=np.int64) - np.asarray(b, dtype=np.int64)) % bins
    return np.minimum(diff, bins - diff)


def normalize_hue(hsv: np.ndarray, value_min: int, saturation_min: int) -> np.ndarray:
    """
    Hue channel with achromatic colors mapped to fixed hues.

    Dark colors (value below ``value_min``) become blue and pale colors
    (saturation below ``saturation_min``) become yellow, so that black and
    white surfaces still compare by hue.

    Args:
        hsv: HSV colors (..., 3) in OpenCV ranges
        value_min: Value threshold for black
        saturation_min: Saturation threshold for white

    Returns:
        Hue array (...) as int16
    """
    hsv = np.asarray(hsv)
    hue = hsv[..., 0].astype(np.int16)
    hue = np.where(hsv[..., 1] < saturation_min, HUE_YELLOW, hue)
    hue = np.where(hsv[..., 2] < value_min, HUE_BLUE, hue)
    return hue.astype(np.int16)


def filter_sobel(src: np.ndarray) -> np.ndarray:
    """
    Normalized 3x3 Sobel gradient magnitude.

    The kernels are scaled by 1/8 so a linear ramp of slope ``s`` per pixel
    yields ``s``.

    Args:
        src: Single channel float image (H, W)

    Returns:
        Gradient magnitude float32 (H, W)
    """
    src = np.asarray(src, dtype=np.float32)
    gx = cv2.Sobel(src, cv2.CV_32F, 1, 0, ksize=3, scale=1.0 / 8.0)
    gy = cv2.Sobel(src, cv2.CV_32F, 0, 1, ksize=3, scale=1.0 / 8.0)
    return cv2.magnitude(gx, gy)


def threshold_min_max(src: np.ndarray, t_min: float, t_max: float) -> np.ndarray:
    """Binary float32 mask of values inside [t_min, t_max]."""
    return ((src >= t_min) & (src <= t_max)).astype(np.float32)


def compute_edge_mask(depth_norm: np.ndarray, t_min: float, t_max: float) -> np.ndarray:
    """
    Binary depth edge mask of a normalized depth map.

    Args:
        depth_norm: Depth map normalized into [0, 1]
        t_min: Minimum Sobel response of an edgel
        t_max: Maximum Sobel response of an edgel

    Returns:
        Edge mask float32 (H, W) with values 0 or 1
    """
    return threshold_min_max(filter_sobel(depth_norm), t_min, t_max)


def integral_image(mask: np.ndarray) -> np.ndarray:
    """2D prefix sum of shape (H + 1, W + 1)."""
    return cv2.integral(np.asarray(mask, dtype=np.float32), sdepth=cv2.CV_64F)


def window_edgels(integral: np.ndarray, x: int, y: int, width: int, height: int) -> int:
    """Sum of the mask inside a window using four integral image lookups."""
    total = (
        integral[y + height, x + width]
        - integral[y, x + width]
        - integral[y + height, x]
        + integral[y, x]
    )
    return int(round(total))


def reference_points(
    x: int, y: int, width: int, height: int, grid_size: Tuple[int, int]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pixel coordinates of the reference grid cell centres over a box.

    Args:
        x: Box left
        y: Box top
        width: Box width
        height: Box height
        grid_size: (columns, rows)

    Returns:
        Tuple of (column x coordinates, row y coordinates)
    """
    cols, rows = grid_size
    xs = x + np.floor((np.arange(cols) + 0.5) * width / cols).astype(np.int64)
    ys = y + np.floor((np.arange(rows) + 0.5) * height / rows).astype(np.int64)
    return xs, ys
