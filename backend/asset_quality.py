"""
Asset quality heuristics for downloaded image bytes (Pillow + numpy).

Goal:
- Reject images below the minimum resolution.
- Detect obvious "bad" visuals: mostly black frames, flat single-colour placeholders
  ("image not available" tiles some CDNs serve with HTTP 200).

This is a gate, not a classifier. Videos are not decoded here (magic-number check only).
"""

from __future__ import annotations

import io
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image

ANALYSIS_WIDTH = 320


def _to_gray_np(img: Image.Image) -> np.ndarray:
    a = np.asarray(img, dtype=np.float32)
    # RGB -> luma
    return (0.2126 * a[:, :, 0] + 0.7152 * a[:, :, 1] + 0.0722 * a[:, :, 2]).astype(np.float32)


def _edge_density(gray: np.ndarray, thresh: float = 18.0) -> float:
    """
    Cheap edge proxy: mean(|dx| + |dy| > thresh).
    thresh is in [0..255] scale.
    """
    if gray.ndim != 2 or gray.shape[0] < 2 or gray.shape[1] < 2:
        return 0.0
    dx = np.abs(gray[:, 1:] - gray[:, :-1])
    dy = np.abs(gray[1:, :] - gray[:-1, :])
    e = dx[:-1, :] + dy[:, :-1]
    return float(np.mean(e > float(thresh)))


def analyze_frame(img: Image.Image) -> Dict[str, Any]:
    """
    Returns frame-level metrics (computed on a downscaled copy).
    """
    if img.width > ANALYSIS_WIDTH:
        h = max(1, int(round(img.height * ANALYSIS_WIDTH / float(img.width))))
        img = img.resize((ANALYSIS_WIDTH, h))
    gray = _to_gray_np(img)
    h, w = gray.shape[:2]
    mean_luma = float(np.mean(gray)) if gray.size else 0.0
    p_dark = float(np.mean(gray < 16.0)) if gray.size else 1.0
    luma_std = float(np.std(gray)) if gray.size else 0.0

    return {
        "w": int(w),
        "h": int(h),
        "mean_luma": round(mean_luma, 2),
        "p_dark": round(p_dark, 4),
        "luma_std": round(luma_std, 2),
        "edge_density": round(_edge_density(gray), 4),
    }


def classify_frame(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """
    Heuristic labels for a single frame.
    """
    mean_luma = float(metrics.get("mean_luma", 0) or 0)
    p_dark = float(metrics.get("p_dark", 1.0))
    luma_std = float(metrics.get("luma_std", 0) or 0)
    edge_density = float(metrics.get("edge_density", 0) or 0)

    is_blackish = (mean_luma < 18.0 and p_dark > 0.85) or (p_dark > 0.93)
    is_flat = luma_std < 2.0 and edge_density < 0.001

    return {
        "is_blackish": bool(is_blackish),
        "is_flat": bool(is_flat),
    }


def load_image_bytes(data: bytes) -> Optional[Image.Image]:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img.convert("RGB")
    except (OSError, ValueError, Image.DecompressionBombError):
        return None


def inspect_image_bytes(
    data: bytes,
    min_width: int = 1280,
    min_height: int = 720,
) -> Tuple[bool, Dict[str, Any]]:
    """
    Returns (reject, report). report["reason"] is one of:
    image_load_failed, low_resolution, image_bad_visuals, ok.
    """
    report: Dict[str, Any] = {"size": len(data or b"")}
    img = load_image_bytes(data or b"")
    if img is None:
        return True, {**report, "reason": "image_load_failed"}

    w, h = img.size
    report["media_info"] = {"width": int(w), "height": int(h)}
    if w < int(min_width) or h < int(min_height):
        return True, {**report, "reason": "low_resolution"}

    m = analyze_frame(img)
    c = classify_frame(m)
    report["frame_metrics"] = m
    report["frame_class"] = c
    if c.get("is_blackish") or c.get("is_flat"):
        report["reason"] = "image_bad_visuals"
        return True, report

    report["reason"] = "ok"
    return False, report
