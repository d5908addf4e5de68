"""SVG -> PNG conversion for the e-reader."""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile

import numpy as np
from PIL import Image

from .errors import RenderError

logger = logging.getLogger(__name__)

RASTERIZE_TIMEOUT = 60


def rasterize(svg_path: str, png_path: str, command: str = "rsvg-convert") -> str:
    """Run the external rasterizer (rsvg-convert compatible arguments)."""
    args = shlex.split(command) + ["--background-color=white", "-o", png_path, svg_path]
    logger.debug("Rasterizing: %s", " ".join(args))
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=RASTERIZE_TIMEOUT)
    except FileNotFoundError as exc:
        raise RenderError(f"rasterizer {args[0]!r} not found; install librsvg or set RASTERIZER") from exc
    except subprocess.TimeoutExpired as exc:
        raise RenderError(f"rasterizer timed out after {RASTERIZE_TIMEOUT}s") from exc
    if result.returncode != 0:
        raise RenderError(f"rasterizer exited with {result.returncode}: {(result.stderr or '').strip()}")
    if not os.path.exists(png_path) or os.path.getsize(png_path) == 0:
        raise RenderError(f"rasterizer produced no output at {png_path}")
    return png_path


def quantize_gray(pixels: np.ndarray, levels: int) -> np.ndarray:
    """Snap 8-bit gray values to ``levels`` evenly spaced shades."""
    if levels < 2 or levels > 256:
        raise ValueError(f"levels must be between 2 and 256, got {levels}")
    step = 255.0 / (levels - 1)
    snapped = np.round(pixels.astype(np.float64) / step) * step
    return np.clip(np.round(snapped), 0, 255).astype(np.uint8)


def to_kindle_grayscale(png_path: str, levels: int = 16, rotate: int = 0) -> str:
    """Rewrite ``png_path`` in place as an 8-bit grayscale PNG.

    Kindle panels show 16 shades of gray and do not cope with alpha or
    colour PNGs, so the rasterizer output is flattened onto white first.
    """
    try:
        with Image.open(png_path) as src:
            image = src.convert("RGBA")
    except OSError as exc:
        raise RenderError(f"reading {png_path}: {exc}") from exc

    canvas = Image.new("RGBA", image.size, "white")
    canvas.alpha_composite(image)
    gray = canvas.convert("L")
    if rotate in (90, 180, 270):
        gray = gray.rotate(rotate, expand=True)

    out = Image.fromarray(quantize_gray(np.array(gray), levels))
    write_atomic(png_path, lambda f: out.save(f, format="PNG", optimize=True))
    return png_path


def write_atomic(path: str, writer) -> None:
    """Write through a temp file in the same directory, then rename over ``path``."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.splitext(path)[1])
    try:
        with os.fdopen(fd, "wb") as f:
            writer(f)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
