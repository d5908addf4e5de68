"""Kindle weather display generator: fetch, fill an SVG template, rasterize, serve."""

__version__ = "0.3.0"
