"""One-time download links for purchased files."""

__version__ = "1.0.0"
