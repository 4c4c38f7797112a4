"""todori — dependency-aware task store for coding agents."""

__version__ = "1.0.0"
