"""Shared service building blocks: configuration, caching and logging."""

__version__ = "0.1.0"
__all__ = ["cache", "config", "logger"]