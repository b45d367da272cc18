"""Utilities module."""

from .config import ResamplerConfig

__all__ = ["ResamplerConfig"]
