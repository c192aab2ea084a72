"""Atari DOS 2 disk image access, ATR/IMD conversion and Mac65 detokenizing."""

__version__ = "1.0.0"
__all__ = ["__version__"]