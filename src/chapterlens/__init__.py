"""chapterlens: tiered chapter discovery."""

__version__ = "0.1.0"
