"""Background workers."""

from .conversion_worker import ConversionWorker, Stage

__all__ = ["ConversionWorker", "Stage"]
