from .background_worker import IBackgroundWorker

__all__ = [
    "IBackgroundWorker",
]
