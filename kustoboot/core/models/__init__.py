"""
Domain models for the deployment.

All models are re-exported here for convenient access:

    from kustoboot.core.models import Phase, Checkpoint, Receipt
"""

from kustoboot.core.models.action import ErrorKind, Receipt
from kustoboot.core.models.checkpoint import Checkpoint
from kustoboot.core.models.continuation import ContinuationTask
from kustoboot.core.models.download import DownloadJob, DownloadResult
from kustoboot.core.models.phase import LADDER, Phase

__all__ = [
    "LADDER",
    # checkpoint.py
    "Checkpoint",
    # continuation.py
    "ContinuationTask",
    # download.py
    "DownloadJob",
    "DownloadResult",
    # action.py
    "ErrorKind",
    # phase.py
    "Phase",
    "Receipt",
]
