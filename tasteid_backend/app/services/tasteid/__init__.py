# tasteid_backend/app/services/tasteid/__init__.py
from .engine import TasteComputation, compute_taste_profile
from .errors import (
    ConcurrentRecomputeError,
    CorruptStateError,
    InsufficientDataError,
    TasteComputationError,
    TasteIDError,
)

__all__ = [
    "TasteComputation", "compute_taste_profile",
    "TasteIDError", "InsufficientDataError", "CorruptStateError",
    "TasteComputationError", "ConcurrentRecomputeError",
]
