# tasteid_backend/app/services/tasteid/errors.py
from __future__ import annotations

# Purpose:
# Error taxonomy for a taste-profile recompute.
# - InsufficientDataError: user-correctable ("rate more albums")
# - CorruptStateError: absorbed per component; that component cold-starts
# - TasteComputationError: whole run aborted, nothing written, retryable
# - ConcurrentRecomputeError: lost the per-user write race, retryable


class TasteIDError(Exception):
    retryable: bool = False


class InsufficientDataError(TasteIDError):
    def __init__(self, have: int, need: int):
        self.have = have
        self.need = need
        super().__init__(f"need at least {need} ratings to build a taste profile, have {have}")


class CorruptStateError(TasteIDError):
    def __init__(self, component: str, reason: str):
        self.component = component
        self.reason = reason
        super().__init__(f"corrupt {component} state: {reason}")


class TasteComputationError(TasteIDError):
    retryable = True


class ConcurrentRecomputeError(TasteIDError):
    retryable = True

    def __init__(self, user_id: str, expected_version: int):
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(
            f"taste profile for {user_id} changed while recomputing (expected version {expected_version})"
        )
