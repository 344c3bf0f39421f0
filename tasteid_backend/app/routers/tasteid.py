# tasteid_backend/app/routers/tasteid.py
from __future__ import annotations
from fastapi import APIRouter

from tasteid_backend.app.services.router_helpers import tasteid_helpers as H

router = APIRouter(prefix="/tasteid", tags=["tasteid"])

# POST /tasteid/compute/{user_id}
# 400 fewer than the minimum ratings, 409 lost a concurrent recompute, 500 engine failure (retryable)
@router.post("/compute/{user_id}", response_model=dict)
def compute_profile(user_id: str):
    return H.compute(user_id)

@router.get("/{user_id}", response_model=dict)
def get_profile(user_id: str):
    return H.get_profile(user_id)

@router.get("/{user_id}/consolidation", response_model=dict)
def get_consolidation(user_id: str):
    return H.get_consolidation(user_id)

@router.get("/{user_id}/drift", response_model=dict)
def get_drift(user_id: str):
    return H.get_drift(user_id)

@router.get("/{user_id}/patterns", response_model=dict)
def get_patterns(user_id: str):
    return H.get_patterns(user_id)

@router.delete("/{user_id}", response_model=dict)
def reset_profile(user_id: str):
    return H.reset(user_id)
