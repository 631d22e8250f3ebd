"""
API Dependencies

FastAPI dependency providers for the engine components held on
``app.state``.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from civic_federation.config import Settings
from civic_federation.federation.index import ProposalIndex
from civic_federation.verification.registry_sync import VerifierRegistrySyncEngine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_proposal_index(request: Request) -> ProposalIndex:
    index = getattr(request.app.state, "index", None)
    if index is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Proposal index not initialized",
        )
    return index


def get_sync_engine(request: Request) -> VerifierRegistrySyncEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Registry sync engine not initialized",
        )
    return engine


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
IndexDep = Annotated[ProposalIndex, Depends(get_proposal_index)]
EngineDep = Annotated[VerifierRegistrySyncEngine, Depends(get_sync_engine)]
