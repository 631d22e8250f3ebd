"""
Federation API Routes

HTTP surface over the proposal index and the registry sync engine. Each
route maps onto one public engine operation.
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from pydantic import Field

from civic_federation.api.dependencies import EngineDep, IndexDep, SettingsDep
from civic_federation.models.base import FederationModel, utc_now
from civic_federation.models.proposal import (
    CrossDeckVotingOverlay,
    DeckSurface,
    NodeSyncReport,
    ProposalFilter,
    ProposalSubmission,
    ProposalType,
    RegionalAnalytics,
    RegionalProposal,
    SyncStatus,
    UrgencyLevel,
    VoteChoice,
)
from civic_federation.models.verifier import SyncResult, SyncSummary
from civic_federation.verification.registry_sync import get_sync_summary

logger = structlog.get_logger(__name__)

router = APIRouter()


# ============================================================================
# Request / Response Models
# ============================================================================


class SubmitProposalResponse(FederationModel):
    proposal_id: str


class VoteRequest(FederationModel):
    vote: VoteChoice
    voter_id: str = Field(min_length=1)
    surface: DeckSurface | None = None


class VoteResponse(FederationModel):
    proposal_id: str
    recorded: bool


class ProposalSyncRequest(FederationModel):
    node_ids: list[str] | None = None
    deadline_seconds: float | None = Field(default=None, gt=0)


class RegistrySyncRequest(FederationModel):
    deadline_seconds: float | None = Field(default=None, gt=0)


class BatchSyncRequest(FederationModel):
    registry_refs: list[str] = Field(min_length=1)
    deadline_seconds: float | None = Field(default=None, gt=0)


class HealthResponse(FederationModel):
    status: str
    service: str
    environment: str
    timestamp: datetime


def _not_found(proposal_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Proposal {proposal_id} not found",
    )


# ============================================================================
# Proposals
# ============================================================================


@router.post(
    "/proposals",
    response_model=SubmitProposalResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["proposals"],
)
async def submit_proposal(submission: ProposalSubmission, index: IndexDep):
    """Submit a regional proposal for indexing and federation."""
    proposal_id = await index.submit(submission)
    return SubmitProposalResponse(proposal_id=proposal_id)


@router.get("/proposals", response_model=list[RegionalProposal], tags=["proposals"])
async def list_proposals(
    index: IndexDep,
    jurisdiction: str | None = Query(default=None),
    federation_node: str | None = Query(default=None),
    proposal_type: ProposalType | None = Query(default=None),
    urgency_level: UrgencyLevel | None = Query(default=None),
    sync_status: SyncStatus | None = Query(default=None),
    submitted_after: datetime | None = Query(default=None),
    submitted_before: datetime | None = Query(default=None),
    cross_deck_only: bool = Query(default=False),
):
    """Query proposals; every supplied parameter must match. Newest first."""
    return await index.query(ProposalFilter(
        jurisdiction=jurisdiction,
        federation_node=federation_node,
        proposal_type=proposal_type,
        urgency_level=urgency_level,
        sync_status=sync_status,
        submitted_after=submitted_after,
        submitted_before=submitted_before,
        cross_deck_only=cross_deck_only,
    ))


@router.get("/proposals/{proposal_id}", response_model=RegionalProposal, tags=["proposals"])
async def get_proposal(proposal_id: str, index: IndexDep):
    proposal = await index.get(proposal_id)
    if proposal is None:
        raise _not_found(proposal_id)
    return proposal


@router.get(
    "/proposals/{proposal_id}/overlay",
    response_model=CrossDeckVotingOverlay,
    tags=["proposals"],
)
async def get_proposal_overlay(proposal_id: str, index: IndexDep):
    """Cross-deck voting overlay; 404 when the proposal has none."""
    overlay = await index.get_overlay(proposal_id)
    if overlay is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No cross-deck overlay for proposal {proposal_id}",
        )
    return overlay


@router.post("/proposals/{proposal_id}/votes", response_model=VoteResponse, tags=["proposals"])
async def record_vote(proposal_id: str, request: VoteRequest, index: IndexDep):
    recorded = await index.record_vote(proposal_id, request.vote, request.voter_id, request.surface)
    if not recorded:
        raise _not_found(proposal_id)
    return VoteResponse(proposal_id=proposal_id, recorded=True)


@router.post("/proposals/{proposal_id}/sync", response_model=NodeSyncReport, tags=["federation"])
async def sync_proposal(
    proposal_id: str,
    index: IndexDep,
    request: ProposalSyncRequest | None = None,
):
    """Propagate a proposal to its federation nodes, or a subset of them."""
    request = request or ProposalSyncRequest()
    if index.coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Federation coordinator not configured",
        )
    try:
        report = await index.synchronize(proposal_id, request.node_ids, request.deadline_seconds)
    except ValueError as e:
        logger.info("proposal_sync_rejected", proposal_id=proposal_id, reason=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if report is None:
        raise _not_found(proposal_id)
    return report


@router.get("/analytics/{jurisdiction}", response_model=RegionalAnalytics, tags=["proposals"])
async def regional_analytics(jurisdiction: str, index: IndexDep):
    return await index.analytics_for(jurisdiction)


# ============================================================================
# Verifier Registries
# ============================================================================


@router.post("/registries/batch-sync", response_model=list[SyncResult], tags=["registries"])
async def batch_sync_registries(request: BatchSyncRequest, engine: EngineDep):
    """Sync several registries; per-registry failures are reported in the results."""
    return await engine.batch_sync(request.registry_refs, request.deadline_seconds)


@router.post("/registries/summary", response_model=SyncSummary, tags=["registries"])
async def summarize_sync_results(results: list[SyncResult]):
    return get_sync_summary(results)


@router.post("/registries/{registry_ref}/sync", response_model=SyncResult, tags=["registries"])
async def sync_registry(
    registry_ref: str,
    engine: EngineDep,
    request: RegistrySyncRequest | None = None,
):
    """Fetch, validate and compute consensus for one verifier registry."""
    request = request or RegistrySyncRequest()
    return await engine.validate_and_sync(registry_ref, request.deadline_seconds)


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health(settings: SettingsDep):
    return HealthResponse(
        status="healthy",
        service=settings.app_name,
        environment=settings.app_env,
        timestamp=utc_now(),
    )
