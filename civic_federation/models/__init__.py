"""
Civic Federation Models
"""

from civic_federation.models.base import (
    FederationModel,
    FrozenModel,
    generate_proposal_id,
    utc_now,
)
from civic_federation.models.proposal import (
    CrossDeckVoting,
    CrossDeckVotingOverlay,
    DeckSurface,
    NodeSyncReport,
    ProposalFilter,
    ProposalSubmission,
    ProposalType,
    QuorumRequirement,
    RegionalAnalytics,
    RegionalProposal,
    RegionScope,
    SyncStatus,
    UrgencyLevel,
    VoteChoice,
    VotingPeriod,
)
from civic_federation.models.verifier import (
    RegistryHealth,
    RegistryMetadata,
    SyncResult,
    SyncSummary,
    ValidationChecks,
    VerifierEntry,
    VerifierMetadata,
    VerifierRegistry,
    VerifierStatus,
    VerifierTier,
    VerifierValidationResult,
    ZkProofBundle,
)

__all__ = [
    # Base
    "FederationModel",
    "FrozenModel",
    "generate_proposal_id",
    "utc_now",
    # Verifiers
    "VerifierEntry",
    "VerifierMetadata",
    "VerifierRegistry",
    "VerifierStatus",
    "VerifierTier",
    "VerifierValidationResult",
    "ValidationChecks",
    "RegistryMetadata",
    "RegistryHealth",
    "SyncResult",
    "SyncSummary",
    "ZkProofBundle",
    # Proposals
    "RegionalProposal",
    "ProposalSubmission",
    "ProposalFilter",
    "ProposalType",
    "RegionScope",
    "CrossDeckVoting",
    "QuorumRequirement",
    "VotingPeriod",
    "SyncStatus",
    "UrgencyLevel",
    "VoteChoice",
    "DeckSurface",
    "CrossDeckVotingOverlay",
    "RegionalAnalytics",
    "NodeSyncReport",
]
