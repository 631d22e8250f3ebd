"""
Regional Proposal Data Models

Defines governance proposals propagated across federation nodes, the
cross-deck voting overlay attached to them, and the read-side records
produced by queries and syncs.
"""

from datetime import datetime
from enum import Enum

from pydantic import ConfigDict, Field, computed_field

from civic_federation.errors import ConsistencyViolationError
from civic_federation.models.base import FederationModel, FrozenModel, Identifier, utc_now


class ProposalType(str, Enum):
    """Kinds of regional proposal."""
    POLICY = "policy"
    BUDGET = "budget"
    GOVERNANCE = "governance"
    EMERGENCY = "emergency"
    CROSS_BORDER = "cross_border"


class UrgencyLevel(str, Enum):
    """Urgency of a proposal."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SyncStatus(str, Enum):
    """Propagation state of a proposal across its federation nodes."""
    PENDING = "pending"              # Submitted, never pushed
    SYNCING = "syncing"              # Push in flight
    SYNCHRONIZED = "synchronized"    # Every attempted node acknowledged
    FAILED = "failed"                # At least one node did not acknowledge


class VoteChoice(str, Enum):
    """Ballot options."""
    SUPPORT = "support"
    OPPOSE = "oppose"
    ABSTAIN = "abstain"


class DeckSurface(str, Enum):
    """Integration surfaces that can carry votes for a proposal."""
    GOVERNANCE = "governance"
    PRIVACY = "privacy"
    AUDIT = "audit"


_SYNC_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCING: frozenset({SyncStatus.SYNCHRONIZED, SyncStatus.FAILED}),
    SyncStatus.FAILED: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCHRONIZED: frozenset({SyncStatus.SYNCING}),
}


def is_allowed_sync_transition(current: SyncStatus, new: SyncStatus) -> bool:
    """Check whether a proposal may move from ``current`` to ``new``."""
    return SyncStatus(new) in _SYNC_TRANSITIONS[SyncStatus(current)]


# ═══════════════════════════════════════════════════════════════
# PROPOSAL VALUE OBJECTS
# ═══════════════════════════════════════════════════════════════


class RegionScope(FederationModel):
    """Jurisdictions a proposal applies to."""

    primary_jurisdiction: str = ""
    secondary_jurisdictions: list[str] = Field(default_factory=list)
    federation_wide: bool = False


class CrossDeckVoting(FederationModel):
    """Which external surfaces participate in voting."""

    governance_deck: bool = False
    privacy_deck: bool = False
    audit_deck: bool = False

    @property
    def any_enabled(self) -> bool:
        return self.governance_deck or self.privacy_deck or self.audit_deck

    def is_enabled(self, surface: DeckSurface) -> bool:
        return {
            DeckSurface.GOVERNANCE: self.governance_deck,
            DeckSurface.PRIVACY: self.privacy_deck,
            DeckSurface.AUDIT: self.audit_deck,
        }[DeckSurface(surface)]


class QuorumRequirement(FederationModel):
    """Quorum configuration of a proposal."""

    minimum_participation: float = Field(default=0.0, ge=0.0, le=100.0)
    tier_weighting: bool = False
    emergency_bypass: bool = False


class VotingPeriod(FederationModel):
    """Voting window of a proposal."""

    start_timestamp: datetime = Field(default_factory=utc_now)
    end_timestamp: datetime = Field(default_factory=utc_now)
    extendable: bool = False


class VoteTally(FederationModel):
    """Running vote counts and derived participation percentage."""

    support: int = Field(default=0, ge=0)
    oppose: int = Field(default=0, ge=0)
    abstain: int = Field(default=0, ge=0)
    participation: float = Field(default=0.0, ge=0.0, le=100.0)

    @property
    def total(self) -> int:
        return self.support + self.oppose + self.abstain


class ProposalMetadata(FederationModel):
    """Submission bookkeeping."""

    submitted_by: str = ""
    submission_timestamp: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)
    urgency_level: UrgencyLevel = Field(default=UrgencyLevel.MEDIUM)
    dao_validator_hash: str = ""


# ═══════════════════════════════════════════════════════════════
# PROPOSALS
# ═══════════════════════════════════════════════════════════════


class ProposalSubmission(FederationModel):
    """
    Caller-supplied part of a proposal.

    Length and presence constraints are not declared here: ProposalIndex
    checks them in a fixed order and reports the first one violated.
    Title and description are kept verbatim, so lengths count whitespace.
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    title: str = ""
    description: str = ""
    region_scope: RegionScope = Field(default_factory=RegionScope)
    proposal_type: ProposalType = Field(default=ProposalType.POLICY)
    federation_nodes: list[Identifier] = Field(default_factory=list)
    cid_hash: Identifier = ""
    cross_deck_voting: CrossDeckVoting = Field(default_factory=CrossDeckVoting)
    quorum_requirement: QuorumRequirement = Field(default_factory=QuorumRequirement)
    voting_period: VotingPeriod = Field(default_factory=VotingPeriod)
    submitted_by: Identifier = ""
    urgency_level: UrgencyLevel | None = None
    electorate_size: int | None = Field(default=None, ge=1)


class RegionalProposal(FederationModel):
    """
    A governance proposal scoped to one or more jurisdictions.

    Vote tallies mutate on every vote. ``sync_status`` moves only through
    ``transition_sync_status``, driven by the federation coordinator.
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    proposal_id: Identifier
    title: str
    description: str
    region_scope: RegionScope
    proposal_type: ProposalType
    federation_nodes: list[Identifier]
    cid_hash: Identifier = ""
    cross_deck_voting: CrossDeckVoting = Field(default_factory=CrossDeckVoting)
    quorum_requirement: QuorumRequirement = Field(default_factory=QuorumRequirement)
    voting_period: VotingPeriod = Field(default_factory=VotingPeriod)
    sync_status: SyncStatus = Field(default=SyncStatus.PENDING)
    votes: VoteTally = Field(default_factory=VoteTally)
    metadata: ProposalMetadata = Field(default_factory=ProposalMetadata)
    electorate_size: int | None = Field(default=None, ge=1)

    @property
    def cross_deck_enabled(self) -> bool:
        return self.cross_deck_voting.any_enabled

    @property
    def total_votes(self) -> int:
        return self.votes.total

    @property
    def quorum_met(self) -> bool:
        return self.votes.participation >= self.quorum_requirement.minimum_participation

    def is_voting_open(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        return self.voting_period.start_timestamp <= now < self.voting_period.end_timestamp

    def transition_sync_status(self, new_status: SyncStatus) -> None:
        """Move along the sync state machine; illegal moves are invariant failures."""
        if not is_allowed_sync_transition(self.sync_status, new_status):
            raise ConsistencyViolationError(
                f"Illegal sync status transition {self.sync_status} -> "
                f"{SyncStatus(new_status).value} for proposal {self.proposal_id}",
                {"proposal_id": self.proposal_id},
            )
        self.sync_status = new_status


class ProposalFilter(FederationModel):
    """AND-composed query filter. Unset fields do not constrain."""

    jurisdiction: str | None = None
    federation_node: str | None = None
    proposal_type: ProposalType | None = None
    urgency_level: UrgencyLevel | None = None
    sync_status: SyncStatus | None = None
    submitted_after: datetime | None = None
    submitted_before: datetime | None = None
    cross_deck_only: bool = False


# ═══════════════════════════════════════════════════════════════
# CROSS-DECK VOTING OVERLAY
# ═══════════════════════════════════════════════════════════════


class GovernanceDeckState(FederationModel):
    enabled: bool = False
    civic_swipe_entries: int = 0
    vote_ledger_hash: str = ""


class PrivacyDeckState(FederationModel):
    enabled: bool = False
    zkp_protected_votes: int = 0
    encrypted_ballots: list[str] = Field(default_factory=list)


class AuditDeckState(FederationModel):
    enabled: bool = False
    audited_votes: int = 0
    transparency_score: float = 0.0
    audit_trail_hash: str = ""


class DeckIntegrations(FederationModel):
    governance: GovernanceDeckState = Field(default_factory=GovernanceDeckState)
    privacy: PrivacyDeckState = Field(default_factory=PrivacyDeckState)
    audit: AuditDeckState = Field(default_factory=AuditDeckState)


class AggregatedResults(FederationModel):
    total_participants: int = 0
    weighted_support: float = 0.0
    cross_deck_consensus: bool = False


class CrossDeckVotingOverlay(FederationModel):
    """Cross-surface vote state owned by exactly one proposal."""

    proposal_id: str
    deck_integrations: DeckIntegrations = Field(default_factory=DeckIntegrations)
    aggregated_results: AggregatedResults = Field(default_factory=AggregatedResults)


# ═══════════════════════════════════════════════════════════════
# READ-SIDE RECORDS
# ═══════════════════════════════════════════════════════════════


class RegionalAnalytics(FrozenModel):
    """Aggregation over one jurisdiction's proposals."""

    jurisdiction: str
    total_proposals: int = 0
    active_proposals: int = 0
    average_participation: float = 0.0
    urgency_distribution: dict[str, int] = Field(default_factory=dict)
    cross_deck_usage: int = 0
    sync_health: float = 100.0


class NodeSyncReport(FrozenModel):
    """Partition of attempted federation nodes after a sync."""

    proposal_id: str
    synced_node_ids: tuple[str, ...] = ()
    failed_node_ids: tuple[str, ...] = ()
    node_errors: dict[str, str] = Field(default_factory=dict)
    sync_status: SyncStatus
    duration_ms: int = 0

    @computed_field(alias="success")  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return not self.failed_node_ids
