"""
Verifier Registry Data Models

Defines verifier credentials, registry snapshots and the immutable
records produced by a registry sync.
"""

from datetime import datetime
from enum import Enum

from pydantic import Field, computed_field

from civic_federation.errors import ConsistencyViolationError
from civic_federation.models.base import FederationModel, FrozenModel, utc_now


class VerifierStatus(str, Enum):
    """Lifecycle status of a verifier credential."""
    PENDING = "pending"          # Registered, not yet validated
    ACTIVE = "active"            # Validated and permitted to verify
    SUSPENDED = "suspended"      # Failed validation, may be reinstated
    REVOKED = "revoked"          # Terminal


class VerifierTier(str, Enum):
    """Competency tier of a verifier."""
    BASIC = "basic"
    ADVANCED = "advanced"
    EXPERT = "expert"
    AUTHORITY = "authority"


# Forward order of the lifecycle; transitions may only move forward,
# except suspended -> active (reinstatement).
_STATUS_ORDER = {
    VerifierStatus.PENDING: 0,
    VerifierStatus.ACTIVE: 1,
    VerifierStatus.SUSPENDED: 2,
    VerifierStatus.REVOKED: 3,
}


def is_allowed_status_transition(current: VerifierStatus, new: VerifierStatus) -> bool:
    """Check whether a verifier may move from ``current`` to ``new``."""
    current, new = VerifierStatus(current), VerifierStatus(new)
    if current == new:
        return True
    if current == VerifierStatus.SUSPENDED and new == VerifierStatus.ACTIVE:
        return True
    return _STATUS_ORDER[new] > _STATUS_ORDER[current]


class ZkProofBundle(FederationModel):
    """The four opaque proof artifacts carried by a verifier."""

    registration_proof: str = ""
    identity_proof: str = ""
    competency_proof: str = ""
    chain_signature: str = ""


class VerifierMetadata(FederationModel):
    """Reputation and jurisdiction information for a verifier."""

    reputation: float = Field(default=0.0, ge=0.0, le=100.0)
    jurisdiction: str = ""
    certifications: list[str] = Field(default_factory=list)
    contact_method: str | None = None


class VerifierEntry(FederationModel):
    """
    A credentialed identity permitted to perform validation work.

    Entries are never deleted; a withdrawn verifier is revoked instead.
    Status changes go through ``transition_to`` so the lifecycle rules
    hold no matter who drives them.
    """

    did: str = Field(description="Decentralized identifier of the verifier")
    public_key: str
    credential_hash: str
    registration_date: datetime = Field(default_factory=utc_now)
    last_validation: datetime | None = None
    status: VerifierStatus = Field(default=VerifierStatus.PENDING)
    tier: VerifierTier = Field(default=VerifierTier.BASIC)
    specializations: list[str] = Field(default_factory=list)
    verification_count: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    zk_proof: ZkProofBundle = Field(default_factory=ZkProofBundle)
    metadata: VerifierMetadata = Field(default_factory=VerifierMetadata)

    def transition_to(self, new_status: VerifierStatus) -> None:
        """Move to ``new_status``, enforcing the lifecycle rules."""
        if not is_allowed_status_transition(self.status, new_status):
            raise ConsistencyViolationError(
                f"Illegal verifier status transition {self.status} -> {VerifierStatus(new_status).value} "
                f"for {self.did}",
                {"did": self.did, "from": str(self.status), "to": VerifierStatus(new_status).value},
            )
        self.status = new_status


class RegistryMetadata(FederationModel):
    """Operator-level sync configuration of a registry."""

    registry_operator: str = ""
    sync_frequency: str = "hourly"
    consensus_threshold: float = Field(default=2 / 3, gt=0.0, le=1.0)


class VerifierRegistry(FederationModel):
    """A versioned snapshot of verifier entries."""

    registry_version: str = "1.0.0"
    last_sync: datetime = Field(default_factory=utc_now)
    total_verifiers: int = Field(default=0, ge=0)
    active_verifiers: int = Field(default=0, ge=0)
    chain_id: str = ""
    consensus_hash: str = ""
    verifiers: list[VerifierEntry] = Field(default_factory=list)
    metadata: RegistryMetadata = Field(default_factory=RegistryMetadata)

    def consistency_violations(self) -> list[str]:
        """Return the broken aggregate-counter invariants, if any."""
        violations = []
        if self.active_verifiers > self.total_verifiers:
            violations.append(
                f"activeVerifiers ({self.active_verifiers}) exceeds "
                f"totalVerifiers ({self.total_verifiers})"
            )
        if self.total_verifiers != len(self.verifiers):
            violations.append(
                f"totalVerifiers ({self.total_verifiers}) does not match "
                f"verifier count ({len(self.verifiers)})"
            )
        return violations

    def recount(self) -> None:
        """Recompute aggregate counters from the entries."""
        self.total_verifiers = len(self.verifiers)
        self.active_verifiers = sum(
            1 for v in self.verifiers if v.status == VerifierStatus.ACTIVE
        )


class ValidationChecks(FrozenModel):
    """Outcome of the five independent proof checks."""

    zk_proof_valid: bool = False
    registration_valid: bool = False
    identity_valid: bool = False
    competency_valid: bool = False
    chain_signature_valid: bool = False

    @property
    def all_passed(self) -> bool:
        return all((
            self.zk_proof_valid,
            self.registration_valid,
            self.identity_valid,
            self.competency_valid,
            self.chain_signature_valid,
        ))


class VerifierValidationResult(FrozenModel):
    """Per-verifier validation outcome. Created fresh on every pass."""

    did: str
    validation_checks: ValidationChecks
    error_messages: tuple[str, ...] = ()
    check_latencies_ms: dict[str, float] = Field(default_factory=dict)
    validation_timestamp: datetime = Field(default_factory=utc_now)

    @computed_field(alias="isValid")  # type: ignore[prop-decorator]
    @property
    def is_valid(self) -> bool:
        return self.validation_checks.all_passed


class SyncResult(FrozenModel):
    """Outcome of one ``validate_and_sync`` invocation."""

    registry_ref: str
    sync_timestamp: datetime = Field(default_factory=utc_now)
    chain_height: int = 0
    consensus_achieved: bool = False
    consensus_percentage: float = 0.0
    verifiers_processed: int = 0
    verifiers_validated: int = 0
    validation_failures: int = 0
    sync_duration_ms: int = 0
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    validation_results: tuple[VerifierValidationResult, ...] = ()


class SyncSummary(FrozenModel):
    """Aggregate over a batch of sync results."""

    total_processed: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_verifiers_validated: int = 0
    total_validation_failures: int = 0
    average_sync_duration_ms: int = 0
    consensus_rate: float = 0.0


class RegistryHealth(FrozenModel):
    """Health assessment of a registry snapshot."""

    health_score: int = Field(ge=0, le=100)
    issues: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
