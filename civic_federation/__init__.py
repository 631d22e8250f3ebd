"""
Civic Federation

Verifier registry synchronization and regional proposal federation.

Two halves share one model layer:
    verification - validates verifier registries and computes consensus
    federation - indexes regional proposals, aggregates cross-deck votes
        and propagates proposals to federation nodes
"""

from civic_federation.errors import (
    ConsistencyViolationError,
    FederationError,
    NodeTransportError,
    ProposalValidationError,
    RegistryFetchError,
    SyncTimeoutError,
)
from civic_federation.federation import (
    CrossDeckVoteAggregator,
    FederationSyncCoordinator,
    ProposalIndex,
)
from civic_federation.verification import (
    ConsensusCalculator,
    ProofValidator,
    VerifierRegistrySyncEngine,
    get_sync_summary,
)

__version__ = "1.0.0"

__all__ = [
    "__version__",
    # Errors
    "FederationError",
    "ProposalValidationError",
    "RegistryFetchError",
    "NodeTransportError",
    "SyncTimeoutError",
    "ConsistencyViolationError",
    # Verification
    "ProofValidator",
    "ConsensusCalculator",
    "VerifierRegistrySyncEngine",
    "get_sync_summary",
    # Federation
    "ProposalIndex",
    "CrossDeckVoteAggregator",
    "FederationSyncCoordinator",
]
