"""
Verifier Registry Verification

Architecture:
    ProofValidator - Runs the five proof checks for one verifier
    ConsensusCalculator - Turns valid/total counts into a consensus decision
    VerifierRegistrySyncEngine - Fetches registries, validates, aggregates

Usage:
    from civic_federation.verification import (
        ArtifactFormatCheckStrategy,
        InMemoryRegistryFetcher,
        ProofValidator,
        VerifierRegistrySyncEngine,
        get_sync_summary,
    )

    engine = VerifierRegistrySyncEngine(
        fetcher=InMemoryRegistryFetcher({"reg-1": registry}),
        validator=ProofValidator(ArtifactFormatCheckStrategy()),
    )
    result = await engine.validate_and_sync("reg-1")
"""

from civic_federation.verification.consensus import (
    ConsensusCalculator,
    ConsensusDecision,
    ConsensusStrategy,
    StrictMajorityConsensusStrategy,
    ThresholdConsensusStrategy,
)
from civic_federation.verification.registry_sync import (
    HttpRegistryFetcher,
    InMemoryRegistryFetcher,
    JsonFileRegistryFetcher,
    RegistryFetcher,
    VerifierRegistrySyncEngine,
    apply_validation_outcome,
    check_registry_health,
    get_sync_summary,
)
from civic_federation.verification.strategies import (
    ArtifactFormatCheckStrategy,
    CheckKind,
    CheckStrategy,
    ScriptedCheckStrategy,
    SimulatedCheckStrategy,
)
from civic_federation.verification.validator import CheckOutcome, ProofValidator

__all__ = [
    # Checks
    "CheckKind",
    "CheckOutcome",
    "CheckStrategy",
    "SimulatedCheckStrategy",
    "ArtifactFormatCheckStrategy",
    "ScriptedCheckStrategy",
    "ProofValidator",
    # Consensus
    "ConsensusCalculator",
    "ConsensusDecision",
    "ConsensusStrategy",
    "ThresholdConsensusStrategy",
    "StrictMajorityConsensusStrategy",
    # Sync
    "RegistryFetcher",
    "InMemoryRegistryFetcher",
    "JsonFileRegistryFetcher",
    "HttpRegistryFetcher",
    "VerifierRegistrySyncEngine",
    "apply_validation_outcome",
    "check_registry_health",
    "get_sync_summary",
]
