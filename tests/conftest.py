"""
Civic Federation - Test Fixtures

Shared pytest fixtures for all test modules.
"""

import os
from datetime import UTC, datetime, timedelta

import pytest

os.environ["APP_ENV"] = "testing"

from civic_federation.config import Settings, clear_settings_cache  # noqa: E402
from civic_federation.models.proposal import (  # noqa: E402
    CrossDeckVoting,
    ProposalSubmission,
    ProposalType,
    RegionScope,
    VotingPeriod,
)
from civic_federation.models.verifier import (  # noqa: E402
    VerifierEntry,
    VerifierRegistry,
    VerifierStatus,
    ZkProofBundle,
)

FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        app_env="testing",
        simulate_check_latency=False,
        check_timeout_seconds=1.0,
        node_push_timeout_seconds=1.0,
    )


# =============================================================================
# Verifiers
# =============================================================================


def make_verifier(
    index: int,
    status: VerifierStatus = VerifierStatus.ACTIVE,
    **overrides,
) -> VerifierEntry:
    """Verifier whose artifacts all pass ArtifactFormatCheckStrategy."""
    fields = {
        "did": f"did:civic:verifier{index:03d}",
        "public_key": f"pk{index:03d}",
        "credential_hash": f"cred_{index:03d}abc",
        "status": status,
        "tier": "advanced",
        "success_rate": 97.5,
        "zk_proof": ZkProofBundle(
            registration_proof=f"reg_proof_{index:03d}",
            identity_proof=f"id_proof_{index:03d}",
            competency_proof=f"comp_proof_{index:03d}",
            chain_signature=f"chain_sig_{index:03d}",
        ),
    }
    fields.update(overrides)
    return VerifierEntry(**fields)


def make_registry(verifiers: list[VerifierEntry], **overrides) -> VerifierRegistry:
    """Registry whose aggregate counters agree with its entries."""
    fields = {
        "registry_version": "2.1.0",
        "last_sync": FIXED_NOW,
        "total_verifiers": len(verifiers),
        "active_verifiers": sum(1 for v in verifiers if v.status == VerifierStatus.ACTIVE),
        "chain_id": "civic-mainnet",
        "consensus_hash": "0xabc123",
        "verifiers": verifiers,
    }
    fields.update(overrides)
    return VerifierRegistry(**fields)


@pytest.fixture
def verifier():
    return make_verifier(1)


# =============================================================================
# Proposals
# =============================================================================


def make_submission(**overrides) -> ProposalSubmission:
    """A submission that passes every field constraint."""
    fields = {
        "title": "Regional Water Rights Framework",
        "description": (
            "Establishes a shared allocation framework for river water rights "
            "across the participating watershed jurisdictions."
        ),
        "region_scope": RegionScope(
            primary_jurisdiction="US-CA",
            secondary_jurisdictions=["US-NV"],
        ),
        "proposal_type": ProposalType.POLICY,
        "federation_nodes": ["node-west", "node-central"],
        "cid_hash": "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi",
        "cross_deck_voting": CrossDeckVoting(governance_deck=True, audit_deck=True),
        "voting_period": VotingPeriod(
            start_timestamp=FIXED_NOW - timedelta(days=1),
            end_timestamp=FIXED_NOW + timedelta(days=7),
        ),
        "submitted_by": "did:civic:citizen42",
    }
    fields.update(overrides)
    return ProposalSubmission(**fields)


@pytest.fixture
def submission():
    return make_submission()


class FakeClock:
    """Monotonically advancing clock for deterministic ordering."""

    def __init__(self, start: datetime = FIXED_NOW, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture
def clock():
    return FakeClock()
