"""
Tests for federation data models.
"""

import re
from datetime import UTC, datetime

import pytest
from conftest import make_submission, make_verifier

from civic_federation.errors import ConsistencyViolationError
from civic_federation.models.base import chain_hash, generate_proposal_id, sha256_hex
from civic_federation.models.proposal import (
    CrossDeckVoting,
    DeckSurface,
    NodeSyncReport,
    ProposalSubmission,
    RegionalProposal,
    SyncStatus,
    is_allowed_sync_transition,
)
from civic_federation.models.verifier import (
    VerifierRegistry,
    VerifierStatus,
    is_allowed_status_transition,
)


class TestIdentifiers:
    """Tests for id and hash helpers."""

    def test_proposal_id_format(self):
        assert re.fullmatch(r"prop_\d{13}_[0-9a-z]{9}", generate_proposal_id())

    def test_proposal_ids_unique(self):
        assert len({generate_proposal_id() for _ in range(200)}) == 200

    def test_hash_helpers(self):
        assert sha256_hex("a", "b") == sha256_hex("a-b")
        assert chain_hash("", "x").startswith("0x")
        assert chain_hash("0x1", "x") != chain_hash("0x2", "x")


class TestVerifierModels:
    """Tests for verifier registry models."""

    def test_loads_camel_case_registry_document(self):
        """Test a registry snapshot in the client's JSON shape parses."""
        registry = VerifierRegistry.model_validate({
            "registryVersion": "2.1.0",
            "lastSync": "2025-01-15T10:30:00Z",
            "totalVerifiers": 1,
            "activeVerifiers": 1,
            "chainId": "civic-mainnet",
            "consensusHash": "0xabc",
            "verifiers": [{
                "did": "did:civic:v1",
                "publicKey": "pk",
                "credentialHash": "cred_1",
                "registrationDate": "2024-06-01T00:00:00Z",
                "lastValidation": "2025-01-15T10:00:00Z",
                "status": "active",
                "tier": "expert",
                "specializations": ["healthcare"],
                "verificationCount": 12,
                "successRate": 98.5,
                "zkProof": {
                    "registrationProof": "reg_proof_1",
                    "identityProof": "id_proof_1",
                    "competencyProof": "comp_proof_1",
                    "chainSignature": "chain_sig_1",
                },
                "metadata": {
                    "reputation": 91.0,
                    "jurisdiction": "US-CA",
                    "certifications": ["ISO-27001"],
                },
            }],
            "metadata": {
                "registryOperator": "Civic Foundation",
                "syncFrequency": "hourly",
                "consensusThreshold": 0.67,
            },
        })

        assert registry.last_sync == datetime(2025, 1, 15, 10, 30, tzinfo=UTC)
        assert registry.verifiers[0].zk_proof.chain_signature == "chain_sig_1"
        assert registry.metadata.consensus_threshold == 0.67
        assert registry.consistency_violations() == []

    def test_consistency_violations(self):
        registry = VerifierRegistry(total_verifiers=1, active_verifiers=2, verifiers=[make_verifier(1)])

        violations = registry.consistency_violations()

        assert len(violations) == 1
        assert "activeVerifiers" in violations[0]

    @pytest.mark.parametrize(
        "current,new,allowed",
        [
            (VerifierStatus.PENDING, VerifierStatus.ACTIVE, True),
            (VerifierStatus.ACTIVE, VerifierStatus.SUSPENDED, True),
            (VerifierStatus.SUSPENDED, VerifierStatus.ACTIVE, True),
            (VerifierStatus.SUSPENDED, VerifierStatus.REVOKED, True),
            (VerifierStatus.ACTIVE, VerifierStatus.PENDING, False),
            (VerifierStatus.REVOKED, VerifierStatus.ACTIVE, False),
        ],
    )
    def test_status_transitions(self, current, new, allowed):
        assert is_allowed_status_transition(current, new) is allowed

    def test_revoked_is_terminal(self):
        entry = make_verifier(1, status=VerifierStatus.REVOKED)

        with pytest.raises(ConsistencyViolationError):
            entry.transition_to(VerifierStatus.ACTIVE)


class TestProposalModels:
    """Tests for proposal models."""

    def test_submission_does_not_enforce_constraints(self):
        """Test short fields parse so the index can report them in order."""
        submission = ProposalSubmission(title="x", description="y")

        assert submission.title == "x"

    def test_submission_accepts_camel_case(self):
        submission = ProposalSubmission.model_validate({
            "title": "Regional Transit Compact",
            "regionScope": {"primaryJurisdiction": "US-OR"},
            "federationNodes": ["node-1"],
            "crossDeckVoting": {"privacyDeck": True},
        })

        assert submission.region_scope.primary_jurisdiction == "US-OR"
        assert submission.cross_deck_voting.is_enabled(DeckSurface.PRIVACY)

    @pytest.mark.parametrize(
        "current,new,allowed",
        [
            (SyncStatus.PENDING, SyncStatus.SYNCING, True),
            (SyncStatus.SYNCING, SyncStatus.SYNCHRONIZED, True),
            (SyncStatus.SYNCING, SyncStatus.FAILED, True),
            (SyncStatus.FAILED, SyncStatus.SYNCING, True),
            (SyncStatus.SYNCHRONIZED, SyncStatus.SYNCING, True),
            (SyncStatus.PENDING, SyncStatus.SYNCHRONIZED, False),
            (SyncStatus.FAILED, SyncStatus.PENDING, False),
            (SyncStatus.SYNCHRONIZED, SyncStatus.PENDING, False),
        ],
    )
    def test_sync_transitions(self, current, new, allowed):
        assert is_allowed_sync_transition(current, new) is allowed

    def test_derived_helpers(self):
        submission = make_submission(cross_deck_voting=CrossDeckVoting())
        proposal = RegionalProposal(
            proposal_id="prop_1",
            **submission.model_dump(exclude={"submitted_by", "urgency_level"}),
        )
        proposal.quorum_requirement.minimum_participation = 20.0
        proposal.votes.participation = 25.0
        proposal.votes.support = 3

        assert proposal.cross_deck_enabled is False
        assert proposal.quorum_met is True
        assert proposal.total_votes == 3
        assert proposal.is_voting_open(submission.voting_period.start_timestamp) is True
        assert proposal.is_voting_open(submission.voting_period.end_timestamp) is False

    def test_node_sync_report_success(self):
        report = NodeSyncReport(
            proposal_id="prop_1",
            synced_node_ids=("a",),
            failed_node_ids=("b",),
            sync_status=SyncStatus.FAILED,
        )

        assert report.success is False
        assert report.to_document()["failedNodeIds"] == ["b"]

    def test_naive_datetimes_become_utc(self):
        submission = make_submission()
        submission.voting_period.end_timestamp = datetime(2030, 1, 1)

        assert submission.voting_period.end_timestamp.tzinfo is UTC
