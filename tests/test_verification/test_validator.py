"""
Tests for the proof validator.
"""

import asyncio

import pytest
from conftest import make_verifier

from civic_federation.verification.strategies import (
    ArtifactFormatCheckStrategy,
    CheckKind,
    CheckStrategy,
    ScriptedCheckStrategy,
)
from civic_federation.verification.validator import (
    ProofValidator,
    artifact_for,
    failed_validation,
)


class TestCheck:
    """Tests for single proof checks."""

    @pytest.mark.asyncio
    async def test_passing_check(self):
        """Test a passing check reports no error."""
        validator = ProofValidator(ArtifactFormatCheckStrategy())

        outcome = await validator.check(CheckKind.PROOF_OF_IDENTITY, "id_proof_abc123")

        assert outcome.passed is True
        assert outcome.error is None
        assert outcome.kind == CheckKind.PROOF_OF_IDENTITY
        assert outcome.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_failing_check_is_not_an_exception(self):
        """Test a failing check is a normal outcome."""
        validator = ProofValidator(ArtifactFormatCheckStrategy())

        outcome = await validator.check(CheckKind.PROOF_OF_IDENTITY, "garbage")

        assert outcome.passed is False
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_strategy_exception_becomes_failed_outcome(self):
        """Test a raising strategy yields a failed outcome carrying the reason."""
        strategy = ScriptedCheckStrategy(errors={"boom": RuntimeError("backend down")})
        validator = ProofValidator(strategy)

        outcome = await validator.check(CheckKind.CHAIN_SIGNATURE, "boom")

        assert outcome.passed is False
        assert outcome.error == "backend down"

    @pytest.mark.asyncio
    async def test_slow_check_times_out(self):
        """Test a check exceeding its deadline fails instead of hanging."""
        strategy = ScriptedCheckStrategy(latencies={"slow": 5.0})
        validator = ProofValidator(strategy, check_timeout_seconds=0.05)

        outcome = await asyncio.wait_for(
            validator.check(CheckKind.CREDENTIAL_HASH, "slow"), timeout=2.0
        )

        assert outcome.passed is False
        assert "timed out" in outcome.error


class TestValidate:
    """Tests for full verifier validation."""

    @pytest.mark.asyncio
    async def test_all_checks_pass(self):
        """Test a verifier with well-formed artifacts is valid."""
        validator = ProofValidator(ArtifactFormatCheckStrategy())

        result = await validator.validate(make_verifier(1))

        assert result.is_valid is True
        assert result.error_messages == ()
        assert set(result.check_latencies_ms) == {k.value for k in CheckKind}

    @pytest.mark.asyncio
    async def test_each_check_reads_its_own_artifact(self):
        """Test every check kind is run exactly once against the matching artifact."""
        strategy = ScriptedCheckStrategy()
        entry = make_verifier(7)

        await ProofValidator(strategy).validate(entry)

        assert sorted(strategy.calls) == sorted(
            (kind, artifact_for(entry, kind)) for kind in CheckKind
        )
        assert (CheckKind.CREDENTIAL_HASH, entry.credential_hash) in strategy.calls
        assert (CheckKind.PROOF_OF_REGISTRATION, entry.zk_proof.registration_proof) in strategy.calls

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind,field,label",
        [
            (CheckKind.PROOF_OF_REGISTRATION, "zk_proof_valid", "ZK proof"),
            (CheckKind.CREDENTIAL_HASH, "registration_valid", "Registration"),
            (CheckKind.PROOF_OF_IDENTITY, "identity_valid", "Identity proof"),
            (CheckKind.PROOF_OF_COMPETENCY, "competency_valid", "Competency proof"),
            (CheckKind.CHAIN_SIGNATURE, "chain_signature_valid", "Chain signature"),
        ],
    )
    async def test_single_failed_check_invalidates(self, kind, field, label):
        """Test is_valid is the AND of the checks and each failure is reported."""
        strategy = ScriptedCheckStrategy(failing_kinds=[kind])
        entry = make_verifier(3)

        result = await ProofValidator(strategy).validate(entry)

        assert result.is_valid is False
        assert getattr(result.validation_checks, field) is False
        assert len(result.error_messages) == 1
        assert result.error_messages[0].startswith(label)
        assert entry.did in result.error_messages[0]

    @pytest.mark.asyncio
    async def test_checks_run_concurrently(self):
        """Test the five checks overlap rather than run back to back."""
        entry = make_verifier(1)
        latencies = {artifact_for(entry, kind): 0.2 for kind in CheckKind}
        validator = ProofValidator(ScriptedCheckStrategy(latencies=latencies))

        loop = asyncio.get_running_loop()
        start = loop.time()
        result = await validator.validate(entry)
        elapsed = loop.time() - start

        assert result.is_valid is True
        assert elapsed < 0.8

    @pytest.mark.asyncio
    async def test_is_valid_matches_checks_for_any_combination(self):
        """Test is_valid == AND(checks) across every failing subset."""
        kinds = list(CheckKind)
        for mask in range(1 << len(kinds)):
            failing = [k for i, k in enumerate(kinds) if mask & (1 << i)]
            result = await ProofValidator(
                ScriptedCheckStrategy(failing_kinds=failing)
            ).validate(make_verifier(mask))

            checks = result.validation_checks
            assert result.is_valid == all((
                checks.zk_proof_valid,
                checks.registration_valid,
                checks.identity_valid,
                checks.competency_valid,
                checks.chain_signature_valid,
            ))
            assert len(result.error_messages) == len(failing)

    @pytest.mark.asyncio
    async def test_custom_strategy(self):
        """Test any CheckStrategy implementation can back the validator."""

        class RejectAll(CheckStrategy):
            async def evaluate(self, kind, artifact):
                return False

        result = await ProofValidator(RejectAll()).validate(make_verifier(1))

        assert result.is_valid is False
        assert len(result.error_messages) == 5


class TestFailedValidation:
    """Tests for synthesized failed results."""

    def test_failed_validation(self):
        """Test a synthesized failure has every check false and one message."""
        result = failed_validation("did:civic:x", "Validation timed out for verifier did:civic:x")

        assert result.is_valid is False
        assert result.error_messages == ("Validation timed out for verifier did:civic:x",)
        assert result.validation_checks.zk_proof_valid is False

    def test_serialized_form_includes_is_valid(self):
        """Test the camelCase document carries the derived isValid flag."""
        document = failed_validation("did:civic:x", "nope").to_document()

        assert document["isValid"] is False
        assert document["validationChecks"]["chainSignatureValid"] is False
        assert document["errorMessages"] == ["nope"]
