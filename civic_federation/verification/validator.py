"""
Proof Validator

Runs the five independent proof checks against a verifier credential.
A failing check is an expected outcome and is reported, never raised.
"""

import asyncio
import time
from dataclasses import dataclass

import structlog

from civic_federation.models.base import utc_now
from civic_federation.models.verifier import (
    ValidationChecks,
    VerifierEntry,
    VerifierValidationResult,
)
from civic_federation.verification.strategies import CheckKind, CheckStrategy

logger = structlog.get_logger(__name__)

# Result field, human label, and which artifact of the entry feeds the check
_CHECK_PLAN: tuple[tuple[str, CheckKind, str], ...] = (
    ("zk_proof_valid", CheckKind.PROOF_OF_REGISTRATION, "ZK proof"),
    ("registration_valid", CheckKind.CREDENTIAL_HASH, "Registration"),
    ("identity_valid", CheckKind.PROOF_OF_IDENTITY, "Identity proof"),
    ("competency_valid", CheckKind.PROOF_OF_COMPETENCY, "Competency proof"),
    ("chain_signature_valid", CheckKind.CHAIN_SIGNATURE, "Chain signature"),
)


@dataclass(frozen=True)
class CheckOutcome:
    """Result of a single proof check."""
    kind: CheckKind
    passed: bool
    latency_ms: float
    error: str | None = None


def artifact_for(entry: VerifierEntry, kind: CheckKind) -> str:
    """Select the artifact of ``entry`` that ``kind`` inspects."""
    return {
        CheckKind.PROOF_OF_REGISTRATION: entry.zk_proof.registration_proof,
        CheckKind.CREDENTIAL_HASH: entry.credential_hash,
        CheckKind.PROOF_OF_IDENTITY: entry.zk_proof.identity_proof,
        CheckKind.PROOF_OF_COMPETENCY: entry.zk_proof.competency_proof,
        CheckKind.CHAIN_SIGNATURE: entry.zk_proof.chain_signature,
    }[kind]


def failed_validation(did: str, reason: str) -> VerifierValidationResult:
    """A validation result with every check failed, e.g. after a deadline."""
    return VerifierValidationResult(
        did=did,
        validation_checks=ValidationChecks(),
        error_messages=(reason,),
        validation_timestamp=utc_now(),
    )


class ProofValidator:
    """
    Validates verifier credentials through a pluggable CheckStrategy.

    Usage:
        validator = ProofValidator(ArtifactFormatCheckStrategy())
        result = await validator.validate(entry)
    """

    def __init__(self, strategy: CheckStrategy, check_timeout_seconds: float = 5.0):
        self.strategy = strategy
        self.check_timeout_seconds = check_timeout_seconds

    async def check(self, kind: CheckKind, artifact: str) -> CheckOutcome:
        """Run one check. Timeouts and strategy errors become failed outcomes."""
        kind = CheckKind(kind)
        start = time.monotonic()
        error: str | None = None
        try:
            passed = await asyncio.wait_for(
                self.strategy.evaluate(kind, artifact),
                timeout=self.check_timeout_seconds,
            )
        except TimeoutError:
            passed = False
            error = f"timed out after {self.check_timeout_seconds}s"
        except Exception as e:
            logger.warning("proof_check_error", kind=kind.value, error=str(e))
            passed = False
            error = str(e) or type(e).__name__

        latency_ms = (time.monotonic() - start) * 1000
        return CheckOutcome(kind=kind, passed=bool(passed), latency_ms=round(latency_ms, 2), error=error)

    async def validate(self, entry: VerifierEntry) -> VerifierValidationResult:
        """Run all five checks for ``entry`` concurrently."""
        outcomes = await asyncio.gather(*(
            self.check(kind, artifact_for(entry, kind)) for _, kind, _ in _CHECK_PLAN
        ))

        checks: dict[str, bool] = {}
        latencies: dict[str, float] = {}
        error_messages: list[str] = []
        for (field_name, kind, label), outcome in zip(_CHECK_PLAN, outcomes):
            checks[field_name] = outcome.passed
            latencies[kind.value] = outcome.latency_ms
            if not outcome.passed:
                message = f"{label} validation failed for verifier {entry.did}"
                if outcome.error:
                    message = f"{message}: {outcome.error}"
                error_messages.append(message)

        result = VerifierValidationResult(
            did=entry.did,
            validation_checks=ValidationChecks(**checks),
            error_messages=tuple(error_messages),
            check_latencies_ms=latencies,
            validation_timestamp=utc_now(),
        )

        if result.is_valid:
            logger.debug(
                "verifier_validation_succeeded",
                did=entry.did,
                tier=entry.tier,
                success_rate=entry.success_rate,
            )
        else:
            logger.info(
                "verifier_validation_failed",
                did=entry.did,
                failed_checks=len(error_messages),
            )
        return result
