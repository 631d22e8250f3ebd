"""
Proof Check Strategies

A CheckStrategy decides whether a single proof artifact passes a given
check kind. The validator is strategy-agnostic, so the simulated
backend, a structural backend and a scripted test double are all
interchangeable.
"""

import asyncio
import random
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from enum import Enum


class CheckKind(str, Enum):
    """The five independent checks run against every verifier."""
    PROOF_OF_REGISTRATION = "proof_of_registration"
    PROOF_OF_IDENTITY = "proof_of_identity"
    PROOF_OF_COMPETENCY = "proof_of_competency"
    CHAIN_SIGNATURE = "chain_signature"
    CREDENTIAL_HASH = "credential_hash"


class CheckStrategy(ABC):
    """Decides pass/fail for one artifact under one check kind."""

    @abstractmethod
    async def evaluate(self, kind: CheckKind, artifact: str) -> bool:
        """Return True if ``artifact`` passes ``kind``. May suspend."""


class SimulatedCheckStrategy(CheckStrategy):
    """
    Placeholder backend reproducing the civic client's simulated checks.

    Each kind passes with a fixed probability after a random latency.
    Pass a seeded ``rng`` for reproducible runs.
    """

    PASS_RATES: dict[CheckKind, float] = {
        CheckKind.PROOF_OF_REGISTRATION: 0.90,
        CheckKind.CREDENTIAL_HASH: 0.95,
        CheckKind.PROOF_OF_IDENTITY: 0.88,
        CheckKind.PROOF_OF_COMPETENCY: 0.92,
        CheckKind.CHAIN_SIGNATURE: 0.94,
    }

    # (min, max) milliseconds
    LATENCY_MS: dict[CheckKind, tuple[float, float]] = {
        CheckKind.PROOF_OF_REGISTRATION: (10.0, 40.0),
        CheckKind.CREDENTIAL_HASH: (5.0, 25.0),
        CheckKind.PROOF_OF_IDENTITY: (8.0, 33.0),
        CheckKind.PROOF_OF_COMPETENCY: (12.0, 47.0),
        CheckKind.CHAIN_SIGNATURE: (15.0, 55.0),
    }

    def __init__(self, rng: random.Random | None = None, simulate_latency: bool = True):
        self._rng = rng or random.Random()
        self._simulate_latency = simulate_latency

    async def evaluate(self, kind: CheckKind, artifact: str) -> bool:
        kind = CheckKind(kind)
        if self._simulate_latency:
            low, high = self.LATENCY_MS[kind]
            await asyncio.sleep(self._rng.uniform(low, high) / 1000)
        if not artifact:
            return False
        return self._rng.random() < self.PASS_RATES[kind]


class ArtifactFormatCheckStrategy(CheckStrategy):
    """
    Deterministic structural check.

    An artifact passes when it carries the prefix issued for its kind
    followed by a non-empty alphanumeric payload, e.g. ``id_proof_a9x3k``.
    """

    PREFIXES: dict[CheckKind, str] = {
        CheckKind.PROOF_OF_REGISTRATION: "reg_proof_",
        CheckKind.PROOF_OF_IDENTITY: "id_proof_",
        CheckKind.PROOF_OF_COMPETENCY: "comp_proof_",
        CheckKind.CHAIN_SIGNATURE: "chain_sig_",
        CheckKind.CREDENTIAL_HASH: "cred_",
    }

    def __init__(self) -> None:
        self._patterns = {
            kind: re.compile(rf"^{re.escape(prefix)}[A-Za-z0-9]+$")
            for kind, prefix in self.PREFIXES.items()
        }

    async def evaluate(self, kind: CheckKind, artifact: str) -> bool:
        return bool(self._patterns[CheckKind(kind)].match(artifact or ""))


class ScriptedCheckStrategy(CheckStrategy):
    """
    Deterministic double: everything passes unless scripted otherwise.

    Args:
        failing_artifacts: Artifacts that fail whatever the kind
        failing_kinds: Kinds that fail whatever the artifact
        latencies: Seconds to sleep before answering, per artifact
        errors: Exceptions to raise, per artifact
    """

    def __init__(
        self,
        failing_artifacts: Iterable[str] = (),
        failing_kinds: Iterable[CheckKind] = (),
        latencies: Mapping[str, float] | None = None,
        errors: Mapping[str, Exception] | None = None,
    ):
        self.failing_artifacts = set(failing_artifacts)
        self.failing_kinds = {CheckKind(k) for k in failing_kinds}
        self.latencies = dict(latencies or {})
        self.errors = dict(errors or {})
        self.calls: list[tuple[CheckKind, str]] = []

    async def evaluate(self, kind: CheckKind, artifact: str) -> bool:
        kind = CheckKind(kind)
        self.calls.append((kind, artifact))
        delay = self.latencies.get(artifact)
        if delay:
            await asyncio.sleep(delay)
        if artifact in self.errors:
            raise self.errors[artifact]
        return artifact not in self.failing_artifacts and kind not in self.failing_kinds
