"""
Verifier Registry Sync Engine

Fetches verifier registry snapshots, validates every verifier against
the five proof checks, and decides whether the registry as a whole is in
consensus.

Sync is best-effort: fetch failures and per-verifier failures are
recorded in the returned SyncResult, never raised. The only exception
that escapes is ConsistencyViolationError, which signals a bug.
"""

import asyncio
import json
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

import httpx
import structlog
from pydantic import ValidationError

from civic_federation.config import Settings, get_settings
from civic_federation.errors import (
    ConsistencyViolationError,
    RegistryFetchError,
    SyncTimeoutError,
)
from civic_federation.models.base import utc_now
from civic_federation.models.verifier import (
    RegistryHealth,
    SyncResult,
    SyncSummary,
    VerifierEntry,
    VerifierRegistry,
    VerifierStatus,
    VerifierValidationResult,
)
from civic_federation.verification.consensus import ConsensusCalculator
from civic_federation.verification.strategies import CheckStrategy, SimulatedCheckStrategy
from civic_federation.verification.validator import ProofValidator, failed_validation

logger = structlog.get_logger(__name__)


# ============================================================================
# Registry Fetchers
# ============================================================================


class RegistryFetcher(ABC):
    """Supplies verifier registry snapshots by reference."""

    @abstractmethod
    async def fetch(self, registry_ref: str) -> VerifierRegistry:
        """Return the snapshot for ``registry_ref``; raise RegistryFetchError or SyncTimeoutError."""


class InMemoryRegistryFetcher(RegistryFetcher):
    """Serves snapshots registered in-process."""

    def __init__(self, registries: dict[str, VerifierRegistry] | None = None):
        self._registries: dict[str, VerifierRegistry] = dict(registries or {})

    def register(self, registry_ref: str, registry: VerifierRegistry) -> None:
        self._registries[registry_ref] = registry

    async def fetch(self, registry_ref: str) -> VerifierRegistry:
        registry = self._registries.get(registry_ref)
        if registry is None:
            raise RegistryFetchError(f"Unknown registry: {registry_ref}")
        return registry


def _parse_registry(registry_ref: str, raw: str | bytes) -> VerifierRegistry:
    try:
        return VerifierRegistry.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise RegistryFetchError(f"Registry {registry_ref} is not valid JSON: {e}")
    except ValidationError as e:
        raise RegistryFetchError(
            f"Registry {registry_ref} does not match the registry schema: {e.error_count()} errors"
        )


class JsonFileRegistryFetcher(RegistryFetcher):
    """Reads ``<directory>/<registry_ref>.json`` registry documents."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path_for(self, registry_ref: str) -> Path:
        if not registry_ref or "/" in registry_ref or "\\" in registry_ref or ".." in registry_ref:
            raise RegistryFetchError(f"Invalid registry reference: {registry_ref!r}")
        return self.directory / f"{registry_ref}.json"

    async def fetch(self, registry_ref: str) -> VerifierRegistry:
        path = self._path_for(registry_ref)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            raise RegistryFetchError(f"Cannot read registry {registry_ref}: {e.strerror or e}")
        return _parse_registry(registry_ref, raw)


class HttpRegistryFetcher(RegistryFetcher):
    """Fetches registry documents from a content-addressed HTTP gateway."""

    def __init__(
        self,
        gateway_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.gateway_url = gateway_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def fetch(self, registry_ref: str) -> VerifierRegistry:
        url = f"{self.gateway_url}/ipfs/{registry_ref}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException:
            raise SyncTimeoutError(f"Gateway timed out for registry {registry_ref}")
        except httpx.HTTPStatusError as e:
            raise RegistryFetchError(
                f"Gateway returned {e.response.status_code} for registry {registry_ref}"
            )
        except httpx.HTTPError as e:
            raise RegistryFetchError(f"Gateway unreachable for registry {registry_ref}: {e}")
        return _parse_registry(registry_ref, response.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ============================================================================
# Sync Engine
# ============================================================================


def simulated_chain_height() -> int:
    """Placeholder chain height until a chain client is wired in."""
    return random.randint(500_000, 1_499_999)


class VerifierRegistrySyncEngine:
    """
    Validates registries and computes registry-wide consensus.

    Usage:
        engine = VerifierRegistrySyncEngine(fetcher, ProofValidator(strategy))
        result = await engine.validate_and_sync("bafy...")
        results = await engine.batch_sync(["bafy1", "bafy2"])
        summary = get_sync_summary(results)
    """

    def __init__(
        self,
        fetcher: RegistryFetcher,
        validator: ProofValidator,
        calculator: ConsensusCalculator | None = None,
        max_concurrency: int = 16,
        fetch_timeout_seconds: float = 10.0,
        chain_height_provider: Callable[[], int] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.fetcher = fetcher
        self.validator = validator
        self.calculator = calculator or ConsensusCalculator()
        self.max_concurrency = max_concurrency
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self._chain_height = chain_height_provider or simulated_chain_height
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        fetcher: RegistryFetcher,
        strategy: CheckStrategy | None = None,
        settings: Settings | None = None,
    ) -> "VerifierRegistrySyncEngine":
        """Build an engine configured from application settings."""
        settings = settings or get_settings()
        strategy = strategy or SimulatedCheckStrategy(
            simulate_latency=settings.simulate_check_latency
        )
        return cls(
            fetcher=fetcher,
            validator=ProofValidator(strategy, settings.check_timeout_seconds),
            calculator=ConsensusCalculator(settings.consensus_threshold),
            max_concurrency=settings.max_validation_concurrency,
            fetch_timeout_seconds=settings.registry_fetch_timeout_seconds,
        )

    async def validate_and_sync(
        self,
        registry_ref: str,
        deadline: float | None = None,
    ) -> SyncResult:
        """
        Fetch, validate and compute consensus for one registry.

        Args:
            registry_ref: Reference understood by the fetcher (e.g. a CID)
            deadline: Overall budget in seconds; validations still running
                when it expires are reported as failed

        Returns:
            SyncResult, zeroed with the error recorded if the fetch failed
        """
        start = time.monotonic()
        log = logger.bind(registry_ref=registry_ref)
        log.info("registry_sync_started")

        fetch_timeout = self.fetch_timeout_seconds
        if deadline is not None:
            fetch_timeout = min(fetch_timeout, deadline)

        try:
            registry = await asyncio.wait_for(
                self.fetcher.fetch(registry_ref), timeout=fetch_timeout
            )
        except TimeoutError:
            log.warning("registry_fetch_timeout", timeout_seconds=fetch_timeout)
            return self._failed_result(
                registry_ref, start, f"Registry fetch timed out after {fetch_timeout}s"
            )
        except (RegistryFetchError, SyncTimeoutError) as e:
            log.warning("registry_fetch_failed", error=e.message, kind=e.kind)
            return self._failed_result(registry_ref, start, e.message)
        except Exception as e:
            log.error("registry_fetch_error", error=str(e), error_type=type(e).__name__)
            return self._failed_result(registry_ref, start, f"Registry fetch failed: {e}")

        violations = registry.consistency_violations()
        if violations:
            log.critical("registry_consistency_violation", violations=violations)
            raise ConsistencyViolationError(
                f"Registry {registry_ref} violates its invariants: {'; '.join(violations)}",
                {"registry_ref": registry_ref, "violations": violations},
            )

        remaining = None
        if deadline is not None:
            remaining = max(0.0, deadline - (time.monotonic() - start))

        results = await self.validate_all(registry.verifiers, remaining)
        self._apply_outcomes(registry, results)

        validated = sum(1 for r in results if r.is_valid)
        failures = len(results) - validated
        decision = self.calculator.calculate(len(results), validated)

        warnings: list[str] = []
        if not decision.achieved:
            warnings.append(
                f"Consensus threshold not met: {decision.percentage:.1f}% < "
                f"{decision.threshold * 100:.1f}%"
            )
        if any(not r.is_valid and r.error_messages for r in results):
            warnings.append("Some verifiers failed validation and may need manual review")

        duration_ms = int((time.monotonic() - start) * 1000)
        result = SyncResult(
            registry_ref=registry_ref,
            sync_timestamp=self._clock(),
            chain_height=self._chain_height(),
            consensus_achieved=decision.achieved,
            consensus_percentage=round(decision.percentage, 2),
            verifiers_processed=len(results),
            verifiers_validated=validated,
            validation_failures=failures,
            sync_duration_ms=duration_ms,
            errors=tuple(msg for r in results for msg in r.error_messages),
            warnings=tuple(warnings),
            validation_results=tuple(results),
        )

        log.info(
            "registry_sync_completed",
            validated=validated,
            processed=len(results),
            consensus=decision.achieved,
            chain_height=result.chain_height,
            duration_ms=duration_ms,
        )
        return result

    async def validate_all(
        self,
        verifiers: Sequence[VerifierEntry],
        deadline: float | None = None,
    ) -> list[VerifierValidationResult]:
        """
        Validate every entry on a bounded pool and join on all of them.

        Results keep the input order. Entries whose validation is cut off
        by ``deadline`` come back as failed validations.
        """
        if not verifiers:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(entry: VerifierEntry) -> VerifierValidationResult:
            async with semaphore:
                return await self.validator.validate(entry)

        tasks = [asyncio.create_task(run(entry)) for entry in verifiers]
        try:
            _, pending = await asyncio.wait(tasks, timeout=deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        if pending:
            logger.warning("verifier_validation_deadline_exceeded", outstanding=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results: list[VerifierValidationResult] = []
        for entry, task in zip(verifiers, tasks):
            if task in pending or task.cancelled():
                results.append(failed_validation(
                    entry.did, f"Validation timed out for verifier {entry.did}"
                ))
            elif task.exception() is not None:
                error = task.exception()
                logger.error("verifier_validation_error", did=entry.did, error=str(error))
                results.append(failed_validation(
                    entry.did, f"Validation error for verifier {entry.did}: {error}"
                ))
            else:
                results.append(task.result())
        return results

    async def batch_sync(
        self,
        registry_refs: Sequence[str],
        deadline: float | None = None,
    ) -> list[SyncResult]:
        """
        Sync several registries, isolating failures per reference.

        Results are returned in the order of ``registry_refs``.
        """
        logger.info("batch_sync_started", registries=len(registry_refs))
        results: list[SyncResult] = []

        for registry_ref in registry_refs:
            start = time.monotonic()
            try:
                results.append(await self.validate_and_sync(registry_ref, deadline))
            except Exception as e:
                logger.exception("batch_sync_item_failed", registry_ref=registry_ref)
                results.append(self._failed_result(registry_ref, start, str(e) or type(e).__name__))

        logger.info("batch_sync_completed", processed=len(results), requested=len(registry_refs))
        return results

    def _apply_outcomes(
        self,
        registry: VerifierRegistry,
        results: Sequence[VerifierValidationResult],
    ) -> None:
        """Drive verifier lifecycle from this pass's validation outcomes."""
        now = self._clock()
        for entry, result in zip(registry.verifiers, results):
            apply_validation_outcome(entry, result, now)
        registry.recount()
        registry.last_sync = now

    def _failed_result(self, registry_ref: str, start: float, error: str) -> SyncResult:
        return SyncResult(
            registry_ref=registry_ref,
            sync_timestamp=self._clock(),
            chain_height=0,
            consensus_achieved=False,
            sync_duration_ms=int((time.monotonic() - start) * 1000),
            errors=(error,),
        )


def apply_validation_outcome(
    entry: VerifierEntry,
    result: VerifierValidationResult,
    now: datetime,
) -> None:
    """
    Update one verifier from its validation result.

    valid: pending/suspended -> active. invalid: active -> suspended,
    pending stays pending. Revoked verifiers are left untouched.
    """
    if entry.status == VerifierStatus.REVOKED:
        return

    if result.is_valid:
        if entry.status in (VerifierStatus.PENDING, VerifierStatus.SUSPENDED):
            entry.transition_to(VerifierStatus.ACTIVE)
    elif entry.status == VerifierStatus.ACTIVE:
        entry.transition_to(VerifierStatus.SUSPENDED)
        logger.info("verifier_suspended", did=entry.did, errors=len(result.error_messages))

    entry.last_validation = now


# ============================================================================
# Read-side helpers
# ============================================================================


def get_sync_summary(results: Sequence[SyncResult]) -> SyncSummary:
    """Aggregate sync results. Pure; an empty sequence yields zeros."""
    if not results:
        return SyncSummary()

    successful = sum(1 for r in results if r.consensus_achieved)
    return SyncSummary(
        total_processed=len(results),
        successful_syncs=successful,
        failed_syncs=len(results) - successful,
        total_verifiers_validated=sum(r.verifiers_validated for r in results),
        total_validation_failures=sum(r.validation_failures for r in results),
        average_sync_duration_ms=round(sum(r.sync_duration_ms for r in results) / len(results)),
        consensus_rate=round(successful / len(results) * 100, 2),
    )


# Health scoring
MIN_ACTIVE_RATIO = 0.8
MAX_SYNC_AGE_HOURS = 24
STALE_PENALTY_PER_HOUR = 5


def check_registry_health(
    registry: VerifierRegistry,
    now: datetime | None = None,
) -> RegistryHealth:
    """
    Score a registry snapshot 0-100.

    Penalises a low share of active verifiers and a stale last sync.
    """
    now = now or utc_now()
    issues: list[str] = []
    recommendations: list[str] = []

    active_ratio = (
        registry.active_verifiers / registry.total_verifiers
        if registry.total_verifiers
        else 0.0
    )
    if active_ratio < MIN_ACTIVE_RATIO:
        issues.append(f"Low active verifier ratio: {active_ratio * 100:.1f}%")
        recommendations.append("Review and reactivate suspended verifiers")

    hours_old = max(0.0, (now - registry.last_sync).total_seconds() / 3600)
    if hours_old > MAX_SYNC_AGE_HOURS:
        issues.append(f"Registry sync is {hours_old:.1f} hours old")
        recommendations.append("Perform immediate registry synchronization")

    score = 100.0
    score -= max(0.0, (MIN_ACTIVE_RATIO - active_ratio) * 100)
    score -= max(0.0, (hours_old - 1) * STALE_PENALTY_PER_HOUR)
    score = max(0.0, min(100.0, score))

    return RegistryHealth(
        health_score=round(score),
        issues=tuple(issues),
        recommendations=tuple(recommendations),
    )
