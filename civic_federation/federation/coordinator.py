"""
Federation Sync Coordinator

Propagates a proposal to its assigned federation nodes. Pushes fan out
concurrently on a bounded pool; one node failing or hanging never blocks
the others. The proposal ends ``synchronized`` only when every attempted
node acknowledged, otherwise ``failed``, and the caller gets the failed
subset back so it can retry just those nodes.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime

import httpx
import structlog

from civic_federation.config import Settings, get_settings
from civic_federation.errors import NodeTransportError
from civic_federation.models.base import utc_now
from civic_federation.models.proposal import NodeSyncReport, RegionalProposal, SyncStatus

logger = structlog.get_logger(__name__)


# ============================================================================
# Node Transports
# ============================================================================


class NodeTransport(ABC):
    """Delivers proposal state to one federation node."""

    @abstractmethod
    async def push(self, node_id: str, proposal: RegionalProposal) -> bool:
        """
        Push ``proposal`` to ``node_id``.

        Returns True when the node acknowledged, False when it explicitly
        declined. Raises NodeTransportError when the node is unreachable.
        """


class HttpNodeTransport(NodeTransport):
    """Pushes proposal documents to node HTTP endpoints."""

    PUSH_PATH = "/federation/proposals"

    def __init__(
        self,
        endpoints: dict[str, str],
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 5.0,
    ):
        self.endpoints = {node: url.rstrip("/") for node, url in endpoints.items()}
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def push(self, node_id: str, proposal: RegionalProposal) -> bool:
        base_url = self.endpoints.get(node_id)
        if base_url is None:
            raise NodeTransportError(f"No endpoint configured for node {node_id}")

        try:
            response = await self._client.post(
                f"{base_url}{self.PUSH_PATH}",
                json=proposal.to_document(),
                headers={"X-Federation-Node": node_id},
            )
        except httpx.HTTPError as e:
            raise NodeTransportError(f"Node {node_id} unreachable: {e}")

        if response.status_code in (200, 201, 202, 204):
            return True
        if response.status_code == 409:
            # Node holds a conflicting version and refused ours
            return False
        raise NodeTransportError(f"Node {node_id} returned HTTP {response.status_code}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LoopbackNodeTransport(NodeTransport):
    """
    In-process federation: each node is an inbox of proposal documents.

    Used for single-host deployments and local development. Nodes listed
    in ``offline`` raise like an unreachable remote.
    """

    def __init__(self, offline: Sequence[str] = ()):
        self.inboxes: dict[str, dict[str, dict]] = {}
        self.offline = set(offline)

    async def push(self, node_id: str, proposal: RegionalProposal) -> bool:
        if node_id in self.offline:
            raise NodeTransportError(f"Node {node_id} is offline")
        self.inboxes.setdefault(node_id, {})[proposal.proposal_id] = proposal.to_document()
        return True


# ============================================================================
# Coordinator
# ============================================================================


class FederationSyncCoordinator:
    """
    Fans a proposal out to federation nodes and records the outcome.

    Usage:
        coordinator = FederationSyncCoordinator(transport)
        report = await coordinator.sync_proposal(proposal)
        if report.failed_node_ids:
            report = await coordinator.sync_proposal(proposal, report.failed_node_ids)
    """

    def __init__(
        self,
        transport: NodeTransport,
        max_concurrency: int = 8,
        push_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.transport = transport
        self.max_concurrency = max_concurrency
        self.push_timeout_seconds = push_timeout_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        transport: NodeTransport | None = None,
        settings: Settings | None = None,
    ) -> "FederationSyncCoordinator":
        settings = settings or get_settings()
        transport = transport or HttpNodeTransport(
            settings.node_endpoints, timeout_seconds=settings.node_push_timeout_seconds
        )
        return cls(
            transport=transport,
            max_concurrency=settings.max_node_concurrency,
            push_timeout_seconds=settings.node_push_timeout_seconds,
        )

    async def sync_proposal(
        self,
        proposal: RegionalProposal,
        node_ids: Sequence[str] | None = None,
        deadline: float | None = None,
    ) -> NodeSyncReport:
        """
        Push ``proposal`` to its nodes (or the ``node_ids`` subset).

        Args:
            proposal: Proposal to propagate; its sync status is updated
            node_ids: Restrict the attempt to these assigned nodes
            deadline: Overall budget in seconds; pushes still outstanding
                when it expires are cancelled and reported failed

        Raises:
            ValueError: If ``node_ids`` names a node not assigned to the proposal
        """
        targets = self._resolve_targets(proposal, node_ids)
        start = time.monotonic()
        log = logger.bind(proposal_id=proposal.proposal_id)

        proposal.transition_sync_status(SyncStatus.SYNCING)
        log.info("proposal_sync_started", nodes=len(targets))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def push_one(node_id: str) -> str | None:
            async with semaphore:
                return await self._push(node_id, proposal)

        tasks = {node_id: asyncio.create_task(push_one(node_id)) for node_id in targets}
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            proposal.transition_sync_status(SyncStatus.FAILED)
            log.warning("proposal_sync_cancelled")
            raise

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        synced: list[str] = []
        failed: list[str] = []
        node_errors: dict[str, str] = {}
        for node_id, task in tasks.items():
            if task in pending or task.cancelled():
                error = f"deadline of {deadline}s exceeded"
            else:
                error = task.result()
            if error is None:
                synced.append(node_id)
            else:
                failed.append(node_id)
                node_errors[node_id] = error

        status = SyncStatus.SYNCHRONIZED if not failed else SyncStatus.FAILED
        proposal.transition_sync_status(status)
        proposal.metadata.last_modified = self._clock()

        duration_ms = int((time.monotonic() - start) * 1000)
        if failed:
            log.warning(
                "proposal_sync_incomplete",
                synced=len(synced),
                failed_nodes=failed,
                duration_ms=duration_ms,
            )
        else:
            log.info("proposal_sync_completed", synced=len(synced), duration_ms=duration_ms)

        return NodeSyncReport(
            proposal_id=proposal.proposal_id,
            synced_node_ids=tuple(synced),
            failed_node_ids=tuple(failed),
            node_errors=node_errors,
            sync_status=status,
            duration_ms=duration_ms,
        )

    async def _push(self, node_id: str, proposal: RegionalProposal) -> str | None:
        """Push to one node. Returns None on acknowledgement, else the failure reason."""
        try:
            acknowledged = await asyncio.wait_for(
                self.transport.push(node_id, proposal),
                timeout=self.push_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("node_push_timeout", node_id=node_id, proposal_id=proposal.proposal_id)
            return f"push timed out after {self.push_timeout_seconds}s"
        except NodeTransportError as e:
            logger.warning("node_push_failed", node_id=node_id, error=e.message)
            return e.message
        except Exception as e:
            logger.error("node_push_error", node_id=node_id, error=str(e), error_type=type(e).__name__)
            return str(e) or type(e).__name__

        if not acknowledged:
            return "node did not acknowledge"
        return None

    @staticmethod
    def _resolve_targets(
        proposal: RegionalProposal,
        node_ids: Sequence[str] | None,
    ) -> list[str]:
        if node_ids is None:
            targets = list(dict.fromkeys(proposal.federation_nodes))
        else:
            targets = list(dict.fromkeys(node_ids))
            unknown = [n for n in targets if n not in proposal.federation_nodes]
            if unknown:
                raise ValueError(
                    f"Nodes {unknown} are not assigned to proposal {proposal.proposal_id}"
                )
        if not targets:
            raise ValueError(f"Proposal {proposal.proposal_id} has no federation nodes to target")
        return targets
