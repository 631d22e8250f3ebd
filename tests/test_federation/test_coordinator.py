"""
Tests for the federation sync coordinator.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import make_submission

from civic_federation.errors import ConsistencyViolationError, NodeTransportError
from civic_federation.federation.coordinator import (
    FederationSyncCoordinator,
    HttpNodeTransport,
    LoopbackNodeTransport,
    NodeTransport,
)
from civic_federation.models.proposal import RegionalProposal, SyncStatus


def make_proposal(nodes=("node-a", "node-b", "node-c"), **overrides) -> RegionalProposal:
    submission = make_submission(federation_nodes=list(nodes), **overrides)
    return RegionalProposal(
        proposal_id="prop_1700000000000_coord0001",
        **submission.model_dump(exclude={"submitted_by", "urgency_level"}),
    )


class ScriptedTransport(NodeTransport):
    """Acknowledges every node except those given a delay, a refusal or an error."""

    def __init__(self, delays=None, refuse=(), errors=()):
        self.delays = dict(delays or {})
        self.refuse = set(refuse)
        self.errors = set(errors)
        self.in_flight = 0
        self.peak = 0
        self.pushed: list[str] = []

    async def push(self, node_id, proposal):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(node_id, 0.01))
            if node_id in self.errors:
                raise NodeTransportError(f"Node {node_id} unreachable")
            self.pushed.append(node_id)
            return node_id not in self.refuse
        finally:
            self.in_flight -= 1


class TestSyncProposal:
    """Tests for FederationSyncCoordinator.sync_proposal."""

    @pytest.mark.asyncio
    async def test_all_nodes_acknowledge(self):
        """Test a full acknowledgement synchronizes the proposal."""
        transport = AsyncMock(spec=NodeTransport)
        transport.push = AsyncMock(return_value=True)
        proposal = make_proposal()

        report = await FederationSyncCoordinator(transport).sync_proposal(proposal)

        assert report.success is True
        assert report.synced_node_ids == ("node-a", "node-b", "node-c")
        assert report.failed_node_ids == ()
        assert proposal.sync_status == SyncStatus.SYNCHRONIZED
        assert transport.push.await_count == 3

    @pytest.mark.asyncio
    async def test_cross_border_emergency_deadline(self):
        """Test 2 acknowledging nodes and 1 hanging node under a 500ms deadline."""
        proposal = make_proposal(
            nodes=("node-eu", "node-na", "node-apac"),
            title="Cross-Border Emergency Response Protocol",
        )
        transport = ScriptedTransport(delays={"node-apac": 5.0})
        coordinator = FederationSyncCoordinator(transport, push_timeout_seconds=10.0)

        loop = asyncio.get_running_loop()
        start = loop.time()
        report = await coordinator.sync_proposal(proposal, deadline=0.5)
        elapsed = loop.time() - start

        assert len(report.synced_node_ids) == 2
        assert report.failed_node_ids == ("node-apac",)
        assert report.sync_status == SyncStatus.FAILED
        assert proposal.sync_status == SyncStatus.FAILED
        assert "deadline" in report.node_errors["node-apac"]
        assert elapsed < 2.0

    @pytest.mark.asyncio
    async def test_partial_failure_then_retry_failed_subset(self):
        """Test retrying only the failed node brings the proposal to synchronized."""
        transport = LoopbackNodeTransport(offline=["node-c"])
        coordinator = FederationSyncCoordinator(transport)
        proposal = make_proposal()

        first = await coordinator.sync_proposal(proposal)

        assert first.synced_node_ids == ("node-a", "node-b")
        assert first.failed_node_ids == ("node-c",)
        assert proposal.sync_status == SyncStatus.FAILED

        transport.offline.clear()
        retry = await coordinator.sync_proposal(proposal, node_ids=first.failed_node_ids)

        assert retry.synced_node_ids == ("node-c",)
        assert retry.failed_node_ids == ()
        assert proposal.sync_status == SyncStatus.SYNCHRONIZED
        assert proposal.proposal_id in transport.inboxes["node-c"]

    @pytest.mark.asyncio
    async def test_refusal_error_and_timeout_are_failures(self):
        """Test every kind of node failure lands in the failed set."""
        transport = ScriptedTransport(
            delays={"node-c": 5.0}, refuse=["node-a"], errors=["node-b"]
        )
        coordinator = FederationSyncCoordinator(transport, push_timeout_seconds=0.1)

        report = await coordinator.sync_proposal(make_proposal())

        assert report.synced_node_ids == ()
        assert set(report.failed_node_ids) == {"node-a", "node-b", "node-c"}
        assert report.node_errors["node-a"] == "node did not acknowledge"
        assert "unreachable" in report.node_errors["node-b"]
        assert "timed out" in report.node_errors["node-c"]

    @pytest.mark.asyncio
    async def test_one_slow_node_does_not_block_others(self):
        """Test pushes fan out rather than run as a pipeline."""
        transport = ScriptedTransport(delays={"node-a": 0.3, "node-b": 0.3, "node-c": 0.3})

        loop = asyncio.get_running_loop()
        start = loop.time()
        report = await FederationSyncCoordinator(transport).sync_proposal(make_proposal())

        assert report.success is True
        assert loop.time() - start < 0.8

    @pytest.mark.asyncio
    async def test_fan_out_is_bounded(self):
        nodes = [f"node-{i}" for i in range(12)]
        transport = ScriptedTransport(delays={n: 0.02 for n in nodes})

        report = await FederationSyncCoordinator(transport, max_concurrency=4).sync_proposal(
            make_proposal(nodes=nodes)
        )

        assert len(report.synced_node_ids) == 12
        assert transport.peak <= 4

    @pytest.mark.asyncio
    async def test_unknown_node_rejected(self):
        """Test targeting an unassigned node fails before any state change."""
        proposal = make_proposal()

        with pytest.raises(ValueError):
            await FederationSyncCoordinator(LoopbackNodeTransport()).sync_proposal(
                proposal, node_ids=["node-z"]
            )

        assert proposal.sync_status == SyncStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("node_ids", [None, []])
    async def test_no_targets_rejected_before_transition(self, node_ids):
        """Test a proposal without nodes is never left in syncing."""
        proposal = make_proposal(nodes=())

        with pytest.raises(ValueError):
            await FederationSyncCoordinator(LoopbackNodeTransport()).sync_proposal(
                proposal, node_ids=node_ids
            )

        assert proposal.sync_status == SyncStatus.PENDING

    @pytest.mark.asyncio
    async def test_resync_of_synchronized_proposal(self):
        """Test a synchronized proposal can be propagated again."""
        coordinator = FederationSyncCoordinator(LoopbackNodeTransport())
        proposal = make_proposal()

        await coordinator.sync_proposal(proposal)
        report = await coordinator.sync_proposal(proposal)

        assert report.sync_status == SyncStatus.SYNCHRONIZED

    @pytest.mark.asyncio
    async def test_cancellation_marks_failed(self):
        """Test cancelling an in-flight sync leaves the proposal failed, not syncing."""
        transport = ScriptedTransport(delays={"node-a": 5.0, "node-b": 5.0, "node-c": 5.0})
        proposal = make_proposal()
        task = asyncio.create_task(FederationSyncCoordinator(transport).sync_proposal(proposal))
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert proposal.sync_status == SyncStatus.FAILED

    def test_illegal_status_transition(self):
        proposal = make_proposal()

        with pytest.raises(ConsistencyViolationError):
            proposal.transition_sync_status(SyncStatus.SYNCHRONIZED)

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            FederationSyncCoordinator(LoopbackNodeTransport(), max_concurrency=0)


class TestHttpNodeTransport:
    """Tests for the HTTP transport."""

    @pytest.mark.asyncio
    async def test_posts_proposal_document(self):
        received = []

        def handler(request):
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(201)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = HttpNodeTransport({"node-a": "https://a.example/"}, client=client)
            ok = await transport.push("node-a", make_proposal())

        assert ok is True
        url, body = received[0]
        assert url == "https://a.example/federation/proposals"
        assert body["proposalId"] == "prop_1700000000000_coord0001"
        assert body["regionScope"]["primaryJurisdiction"] == "US-CA"

    @pytest.mark.asyncio
    async def test_conflict_is_a_refusal(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(409))
        async with httpx.AsyncClient(transport=transport) as client:
            node_transport = HttpNodeTransport({"node-a": "https://a.example"}, client=client)
            assert await node_transport.push("node-a", make_proposal()) is False

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            node_transport = HttpNodeTransport({"node-a": "https://a.example"}, client=client)
            with pytest.raises(NodeTransportError):
                await node_transport.push("node-a", make_proposal())

    @pytest.mark.asyncio
    async def test_unreachable_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            node_transport = HttpNodeTransport({"node-a": "https://a.example"}, client=client)
            with pytest.raises(NodeTransportError):
                await node_transport.push("node-a", make_proposal())

    @pytest.mark.asyncio
    async def test_unconfigured_node(self):
        node_transport = HttpNodeTransport({})
        try:
            with pytest.raises(NodeTransportError):
                await node_transport.push("node-a", make_proposal())
        finally:
            await node_transport.aclose()


class TestFromSettings:
    def test_from_settings(self, settings):
        settings.node_endpoints = {"node-a": "https://a.example"}
        settings.max_node_concurrency = 2

        coordinator = FederationSyncCoordinator.from_settings(settings=settings)

        assert isinstance(coordinator.transport, HttpNodeTransport)
        assert coordinator.transport.endpoints == {"node-a": "https://a.example"}
        assert coordinator.max_concurrency == 2
