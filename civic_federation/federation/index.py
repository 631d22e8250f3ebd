"""
Regional Proposal Index

Canonical proposal store plus three secondary indexes (primary
jurisdiction, federation node, urgency) and the cross-deck overlays. All
four structures change together under the write side of one read/write
lock, so a reader never sees a proposal in one and not the others.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime

import structlog

from civic_federation.config import Settings, get_settings
from civic_federation.errors import ConsistencyViolationError, ProposalValidationError
from civic_federation.federation.coordinator import FederationSyncCoordinator
from civic_federation.federation.repository import (
    InMemoryProposalRepository,
    JsonFileProposalRepository,
    ProposalRepository,
)
from civic_federation.federation.voting import CrossDeckVoteAggregator
from civic_federation.models.base import generate_proposal_id, sha256_hex, utc_now
from civic_federation.models.proposal import (
    CrossDeckVotingOverlay,
    DeckSurface,
    NodeSyncReport,
    ProposalFilter,
    ProposalMetadata,
    ProposalSubmission,
    ProposalType,
    RegionalAnalytics,
    RegionalProposal,
    SyncStatus,
    UrgencyLevel,
    VoteChoice,
)
from civic_federation.monitoring import log_duration

logger = structlog.get_logger(__name__)

MIN_TITLE_LENGTH = 10
MIN_DESCRIPTION_LENGTH = 50
VALIDATOR_HASH_HEX_CHARS = 32


class _ReadWriteLock:
    """
    Many readers or one writer. Waiting writers block new readers so a
    steady stream of queries cannot starve a submit.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self):
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and not self._writers_waiting)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self):
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class ProposalIndex:
    """
    Multi-dimensional index of regional proposals.

    Usage:
        index = ProposalIndex(coordinator=coordinator)
        proposal_id = await index.submit(submission)
        await index.record_vote(proposal_id, VoteChoice.SUPPORT, "voter-1")
        report = await index.synchronize(proposal_id)
        analytics = await index.analytics_for("US-CA")
    """

    def __init__(
        self,
        repository: ProposalRepository | None = None,
        aggregator: CrossDeckVoteAggregator | None = None,
        coordinator: FederationSyncCoordinator | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = generate_proposal_id,
    ):
        self.settings = settings or get_settings()
        self.repository = repository or InMemoryProposalRepository()
        self.aggregator = aggregator or CrossDeckVoteAggregator()
        self.coordinator = coordinator
        self._clock = clock
        self._id_factory = id_factory

        self._proposals: dict[str, RegionalProposal] = {}
        self._sequence: dict[str, int] = {}
        self._by_jurisdiction: dict[str, list[str]] = defaultdict(list)
        self._by_node: dict[str, list[str]] = defaultdict(list)
        self._by_urgency: dict[str, list[str]] = defaultdict(list)
        self._overlays: dict[str, CrossDeckVotingOverlay] = {}
        self._next_sequence = 0

        self._lock = _ReadWriteLock()
        self._sync_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        coordinator: FederationSyncCoordinator | None = None,
    ) -> "ProposalIndex":
        settings = settings or get_settings()
        repository: ProposalRepository
        if settings.proposal_store_path:
            repository = JsonFileProposalRepository(settings.proposal_store_path)
        else:
            repository = InMemoryProposalRepository()
        if coordinator is None and settings.node_endpoints:
            coordinator = FederationSyncCoordinator.from_settings(settings=settings)
        return cls(repository=repository, coordinator=coordinator, settings=settings)

    # =========================================================================
    # Writes
    # =========================================================================

    async def submit(self, submission: ProposalSubmission) -> str:
        """
        Validate and index a new proposal.

        Raises:
            ProposalValidationError: Naming the first violated constraint;
                nothing is stored
        """
        self._validate_submission(submission)

        now = self._clock()
        proposal_id = self._id_factory()
        primary = submission.region_scope.primary_jurisdiction

        proposal = RegionalProposal(
            proposal_id=proposal_id,
            title=submission.title,
            description=submission.description,
            region_scope=submission.region_scope.model_copy(deep=True),
            proposal_type=submission.proposal_type,
            federation_nodes=list(submission.federation_nodes),
            cid_hash=submission.cid_hash,
            cross_deck_voting=submission.cross_deck_voting.model_copy(),
            quorum_requirement=submission.quorum_requirement.model_copy(),
            voting_period=submission.voting_period.model_copy(),
            electorate_size=submission.electorate_size,
            metadata=ProposalMetadata(
                submitted_by=submission.submitted_by,
                submission_timestamp=now,
                last_modified=now,
                urgency_level=self._derive_urgency(submission),
                dao_validator_hash=self._validator_hash(
                    proposal_id, submission.title, primary, now
                ),
            ),
        )
        overlay = self.aggregator.initialize(proposal)

        async with self._lock.write():
            if proposal_id in self._proposals:
                raise ConsistencyViolationError(
                    f"Generated proposal id {proposal_id} already exists",
                    {"proposal_id": proposal_id},
                )
            # Nothing becomes visible unless both records were stored
            await self._persist_new(proposal, overlay)
            self._insert(proposal, overlay)

        logger.info(
            "proposal_submitted",
            proposal_id=proposal_id,
            jurisdiction=primary,
            proposal_type=proposal.proposal_type,
            urgency=proposal.metadata.urgency_level,
            nodes=len(proposal.federation_nodes),
            cross_deck=overlay is not None,
        )

        if self.settings.auto_sync_on_submit and self.coordinator is not None:
            task = asyncio.create_task(self.synchronize(proposal_id))
            self._tasks.add(task)
            task.add_done_callback(self._on_sync_task_done)

        return proposal_id

    async def record_vote(
        self,
        proposal_id: str,
        vote: VoteChoice,
        voter_id: str,
        surface: DeckSurface | None = None,
    ) -> bool:
        """
        Count one vote. Returns False, changing nothing, for an unknown id.
        """
        vote = VoteChoice(vote)
        async with self._lock.write():
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                logger.debug("vote_for_unknown_proposal", proposal_id=proposal_id)
                return False

            overlay = self._overlays.get(proposal_id)
            votes_before = proposal.votes.model_copy()
            modified_before = proposal.metadata.last_modified
            overlay_before = overlay.model_copy(deep=True) if overlay is not None else None

            tally = proposal.votes
            if vote == VoteChoice.SUPPORT:
                tally.support += 1
            elif vote == VoteChoice.OPPOSE:
                tally.oppose += 1
            else:
                tally.abstain += 1

            electorate = proposal.electorate_size or self.settings.default_electorate_size
            tally.participation = round(min(100.0, tally.total / electorate * 100), 2)
            proposal.metadata.last_modified = self._clock()
            if overlay is not None:
                self.aggregator.record_vote(overlay, vote, voter_id, surface)

            proposal_saved = False
            try:
                await self.repository.save_proposal(proposal)
                proposal_saved = True
                if overlay is not None:
                    await self.repository.save_overlay(overlay)
            except Exception as e:
                proposal.votes = votes_before
                proposal.metadata.last_modified = modified_before
                if overlay_before is not None:
                    self._overlays[proposal_id] = overlay_before
                logger.error("vote_not_persisted", proposal_id=proposal_id, error=str(e))
                if proposal_saved:
                    await self.repository.save_proposal(proposal)
                raise

        logger.debug(
            "vote_recorded",
            proposal_id=proposal_id,
            vote=vote.value,
            participation=tally.participation,
        )
        return True

    async def synchronize(
        self,
        proposal_id: str,
        node_ids: Sequence[str] | None = None,
        deadline: float | None = None,
    ) -> NodeSyncReport | None:
        """
        Propagate a proposal through the attached coordinator.

        Returns None for an unknown id. Syncs of the same proposal are
        serialized; different proposals sync concurrently.
        """
        if self.coordinator is None:
            raise RuntimeError("ProposalIndex has no federation coordinator attached")

        async with self._lock.read():
            proposal = self._proposals.get(proposal_id)
        if proposal is None:
            return None

        async with self._sync_locks.setdefault(proposal_id, asyncio.Lock()):
            # Pushes run outside the index lock; only the status field changes.
            # The outcome is stored even when the sync is cancelled or raises.
            try:
                report = await self.coordinator.sync_proposal(proposal, node_ids, deadline)
            finally:
                async with self._lock.write():
                    await self.repository.save_proposal(proposal)

        return report

    async def load(self) -> int:
        """
        Rebuild the store, indexes and overlays from the repository.

        A proposal stored as ``syncing`` was interrupted mid-push; it is
        loaded as ``failed`` so it can be synced again.
        """
        with log_duration(logger, "proposal_repository_load", level="debug"):
            proposals, overlays = await self.repository.load()
        overlays_by_id = {o.proposal_id: o for o in overlays}

        interrupted = [p for p in proposals if p.sync_status == SyncStatus.SYNCING]
        for proposal in interrupted:
            proposal.transition_sync_status(SyncStatus.FAILED)
            await self.repository.save_proposal(proposal)
        if interrupted:
            logger.warning(
                "interrupted_syncs_marked_failed",
                proposal_ids=[p.proposal_id for p in interrupted],
            )

        async with self._lock.write():
            self._proposals.clear()
            self._sequence.clear()
            self._by_jurisdiction.clear()
            self._by_node.clear()
            self._by_urgency.clear()
            self._overlays.clear()
            self._next_sequence = 0
            for proposal in proposals:
                self._insert(proposal, overlays_by_id.get(proposal.proposal_id))

        logger.info("proposal_index_loaded", proposals=len(proposals), overlays=len(overlays_by_id))
        return len(proposals)

    async def close(self) -> None:
        """Cancel background syncs started by submit."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, proposal_id: str) -> RegionalProposal | None:
        async with self._lock.read():
            proposal = self._proposals.get(proposal_id)
            return proposal.model_copy(deep=True) if proposal is not None else None

    async def get_overlay(self, proposal_id: str) -> CrossDeckVotingOverlay | None:
        async with self._lock.read():
            overlay = self._overlays.get(proposal_id)
            return overlay.model_copy(deep=True) if overlay is not None else None

    async def query(self, filter: ProposalFilter | None = None) -> list[RegionalProposal]:
        """
        Return proposals matching every set field of ``filter``, newest first.

        Jurisdiction, node and urgency are answered from the secondary
        indexes; the remaining fields are checked per candidate.
        """
        filter = filter or ProposalFilter()
        async with self._lock.read():
            candidates = self._candidate_ids(filter)
            matches = [
                self._proposals[pid]
                for pid in candidates
                if self._matches(self._proposals[pid], filter)
            ]
            matches.sort(
                key=lambda p: (p.metadata.submission_timestamp, self._sequence[p.proposal_id]),
                reverse=True,
            )
            return [p.model_copy(deep=True) for p in matches]

    async def analytics_for(
        self,
        jurisdiction: str,
        now: datetime | None = None,
    ) -> RegionalAnalytics:
        """Aggregate the proposals whose primary jurisdiction is ``jurisdiction``."""
        now = now or self._clock()
        async with self._lock.read():
            proposals = [self._proposals[pid] for pid in self._by_jurisdiction.get(jurisdiction, [])]

        total = len(proposals)
        urgency_distribution = {level.value: 0 for level in UrgencyLevel}
        for p in proposals:
            urgency_distribution[p.metadata.urgency_level] += 1

        if total == 0:
            return RegionalAnalytics(
                jurisdiction=jurisdiction,
                urgency_distribution=urgency_distribution,
            )

        synchronized = sum(1 for p in proposals if p.sync_status == SyncStatus.SYNCHRONIZED)
        return RegionalAnalytics(
            jurisdiction=jurisdiction,
            total_proposals=total,
            active_proposals=sum(1 for p in proposals if p.voting_period.end_timestamp > now),
            average_participation=round(sum(p.votes.participation for p in proposals) / total, 2),
            urgency_distribution=urgency_distribution,
            cross_deck_usage=sum(1 for p in proposals if p.cross_deck_enabled),
            sync_health=round(synchronized / total * 100, 2),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _insert(
        self,
        proposal: RegionalProposal,
        overlay: CrossDeckVotingOverlay | None,
    ) -> None:
        """Add to the canonical store and every index. Caller holds the write lock."""
        pid = proposal.proposal_id
        self._proposals[pid] = proposal
        self._sequence[pid] = self._next_sequence
        self._next_sequence += 1
        self._by_jurisdiction[proposal.region_scope.primary_jurisdiction].append(pid)
        for node_id in dict.fromkeys(proposal.federation_nodes):
            self._by_node[node_id].append(pid)
        self._by_urgency[proposal.metadata.urgency_level].append(pid)
        if overlay is not None:
            self._overlays[pid] = overlay

    async def _persist_new(
        self,
        proposal: RegionalProposal,
        overlay: CrossDeckVotingOverlay | None,
    ) -> None:
        await self.repository.save_proposal(proposal)
        if overlay is None:
            return
        try:
            await self.repository.save_overlay(overlay)
        except Exception:
            await self.repository.delete_proposal(proposal.proposal_id)
            raise

    def _candidate_ids(self, filter: ProposalFilter) -> list[str]:
        lookups = []
        if filter.jurisdiction is not None:
            lookups.append(self._by_jurisdiction.get(filter.jurisdiction, []))
        if filter.federation_node is not None:
            lookups.append(self._by_node.get(filter.federation_node, []))
        if filter.urgency_level is not None:
            lookups.append(self._by_urgency.get(filter.urgency_level, []))

        if not lookups:
            return list(self._proposals)

        lookups.sort(key=len)
        narrowed = set(lookups[0])
        for ids in lookups[1:]:
            narrowed.intersection_update(ids)
        return [pid for pid in lookups[0] if pid in narrowed]

    @staticmethod
    def _matches(proposal: RegionalProposal, filter: ProposalFilter) -> bool:
        submitted = proposal.metadata.submission_timestamp
        if filter.proposal_type is not None and proposal.proposal_type != filter.proposal_type:
            return False
        if filter.sync_status is not None and proposal.sync_status != filter.sync_status:
            return False
        if filter.submitted_after is not None and submitted < filter.submitted_after:
            return False
        if filter.submitted_before is not None and submitted > filter.submitted_before:
            return False
        if filter.cross_deck_only and not proposal.cross_deck_enabled:
            return False
        return True

    @staticmethod
    def _validate_submission(submission: ProposalSubmission) -> None:
        checks = [
            (
                len(submission.title) >= MIN_TITLE_LENGTH,
                f"Proposal title must be at least {MIN_TITLE_LENGTH} characters",
                "title",
            ),
            (
                len(submission.description) >= MIN_DESCRIPTION_LENGTH,
                f"Proposal description must be at least {MIN_DESCRIPTION_LENGTH} characters",
                "description",
            ),
            (
                bool(submission.region_scope.primary_jurisdiction),
                "Primary jurisdiction is required",
                "region_scope.primary_jurisdiction",
            ),
            (
                len(submission.federation_nodes) > 0,
                "At least one federation node must be assigned",
                "federation_nodes",
            ),
        ]
        for ok, message, field in checks:
            if not ok:
                logger.info("proposal_rejected", field=field, reason=message)
                raise ProposalValidationError(message, field)

    @staticmethod
    def _derive_urgency(submission: ProposalSubmission) -> UrgencyLevel:
        if submission.urgency_level is not None:
            return UrgencyLevel(submission.urgency_level)
        if submission.proposal_type == ProposalType.EMERGENCY:
            return UrgencyLevel.CRITICAL
        return UrgencyLevel.MEDIUM

    @staticmethod
    def _validator_hash(proposal_id: str, title: str, jurisdiction: str, at: datetime) -> str:
        digest = sha256_hex(proposal_id, title, jurisdiction, at.isoformat())
        return "0x" + digest[:VALIDATOR_HASH_HEX_CHARS]

    def _on_sync_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "auto_sync_failed",
                error=str(error),
                error_type=type(error).__name__,
            )
