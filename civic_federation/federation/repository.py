"""
Proposal Persistence

The index keeps everything in memory; a repository is where it writes
through so proposals and overlays survive a restart.
"""

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import structlog
from pydantic import ValidationError

from civic_federation.errors import FederationError
from civic_federation.models.proposal import CrossDeckVotingOverlay, RegionalProposal

logger = structlog.get_logger(__name__)


class ProposalRepository(ABC):
    """Durable store for proposals and their overlays."""

    @abstractmethod
    async def save_proposal(self, proposal: RegionalProposal) -> None:
        ...

    @abstractmethod
    async def save_overlay(self, overlay: CrossDeckVotingOverlay) -> None:
        ...

    @abstractmethod
    async def delete_proposal(self, proposal_id: str) -> None:
        """Remove a proposal and its overlay; unknown ids are ignored."""

    @abstractmethod
    async def load(
        self,
    ) -> tuple[list[RegionalProposal], list[CrossDeckVotingOverlay]]:
        """Return every stored proposal in submission order, plus all overlays."""


class InMemoryProposalRepository(ProposalRepository):
    """Repository that keeps deep copies; used in tests and ephemeral runs."""

    def __init__(self):
        self._proposals: dict[str, RegionalProposal] = {}
        self._overlays: dict[str, CrossDeckVotingOverlay] = {}

    async def save_proposal(self, proposal: RegionalProposal) -> None:
        self._proposals[proposal.proposal_id] = proposal.model_copy(deep=True)

    async def save_overlay(self, overlay: CrossDeckVotingOverlay) -> None:
        self._overlays[overlay.proposal_id] = overlay.model_copy(deep=True)

    async def delete_proposal(self, proposal_id: str) -> None:
        self._proposals.pop(proposal_id, None)
        self._overlays.pop(proposal_id, None)

    async def load(self):
        return (
            [p.model_copy(deep=True) for p in self._proposals.values()],
            [o.model_copy(deep=True) for o in self._overlays.values()],
        )


class JsonFileProposalRepository(ProposalRepository):
    """
    Repository backed by a single JSON document.

    Every save rewrites the file through a temp file and ``os.replace`` so
    a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._proposals: dict[str, dict] = {}
        self._overlays: dict[str, dict] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    async def save_proposal(self, proposal: RegionalProposal) -> None:
        await self._update("_proposals", proposal.proposal_id, proposal.to_document())

    async def save_overlay(self, overlay: CrossDeckVotingOverlay) -> None:
        await self._update("_overlays", overlay.proposal_id, overlay.to_document())

    async def delete_proposal(self, proposal_id: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            removed = (
                self._proposals.pop(proposal_id, None),
                self._overlays.pop(proposal_id, None),
            )
            if removed == (None, None):
                return
            try:
                await asyncio.to_thread(self._write)
            except BaseException:
                if removed[0] is not None:
                    self._proposals[proposal_id] = removed[0]
                if removed[1] is not None:
                    self._overlays[proposal_id] = removed[1]
                raise

    async def _update(self, bucket: str, key: str, document: dict) -> None:
        """Replace one record and rewrite the file; the record is restored if the write fails."""
        async with self._lock:
            await self._ensure_loaded()
            records: dict[str, dict] = getattr(self, bucket)
            previous = records.get(key)
            records[key] = document
            try:
                await asyncio.to_thread(self._write)
            except BaseException:
                if previous is None:
                    records.pop(key, None)
                else:
                    records[key] = previous
                raise

    async def load(self):
        async with self._lock:
            self._loaded = False
            await self._ensure_loaded()
            try:
                proposals = [RegionalProposal.model_validate(d) for d in self._proposals.values()]
                overlays = [CrossDeckVotingOverlay.model_validate(d) for d in self._overlays.values()]
            except ValidationError as e:
                raise FederationError(
                    f"Proposal store {self.path} holds invalid records: {e.error_count()} errors"
                )

        logger.info(
            "proposal_store_loaded",
            path=str(self.path),
            proposals=len(proposals),
            overlays=len(overlays),
        )
        return proposals, overlays

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        document = await asyncio.to_thread(self._read)
        self._proposals = dict(document.get("proposals", {}))
        self._overlays = dict(document.get("overlays", {}))
        self._loaded = True

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise FederationError(f"Proposal store {self.path} is not valid JSON: {e}")

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"proposals": self._proposals, "overlays": self._overlays}
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
