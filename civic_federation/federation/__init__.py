"""
Regional Proposal Federation

Architecture:
    ProposalIndex - Canonical proposal store with jurisdiction, node and
        urgency indexes
    CrossDeckVoteAggregator - Folds votes from several surfaces into one result
    FederationSyncCoordinator - Pushes proposals to federation nodes
    ProposalRepository - Durable backing store the index writes through

Usage:
    from civic_federation.federation import (
        FederationSyncCoordinator,
        LoopbackNodeTransport,
        ProposalIndex,
    )

    coordinator = FederationSyncCoordinator(LoopbackNodeTransport())
    index = ProposalIndex(coordinator=coordinator)
    proposal_id = await index.submit(submission)
    report = await index.synchronize(proposal_id)
"""

from civic_federation.federation.coordinator import (
    FederationSyncCoordinator,
    HttpNodeTransport,
    LoopbackNodeTransport,
    NodeTransport,
)
from civic_federation.federation.index import ProposalIndex
from civic_federation.federation.repository import (
    InMemoryProposalRepository,
    JsonFileProposalRepository,
    ProposalRepository,
)
from civic_federation.federation.voting import CrossDeckVoteAggregator

__all__ = [
    "ProposalIndex",
    "CrossDeckVoteAggregator",
    # Coordination
    "FederationSyncCoordinator",
    "NodeTransport",
    "HttpNodeTransport",
    "LoopbackNodeTransport",
    # Persistence
    "ProposalRepository",
    "InMemoryProposalRepository",
    "JsonFileProposalRepository",
]
