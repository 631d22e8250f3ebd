"""
Cross-Deck Vote Aggregation

Tracks votes cast for a proposal through several integration surfaces
(governance, privacy, audit) and folds them into one simple-majority
result.

The aggregator is tier-unaware: every vote counts once. A caller that
honours a proposal's tier weighting must apply it before votes get here.
"""

import structlog

from civic_federation.models.base import chain_hash, sha256_hex
from civic_federation.models.proposal import (
    AuditDeckState,
    CrossDeckVotingOverlay,
    DeckIntegrations,
    DeckSurface,
    GovernanceDeckState,
    PrivacyDeckState,
    RegionalProposal,
    VoteChoice,
)

logger = structlog.get_logger(__name__)

CONSENSUS_MAJORITY = 0.5


class CrossDeckVoteAggregator:
    """Creates and updates cross-deck voting overlays."""

    def initialize(self, proposal: RegionalProposal) -> CrossDeckVotingOverlay | None:
        """
        Build a zeroed overlay for ``proposal``.

        Returns None when the proposal enabled no surface.
        """
        voting = proposal.cross_deck_voting
        if not voting.any_enabled:
            return None

        genesis = proposal.proposal_id
        overlay = CrossDeckVotingOverlay(
            proposal_id=proposal.proposal_id,
            deck_integrations=DeckIntegrations(
                governance=GovernanceDeckState(
                    enabled=voting.governance_deck,
                    vote_ledger_hash=chain_hash("", genesis, "governance") if voting.governance_deck else "",
                ),
                privacy=PrivacyDeckState(enabled=voting.privacy_deck),
                audit=AuditDeckState(
                    enabled=voting.audit_deck,
                    audit_trail_hash=chain_hash("", genesis, "audit") if voting.audit_deck else "",
                ),
            ),
        )
        logger.debug(
            "cross_deck_overlay_initialized",
            proposal_id=proposal.proposal_id,
            governance=voting.governance_deck,
            privacy=voting.privacy_deck,
            audit=voting.audit_deck,
        )
        return overlay

    def record_vote(
        self,
        overlay: CrossDeckVotingOverlay,
        vote: VoteChoice,
        voter_id: str,
        surface: DeckSurface | None = None,
    ) -> None:
        """Fold one vote into the overlay, updating the named surface's counters."""
        vote = VoteChoice(vote)
        results = overlay.aggregated_results
        results.total_participants += 1
        if vote == VoteChoice.SUPPORT:
            results.weighted_support += 1

        if surface is not None:
            self._record_surface_vote(overlay, DeckSurface(surface), vote, voter_id)

        audit = overlay.deck_integrations.audit
        if audit.enabled:
            audit.transparency_score = round(audit.audited_votes / results.total_participants * 100, 2)

        results.cross_deck_consensus = (
            results.weighted_support / results.total_participants > CONSENSUS_MAJORITY
        )

        logger.debug(
            "cross_deck_vote_recorded",
            proposal_id=overlay.proposal_id,
            surface=surface,
            support_percentage=round(self.support_percentage(overlay), 1),
        )

    def _record_surface_vote(
        self,
        overlay: CrossDeckVotingOverlay,
        surface: DeckSurface,
        vote: VoteChoice,
        voter_id: str,
    ) -> None:
        decks = overlay.deck_integrations
        if surface == DeckSurface.GOVERNANCE and decks.governance.enabled:
            decks.governance.civic_swipe_entries += 1
            decks.governance.vote_ledger_hash = chain_hash(
                decks.governance.vote_ledger_hash, voter_id, vote.value
            )
        elif surface == DeckSurface.PRIVACY and decks.privacy.enabled:
            decks.privacy.zkp_protected_votes += 1
            # Commitment to the ballot; the voter id itself is never stored
            decks.privacy.encrypted_ballots = [
                *decks.privacy.encrypted_ballots,
                "0x" + sha256_hex(overlay.proposal_id, voter_id, vote.value),
            ]
        elif surface == DeckSurface.AUDIT and decks.audit.enabled:
            decks.audit.audited_votes += 1
            decks.audit.audit_trail_hash = chain_hash(
                decks.audit.audit_trail_hash, voter_id, vote.value
            )
        else:
            logger.warning(
                "cross_deck_surface_disabled",
                proposal_id=overlay.proposal_id,
                surface=surface.value,
            )

    @staticmethod
    def support_percentage(overlay: CrossDeckVotingOverlay) -> float:
        results = overlay.aggregated_results
        if results.total_participants == 0:
            return 0.0
        return results.weighted_support / results.total_participants * 100
