"""
Consensus Calculation

Pure, synchronous aggregation of validation outcomes into a consensus
decision against a configurable threshold.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from civic_federation.config import DEFAULT_CONSENSUS_THRESHOLD


@dataclass(frozen=True)
class ConsensusDecision:
    """Result of a consensus calculation."""
    achieved: bool
    ratio: float            # valid / total, 0.0 when total is 0
    percentage: float       # ratio * 100
    threshold: float
    total: int
    valid: int


class ConsensusStrategy(ABC):
    """Decides whether a valid-ratio meets a threshold."""

    @abstractmethod
    def reached(self, ratio: float, threshold: float) -> bool:
        ...


class ThresholdConsensusStrategy(ConsensusStrategy):
    """Consensus when the ratio meets or exceeds the threshold."""

    def reached(self, ratio: float, threshold: float) -> bool:
        return ratio >= threshold


class StrictMajorityConsensusStrategy(ConsensusStrategy):
    """Consensus only when the ratio strictly exceeds the threshold."""

    def reached(self, ratio: float, threshold: float) -> bool:
        return ratio > threshold


class ConsensusCalculator:
    """
    Computes whether a set of validations reached consensus.

    Zero total entries never reach consensus and report 0%.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_CONSENSUS_THRESHOLD,
        strategy: ConsensusStrategy | None = None,
    ):
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"Consensus threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold
        self.strategy = strategy or ThresholdConsensusStrategy()

    def calculate(self, total: int, valid: int) -> ConsensusDecision:
        if total < 0 or valid < 0:
            raise ValueError("Counts must be non-negative")
        if valid > total:
            raise ValueError(f"Valid count ({valid}) exceeds total ({total})")

        if total == 0:
            return ConsensusDecision(
                achieved=False,
                ratio=0.0,
                percentage=0.0,
                threshold=self.threshold,
                total=0,
                valid=0,
            )

        ratio = valid / total
        return ConsensusDecision(
            achieved=self.strategy.reached(ratio, self.threshold),
            ratio=ratio,
            percentage=ratio * 100,
            threshold=self.threshold,
            total=total,
            valid=valid,
        )
