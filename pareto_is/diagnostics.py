import math
from dataclasses import dataclass
from enum import Enum

from termcolor import colored

from pareto_is.pareto import SmoothedWeights
from pareto_is.weights import effective_sample_size

"""
This module interprets the Pareto k estimate.

Following Vehtari et al. (2024), the reliability of a (Pareto smoothed)
importance sampling estimate depends on both k and the sample size S:

    k <= min(1 - 1/log10(S), 0.7)   the estimate is reliable
    k <= 0.7                        more draws would make it reliable
    0.7 < k <= 1                    unreliable at any practical S
    k > 1                           the ratios have no finite mean
"""

UPPER_THRESHOLD = 0.7


class ParetoKCategory(Enum):
    GOOD = 1
    NEEDS_MORE_DRAWS = 2
    BAD = 3
    VERY_BAD = 4


def sample_size_threshold(sample_size: int) -> float:
    """
    The largest k for which PSIS is reliable with S draws.
    """
    if sample_size <= 10:
        # 1 - 1/log10(S) is non-positive below S = 10
        return 0.0
    return min(1 - 1 / math.log10(sample_size), UPPER_THRESHOLD)


def minimum_sample_size(pareto_k: float) -> float:
    """
    The number of draws needed for k to fall below the sample size
    threshold: 10^(1 / (1 - max(0, k))); infinite for k >= 1.
    """
    if pareto_k >= 1:
        return math.inf
    return 10 ** (1 / (1 - max(0.0, pareto_k)))


def categorise(pareto_k: float, threshold: float) -> ParetoKCategory:
    if pareto_k <= threshold:
        return ParetoKCategory.GOOD
    elif pareto_k <= UPPER_THRESHOLD:
        return ParetoKCategory.NEEDS_MORE_DRAWS
    elif pareto_k <= 1:
        return ParetoKCategory.BAD
    return ParetoKCategory.VERY_BAD


@dataclass
class ParetoDiagnostic:
    pareto_k: float
    threshold: float
    ess: float
    sample_size: int

    @classmethod
    def from_smoothed(
        cls,
        smoothed: SmoothedWeights,
        relative_efficiency: float = 1.0,
        threshold: float = None,
    ) -> "ParetoDiagnostic":
        """
        Builds the diagnostic for a PSIS result. If no threshold is given,
        the sample size dependent threshold is used.
        """
        sample_size = smoothed.sample_size
        if threshold is None:
            threshold = sample_size_threshold(sample_size)
        return cls(
            smoothed.pareto_k,
            threshold,
            effective_sample_size(smoothed.log_weights, relative_efficiency),
            sample_size,
        )

    @property
    def category(self) -> ParetoKCategory:
        return categorise(self.pareto_k, self.threshold)

    @property
    def reliable(self) -> bool:
        return self.category == ParetoKCategory.GOOD

    @property
    def minimum_sample_size(self) -> float:
        return minimum_sample_size(self.pareto_k)

    def summary(self) -> str:
        return "k̂ = {:.3f} (threshold {:.3f}, {}), ESS = {:.1f} / {}".format(
            self.pareto_k,
            self.threshold,
            self.category.name,
            self.ess,
            self.sample_size,
        )

    def report(self) -> None:
        colour = {
            ParetoKCategory.GOOD: "green",
            ParetoKCategory.NEEDS_MORE_DRAWS: "yellow",
            ParetoKCategory.BAD: "red",
            ParetoKCategory.VERY_BAD: "red",
        }[self.category]
        print(colored("PSIS diagnostic:", colour), self.summary())
        if self.category == ParetoKCategory.NEEDS_MORE_DRAWS:
            print(
                "at least {:.0f} draws are needed for k̂ = {:.3f}".format(
                    self.minimum_sample_size, self.pareto_k
                )
            )
