import torch
import math
import arviz as az
import pandas as pd

from typing import Dict, List

"""
This module contains the importance weight computations that surround
Pareto smoothing: the raw log ratios, their normalisation, effective sample
sizes, and a container for a weighted set of posterior draws with the
summaries we need from it.
"""


def log_importance_ratios(
    target_log_density: torch.Tensor, proposal_log_density: torch.Tensor
) -> torch.Tensor:
    """
    log r_s = log p(θ_s) - log q(θ_s).

    Only the difference matters, so unnormalised densities are fine. A draw
    with zero target density (log p = -inf) is allowed and gets zero weight;
    NaNs or draws impossible under the proposal are errors.
    """
    target = torch.as_tensor(target_log_density, dtype=torch.double).flatten()
    proposal = torch.as_tensor(
        proposal_log_density, dtype=torch.double
    ).flatten()
    if target.shape != proposal.shape:
        raise ValueError(
            "Target and proposal densities must have the same shape."
        )
    if torch.isnan(target).any() or torch.isnan(proposal).any():
        raise ValueError("Log densities contain NaNs.")
    if (target == math.inf).any() or (~torch.isfinite(proposal)).any():
        raise ValueError(
            "Proposal log densities must be finite and target log densities "
            "must be below +inf."
        )
    return target - proposal


def normalise_log_weights(log_weights: torch.Tensor) -> torch.Tensor:
    log_weights = torch.as_tensor(log_weights, dtype=torch.double)
    return log_weights - torch.logsumexp(log_weights, dim=0)


def effective_sample_size(
    log_weights: torch.Tensor, relative_efficiency: float = 1.0
) -> float:
    """
    The importance sampling effective sample size,

        ESS = r_eff / Σ_s w_s^2,

    for normalised weights w_s.
    """
    weights = torch.exp(normalise_log_weights(log_weights))
    return relative_efficiency / torch.sum(weights**2).item()


def relative_efficiency(log_ratios: torch.Tensor, chains: int = 1) -> float:
    """
    The MCMC efficiency of the ratios themselves: ESS(r) / S, computed by
    ArviZ on the ratios laid out as [chains, draws]. Draws are assumed to be
    stored chain by chain.

    Constant ratios have no well-defined ESS; they are treated as
    independent.
    """
    log_ratios = torch.as_tensor(log_ratios, dtype=torch.double).flatten()
    sample_size = log_ratios.shape[0]
    if sample_size % chains != 0:
        raise ValueError(
            "{} draws cannot be split into {} chains.".format(
                sample_size, chains
            )
        )
    ratios = torch.exp(log_ratios - log_ratios.max()).reshape(chains, -1)
    ess = float(az.ess(ratios.numpy(), method="mean"))
    if not math.isfinite(ess) or ess <= 0:
        return 1.0
    return ess / sample_size


class WeightedSample:
    """
    A set of named draws, each with a normalised importance weight.

    For a plain posterior sample the weights are uniform; for an importance
    corrected one they are the (smoothed) importance weights.
    """

    def __init__(
        self, draws: Dict[str, torch.Tensor], log_weights: torch.Tensor = None
    ):
        if len(draws) == 0:
            raise ValueError("At least one variable is required.")
        self.draws = {
            name: torch.as_tensor(values, dtype=torch.double).flatten()
            for name, values in draws.items()
        }
        sizes = {values.shape[0] for values in self.draws.values()}
        if len(sizes) != 1:
            raise ValueError("All variables must have the same draw count.")
        self.sample_size = sizes.pop()

        if log_weights is None:
            log_weights = torch.zeros(self.sample_size, dtype=torch.double)
        log_weights = torch.as_tensor(log_weights, dtype=torch.double)
        if log_weights.shape != torch.Size([self.sample_size]):
            raise ValueError("There must be one weight per draw.")
        self.log_weights = normalise_log_weights(log_weights)

    @property
    def weights(self) -> torch.Tensor:
        return torch.exp(self.log_weights)

    @property
    def names(self) -> List[str]:
        return list(self.draws.keys())

    def mean(self, name: str) -> float:
        return torch.sum(self.weights * self.draws[name]).item()

    def variance(self, name: str) -> float:
        centred = self.draws[name] - self.mean(name)
        return torch.sum(self.weights * centred**2).item()

    def quantile(self, name: str, q: float) -> float:
        """
        The weighted quantile: the smallest draw with positive weight whose
        cumulative weight reaches q.
        """
        if not 0 <= q <= 1:
            raise ValueError("Quantiles must lie in [0, 1].")
        support = self.weights > 0
        values, order = torch.sort(self.draws[name][support])
        cumulative = torch.cumsum(self.weights[support][order], dim=0)
        index = torch.searchsorted(
            cumulative, torch.tensor([q], dtype=torch.double)
        )
        index = torch.clamp(index, max=values.shape[0] - 1)
        return values[index].item()

    def ess(self, relative_efficiency: float = 1.0) -> float:
        return effective_sample_size(self.log_weights, relative_efficiency)

    def resample(
        self, count: int = None, generator: torch.Generator = None
    ) -> Dict[str, torch.Tensor]:
        """
        Importance resampling: draws `count` indices with replacement,
        with probabilities equal to the weights, and returns the resulting
        equally-weighted draws.
        """
        count = self.sample_size if count is None else count
        indices = torch.multinomial(
            self.weights, count, replacement=True, generator=generator
        )
        return {name: values[indices] for name, values in self.draws.items()}

    def summary(self, quantiles=(0.05, 0.5, 0.95)) -> pd.DataFrame:
        rows = []
        for name in self.names:
            row = {
                "variable": name,
                "mean": self.mean(name),
                "sd": math.sqrt(self.variance(name)),
            }
            for q in quantiles:
                row["q{:g}".format(100 * q)] = self.quantile(name, q)
            rows.append(row)
        return pd.DataFrame(rows).set_index("variable")
