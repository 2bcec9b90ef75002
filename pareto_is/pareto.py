import torch
import math
import warnings
from dataclasses import dataclass
from typing import Tuple

"""
This module contains Pareto smoothed importance sampling (PSIS).

Given log importance ratios log r_s = log p(θ_s) - log q(θ_s) for draws
θ_s ~ q, the largest M ratios are replaced by the expected order statistics
of a generalised Pareto distribution (GPD) fitted to them. The estimated GPD
shape parameter k tells us how heavy the tail of the ratio distribution is,
and therefore how far the importance sampling estimate can be trusted.

The GPD fit follows Zhang & Stephens (2009), with the weakly informative
prior on k proposed in Vehtari et al. (2024), "Pareto Smoothed Importance
Sampling".
"""

PRIOR_K_STRENGTH = 10
PRIOR_K_MEAN = 0.5
PRIOR_BS = 3
MINIMUM_TAIL_LENGTH = 5


@dataclass
class SmoothedWeights:
    """
    The result of Pareto smoothing.

    log_weights: the smoothed, normalised log weights (shape [S])
    pareto_k:    the estimated GPD shape of the upper tail of the ratios
    tail_length: the number of draws in the smoothed tail (M)
    """

    log_weights: torch.Tensor
    pareto_k: float
    tail_length: int

    @property
    def weights(self) -> torch.Tensor:
        return torch.exp(self.log_weights)

    @property
    def sample_size(self) -> int:
        return self.log_weights.shape[0]


def gpd_fit(exceedances: torch.Tensor) -> Tuple[float, float]:
    """
    Estimates the shape k and scale σ of a generalised Pareto distribution
    from sorted (ascending), positive exceedances over a threshold.

    The profile posterior of b = -k/σ is evaluated on a grid of
    m = 30 + √n points, and the estimate is its posterior mean. The
    resulting k is then shrunk towards 1/2 with a prior worth 10
    observations.
    """
    x = exceedances.to(torch.double)
    n = x.shape[0]
    m = 30 + int(n**0.5)

    b = 1 - torch.sqrt(
        m / (torch.arange(1, m + 1, dtype=torch.double) - 0.5)
    )
    b = b / (PRIOR_BS * x[int(n / 4 + 0.5) - 1])
    b = b + 1 / x[-1]

    k = torch.log1p(-b.unsqueeze(1) * x).mean(dim=1)
    profile = n * (torch.log(-(b / k)) - k - 1)
    weights = 1 / torch.exp(profile - profile.unsqueeze(1)).sum(dim=1)

    # drop negligible grid points
    keep = weights >= 10 * torch.finfo(torch.double).eps
    weights = weights[keep]
    b = b[keep]
    weights = weights / weights.sum()

    b_posterior = torch.sum(b * weights)
    k_posterior = torch.log1p(-b_posterior * x).mean()
    sigma = -k_posterior / b_posterior
    k_posterior = (n * k_posterior + PRIOR_K_STRENGTH * PRIOR_K_MEAN) / (
        n + PRIOR_K_STRENGTH
    )
    return k_posterior.item(), sigma.item()


def gpd_quantile(probs: torch.Tensor, k: float, sigma: float) -> torch.Tensor:
    """
    The quantile function of the GPD with location 0:

        Q(p) = σ ((1 - p)^(-k) - 1) / k,    k ≠ 0
        Q(p) = -σ log(1 - p),               k = 0
    """
    probs = torch.as_tensor(probs, dtype=torch.double)
    if sigma <= 0:
        return torch.full_like(probs, math.nan)
    if abs(k) < torch.finfo(torch.double).eps:
        quantiles = -torch.log1p(-probs)
    else:
        quantiles = torch.expm1(-k * torch.log1p(-probs)) / k
    return sigma * quantiles


def tail_length(sample_size: int, relative_efficiency: float = 1.0) -> int:
    """
    M = ceil(min(0.2 S, 3 √(S / r_eff)))
    """
    return int(
        math.ceil(
            min(
                0.2 * sample_size,
                3 * math.sqrt(sample_size / relative_efficiency),
            )
        )
    )


def psis(
    log_ratios: torch.Tensor, relative_efficiency: float = 1.0
) -> SmoothedWeights:
    """
    Pareto smooths the given log importance ratios.

    Returns the smoothed normalised log weights and the Pareto k estimate.
    If fewer than five draws lie in the tail, no smoothing is done and k is
    reported as infinite. If all finite ratios are identical the weights are
    uniform over those draws and there is no tail to fit; k is reported
    as -inf.
    """
    x = torch.as_tensor(log_ratios, dtype=torch.double).flatten().clone()
    if torch.isnan(x).any():
        raise ValueError("The log ratios contain NaNs.")
    if relative_efficiency <= 0:
        raise ValueError("The relative efficiency must be positive.")
    sample_size = x.shape[0]
    length = tail_length(sample_size, relative_efficiency)
    if length + 1 > sample_size:
        raise ValueError(
            "Too few draws ({}) for Pareto smoothing.".format(sample_size)
        )

    if (x == math.inf).any():
        raise ValueError("The log ratios contain +inf.")
    if (x == -math.inf).all():
        raise ValueError("Every draw has zero importance weight.")

    finite = torch.isfinite(x)
    if x[finite].max() == x[finite].min():
        uniform = torch.full_like(x, -math.inf)
        uniform[finite] = -math.log(finite.sum().item())
        return SmoothedWeights(uniform, -math.inf, 0)

    x = x - x.max()
    sorted_x, _ = torch.sort(x)
    cutoff = max(
        sorted_x[-length - 1].item(),
        math.log(torch.finfo(torch.double).tiny),
    )
    exp_cutoff = math.exp(cutoff)

    tail_indices = torch.nonzero(x > cutoff).squeeze(1)
    tail = x[tail_indices]
    if tail.shape[0] < MINIMUM_TAIL_LENGTH:
        warnings.warn(
            "Only {} draws in the tail; the ratios are left unsmoothed "
            "and k is reported as inf.".format(tail.shape[0]),
            RuntimeWarning,
        )
        k = math.inf
    else:
        sorted_tail, tail_order = torch.sort(tail)
        k, sigma = gpd_fit(torch.exp(sorted_tail) - exp_cutoff)
        if math.isfinite(k):
            count = sorted_tail.shape[0]
            probs = (
                torch.arange(count, dtype=torch.double) + 0.5
            ) / count
            smoothed = torch.log(gpd_quantile(probs, k, sigma) + exp_cutoff)
            x[tail_indices[tail_order]] = smoothed
            # no smoothed weight may exceed the largest raw weight
            x = torch.clamp(x, max=0.0)

    x = x - torch.logsumexp(x, dim=0)
    return SmoothedWeights(x, k, int(tail.shape[0]))
