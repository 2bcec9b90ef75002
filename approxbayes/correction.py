import torch
from dataclasses import dataclass

from approxbayes.likelihood import GaussianMeasurementLikelihood
from approxbayes.model import PosteriorDraws
from pareto_is.diagnostics import ParetoDiagnostic
from pareto_is.pareto import SmoothedWeights, psis
from pareto_is.weights import (
    WeightedSample,
    log_importance_ratios,
    relative_efficiency,
)

"""
Draws from the approximate posterior q(θ | y) ∝ p(θ) p_approx(y | θ) are
reweighted towards the posterior under the reference solver,
p(θ | y) ∝ p(θ) p_ref(y | θ). The priors cancel in the ratio, so

    log r_s = log p_ref(y | θ_s) - log p_approx(y | θ_s),

and only one extra (expensive) solve per draw is needed, not a new fit.
"""


@dataclass
class CorrectionResult:
    draws: PosteriorDraws
    approximate_log_likelihood: torch.Tensor
    reference_log_likelihood: torch.Tensor
    log_ratios: torch.Tensor
    relative_efficiency: float
    smoothed: SmoothedWeights
    diagnostic: ParetoDiagnostic
    posterior: WeightedSample


def importance_correction(
    draws: PosteriorDraws,
    approximate: GaussianMeasurementLikelihood,
    reference: GaussianMeasurementLikelihood,
    threshold: float = None,
    use_relative_efficiency: bool = True,
) -> CorrectionResult:
    """
    Importance corrects the approximate posterior draws and diagnoses the
    correction with PSIS.

    Parameters:
        draws:       draws from the posterior under the approximate solver
        approximate: the likelihood the draws were sampled with
        reference:   the likelihood under the reference solver
        threshold:   the largest acceptable Pareto k; the sample size
                     dependent threshold if None
        use_relative_efficiency: whether to account for the autocorrelation
                     of the MCMC draws in the tail length and the ESS
    """
    flat = draws.flat()
    approximate_log_likelihood = approximate.evaluate(
        flat["diffusivity"], flat["noise"]
    )
    reference_log_likelihood = reference.evaluate(
        flat["diffusivity"], flat["noise"]
    )
    log_ratios = log_importance_ratios(
        reference_log_likelihood, approximate_log_likelihood
    )
    efficiency = (
        relative_efficiency(log_ratios, draws.chains)
        if use_relative_efficiency
        else 1.0
    )
    smoothed = psis(log_ratios, efficiency)
    diagnostic = ParetoDiagnostic.from_smoothed(
        smoothed, efficiency, threshold
    )
    return CorrectionResult(
        draws,
        approximate_log_likelihood,
        reference_log_likelihood,
        log_ratios,
        efficiency,
        smoothed,
        diagnostic,
        WeightedSample(flat, smoothed.log_weights),
    )
