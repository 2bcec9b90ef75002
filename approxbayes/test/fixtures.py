import torch

from approxbayes.correction import CorrectionResult
from approxbayes.model import PosteriorDraws
from heateq.problem import DiffusionProblem, interior_locations
from heateq.solvers import FourierSeriesSolver
from pareto_is.diagnostics import ParetoDiagnostic
from pareto_is.pareto import SmoothedWeights
from pareto_is.weights import WeightedSample


def small_problem():
    problem = DiffusionProblem(final_time=0.05)
    locations = interior_locations(problem, 8)
    measurements = FourierSeriesSolver(modes=100).predict(
        problem, 0.5, locations
    )[0]
    return problem, locations, measurements


class GaussianDrawSampler:
    """
    Stands in for the MCMC fit: returns draws scattered around the true
    parameters, and records which solvers it was asked to fit with.
    """

    def __init__(
        self,
        chains: int = 4,
        draws: int = 250,
        seed: int = 0,
        noise_scale: float = 0.05,
    ):
        self.chains = chains
        self.draws = draws
        self.noise_scale = noise_scale
        self.generator = torch.Generator().manual_seed(seed)
        self.solvers = []

    def __call__(self, likelihood) -> PosteriorDraws:
        self.solvers.append(likelihood.solver)
        shape = (self.chains, self.draws)
        diffusivity = 0.5 + 0.02 * torch.randn(
            shape, generator=self.generator, dtype=torch.double
        )
        noise = self.noise_scale * (
            1 + 0.1 * torch.rand(
                shape, generator=self.generator, dtype=torch.double
            )
        )
        return PosteriorDraws(diffusivity, noise)


def canned_correction(
    pareto_k: float, ess: float = 1000.0, sample_size: int = 1000
) -> CorrectionResult:
    """
    A correction result carrying a given diagnostic, for testing the
    refinement policy without fitting anything.
    """
    log_weights = torch.full(
        (sample_size,), -torch.log(torch.tensor(float(sample_size))).item()
    ).double()
    draws = PosteriorDraws(
        torch.full((1, sample_size), 0.5, dtype=torch.double),
        torch.full((1, sample_size), 0.05, dtype=torch.double),
    )
    zeros = torch.zeros(sample_size, dtype=torch.double)
    return CorrectionResult(
        draws,
        zeros,
        zeros,
        zeros,
        1.0,
        SmoothedWeights(log_weights, pareto_k, 0),
        ParetoDiagnostic(pareto_k, 0.6, ess, sample_size),
        WeightedSample(draws.flat(), log_weights),
    )
