import torch
import matplotlib.pyplot as plt

from termcolor import colored

from approxbayes.likelihood import GaussianMeasurementLikelihood
from approxbayes.model import (
    PriorParameters,
    PymcPosteriorSampler,
    SamplerSettings,
)
from approxbayes.plots import (
    plot_importance_ratios,
    plot_posteriors,
    plot_profiles,
    plot_refinement_history,
)
from approxbayes.workflow import AdaptiveApproximationWorkflow, WorkflowSettings
from heateq.problem import (
    DiffusionProblem,
    gaussian_bump,
    interior_locations,
    simulate_measurements,
)
from heateq.solvers import ForwardEulerSolver, FourierSeriesSolver
from pareto_is.weights import WeightedSample

"""
Approximate forward models in Bayesian inference: a case study.

We want the diffusivity K of a rod from noisy temperature measurements taken
at a single time T. Every likelihood evaluation needs a PDE solve. The exact
(here: Fourier series) solution stands in for an expensive solver, and the
question is whether we can fit the posterior with a cheap forward Euler
solver instead.

The approximate posterior is only useful if we can tell how wrong it is.
Importance sampling answers that with one exact solve per posterior draw:
the ratio of the exact to the approximate likelihood reweights the draws,
and Pareto smoothed importance sampling both stabilises the weights and,
through the estimated tail shape k, says whether the reweighted posterior can
be trusted. When it cannot, the approximation is refined and the posterior
refitted.

The sections below run as a script; each one prints what it finds and,
with SHOW_PLOTS, draws the corresponding figure.
"""

TRUE_DIFFUSIVITY = 0.5
NOISE = 0.002
MEASUREMENT_COUNT = 15
DATA_SEED = 20231
SHOW_PLOTS = True


def simulate_data(problem: DiffusionProblem, reference_solver):
    """
    Section 1: the data are simulated with the exact solver.
    """
    locations = interior_locations(problem, MEASUREMENT_COUNT)
    measurements = simulate_measurements(
        problem,
        reference_solver,
        TRUE_DIFFUSIVITY,
        NOISE,
        locations,
        torch.Generator().manual_seed(DATA_SEED),
    )
    return locations, measurements


def approximation_error(problem, coarse_solver, reference_solver, locations):
    """
    Section 2: how far is the method of lines from the exact solution at the
    true diffusivity, compared to the measurement noise?
    """
    exact = reference_solver.predict(problem, TRUE_DIFFUSIVITY, locations)
    solver = coarse_solver
    for _ in range(3):
        approximate = solver.predict(problem, TRUE_DIFFUSIVITY, locations)
        error = torch.max(torch.abs(approximate - exact)).item()
        print(
            "{}: max error {:.4f} (noise sd {})".format(
                solver.describe(), error, NOISE
            )
        )
        solver = solver.refine(2)


def first_correction(result):
    """
    Section 3: the coarse fit, importance corrected. The uncorrected and
    corrected summaries differ by as much as the approximation error
    matters; k says whether the correction itself can be trusted.
    """
    correction = result.steps[0].correction
    correction.diagnostic.report()
    print(colored("uncorrected:", "blue"))
    print(WeightedSample(correction.draws.flat()).summary())
    print(colored("PSIS corrected:", "blue"))
    print(correction.posterior.summary())
    return correction


def run_case_study(show: bool = SHOW_PLOTS):
    problem = DiffusionProblem(
        length=1.0,
        final_time=0.05,
        initial_condition=gaussian_bump(centre=0.3, width=0.05),
    )
    reference_solver = FourierSeriesSolver(modes=200)
    coarse_solver = ForwardEulerSolver(space_steps=10, time_steps=20)

    locations, measurements = simulate_data(problem, reference_solver)
    approximation_error(problem, coarse_solver, reference_solver, locations)

    prior = PriorParameters(noise_scale=0.01)
    sampler = PymcPosteriorSampler(
        prior, SamplerSettings(draws=1000, tune=1000, chains=4)
    )

    # Fit with the coarse solver, correct, and refine until the diagnostic
    # accepts the corrected posterior
    workflow = AdaptiveApproximationWorkflow(
        problem,
        locations,
        measurements,
        coarse_solver,
        reference_solver,
        sampler,
        WorkflowSettings(max_refinements=3),
    )
    result = workflow.run()
    correction = first_correction(result)

    # Section 4: the refinement history
    print(result.history())
    print(colored("outcome:", "blue"), result.outcome.name)

    # Section 5: the full posterior, for comparison only
    reference = GaussianMeasurementLikelihood(
        problem, reference_solver, locations, measurements
    )
    full_draws = sampler(reference)
    full = WeightedSample(full_draws.flat())

    if show:
        fig, axes = plt.subplots(2, 2, figsize=(11, 8))
        plot_profiles(
            problem,
            {
                "exact": reference_solver,
                coarse_solver.describe(): coarse_solver,
                result.solver.describe(): result.solver,
            },
            TRUE_DIFFUSIVITY,
            locations,
            measurements,
            ax=axes[0, 0],
        )
        plot_importance_ratios(correction, ax=axes[0, 1])
        plot_posteriors(
            {
                "approximate": WeightedSample(correction.draws.flat()),
                "PSIS corrected": correction.posterior,
                "workflow": result.posterior,
                "full": full,
            },
            true_value=TRUE_DIFFUSIVITY,
            ax=axes[1, 0],
        )
        plot_refinement_history(result, ax=axes[1, 1])
        plt.tight_layout()
        plt.show()
    return result


if __name__ == "__main__":
    run_case_study()
