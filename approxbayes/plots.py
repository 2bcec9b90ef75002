import torch
import matplotlib.pyplot as plt

from typing import Dict

from approxbayes.correction import CorrectionResult
from approxbayes.workflow import WorkflowResult
from heateq.problem import DiffusionProblem
from heateq.solvers import Solver
from pareto_is.diagnostics import UPPER_THRESHOLD
from pareto_is.weights import WeightedSample


def plot_profiles(
    problem: DiffusionProblem,
    solvers: Dict[str, Solver],
    diffusivity: float,
    locations: torch.Tensor = None,
    measurements: torch.Tensor = None,
    ax=None,
):
    """
    Plots u(x, T) from each solver on its own grid, with the measurements
    if given.
    """
    ax = ax if ax is not None else plt.gca()
    for label, solver in solvers.items():
        profile = solver.solve(problem, diffusivity)
        ax.plot(profile.positions, profile.values[0], label=label)
    if measurements is not None:
        ax.scatter(locations, measurements, s=12, color="k", label="data")
    ax.set_xlabel("$x$")
    ax.set_ylabel("$u(x, T)$")
    ax.legend()
    return ax


def plot_importance_ratios(correction: CorrectionResult, ax=None):
    """
    Plots the log importance ratios against the diffusivity draws, coloured
    by the smoothed weight.
    """
    ax = ax if ax is not None else plt.gca()
    diffusivity = correction.draws.flat()["diffusivity"]
    scatter = ax.scatter(
        diffusivity,
        correction.log_ratios,
        c=correction.smoothed.weights,
        s=6,
        cmap="viridis",
    )
    plt.colorbar(scatter, ax=ax, label="PSIS weight")
    ax.set_xlabel("$K$")
    ax.set_ylabel("$\\log r$")
    ax.set_title("$\\hat{{k}} = {:.2f}$".format(correction.diagnostic.pareto_k))
    return ax


def plot_posteriors(
    samples: Dict[str, WeightedSample],
    name: str = "diffusivity",
    true_value: float = None,
    bins: int = 40,
    ax=None,
):
    """
    Weighted histograms of one variable under several (possibly importance
    weighted) posteriors.
    """
    ax = ax if ax is not None else plt.gca()
    for label, sample in samples.items():
        ax.hist(
            sample.draws[name].numpy(),
            bins=bins,
            weights=sample.weights.numpy(),
            density=True,
            histtype="step",
            label=label,
        )
    if true_value is not None:
        ax.axvline(true_value, color="k", linestyle="--", label="true")
    ax.set_xlabel(name)
    ax.legend()
    return ax


def plot_refinement_history(result: WorkflowResult, ax=None):
    """
    Plots the Pareto k estimate at each refinement level against the
    thresholds.
    """
    ax = ax if ax is not None else plt.gca()
    history = result.history()
    ax.plot(history["level"], history["pareto_k"], marker="o", label="$\\hat{k}$")
    ax.plot(
        history["level"],
        history["threshold"],
        linestyle="--",
        color="green",
        label="sample size threshold",
    )
    ax.axhline(UPPER_THRESHOLD, linestyle=":", color="red", label="0.7")
    ax.set_xticks(history["level"])
    ax.set_xticklabels(history["solver"], rotation=20)
    ax.set_ylabel("Pareto $k$")
    ax.legend()
    return ax
