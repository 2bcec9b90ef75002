import torch
import pandas as pd

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List

from termcolor import colored

from approxbayes.correction import CorrectionResult, importance_correction
from approxbayes.likelihood import GaussianMeasurementLikelihood
from approxbayes.model import PosteriorDraws
from heateq.problem import DiffusionProblem
from heateq.solvers import Solver
from pareto_is.weights import WeightedSample


class WorkflowOutcome(Enum):
    CORRECTED = 1
    REFERENCE = 2
    UNRESOLVED = 3


@dataclass
class WorkflowSettings:
    """
    Parameters:
        max_refinements:   how many times the approximation may be refined
        refinement_factor: the factor passed to solver.refine
        min_ess:           the smallest acceptable PSIS effective sample size
        k_threshold:       the largest acceptable Pareto k; if None, the
                           sample size dependent threshold
        use_relative_efficiency: account for MCMC autocorrelation in PSIS
        fallback_to_reference:   fit with the reference solver if no
                           approximation can be corrected reliably
        verbose:           print progress
    """

    max_refinements: int = 3
    refinement_factor: int = 2
    min_ess: float = 100.0
    k_threshold: float = None
    use_relative_efficiency: bool = True
    fallback_to_reference: bool = True
    verbose: bool = True


@dataclass
class RefinementStep:
    level: int
    solver: Solver
    correction: CorrectionResult
    accepted: bool

    def as_row(self) -> dict:
        diagnostic = self.correction.diagnostic
        return {
            "level": self.level,
            "solver": self.solver.describe(),
            "pareto_k": diagnostic.pareto_k,
            "threshold": diagnostic.threshold,
            "ess": diagnostic.ess,
            "relative_efficiency": self.correction.relative_efficiency,
            "category": diagnostic.category.name,
            "accepted": self.accepted,
        }


@dataclass
class WorkflowResult:
    outcome: WorkflowOutcome
    posterior: WeightedSample
    solver: Solver
    steps: List[RefinementStep] = field(default_factory=list)

    def history(self) -> pd.DataFrame:
        """
        One row per fitted approximation: the solver, its PSIS diagnostic
        and whether the corrected posterior was accepted.
        """
        columns = [
            "level",
            "solver",
            "pareto_k",
            "threshold",
            "ess",
            "relative_efficiency",
            "category",
            "accepted",
        ]
        return pd.DataFrame(
            [step.as_row() for step in self.steps], columns=columns
        )


class AdaptiveApproximationWorkflow:
    """
    Fits the posterior with a cheap approximate solver and decides, from the
    PSIS diagnostic of the importance correction towards a reference solver,
    whether the corrected posterior can be used. If not, the approximation
    is refined and the posterior refitted; as a last resort the posterior is
    fitted with the reference solver itself.
    """

    def __init__(
        self,
        problem: DiffusionProblem,
        locations: torch.Tensor,
        measurements: torch.Tensor,
        approximate_solver: Solver,
        reference_solver: Solver,
        sampler: Callable[[GaussianMeasurementLikelihood], PosteriorDraws],
        settings: WorkflowSettings = None,
    ):
        self.problem = problem
        self.locations = locations
        self.measurements = measurements
        self.approximate_solver = approximate_solver
        self.reference_solver = reference_solver
        self.sampler = sampler
        self.settings = settings if settings is not None else WorkflowSettings()

    def likelihood(self, solver: Solver) -> GaussianMeasurementLikelihood:
        return GaussianMeasurementLikelihood(
            self.problem, solver, self.locations, self.measurements
        )

    def run(self) -> WorkflowResult:
        settings = self.settings
        reference = self.likelihood(self.reference_solver)
        solver = self.approximate_solver
        steps = []

        for level in range(settings.max_refinements + 1):
            self._log("fitting with", solver.describe(), "blue")
            approximate = self.likelihood(solver)
            draws = self.sampler(approximate)
            correction = self._correct(draws, approximate, reference)
            accepted = self._acceptable(correction)
            steps.append(RefinementStep(level, solver, correction, accepted))
            if settings.verbose:
                correction.diagnostic.report()

            if accepted:
                self._log("accepted", solver.describe(), "green")
                return WorkflowResult(
                    WorkflowOutcome.CORRECTED,
                    correction.posterior,
                    solver,
                    steps,
                )
            if level == settings.max_refinements or not hasattr(
                solver, "refine"
            ):
                break
            solver = solver.refine(settings.refinement_factor)

        if settings.fallback_to_reference:
            self._log(
                "falling back to", self.reference_solver.describe(), "red"
            )
            draws = self.sampler(reference)
            return WorkflowResult(
                WorkflowOutcome.REFERENCE,
                WeightedSample(draws.flat()),
                self.reference_solver,
                steps,
            )

        self._log("no reliable correction for", solver.describe(), "red")
        return WorkflowResult(
            WorkflowOutcome.UNRESOLVED,
            steps[-1].correction.posterior,
            solver,
            steps,
        )

    def _correct(
        self,
        draws: PosteriorDraws,
        approximate: GaussianMeasurementLikelihood,
        reference: GaussianMeasurementLikelihood,
    ) -> CorrectionResult:
        return importance_correction(
            draws,
            approximate,
            reference,
            threshold=self.settings.k_threshold,
            use_relative_efficiency=self.settings.use_relative_efficiency,
        )

    def _acceptable(self, correction: CorrectionResult) -> bool:
        diagnostic = correction.diagnostic
        return diagnostic.reliable and diagnostic.ess >= self.settings.min_ess

    def _log(self, message: str, solver_name: str, colour: str) -> None:
        if self.settings.verbose:
            print(colored(message, colour), solver_name)
