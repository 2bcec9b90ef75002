import torch
import math

from heateq.problem import (
    DiffusionProblem,
    as_diffusivity,
    measurement_distribution,
)
from heateq.solvers import Solver, StabilityError


class GaussianMeasurementLikelihood:
    def __init__(
        self,
        problem: DiffusionProblem,
        solver: Solver,
        locations: torch.Tensor,
        measurements: torch.Tensor,
    ):
        """
        The log likelihood of the measurements under the model

            y_j = u(x_j, T; K) + ε_j,   ε_j ~ N(0, σ^2),

        where u is computed with the given solver. Any solver can be used,
        so the same class serves for the cheap approximation and for the
        reference computation.

        Parameters:
            problem:      the diffusion problem (everything except K)
            solver:       the forward solver used for u
            locations:    the measurement locations x_j
            measurements: the observed values y_j
        """
        self.problem = problem
        self.solver = solver
        self.locations = problem.check_locations(locations)
        self.measurements = torch.as_tensor(
            measurements, dtype=torch.double
        ).flatten()
        if self.measurements.shape != self.locations.shape:
            raise ValueError(
                "There must be one measurement per location."
            )

    def evaluate(self, diffusivity, noise) -> torch.Tensor:
        """
        Evaluates log p(y | K, σ) for a batch of parameter values.

        Draws for which the solver is unstable get log likelihood -inf.

        Return shape: [batch]
        """
        diffusivity = as_diffusivity(diffusivity)
        noise = torch.as_tensor(noise, dtype=torch.double).flatten()
        if noise.shape[0] == 1:
            noise = noise.expand(diffusivity.shape[0])
        if noise.shape != diffusivity.shape:
            raise ValueError("Diffusivity and noise batches must match.")
        if (noise <= 0).any():
            raise ValueError("The measurement noise must be positive.")

        try:
            predictions = self.solver.predict(
                self.problem, diffusivity, self.locations
            )
        except StabilityError:
            if diffusivity.shape[0] == 1:
                return torch.tensor([-math.inf], dtype=torch.double)
            return torch.cat(
                [
                    self.evaluate(k.unsqueeze(0), sigma.unsqueeze(0))
                    for k, sigma in zip(diffusivity, noise)
                ]
            )

        log_likelihood = (
            measurement_distribution(predictions, noise)
            .log_prob(self.measurements)
            .sum(dim=1)
        )
        return torch.nan_to_num(
            log_likelihood, nan=-math.inf, posinf=-math.inf, neginf=-math.inf
        )

    def __call__(self, diffusivity: float, noise: float) -> float:
        return self.evaluate(diffusivity, noise)[0].item()
