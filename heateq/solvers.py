import torch
import math
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass

from heateq.problem import DiffusionProblem, as_diffusivity

"""
This module contains the forward solvers for the diffusion problem.

The cheap approximation is the method of lines: the second derivative in
space is replaced with the central difference on a uniform grid, reducing the
PDE to a system of ODEs which is then stepped in time with forward Euler.
The reference solver uses the separation-of-variables (Fourier sine series)
solution, which for our purposes plays the part of the expensive, exact
computation.

All solvers work on a batch of diffusivities at once, so the per-draw
evaluations needed for importance sampling cost a single solve.
"""


class StabilityError(Exception):
    def __init__(self, stability_number: float):
        self.stability_number = stability_number
        super().__init__(
            "Forward Euler is unstable: r = K dt / dx^2 = {:.4f} > 0.5".format(
                stability_number
            )
        )


@dataclass
class Profile:
    """
    The solution u(x, T) on a grid, for a batch of diffusivities.

    positions shape: [points]
    values shape: [batch, points]
    """

    positions: torch.Tensor
    values: torch.Tensor
    time: float

    def interpolate(self, locations: torch.Tensor) -> torch.Tensor:
        """
        Piecewise-linear interpolation of each profile at the given
        locations.

        Return shape: [batch, len(locations)]
        """
        positions = self.positions
        idx = torch.searchsorted(positions, locations, right=True) - 1
        idx = torch.clamp(idx, 0, len(positions) - 2)
        left = positions[idx]
        weights = (locations - left) / (positions[idx + 1] - left)
        return (
            self.values[:, idx] * (1 - weights)
            + self.values[:, idx + 1] * weights
        )


class Solver(ABC):
    """
    Interface for a forward solver of the diffusion problem.
    """

    @abstractmethod
    def solve(self, problem: DiffusionProblem, diffusivity) -> Profile:
        """
        Solves the problem up to the final time for each of the given
        diffusivities.
        """
        pass

    def predict(
        self, problem: DiffusionProblem, diffusivity, locations: torch.Tensor
    ) -> torch.Tensor:
        """
        Returns u(x_j, T) at the given locations.

        Return shape: [batch, len(locations)]
        """
        locations = problem.check_locations(locations)
        return self.solve(problem, diffusivity).interpolate(locations)

    def describe(self) -> str:
        return type(self).__name__


class ForwardEulerSolver(Solver):
    def __init__(
        self, space_steps: int = 10, time_steps: int = 20, strict: bool = True
    ):
        """
        Parameters:
            space_steps: the number of grid intervals in [0, L]
            time_steps:  the number of forward Euler steps in [0, T]
            strict:      if True, an unstable solve raises StabilityError;
                         otherwise the unstable rows of the batch are NaN.
        """
        if space_steps < 2:
            raise ValueError("At least two space steps are required.")
        if time_steps < 1:
            raise ValueError("At least one time step is required.")
        self.space_steps = space_steps
        self.time_steps = time_steps
        self.strict = strict

    def grid(self, problem: DiffusionProblem) -> torch.Tensor:
        return torch.linspace(
            0, problem.length, self.space_steps + 1, dtype=torch.double
        )

    def stability_number(
        self, problem: DiffusionProblem, diffusivity
    ) -> torch.Tensor:
        """
        r = K dt / dx^2; the explicit scheme is stable iff r <= 1/2.
        """
        diffusivity = as_diffusivity(diffusivity)
        dt = problem.final_time / self.time_steps
        dx = problem.length / self.space_steps
        return diffusivity * dt / dx**2

    def solve(self, problem: DiffusionProblem, diffusivity) -> Profile:
        diffusivity = as_diffusivity(diffusivity)
        rates = self.stability_number(problem, diffusivity)
        unstable = rates > 0.5
        if unstable.any():
            if self.strict:
                raise StabilityError(rates.max().item())
            warnings.warn(
                "{} of {} diffusivities are unstable for {} and are "
                "returned as NaN.".format(
                    int(unstable.sum()), len(diffusivity), self.describe()
                ),
                RuntimeWarning,
            )

        positions = self.grid(problem)
        initial = problem.initial_condition(positions).to(torch.double)
        u = initial.expand(len(diffusivity), -1).clone()
        u[:, 0] = problem.left_boundary
        u[:, -1] = problem.right_boundary

        rates = rates.unsqueeze(1)
        for _ in range(self.time_steps):
            u[:, 1:-1] = u[:, 1:-1] + rates * (
                u[:, 2:] - 2 * u[:, 1:-1] + u[:, :-2]
            )

        u[unstable] = math.nan
        return Profile(positions, u, problem.final_time)

    def refine(self, factor: int = 2) -> "ForwardEulerSolver":
        """
        Returns a finer solver. The time steps are scaled by factor^2 so
        that the stability number is unchanged (diffusive scaling).
        """
        if factor < 2:
            raise ValueError("The refinement factor must be at least 2.")
        return ForwardEulerSolver(
            self.space_steps * factor,
            self.time_steps * factor**2,
            self.strict,
        )

    def describe(self) -> str:
        return "ForwardEuler(nx={}, nt={})".format(
            self.space_steps, self.time_steps
        )


class FourierSeriesSolver(Solver):
    def __init__(self, modes: int = 200, quadrature_points: int = 4001):
        """
        Parameters:
            modes:             the number of sine modes kept in the series
            quadrature_points: the trapezoid grid used for the sine
                               coefficients of the initial condition
        """
        if modes < 1:
            raise ValueError("At least one mode is required.")
        if quadrature_points < 3:
            raise ValueError("At least three quadrature points are required.")
        self.modes = modes
        self.quadrature_points = quadrature_points
        self._cached_problem = None
        self._cached_coefficients = None

    def wavenumbers(self, problem: DiffusionProblem) -> torch.Tensor:
        k = torch.arange(1, self.modes + 1, dtype=torch.double)
        return k * math.pi / problem.length

    def coefficients(self, problem: DiffusionProblem) -> torch.Tensor:
        """
        Sine coefficients b_k = (2/L) ∫ (f(x) - s(x)) sin(kπx/L) dx of the
        initial condition minus the steady state s.

        Return shape: [modes]
        """
        if problem is self._cached_problem:
            return self._cached_coefficients
        x = torch.linspace(
            0, problem.length, self.quadrature_points, dtype=torch.double
        )
        transient = problem.initial_condition(x).to(
            torch.double
        ) - problem.steady_state(x)
        sines = torch.sin(torch.outer(self.wavenumbers(problem), x))
        coefficients = (2 / problem.length) * torch.trapezoid(
            transient * sines, x, dim=1
        )
        self._cached_problem = problem
        self._cached_coefficients = coefficients
        return coefficients

    def predict(
        self, problem: DiffusionProblem, diffusivity, locations: torch.Tensor
    ) -> torch.Tensor:
        diffusivity = as_diffusivity(diffusivity)
        locations = problem.check_locations(locations)
        wavenumbers = self.wavenumbers(problem)
        decay = torch.exp(
            -torch.outer(diffusivity, wavenumbers**2) * problem.final_time
        )
        amplitudes = decay * self.coefficients(problem)  # [batch, modes]
        basis = torch.sin(torch.outer(wavenumbers, locations))
        return problem.steady_state(locations) + amplitudes @ basis

    def solve(self, problem: DiffusionProblem, diffusivity) -> Profile:
        positions = torch.linspace(
            0, problem.length, self.quadrature_points, dtype=torch.double
        )
        values = self.predict(problem, diffusivity, positions)
        return Profile(positions, values, problem.final_time)

    def describe(self) -> str:
        return "FourierSeries(modes={})".format(self.modes)
