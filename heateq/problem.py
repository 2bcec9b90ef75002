import torch
import torch.distributions as D
import math
from dataclasses import dataclass, field
from typing import Callable

"""
This module contains the description of the one-dimensional diffusion
problem used throughout the case study:

        u_t = K u_xx,   0 < x < L, 0 < t <= T
        u(0, t) = a,    u(L, t) = b
        u(x, 0) = f(x)

The diffusivity K is the unknown of the inverse problem; everything else is
treated as known. Observations are noisy point evaluations of u(x, T).
"""


def gaussian_bump(
    centre: float = 0.3, width: float = 0.05, height: float = 1.0
) -> Callable[[torch.Tensor], torch.Tensor]:
    """
    Returns an initial condition f(x) = h exp(-(x - c)^2 / (2 w^2)).

    Narrow bumps carry a lot of high-frequency content, which is what makes
    coarse finite-difference grids inaccurate.
    """

    def initial_condition(x: torch.Tensor) -> torch.Tensor:
        return height * torch.exp(-((x - centre) ** 2) / (2 * width**2))

    return initial_condition


def sine_mode(
    mode: int = 1, length: float = 1.0, amplitude: float = 1.0
) -> Callable[[torch.Tensor], torch.Tensor]:
    """
    Returns the initial condition f(x) = A sin(mπx/L), for which the solution
    with zero boundaries is known in closed form.
    """

    def initial_condition(x: torch.Tensor) -> torch.Tensor:
        return amplitude * torch.sin(mode * math.pi * x / length)

    return initial_condition


@dataclass
class DiffusionProblem:
    length: float = 1.0
    final_time: float = 0.1
    initial_condition: Callable[[torch.Tensor], torch.Tensor] = field(
        default_factory=gaussian_bump
    )
    left_boundary: float = 0.0
    right_boundary: float = 0.0

    def __post_init__(self):
        if self.length <= 0:
            raise ValueError("The domain length must be positive.")
        if self.final_time <= 0:
            raise ValueError("The final time must be positive.")

    def steady_state(self, x: torch.Tensor) -> torch.Tensor:
        """
        The t -> ∞ limit of the solution: the linear profile joining the two
        boundary values.
        """
        return self.left_boundary + (
            self.right_boundary - self.left_boundary
        ) * (x / self.length)

    def check_locations(self, locations: torch.Tensor) -> torch.Tensor:
        """
        Validates that the given locations lie in [0, L] and returns them as
        a 1-d double tensor.
        """
        locations = torch.as_tensor(locations, dtype=torch.double).flatten()
        if (locations < 0).any() or (locations > self.length).any():
            raise ValueError(
                "Measurement locations must lie inside [0, {}].".format(
                    self.length
                )
            )
        return locations


def interior_locations(problem: DiffusionProblem, count: int) -> torch.Tensor:
    """
    Returns `count` equispaced locations strictly inside the domain.
    """
    if count < 1:
        raise ValueError("At least one measurement location is required.")
    return torch.linspace(0, problem.length, count + 2, dtype=torch.double)[
        1:-1
    ]


def as_diffusivity(diffusivity) -> torch.Tensor:
    """
    Converts a scalar or 1-d collection of diffusivities to a 1-d double
    tensor, checking positivity.
    """
    diffusivity = torch.as_tensor(diffusivity, dtype=torch.double)
    if diffusivity.dim() == 0:
        diffusivity = diffusivity.unsqueeze(0)
    if diffusivity.dim() != 1:
        raise ValueError("Diffusivity must be a scalar or a 1-d tensor.")
    if (diffusivity <= 0).any() or torch.isnan(diffusivity).any():
        raise ValueError("Diffusivity must be positive.")
    return diffusivity


def simulate_measurements(
    problem: DiffusionProblem,
    solver,
    diffusivity: float,
    noise: float,
    locations: torch.Tensor,
    generator: torch.Generator = None,
) -> torch.Tensor:
    """
    Simulates noisy observations y_j = u(x_j, T) + ε_j, ε_j ~ N(0, noise^2),
    using the given solver for u.

    Return shape: [len(locations)]
    """
    if noise <= 0:
        raise ValueError("The measurement noise must be positive.")
    clean = solver.predict(problem, diffusivity, locations)[0]
    epsilon = torch.randn(
        clean.shape, generator=generator, dtype=torch.double
    )
    return clean + noise * epsilon


def measurement_distribution(
    predictions: torch.Tensor, noise: torch.Tensor
) -> D.Normal:
    """
    Returns the Gaussian measurement model N(u, σ^2) for a batch of
    predictions of shape [batch, locations] and noise levels of shape [batch].
    """
    noise = torch.as_tensor(noise, dtype=torch.double)
    if noise.dim() == 0:
        noise = noise.unsqueeze(0)
    return D.Normal(predictions, noise.unsqueeze(1))
