import torch
import math
import numpy as np
import arviz as az
import pymc as pm
import pytensor.tensor as pt

from dataclasses import dataclass
from typing import Dict

from pytensor.graph.basic import Apply
from pytensor.graph.op import Op
from termcolor import colored

from approxbayes.likelihood import GaussianMeasurementLikelihood

"""
This module contains the Bayesian model of the inverse problem and the
call-out to PyMC that fits it.

The forward solver is plain PyTorch code, not a PyTensor graph, so it enters
the model as a black-box Op whose output is the log likelihood. There are no
gradients through it, so the posterior is sampled with slice sampling rather
than NUTS.
"""


@dataclass
class PriorParameters:
    """
    K ~ LogNormal(diffusivity_log_mean, diffusivity_log_sd)
    σ ~ HalfNormal(noise_scale)
    """

    diffusivity_log_mean: float = math.log(0.5)
    diffusivity_log_sd: float = 0.5
    noise_scale: float = 0.1


@dataclass
class SamplerSettings:
    draws: int = 1000
    tune: int = 1000
    chains: int = 4
    cores: int = 1
    random_seed: int = 1
    progressbar: bool = False


class SolverLogLikelihood(Op):
    """
    Wraps a likelihood built on an arbitrary solver as a PyTensor Op taking
    (K, σ) to the scalar log likelihood.
    """

    def __init__(self, likelihood: GaussianMeasurementLikelihood):
        self.likelihood = likelihood

    def make_node(self, diffusivity, noise) -> Apply:
        inputs = [
            pt.as_tensor_variable(diffusivity),
            pt.as_tensor_variable(noise),
        ]
        return Apply(self, inputs, [pt.dscalar()])

    def perform(self, node, inputs, output_storage):
        diffusivity, noise = inputs
        output_storage[0][0] = np.asarray(
            self.likelihood(float(diffusivity), float(noise)),
            dtype=np.float64,
        )


def build_model(
    likelihood: GaussianMeasurementLikelihood, prior: PriorParameters
) -> pm.Model:
    with pm.Model() as model:
        diffusivity = pm.LogNormal(
            "diffusivity",
            mu=prior.diffusivity_log_mean,
            sigma=prior.diffusivity_log_sd,
        )
        noise = pm.HalfNormal("noise", sigma=prior.noise_scale)
        pm.Potential(
            "log_likelihood",
            SolverLogLikelihood(likelihood)(diffusivity, noise),
        )
    return model


@dataclass
class PosteriorDraws:
    """
    Posterior draws laid out as [chains, draws], as PyMC stores them.
    """

    diffusivity: torch.Tensor
    noise: torch.Tensor

    @classmethod
    def from_inference_data(cls, trace: az.InferenceData) -> "PosteriorDraws":
        return cls(
            torch.as_tensor(
                np.asarray(trace.posterior["diffusivity"].values),
                dtype=torch.double,
            ),
            torch.as_tensor(
                np.asarray(trace.posterior["noise"].values),
                dtype=torch.double,
            ),
        )

    @property
    def chains(self) -> int:
        return self.diffusivity.shape[0]

    @property
    def sample_size(self) -> int:
        return self.diffusivity.numel()

    def flat(self) -> Dict[str, torch.Tensor]:
        return {
            "diffusivity": self.diffusivity.flatten(),
            "noise": self.noise.flatten(),
        }


class PymcPosteriorSampler:
    def __init__(
        self,
        prior: PriorParameters = None,
        settings: SamplerSettings = None,
        verbose: bool = False,
    ):
        self.prior = prior if prior is not None else PriorParameters()
        self.settings = settings if settings is not None else SamplerSettings()
        self.verbose = verbose
        self.last_trace = None

    def __call__(
        self, likelihood: GaussianMeasurementLikelihood
    ) -> PosteriorDraws:
        """
        Fits the posterior of (K, σ) under the given likelihood and returns
        the draws. The full trace is kept on self.last_trace.
        """
        settings = self.settings
        model = build_model(likelihood, self.prior)
        with model:
            trace = pm.sample(
                settings.draws,
                tune=settings.tune,
                chains=settings.chains,
                cores=settings.cores,
                step=pm.Slice(),
                random_seed=settings.random_seed,
                progressbar=settings.progressbar,
                compute_convergence_checks=False,
            )
        self.last_trace = trace
        if self.verbose:
            print(colored("posterior with", "blue"), likelihood.solver.describe())
            print(az.summary(trace, var_names=["diffusivity", "noise"]))
        return PosteriorDraws.from_inference_data(trace)
