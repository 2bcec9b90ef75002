import torch
import math
import unittest

from approxbayes.correction import importance_correction
from approxbayes.likelihood import GaussianMeasurementLikelihood
from heateq.solvers import ForwardEulerSolver, FourierSeriesSolver
from pareto_is.diagnostics import ParetoKCategory
from approxbayes.test.fixtures import GaussianDrawSampler, small_problem


class TestImportanceCorrection(unittest.TestCase):
    def setUp(self):
        self.problem, self.locations, self.measurements = small_problem()
        self.reference = GaussianMeasurementLikelihood(
            self.problem,
            FourierSeriesSolver(modes=100),
            self.locations,
            self.measurements,
        )
        self.approximate = GaussianMeasurementLikelihood(
            self.problem,
            ForwardEulerSolver(space_steps=10, time_steps=20),
            self.locations,
            self.measurements,
        )
        self.sampler = GaussianDrawSampler()

    def test_exact_approximation_needs_no_correction(self):
        draws = self.sampler(self.reference)
        correction = importance_correction(draws, self.reference, self.reference)
        self.assertTrue(torch.all(correction.log_ratios == 0))
        self.assertEqual(correction.diagnostic.pareto_k, -math.inf)
        self.assertEqual(correction.diagnostic.category, ParetoKCategory.GOOD)
        self.assertAlmostEqual(
            correction.posterior.mean("diffusivity"),
            draws.diffusivity.mean().item(),
        )

    def test_correction_shapes(self):
        draws = self.sampler(self.approximate)
        correction = importance_correction(
            draws, self.approximate, self.reference
        )
        size = draws.sample_size
        self.assertEqual(correction.log_ratios.shape, torch.Size([size]))
        self.assertEqual(correction.smoothed.log_weights.shape, torch.Size([size]))
        self.assertAlmostEqual(correction.posterior.weights.sum().item(), 1.0)
        self.assertTrue(torch.isfinite(correction.log_ratios).all())
        self.assertEqual(correction.diagnostic.sample_size, size)

    def test_ratios_are_likelihood_differences(self):
        draws = self.sampler(self.approximate)
        correction = importance_correction(
            draws, self.approximate, self.reference
        )
        self.assertTrue(
            torch.allclose(
                correction.log_ratios,
                correction.reference_log_likelihood
                - correction.approximate_log_likelihood,
            )
        )

    def test_without_relative_efficiency(self):
        draws = self.sampler(self.approximate)
        correction = importance_correction(
            draws,
            self.approximate,
            self.reference,
            threshold=0.5,
            use_relative_efficiency=False,
        )
        self.assertEqual(correction.relative_efficiency, 1.0)
        self.assertEqual(correction.diagnostic.threshold, 0.5)


if __name__ == "__main__":
    unittest.main()
