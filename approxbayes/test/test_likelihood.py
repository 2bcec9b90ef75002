import torch
import math
import unittest

import torch.distributions as D

from approxbayes.likelihood import GaussianMeasurementLikelihood
from heateq.solvers import ForwardEulerSolver, FourierSeriesSolver
from approxbayes.test.fixtures import small_problem


class TestGaussianMeasurementLikelihood(unittest.TestCase):
    def setUp(self):
        self.problem, self.locations, self.measurements = small_problem()
        self.reference = GaussianMeasurementLikelihood(
            self.problem,
            FourierSeriesSolver(modes=100),
            self.locations,
            self.measurements,
        )

    def test_matches_direct_computation(self):
        prediction = FourierSeriesSolver(modes=100).predict(
            self.problem, 0.4, self.locations
        )[0]
        expected = D.Normal(prediction, 0.1).log_prob(self.measurements).sum()
        self.assertAlmostEqual(self.reference(0.4, 0.1), expected.item())

    def test_batch_evaluation(self):
        diffusivity = torch.tensor([0.3, 0.5, 0.7], dtype=torch.double)
        noise = torch.tensor([0.05, 0.05, 0.1], dtype=torch.double)
        log_likelihood = self.reference.evaluate(diffusivity, noise)
        self.assertEqual(log_likelihood.shape, torch.Size([3]))
        self.assertAlmostEqual(
            log_likelihood[1].item(), self.reference(0.5, 0.05)
        )

    def test_scalar_noise_broadcasts(self):
        log_likelihood = self.reference.evaluate(
            torch.tensor([0.3, 0.5]), 0.05
        )
        self.assertEqual(log_likelihood.shape, torch.Size([2]))

    def test_true_parameters_are_most_likely(self):
        diffusivity = torch.tensor([0.3, 0.5, 0.7], dtype=torch.double)
        log_likelihood = self.reference.evaluate(diffusivity, 0.05)
        self.assertEqual(torch.argmax(log_likelihood).item(), 1)

    def test_unstable_draws_have_zero_likelihood(self):
        # r = K * 0.25 for this grid, so K = 3 is unstable
        approximate = GaussianMeasurementLikelihood(
            self.problem,
            ForwardEulerSolver(space_steps=10, time_steps=20),
            self.locations,
            self.measurements,
        )
        log_likelihood = approximate.evaluate(
            torch.tensor([0.5, 3.0], dtype=torch.double), 0.05
        )
        self.assertTrue(math.isfinite(log_likelihood[0].item()))
        self.assertEqual(log_likelihood[1].item(), -math.inf)
        self.assertEqual(approximate(3.0, 0.05), -math.inf)

    def test_invalid_inputs(self):
        with self.assertRaises(ValueError):
            GaussianMeasurementLikelihood(
                self.problem,
                FourierSeriesSolver(),
                self.locations,
                self.measurements[:-1],
            )
        with self.assertRaises(ValueError):
            self.reference.evaluate(0.5, -0.1)
        with self.assertRaises(ValueError):
            self.reference.evaluate(
                torch.tensor([0.3, 0.5]), torch.tensor([0.1, 0.1, 0.1])
            )


if __name__ == "__main__":
    unittest.main()
