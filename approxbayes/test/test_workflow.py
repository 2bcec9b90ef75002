import unittest
from unittest import mock

from approxbayes.workflow import (
    AdaptiveApproximationWorkflow,
    WorkflowOutcome,
    WorkflowSettings,
)
from heateq.solvers import ForwardEulerSolver, FourierSeriesSolver
from approxbayes.test.fixtures import (
    GaussianDrawSampler,
    canned_correction,
    small_problem,
)


class TestAdaptiveApproximationWorkflow(unittest.TestCase):
    def setUp(self):
        self.problem, self.locations, self.measurements = small_problem()
        self.reference_solver = FourierSeriesSolver(modes=100)
        self.coarse_solver = ForwardEulerSolver(space_steps=10, time_steps=20)
        self.sampler = GaussianDrawSampler()

    def workflow(self, approximate_solver, **settings):
        settings.setdefault("verbose", False)
        return AdaptiveApproximationWorkflow(
            self.problem,
            self.locations,
            self.measurements,
            approximate_solver,
            self.reference_solver,
            self.sampler,
            WorkflowSettings(**settings),
        )

    def test_exact_approximation_is_accepted_immediately(self):
        result = self.workflow(self.reference_solver).run()
        self.assertEqual(result.outcome, WorkflowOutcome.CORRECTED)
        self.assertEqual(len(self.sampler.solvers), 1)
        history = result.history()
        self.assertEqual(len(history), 1)
        self.assertTrue(history["accepted"].iloc[0])

    def test_refines_until_reliable(self):
        corrections = [canned_correction(0.9), canned_correction(0.65), canned_correction(0.3)]
        workflow = self.workflow(self.coarse_solver)
        with mock.patch.object(
            AdaptiveApproximationWorkflow, "_correct", side_effect=corrections
        ):
            result = workflow.run()
        self.assertEqual(result.outcome, WorkflowOutcome.CORRECTED)
        self.assertEqual(result.solver.space_steps, 40)
        self.assertEqual(result.solver.time_steps, 320)
        self.assertIs(result.posterior, corrections[2].posterior)
        self.assertEqual(
            list(result.history()["category"]),
            ["BAD", "NEEDS_MORE_DRAWS", "GOOD"],
        )

    def test_coarse_grid_is_rejected_and_refined_grid_accepted(self):
        # with small noise, a 5 cell grid is far outside the noise level
        self.sampler = GaussianDrawSampler(noise_scale=0.005)
        coarse = ForwardEulerSolver(space_steps=5, time_steps=10)
        result = self.workflow(coarse, max_refinements=3).run()
        history = result.history()
        self.assertFalse(history["accepted"].iloc[0])
        self.assertIn(history["category"].iloc[0], ["BAD", "VERY_BAD"])
        self.assertTrue(history["accepted"].iloc[-1])
        self.assertGreater(len(history), 1)
        self.assertEqual(result.outcome, WorkflowOutcome.CORRECTED)
        self.assertGreater(result.solver.space_steps, 5)
        self.assertLess(
            history["pareto_k"].iloc[-1], history["pareto_k"].iloc[0]
        )

    def test_falls_back_to_reference(self):
        workflow = self.workflow(self.coarse_solver, max_refinements=2)
        with mock.patch.object(
            AdaptiveApproximationWorkflow,
            "_correct",
            return_value=canned_correction(1.2),
        ):
            result = workflow.run()
        self.assertEqual(result.outcome, WorkflowOutcome.REFERENCE)
        self.assertIs(result.solver, self.reference_solver)
        self.assertEqual(len(result.steps), 3)
        self.assertEqual(len(self.sampler.solvers), 4)
        self.assertIs(self.sampler.solvers[-1], self.reference_solver)
        self.assertAlmostEqual(result.posterior.ess(), 1000)

    def test_unresolved_without_fallback(self):
        workflow = self.workflow(
            self.coarse_solver, max_refinements=1, fallback_to_reference=False
        )
        with mock.patch.object(
            AdaptiveApproximationWorkflow,
            "_correct",
            return_value=canned_correction(0.8),
        ):
            result = workflow.run()
        self.assertEqual(result.outcome, WorkflowOutcome.UNRESOLVED)
        self.assertEqual(result.solver.space_steps, 20)
        self.assertEqual(len(self.sampler.solvers), 2)

    def test_small_ess_is_not_accepted(self):
        workflow = self.workflow(
            self.coarse_solver, max_refinements=0, min_ess=500.0
        )
        with mock.patch.object(
            AdaptiveApproximationWorkflow,
            "_correct",
            return_value=canned_correction(0.2, ess=50.0),
        ):
            result = workflow.run()
        self.assertEqual(result.outcome, WorkflowOutcome.REFERENCE)
        self.assertFalse(result.history()["accepted"].iloc[0])

    def test_solver_without_refinement(self):
        workflow = self.workflow(FourierSeriesSolver(modes=5))
        with mock.patch.object(
            AdaptiveApproximationWorkflow,
            "_correct",
            return_value=canned_correction(0.9),
        ):
            result = workflow.run()
        self.assertEqual(result.outcome, WorkflowOutcome.REFERENCE)
        self.assertEqual(len(result.steps), 1)

    def test_verbose_run_prints_progress(self):
        workflow = self.workflow(self.reference_solver, verbose=True)
        with mock.patch("builtins.print") as printed:
            workflow.run()
        self.assertTrue(printed.called)


if __name__ == "__main__":
    unittest.main()
