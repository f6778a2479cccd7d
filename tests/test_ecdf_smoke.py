import unittest


class TestKSTrackerSmoke(unittest.TestCase):
    def setUp(self) -> None:
        try:
            import numpy as np
            from scipy.stats import ks_2samp
        except Exception:
            self.skipTest("numpy/scipy not installed")
        self.np = np
        self.ks_2samp = ks_2samp

    def test_incremental_statistic_matches_direct(self) -> None:
        np = self.np
        from geoaoa.validation.ecdf import KSTracker, ks_statistic

        rng = np.random.default_rng(0)
        held = np.round(rng.uniform(0, 1, size=40), 3)
        ref = np.round(rng.uniform(0, 2, size=60), 3)
        larger = np.round(held + rng.uniform(0, 1, size=40), 3)
        tracker = KSTracker(held, ref, support=larger)

        self.assertAlmostEqual(tracker.statistic(), ks_statistic(held, ref), places=12)
        self.assertAlmostEqual(tracker.statistic(), float(self.ks_2samp(held, ref).statistic), places=12)

        current = held.copy()
        for j in range(0, 40, 3):
            predicted = tracker.statistic_if_replaced(current[j], larger[j])
            after = tracker.replace(current[j], larger[j])
            current[j] = larger[j]
            self.assertAlmostEqual(predicted, after, places=12)
            self.assertAlmostEqual(after, ks_statistic(current, ref), places=12)

    def test_query_does_not_mutate(self) -> None:
        np = self.np
        from geoaoa.validation.ecdf import KSTracker

        tracker = KSTracker(np.array([0.1, 0.2]), np.array([0.5, 0.6]), support=[0.55])
        before = tracker.statistic()
        tracker.statistic_if_replaced(0.1, 0.55)
        self.assertEqual(tracker.statistic(), before)
        with self.assertRaises(ValueError):
            tracker.statistic_if_replaced(0.1, 0.33)


if __name__ == "__main__":
    unittest.main()
