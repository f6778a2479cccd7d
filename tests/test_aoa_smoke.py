import tempfile
import unittest
from pathlib import Path


def _collinear_train(np):
    pts = [[float(i), float(i)] for i in range(5)] + [[float(i), float(i)] for i in range(10, 15)]
    return np.array(pts)


class TestAOASmoke(unittest.TestCase):
    def setUp(self) -> None:
        try:
            import numpy as np
            import pandas as pd
            import scipy  # noqa: F401
        except Exception:
            self.skipTest("numpy/pandas/scipy not installed")
        self.np = np
        self.pd = pd

    def test_boxplot_threshold(self) -> None:
        from geoaoa.aoa.estimator import boxplot_threshold
        from geoaoa.errors import ConfigError

        values = [0.2, 0.3, 0.3, 0.4, 1.0]
        self.assertAlmostEqual(boxplot_threshold(values), 0.55)
        self.assertAlmostEqual(boxplot_threshold(values, rule="max_within"), 0.4)
        with self.assertRaises(ConfigError):
            boxplot_threshold(values, rule="p95")

    def test_gap_between_clusters(self) -> None:
        np = self.np
        from geoaoa.aoa.estimator import estimate_aoa

        train = _collinear_train(np)
        result = estimate_aoa(train, np.array([[7.0, 7.0], [2.0, 2.0]]), variables=["a", "b"])
        self.assertAlmostEqual(float(result.di[0]), 3.0, places=9)
        self.assertAlmostEqual(float(result.di[1]), 0.0, places=9)
        self.assertEqual(int(result.aoa[0]), 0)
        self.assertEqual(int(result.aoa[1]), 1)
        self.assertEqual(int(result.aoa_at(0.0)[1]), 1)
        # Every LOO neighbour sits one step away.
        self.assertTrue(np.allclose(result.train_di, 1.0))

    def test_scale_invariance_and_monotone_threshold(self) -> None:
        np = self.np
        from geoaoa.aoa.estimator import estimate_aoa

        rng = np.random.default_rng(3)
        train = rng.normal(size=(60, 3))
        pred = rng.normal(scale=2.0, size=(200, 3))
        base = estimate_aoa(train, pred)
        scale = np.array([1000.0, 0.01, 7.0])
        scaled = estimate_aoa(train * scale, pred * scale)
        self.assertTrue(np.allclose(base.di, scaled.di))
        self.assertAlmostEqual(base.threshold, scaled.threshold)

        prev = base.aoa_at(0.0)
        for t in (0.5, 1.0, 2.0, 5.0):
            cur = base.aoa_at(t)
            self.assertTrue((cur >= prev).all())
            prev = cur

    def test_spatial_folds_raise_held_out_di(self) -> None:
        np = self.np
        from geoaoa.aoa.estimator import AOAEstimator
        from geoaoa.config import NNDMConfig
        from geoaoa.validation.nndm import nndm_folds

        rng = np.random.default_rng(5)
        coords = rng.uniform(0, 100, size=(40, 2))
        features = np.column_stack([coords[:, 0] * 0.1, np.sin(coords[:, 1] / 20.0)])
        folds = nndm_folds(coords, config=NNDMConfig(phi=1000.0))

        loo = AOAEstimator().fit(features)
        nndm = AOAEstimator().fit(features, folds=folds)
        self.assertTrue((nndm.train_di >= loo.train_di - 1e-12).all())
        self.assertAlmostEqual(nndm.mean_loo_distance, loo.mean_loo_distance)

    def test_raster_prediction_with_nodata(self) -> None:
        np = self.np
        from geoaoa.aoa.estimator import AOAEstimator
        from geoaoa.features.normalize import PredictorSpace

        rng = np.random.default_rng(1)
        train = PredictorSpace(variables=("elev", "temp"), values=rng.normal(size=(30, 2)))
        stack = rng.normal(size=(3, 4, 2))
        stack[1, 2, 0] = np.nan
        # Band order of the raster differs from the training order.
        raster = PredictorSpace.from_raster(stack[:, :, ::-1], variables=["temp", "elev"])

        result = AOAEstimator().fit(train).predict(raster)
        self.assertEqual(result.di.shape, (3, 4))
        self.assertEqual(result.aoa.shape, (3, 4))
        self.assertTrue(np.isnan(result.di[1, 2]))
        self.assertEqual(int(result.aoa[1, 2]), 0)
        self.assertEqual(result.meta["n_missing"], 1)
        self.assertEqual(result.meta["n_locations"], 12)

    def test_save_load_and_domain_mismatch(self) -> None:
        np = self.np
        pd = self.pd
        from geoaoa.aoa.estimator import AOAEstimator, AOAResult
        from geoaoa.errors import DomainMismatchError

        rng = np.random.default_rng(2)
        train = pd.DataFrame(rng.normal(size=(25, 2)), columns=["a", "b"])
        est = AOAEstimator().fit(train)
        result = est.predict(pd.DataFrame(rng.normal(size=(10, 2)), columns=["b", "a"]))

        with tempfile.TemporaryDirectory() as td:
            p = result.save(Path(td) / "aoa.npz")
            back = AOAResult.load(p)
        self.assertTrue(np.allclose(back.di, result.di))
        self.assertTrue((back.aoa == result.aoa).all())
        self.assertAlmostEqual(back.threshold, result.threshold)
        self.assertEqual(back.normalizer["variables"], ["a", "b"])
        self.assertEqual(back.meta["variables"], ["a", "b"])

        with self.assertRaises(DomainMismatchError):
            est.predict(pd.DataFrame({"a": [0.0]}))

    def test_weights_from_model_importance(self) -> None:
        np = self.np
        try:
            from sklearn.linear_model import LinearRegression
        except Exception:
            self.skipTest("scikit-learn not installed")
        from geoaoa.aoa.estimator import AOAEstimator
        from geoaoa.errors import ConfigError
        from geoaoa.model.base import SklearnModel

        rng = np.random.default_rng(4)
        x = rng.normal(size=(50, 2))
        y = 3.0 * x[:, 0] - 0.5 * x[:, 1]
        model = SklearnModel(LinearRegression()).fit(x, y)

        est = AOAEstimator().fit(x, variables=["a", "b"], model=model)
        self.assertTrue(np.allclose(est.normalizer.weights_, [3.0, 0.5]))

        explicit = AOAEstimator().fit(x, variables=["a", "b"], model=model, weights={"a": 1.0, "b": 1.0})
        self.assertTrue(np.allclose(explicit.normalizer.weights_, [1.0, 1.0]))

        with self.assertRaises(ConfigError):
            AOAEstimator().fit(x, weights=[1.0, 2.0, 3.0])


if __name__ == "__main__":
    unittest.main()
