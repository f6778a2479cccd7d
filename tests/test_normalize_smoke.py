import unittest


class TestNormalizeSmoke(unittest.TestCase):
    def setUp(self) -> None:
        try:
            import numpy as np
            import pandas as pd
        except Exception:
            self.skipTest("numpy/pandas not installed")
        self.np = np
        self.pd = pd

    def test_standardize_and_weight(self) -> None:
        np = self.np
        from geoaoa.features.normalize import FeatureNormalizer

        x = np.array([[1.0, 10.0], [2.0, 20.0], [3.0, 30.0]])
        norm = FeatureNormalizer().fit(x, variables=["a", "b"], weights=[2.0, -1.0])
        z = norm.transform(x)
        self.assertTrue(np.allclose(z[:, 0], [-2.0, 0.0, 2.0]))
        # Negative importance is clipped to zero.
        self.assertTrue(np.allclose(z[:, 1], 0.0))

        again = FeatureNormalizer.from_dict(norm.to_dict())
        self.assertTrue(np.allclose(again.transform(x), z))

    def test_errors_name_the_offender(self) -> None:
        np = self.np
        pd = self.pd
        from geoaoa.errors import ConfigError, DataError, DomainMismatchError
        from geoaoa.features.normalize import FeatureNormalizer, PredictorSpace

        x = np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]])
        with self.assertRaises(DataError) as ctx:
            FeatureNormalizer().fit(x, variables=["elev", "flat"])
        self.assertIn("flat", str(ctx.exception))

        ok = np.array([[1.0, 5.0], [2.0, 6.0], [3.0, 8.0]])
        with self.assertRaises(ConfigError):
            FeatureNormalizer().fit(ok, variables=["a", "b"], weights=[1.0, 2.0, 3.0])

        norm = FeatureNormalizer().fit(ok, variables=["a", "b"])
        with self.assertRaises(DomainMismatchError) as ctx2:
            norm.transform(pd.DataFrame({"a": [1.0]}))
        self.assertIn("b", str(ctx2.exception))
        with self.assertRaises(ConfigError):
            norm.transform(np.zeros((2, 3)))
        with self.assertRaises(ConfigError):
            PredictorSpace(variables=("a",), values=np.zeros((2, 2)))

    def test_predictor_space_raster_roundtrip(self) -> None:
        np = self.np
        from geoaoa.features.normalize import PredictorSpace

        stack = np.arange(24, dtype=float).reshape(3, 4, 2)
        space = PredictorSpace.from_raster(stack, variables=["b1", "b2"])
        self.assertEqual(space.n, 12)
        picked = space.select(["b2", "b1"])
        self.assertTrue(np.array_equal(picked.values[:, 0], stack[:, :, 1].reshape(-1)))
        self.assertEqual(picked.fold_back(np.arange(12)).shape, (3, 4))


if __name__ == "__main__":
    unittest.main()
