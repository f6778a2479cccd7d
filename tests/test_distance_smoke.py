import unittest


class TestDistanceSmoke(unittest.TestCase):
    def setUp(self) -> None:
        try:
            import numpy as np
            import scipy  # noqa: F401
        except Exception:
            self.skipTest("numpy/scipy not installed")
        self.np = np

    def test_cross_distance_symmetric_and_non_negative(self) -> None:
        np = self.np
        from geoaoa.spatial.distance import cross_nn_distance

        a = np.array([[0.0, 0.0]])
        b = np.array([[3.0, 4.0]])
        self.assertEqual(float(cross_nn_distance(a, b)[0]), 5.0)
        self.assertEqual(float(cross_nn_distance(b, a)[0]), 5.0)

        rng = np.random.default_rng(0)
        x = rng.normal(size=(50, 3))
        y = rng.normal(size=(40, 3))
        d = cross_nn_distance(x, y)
        self.assertTrue((d >= 0).all())
        brute = np.sqrt(((x[:, None, :] - y[None, :, :]) ** 2).sum(axis=2)).min(axis=1)
        self.assertTrue(np.allclose(d, brute))

    def test_within_distance_excludes_self(self) -> None:
        np = self.np
        from geoaoa.spatial.distance import within_nn_distance

        pts = np.array([[0.0], [1.0], [3.0], [7.0]])
        d = within_nn_distance(pts)
        self.assertEqual(d.tolist(), [1.0, 1.0, 2.0, 4.0])
        self.assertTrue((d > 0).all())

        dup = np.array([[0.0, 0.0], [0.0, 0.0], [5.0, 0.0]])
        self.assertEqual(within_nn_distance(dup).tolist(), [0.0, 0.0, 5.0])

    def test_neighbor_distances_sorted_without_self(self) -> None:
        np = self.np
        from geoaoa.spatial.distance import NearestNeighborIndex

        pts = np.array([[0.0], [1.0], [3.0], [7.0]])
        d, i = NearestNeighborIndex(pts).neighbor_distances(k=2)
        self.assertEqual(d[0].tolist(), [1.0, 3.0])
        self.assertEqual(i[0].tolist(), [1, 2])
        self.assertFalse((i == np.arange(4)[:, None]).any())

    def test_chunked_query_matches_and_keeps_nan_rows(self) -> None:
        np = self.np
        from geoaoa.spatial.distance import NearestNeighborIndex

        rng = np.random.default_rng(1)
        index = NearestNeighborIndex(rng.uniform(size=(30, 2)))
        q = rng.uniform(size=(101, 2))
        q[5] = np.nan
        full = index.query(q, chunk_size=1000)
        chunked, idx = index.query(q, chunk_size=7, return_index=True)
        self.assertTrue(np.isnan(full[5]) and np.isnan(chunked[5]))
        self.assertEqual(int(idx[5]), -1)
        ok = np.isfinite(full)
        self.assertTrue(np.allclose(full[ok], chunked[ok]))

    def test_errors(self) -> None:
        np = self.np
        from geoaoa.errors import ConfigError, DataError, InsufficientDataError
        from geoaoa.spatial.distance import NearestNeighborIndex, within_nn_distance

        with self.assertRaises(DataError):
            NearestNeighborIndex(np.array([[0.0, np.nan], [1.0, 1.0]]))
        with self.assertRaises(InsufficientDataError):
            within_nn_distance(np.array([[0.0, 0.0]]))
        with self.assertRaises(ConfigError):
            NearestNeighborIndex(np.zeros((3, 2))).query(np.zeros((2, 3)))


if __name__ == "__main__":
    unittest.main()
