import tempfile
import unittest
from pathlib import Path


class TestFoldsSmoke(unittest.TestCase):
    def setUp(self) -> None:
        try:
            import numpy as np
            import sklearn  # noqa: F401
        except Exception:
            self.skipTest("numpy/scikit-learn not installed")
        self.np = np

    def _assert_partition(self, folds) -> None:
        np = self.np
        tests = np.concatenate([f.test for f in folds])
        self.assertEqual(sorted(tests.tolist()), list(range(folds.n_points)))
        for f in folds:
            self.assertEqual(np.intersect1d(f.train, f.test).size, 0)

    def test_schemes_partition_every_point_once(self) -> None:
        np = self.np
        from geoaoa.validation.folds import leave_cluster_out, leave_one_out, make_folds, random_kfold

        coords = np.random.default_rng(0).uniform(0, 100, size=(37, 2))
        for folds in (
            random_kfold(37, k=5, rng=0),
            leave_cluster_out(coords, k=4, rng=0),
            leave_one_out(37),
            make_folds("labels", labels=[i % 3 for i in range(37)]),
        ):
            self._assert_partition(folds)
        self.assertEqual(len(random_kfold(37, k=5, rng=0)), 5)

        a = random_kfold(37, k=5, rng=3).test_labels()
        b = random_kfold(37, k=5, rng=3).test_labels()
        self.assertTrue(np.array_equal(a, b))

    def test_invalid_structures_are_rejected(self) -> None:
        from geoaoa.errors import ConfigError, DataError, InsufficientDataError
        from geoaoa.validation.folds import Fold, FoldSet, make_folds, random_kfold

        with self.assertRaises(DataError):
            FoldSet(folds=(Fold(train=[1, 2], test=[0]), Fold(train=[0], test=[1])), n_points=3)
        with self.assertRaises(DataError):
            FoldSet(folds=(Fold(train=[1], test=[0, 1]), Fold(train=[0], test=[1])), n_points=2)
        with self.assertRaises(InsufficientDataError):
            random_kfold(3, k=5)
        with self.assertRaises(ConfigError):
            make_folds("spiral", n=10)

    def test_save_load(self) -> None:
        from geoaoa.validation.folds import FoldSet, random_kfold

        folds = random_kfold(12, k=3, rng=1)
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "folds.json"
            folds.save(p)
            again = FoldSet.load(p)
        self.assertEqual(again.meta["scheme"], "random_kfold")
        self.assertEqual([f.test.tolist() for f in again], [f.test.tolist() for f in folds])

    def test_scheme_meta_is_set_at_construction(self) -> None:
        np = self.np
        from geoaoa.validation.folds import FoldSet, folds_from_labels, leave_cluster_out, random_kfold

        kf = random_kfold(20, k=4, rng=0)
        self.assertEqual(kf.meta["scheme"], "random_kfold")
        self.assertEqual(kf.meta["k"], 4)
        lco = leave_cluster_out(np.random.default_rng(1).uniform(0, 10, size=(20, 2)), k=3, rng=0)
        self.assertEqual(lco.meta["k"], 3)
        self.assertIn("kmeans_seed", lco.meta)

        extra = {"source": "plots"}
        labelled = folds_from_labels([0, 0, 1, 1, 2], meta=extra)
        extra["source"] = "changed"
        self.assertEqual(labelled.meta["source"], "plots")
        self.assertEqual(labelled.meta["n_groups"], 3)

        meta = {"scheme": "custom"}
        fs = FoldSet(folds=tuple(labelled.folds), n_points=5, meta=meta)
        meta["scheme"] = "changed"
        self.assertEqual(fs.meta["scheme"], "custom")


if __name__ == "__main__":
    unittest.main()
