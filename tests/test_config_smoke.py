import json
import tempfile
import unittest
from pathlib import Path


class TestConfigSmoke(unittest.TestCase):
    def setUp(self) -> None:
        try:
            import numpy as np
        except Exception:
            self.skipTest("numpy not installed")
        self.np = np

    def test_json_sections(self) -> None:
        from geoaoa.config import AOAConfig, CalibrationConfig, NNDMConfig, load_config

        doc = {
            "nndm": {"phi": 250.0, "min_train": 0.6},
            "aoa": {"threshold_rule": "max_within"},
            "calibration": {"ks": [2, 4], "schemes": ["cluster"], "method": "window"},
        }
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "run.json"
            p.write_text(json.dumps(doc), encoding="utf-8")
            cfg = load_config(p)

        nndm = NNDMConfig.from_dict(cfg["nndm"])
        self.assertEqual(nndm.phi, 250.0)
        self.assertEqual(nndm.max_exclusions, 1)
        self.assertEqual(AOAConfig.from_dict(cfg["aoa"]).threshold_rule, "max_within")
        cal = CalibrationConfig.from_dict(cfg["calibration"])
        self.assertEqual(cal.ks, (2, 4))
        self.assertEqual(cal.schemes, ("cluster",))
        self.assertEqual(AOAConfig.from_dict(None), AOAConfig())

    def test_invalid_values(self) -> None:
        from geoaoa.config import AOAConfig, CalibrationConfig, NNDMConfig, load_config
        from geoaoa.errors import ConfigError

        with self.assertRaises(ConfigError):
            NNDMConfig.from_dict({"phii": 1.0})
        with self.assertRaises(ConfigError):
            NNDMConfig(min_train=1.0)
        with self.assertRaises(ConfigError):
            NNDMConfig(phi=0.0)
        with self.assertRaises(ConfigError):
            AOAConfig(chunk_size=0)
        with self.assertRaises(ConfigError):
            CalibrationConfig(ks=(1, 5))
        with self.assertRaises(ConfigError):
            CalibrationConfig(schemes=("random", "nndm"))
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "run.toml"
            p.write_text("x = 1\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(p)

    def test_make_rng(self) -> None:
        np = self.np
        from geoaoa.config import make_rng

        gen = np.random.default_rng(3)
        self.assertIs(make_rng(gen), gen)
        self.assertEqual(make_rng(5).integers(0, 1000), make_rng(5).integers(0, 1000))

    def test_yaml(self) -> None:
        try:
            import yaml  # noqa: F401
        except Exception:
            self.skipTest("PyYAML not installed")
        from geoaoa.config import NNDMConfig, load_config

        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "run.yaml"
            p.write_text("nndm:\n  max_exclusions: 2\n  n_domain_samples: 500\n", encoding="utf-8")
            cfg = load_config(p)
        nndm = NNDMConfig.from_dict(cfg["nndm"])
        self.assertEqual(nndm.max_exclusions, 2)
        self.assertEqual(nndm.n_domain_samples, 500)


if __name__ == "__main__":
    unittest.main()
