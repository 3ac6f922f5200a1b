from __future__ import annotations

import unittest

import config
from trading import sizing


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


class SizingPolicyTests(ConfigPatchMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(
            WALLET_FRACTION_CAP=0.10,
            CUSTOM_MIN_FIAT_AMOUNT=0.01,
            RISK_PRESET_BANDS={"safe": (0.10, 1.0), "medium": (5.0, 50.0), "aggressive": (100.0, 500.0)},
        )

    def test_preset_midpoint_when_band_fits_under_cap(self) -> None:
        self.assertAlmostEqual(sizing.size("safe", 0, 1000.0), 0.55)
        self.assertAlmostEqual(sizing.size("medium", 0, 1000.0), 27.5)
        self.assertAlmostEqual(sizing.size("aggressive", 0, 10_000.0), 300.0)

    def test_preset_max_is_clipped_to_cap(self) -> None:
        # cap = 20 -> midpoint of [5, 20]
        self.assertAlmostEqual(sizing.size("medium", 0, 200.0), 12.5)

    def test_preset_min_above_cap_returns_cap(self) -> None:
        self.assertAlmostEqual(sizing.size("aggressive", 0, 500.0), 50.0)
        self.assertAlmostEqual(sizing.size("safe", 0, 0.5), 0.05)

    def test_custom_amount_is_clamped(self) -> None:
        self.assertAlmostEqual(sizing.size("custom", 3.0, 1000.0), 3.0)
        self.assertAlmostEqual(sizing.size("custom", 0.001, 1000.0), 0.01)
        self.assertAlmostEqual(sizing.size("custom", 500.0, 1000.0), 100.0)

    def test_custom_non_positive_amount_sizes_to_zero(self) -> None:
        self.assertEqual(sizing.size("custom", 0, 1000.0), 0.0)
        self.assertEqual(sizing.size("custom", -5, 1000.0), 0.0)

    def test_empty_or_negative_wallet_sizes_to_zero(self) -> None:
        for mode in ("safe", "medium", "aggressive", "custom"):
            self.assertEqual(sizing.size(mode, 5.0, 0.0), 0.0)
            self.assertEqual(sizing.size(mode, 5.0, -10.0), 0.0)

    def test_unknown_mode_falls_back_to_safe(self) -> None:
        self.assertAlmostEqual(sizing.size("yolo", 0, 1000.0), sizing.size("safe", 0, 1000.0))

    def test_size_never_exceeds_wallet_fraction(self) -> None:
        for valuation in (0.0, 0.01, 0.3, 1.0, 7.5, 49.9, 120.0, 999.0, 5000.0, 1e6):
            for mode in ("safe", "medium", "aggressive", "custom", "unknown"):
                for custom in (-1.0, 0.0, 0.005, 1.0, 75.0, 1e9, float("nan"), float("inf"), float("-inf")):
                    self.assertLessEqual(sizing.size(mode, custom, valuation), valuation * 0.10 + 1e-12)

    def test_non_finite_inputs_size_to_zero(self) -> None:
        self.assertEqual(sizing.size("custom", float("nan"), 100.0), 0.0)
        self.assertEqual(sizing.size("custom", float("inf"), 100.0), 0.0)
        self.assertEqual(sizing.size("safe", 0, float("nan")), 0.0)
        self.assertEqual(sizing.size("medium", 0, float("inf")), 0.0)

    def test_same_inputs_give_same_size(self) -> None:
        self.assertEqual(sizing.size("medium", 0, 321.0), sizing.size("medium", 0, 321.0))


if __name__ == "__main__":
    unittest.main()
