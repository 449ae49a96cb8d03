"""
Tests for skinfold density equations and the Siri body fat conversion.
"""

import unittest

from core import (
    FITNESS_MALE_REVIEW_NOTE,
    build_measurement_record,
    compute_all_density_formulas,
    compute_composition,
    estimate_body_density,
    required_skinfolds,
    siri_body_fat,
)
from shared_models import DensityProfile, Sex


def make_record(sex="male", skinfolds=None, weight_kg=80.0, stature_cm=175.0, age=30):
    return build_measurement_record(
        {
            "weight_kg": weight_kg,
            "stature_cm": stature_cm,
            "age_years": age,
            "skinfolds": skinfolds or {},
        },
        sex,
    )


class TestDensityEquations(unittest.TestCase):
    """Each profile selects the published equation for the patient's sex."""

    def test_general_male_wilmore_behnke(self):
        record = make_record(skinfolds={"abdominal": 20, "thigh": 15})
        result = estimate_body_density(record, "general")
        self.assertEqual(result.formula, "Wilmore & Behnke (1969)")
        # 1.08543 - 0.000886 * 20 - 0.00040 * 15
        self.assertAlmostEqual(result.density, 1.06171, places=6)
        self.assertTrue(result.is_valid)
        self.assertAlmostEqual(siri_body_fat(result.density), 16.23, places=2)

    def test_degenerate_density_is_reported(self):
        record = make_record(skinfolds={"abdominal": 300, "thigh": 300})
        with self.assertLogs("core", level="WARNING"):
            result = estimate_body_density(record, "general")
        self.assertLess(result.density, 0.9)
        self.assertIn("plausible range", result.diagnostic)
        self.assertEqual(siri_body_fat(result.density), 60.0)

    def test_zero_replicate_take_is_ignored(self):
        record = make_record(skinfolds={"abdominal": [20, 0], "thigh": 15})
        result = estimate_body_density(record, "general")
        self.assertAlmostEqual(result.density, 1.06171, places=6)
        self.assertIsNone(result.diagnostic)

    def test_general_female_wilmore_behnke(self):
        record = make_record(
            sex="female", skinfolds={"subscapular": 15, "triceps": 20, "thigh": 25}
        )
        result = estimate_body_density(record, DensityProfile.GENERAL)
        self.assertEqual(result.formula, "Wilmore & Behnke (1970)")
        self.assertAlmostEqual(result.density, 1.03809, places=6)

    def test_other_sex_uses_female_equation(self):
        record = make_record(
            sex=Sex.OTHER, skinfolds={"subscapular": 15, "triceps": 20, "thigh": 25}
        )
        result = estimate_body_density(record, "general")
        self.assertEqual(result.formula, "Wilmore & Behnke (1970)")

    def test_control_male_durnin_womersley(self):
        record = make_record(
            skinfolds={"triceps": 10, "biceps": 10, "subscapular": 10, "iliac_crest": 10}
        )
        result = estimate_body_density(record, "control")
        self.assertEqual(result.formula, "Durnin & Womersley (1974)")
        self.assertAlmostEqual(result.density, 1.057307, places=5)

    def test_rapid_female_sloan(self):
        record = make_record(sex="f", skinfolds={"iliac_crest": 10, "triceps": 10})
        result = estimate_body_density(record, "rapid")
        self.assertEqual(result.formula, "Sloan (1962)")
        self.assertAlmostEqual(result.density, 1.0764 - 0.0081 - 0.0088, places=6)

    def test_fitness_male_coefficient_is_flagged(self):
        record = make_record(
            skinfolds={"triceps": 10, "subscapular": 10, "abdominal": 10}
        )
        with self.assertLogs("core", level="WARNING"):
            result = estimate_body_density(record, "fitness")
        self.assertEqual(result.formula, "Katch & McArdle (1973)")
        self.assertAlmostEqual(
            result.density, 1.09655 - 0.0103 - 0.0056 + 0.0054, places=6
        )
        self.assertEqual(result.diagnostic, FITNESS_MALE_REVIEW_NOTE)

    def test_density_is_deterministic(self):
        record = make_record(skinfolds={"abdominal": 20, "thigh": 15})
        first = estimate_body_density(record, "general")
        second = estimate_body_density(record, "general")
        self.assertEqual(first, second)


class TestMissingData(unittest.TestCase):
    """Missing sites and unknown profiles never raise."""

    def test_missing_thigh_names_the_site(self):
        record = make_record(skinfolds={"abdominal": 20})
        result = estimate_body_density(record, "general")
        self.assertEqual(result.density, 0.0)
        self.assertEqual(result.missing_sites, ["thigh"])
        self.assertIn("thigh", result.diagnostic)
        self.assertFalse(result.is_valid)

    def test_zero_or_negative_site_counts_as_missing(self):
        record = make_record(skinfolds={"abdominal": 0, "thigh": -4})
        result = estimate_body_density(record, "general")
        self.assertEqual(result.density, 0.0)
        self.assertEqual(result.missing_sites, ["abdominal", "thigh"])

    def test_unknown_profile_returns_sentinel(self):
        record = make_record(skinfolds={"abdominal": 20, "thigh": 15})
        result = estimate_body_density(record, "bodybuilder")
        self.assertEqual(result.density, 0.0)
        self.assertEqual(result.formula, "Unknown profile")
        self.assertIn("bodybuilder", result.diagnostic)

    def test_composition_with_missing_site_has_zero_fat(self):
        record = make_record(skinfolds={"abdominal": 20})
        composition = compute_composition(record, "general")
        self.assertEqual(composition.body_fat_pct, 0.0)
        self.assertEqual(composition.fat_mass_kg, 0.0)
        self.assertTrue(any("thigh" in d for d in composition.diagnostics))


class TestRequiredSkinfolds(unittest.TestCase):
    def test_required_sites_by_profile_and_sex(self):
        self.assertEqual(required_skinfolds("general", "male"), ["abdominal", "thigh"])
        self.assertEqual(
            required_skinfolds("athlete", "female"),
            ["triceps", "subscapular", "supraspinale", "calf"],
        )
        self.assertEqual(len(required_skinfolds("athlete", "male")), 7)

    def test_unknown_profile_has_no_sites(self):
        self.assertEqual(required_skinfolds("unknown", "male"), [])


class TestSiriConversion(unittest.TestCase):
    def test_fat_percentage_is_clamped(self):
        self.assertEqual(siri_body_fat(1.2), 3.0)
        self.assertEqual(siri_body_fat(0.9), 60.0)

    def test_non_positive_density_gives_zero(self):
        self.assertEqual(siri_body_fat(0.0), 0.0)
        self.assertEqual(siri_body_fat(-1.0), 0.0)
        self.assertEqual(siri_body_fat(float("nan")), 0.0)

    def test_valid_density_within_bounds(self):
        for density in (1.00, 1.03, 1.05, 1.08):
            fat = siri_body_fat(density)
            self.assertGreaterEqual(fat, 3.0)
            self.assertLessEqual(fat, 60.0)


class TestAllFormulas(unittest.TestCase):
    def test_one_row_per_profile(self):
        record = make_record(skinfolds={"abdominal": 20, "thigh": 15, "subscapular": 12})
        df = compute_all_density_formulas(record)
        self.assertEqual(len(df), len(DensityProfile))
        general = df[df["profile"] == "general"].iloc[0]
        self.assertAlmostEqual(general["density"], 1.06171, places=6)
        rapid = df[df["profile"] == "rapid"].iloc[0]
        self.assertEqual(rapid["missing_sites"], "")
        control = df[df["profile"] == "control"].iloc[0]
        self.assertEqual(control["density"], 0.0)
        self.assertIn("triceps", control["missing_sites"])


if __name__ == "__main__":
    unittest.main()
