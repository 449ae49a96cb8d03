"""
Tests for ISAK technical error of measurement (TEM) reliability checks.
"""

import unittest

from measurement_quality import (
    needs_third_measurement,
    overall_reliability,
    site_category,
    site_reliability,
    technical_error,
)


class TestTechnicalError(unittest.TestCase):
    def test_identical_takes(self):
        self.assertEqual(technical_error([10.0, 10.0]), 0.0)

    def test_duplicate_takes(self):
        self.assertAlmostEqual(technical_error([10.0, 11.0]), 0.5**0.5)

    def test_triplicate_uses_all_pairs(self):
        # Pair differences 1, 2, 1 -> sqrt(6 / 6)
        self.assertAlmostEqual(technical_error([10.0, 11.0, 12.0]), 1.0)

    def test_single_take(self):
        self.assertEqual(technical_error([10.0]), 0.0)


class TestSiteReliability(unittest.TestCase):
    def test_skinfold_ratings(self):
        self.assertEqual(site_reliability([20.0, 20.2], "triceps").rating, "excellent")
        self.assertEqual(site_reliability([20.0, 20.8], "triceps").rating, "acceptable")
        poor = site_reliability([10.0, 11.0, 12.0], "triceps")
        self.assertEqual(poor.rating, "poor")
        self.assertTrue(poor.needs_remeasurement)
        self.assertEqual(poor.mean, 11.0)
        self.assertAlmostEqual(poor.tem_pct, 9.09, places=2)

    def test_girths_use_tighter_limits(self):
        self.assertEqual(site_reliability([80.0, 80.4], "waist").rating, "excellent")
        self.assertEqual(site_reliability([80.0, 81.0], "waist").rating, "acceptable")
        self.assertEqual(site_reliability([80.0, 82.0], "waist").rating, "poor")

    def test_single_take_cannot_be_assessed(self):
        result = site_reliability([12.0], "thigh")
        self.assertEqual(result.rating, "poor")
        self.assertEqual(result.tem, 0.0)
        self.assertEqual(result.mean, 12.0)

    def test_unknown_site_judged_as_skinfold(self):
        self.assertEqual(site_category("forearm_fold"), "skinfolds")
        self.assertEqual(site_category("humerus"), "breadths")


class TestThirdMeasurement(unittest.TestCase):
    def test_isak_rule(self):
        self.assertFalse(needs_third_measurement(10.0, 10.4, "triceps"))
        self.assertTrue(needs_third_measurement(10.0, 11.0, "triceps"))
        self.assertTrue(needs_third_measurement(80.0, 81.0, "waist"))
        self.assertFalse(needs_third_measurement(0.0, 0.0, "waist"))


class TestOverallReliability(unittest.TestCase):
    def test_all_excellent(self):
        overall = overall_reliability({"triceps": [20.0, 20.2], "waist": [80.0, 80.4]})
        self.assertEqual(overall.rating, "excellent")
        self.assertTrue(overall.meets_isak_standard)
        self.assertEqual(len(overall.to_dataframe()), 2)

    def test_majority_acceptable(self):
        overall = overall_reliability(
            {
                "triceps": [20.0, 20.8],
                "subscapular": [20.0, 20.8],
                "waist": [80.0, 80.4],
            }
        )
        self.assertEqual(overall.rating, "acceptable")

    def test_minority_acceptable_stays_excellent(self):
        overall = overall_reliability(
            {
                "triceps": [20.0, 20.8],
                "subscapular": [20.0, 20.2],
                "waist": [80.0, 80.4],
            }
        )
        self.assertEqual(overall.rating, "excellent")

    def test_any_poor_site(self):
        overall = overall_reliability(
            {"triceps": [10.0, 12.0], "waist": [80.0, 80.4]}
        )
        self.assertEqual(overall.rating, "poor")
        self.assertFalse(overall.meets_isak_standard)
        df = overall.to_dataframe()
        self.assertEqual(df[df["needs_remeasurement"]]["site"].tolist(), ["triceps"])

    def test_empty_session(self):
        overall = overall_reliability({})
        self.assertEqual(overall.mean_tem, 0.0)
        self.assertEqual(overall.rating, "excellent")


if __name__ == "__main__":
    unittest.main()
