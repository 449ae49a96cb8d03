"""
Tests for energy expenditure, protein dosing and nutrition targets.

Expected values are hand-calculated from the published equations.
"""

import unittest

from energy_planning import (
    adjusted_body_weight,
    apply_calorie_preset,
    carbohydrate_targets,
    compute_energy_expenditure,
    fao_who,
    henry,
    hydration_requirement,
    ideal_body_weight,
    pediatric_eer,
    protein_target_weight,
    recommend_calorie_preset,
    round_half_up,
    sarcopenia_safe_protein,
)
from shared_models import (
    ActivityLevel,
    BMRFormula,
    CaloriePreset,
    EnergyExpenditureParams,
    PediatricFormula,
    ProteinBasis,
    Sex,
)


def params(**kwargs):
    defaults = {
        "weight_kg": 80.0,
        "stature_cm": 175.0,
        "age_years": 30,
        "sex": Sex.MALE,
        "activity_level": "moderate",
        "formula": "mifflin",
    }
    defaults.update(kwargs)
    return EnergyExpenditureParams(**defaults)


class TestAdultEnergyExpenditure(unittest.TestCase):
    def test_mifflin_with_tef(self):
        result = compute_energy_expenditure(params())
        # BMR = 800 + 1093.75 - 150 + 5 = 1748.75
        self.assertEqual(result.formula, "Mifflin-St Jeor")
        self.assertEqual(result.bmr_kcal, 1749)
        self.assertEqual(result.activity_factor, 1.55)
        self.assertEqual(result.tef_kcal, 271)
        self.assertEqual(result.tdee_kcal, 2982)
        self.assertEqual(result.substitutions, [])

    def test_without_tef(self):
        result = compute_energy_expenditure(params(include_tef=False))
        self.assertEqual(result.tef_kcal, 0)
        self.assertEqual(result.tdee_kcal, 2711)

    def test_harris_benedict_female(self):
        result = compute_energy_expenditure(
            params(
                weight_kg=60,
                stature_cm=165,
                age_years=40,
                sex="female",
                activity_level="sedentary",
                formula=BMRFormula.HARRIS,
            )
        )
        # BMR = 447.593 + 554.82 + 511.17 - 173.2 = 1340.383
        self.assertEqual(result.formula, "Harris-Benedict")
        self.assertEqual(result.bmr_kcal, 1340)
        self.assertEqual(result.tdee_kcal, 1769)

    def test_fat_free_mass_formulas(self):
        katch = compute_energy_expenditure(params(formula="katch", fat_pct=20))
        self.assertEqual(katch.formula, "Katch-McArdle")
        self.assertEqual(katch.bmr_kcal, 1752)
        cunningham = compute_energy_expenditure(params(formula="cunningham", fat_pct=20))
        self.assertEqual(cunningham.formula, "Cunningham")
        self.assertEqual(cunningham.bmr_kcal, 1908)

    def test_katch_without_fat_falls_back_to_mifflin(self):
        with self.assertLogs("energy_planning", level="WARNING"):
            result = compute_energy_expenditure(params(formula="katch"))
        self.assertEqual(result.formula, "Mifflin-St Jeor (fallback)")
        self.assertEqual(result.bmr_kcal, 1749)
        self.assertTrue(result.substitutions)

    def test_banded_adult_formulas(self):
        self.assertEqual(compute_energy_expenditure(params(formula="fao")).formula, "FAO/OMS")
        result = compute_energy_expenditure(params(formula="henry", age_years=35))
        self.assertEqual(result.formula, "Henry (2005)")
        self.assertEqual(result.bmr_kcal, 1729)

    def test_unknown_selectors_are_substituted(self):
        result = compute_energy_expenditure(
            params(activity_level="couch", formula="magic")
        )
        self.assertEqual(result.activity_factor, 1.55)
        self.assertEqual(result.formula, "Mifflin-St Jeor")
        self.assertEqual(len(result.substitutions), 2)

    def test_spanish_activity_aliases(self):
        self.assertEqual(
            compute_energy_expenditure(params(activity_level="sedentaria")).activity_factor,
            1.2,
        )
        self.assertEqual(
            compute_energy_expenditure(params(activity_level="muy_activa")).activity_factor,
            1.9,
        )
        self.assertEqual(
            compute_energy_expenditure(params(activity_level="Intensa")).activity_factor,
            1.9,
        )

    def test_missing_inputs_use_defaults(self):
        result = compute_energy_expenditure(
            params(weight_kg=None, stature_cm=None, age_years=None)
        )
        # 70 kg, 170 cm, 25 years: 700 + 1062.5 - 125 + 5
        self.assertEqual(result.bmr_kcal, 1643)
        self.assertEqual(len(result.substitutions), 3)


class TestPediatricEnergyExpenditure(unittest.TestCase):
    def test_iom_reference_boy(self):
        result = compute_energy_expenditure(
            params(weight_kg=35, stature_cm=140, age_years=10, formula="iom")
        )
        self.assertEqual(result.formula, "IOM 2005")
        self.assertEqual(result.tdee_kcal, 2260)
        self.assertEqual(result.tef_kcal, 0)
        self.assertEqual(result.bmr_kcal, 1883)
        self.assertEqual(result.activity_factor, 1.26)
        self.assertEqual(result.substitutions, [])

    def test_adult_formula_maps_to_iom(self):
        result = compute_energy_expenditure(
            params(weight_kg=40, stature_cm=150, age_years=12, formula="mifflin")
        )
        self.assertEqual(result.formula, "IOM 2005")
        self.assertEqual(len(result.substitutions), 1)

    def test_fao_request_is_honoured(self):
        result = compute_energy_expenditure(
            params(weight_kg=40, stature_cm=150, age_years=12, formula="fao")
        )
        # 17.5 * 40 + 651 = 1351; x 1.55
        self.assertEqual(result.formula, "FAO/OMS (Schofield)")
        self.assertEqual(result.bmr_kcal, 1351)
        self.assertEqual(result.tdee_kcal, 2094)

    def test_iom_activity_mapping(self):
        active = pediatric_eer(10, 35, 140, "male", ActivityLevel.ACTIVE)
        moderate = pediatric_eer(10, 35, 140, "male", ActivityLevel.MODERATE)
        self.assertEqual(active["eer"], moderate["eer"])
        ultra = pediatric_eer(10, 35, 140, "female", ActivityLevel.ULTRA)
        self.assertEqual(ultra["activity_factor"], 1.56)

    def test_henry_girl(self):
        result = pediatric_eer(12, 40, 150, Sex.FEMALE, ActivityLevel.SEDENTARY, PediatricFormula.HENRY)
        self.assertEqual(result["bmr"], 1234)
        self.assertEqual(result["eer"], round_half_up(1234 * 1.2))

    def test_age_bands(self):
        self.assertAlmostEqual(fao_who(20, 5, "male"), 22.7 * 20 + 495)
        self.assertAlmostEqual(fao_who(60, 65, "female"), 10.5 * 60 + 596)
        self.assertAlmostEqual(henry(2, 2, "female"), 58.3 * 2 - 31.1)


class TestWeightBasis(unittest.TestCase):
    def test_devine_ideal_weight(self):
        self.assertAlmostEqual(ideal_body_weight(175, "male"), 50 + 2.3 * (175 / 2.54 - 60))
        self.assertAlmostEqual(
            ideal_body_weight(175, "female"), 45.5 + 2.3 * (175 / 2.54 - 60)
        )
        self.assertEqual(ideal_body_weight(150, "male"), 50.0)

    def test_adjusted_weight(self):
        self.assertEqual(adjusted_body_weight(100, 70), 77.5)
        self.assertEqual(adjusted_body_weight(60, 70), 60)

    def test_total_basis_obesity_advisory(self):
        target = protein_target_weight(110, 175, "male", "total")
        self.assertEqual(target.weight_kg, 110)
        self.assertIsNotNone(target.warning)
        athlete = protein_target_weight(110, 175, "male", "total", is_athlete=True)
        self.assertIsNone(athlete.warning)
        self.assertEqual(athlete.label, "Total weight (athlete)")

    def test_ideal_and_adjusted_bases(self):
        self.assertEqual(protein_target_weight(110, 175, "male", "ideal").weight_kg, 70.5)
        self.assertEqual(protein_target_weight(110, 175, "male", "adjusted").weight_kg, 80.3)

    def test_lean_basis(self):
        lean = protein_target_weight(90, 175, "male", "lean", lean_mass_kg=68.24)
        self.assertEqual(lean.weight_kg, 68.2)
        self.assertEqual(lean.basis, ProteinBasis.LEAN)
        fallback = protein_target_weight(90, 175, "male", ProteinBasis.LEAN)
        self.assertEqual(fallback.basis, ProteinBasis.ADJUSTED)
        self.assertIsNotNone(fallback.warning)

    def test_missing_stature_never_raises(self):
        for stature in (0, None, "abc", float("nan")):
            ideal = protein_target_weight(70, stature, "male", "ideal")
            self.assertEqual(ideal.weight_kg, 70.0)
            self.assertEqual(ideal.basis, ProteinBasis.TOTAL)
            self.assertIsNotNone(ideal.warning)
        total = protein_target_weight(70, 0, "male", "total")
        self.assertEqual(total.weight_kg, 70.0)
        self.assertIsNone(total.warning)
        lean = protein_target_weight(70, None, "male", "lean", lean_mass_kg=55.0)
        self.assertEqual(lean.weight_kg, 55.0)

    def test_missing_weight_gives_unavailable_target(self):
        target = protein_target_weight(None, 175, "male", "adjusted")
        self.assertEqual(target.weight_kg, 0.0)
        self.assertIsNotNone(target.warning)


class TestProteinRange(unittest.TestCase):
    def test_geriatric_floor_is_critical(self):
        protein = sarcopenia_safe_protein(65, 70, "sedentary")
        self.assertEqual(protein.min_g, 78)
        self.assertEqual(protein.max_g, 98)
        self.assertTrue(protein.is_critical)
        self.assertIsNotNone(protein.warning)

    def test_active_geriatric(self):
        self.assertEqual(sarcopenia_safe_protein(70, 75, "sedentary").min_g, 84)
        self.assertEqual(sarcopenia_safe_protein(70, 75, "active").min_g, 105)

    def test_ultra_geriatric_gets_active_band(self):
        elite = sarcopenia_safe_protein(70, 70, "elite")
        ultra = sarcopenia_safe_protein(70, 70, "ultra")
        self.assertEqual((ultra.min_g, ultra.max_g), (105, 126))
        self.assertEqual((ultra.min_g, ultra.max_g), (elite.min_g, elite.max_g))

    def test_unknown_activity_uses_moderate(self):
        with self.assertLogs("energy_planning", level="WARNING"):
            protein = sarcopenia_safe_protein(70, 40, "bogus")
        self.assertEqual((protein.min_g, protein.max_g), (84, 105))
        self.assertIn("moderate", protein.substitution)
        self.assertIsNone(sarcopenia_safe_protein(70, 40, "active").substitution)

    def test_adult_bands(self):
        self.assertEqual((sarcopenia_safe_protein(80, 30, "sedentary").min_g,), (64,))
        moderate = sarcopenia_safe_protein(80, 30, "moderate")
        self.assertEqual((moderate.min_g, moderate.max_g), (96, 120))
        active = sarcopenia_safe_protein(80, 30, "active")
        self.assertEqual((active.min_g, active.max_g), (128, 160))
        ultra = sarcopenia_safe_protein(80, 30, "ultra")
        self.assertEqual((ultra.min_g, ultra.max_g), (160, 200))
        self.assertFalse(ultra.is_critical)


class TestTargets(unittest.TestCase):
    def test_calorie_presets(self):
        target = apply_calorie_preset(2500, "moderate_deficit")
        self.assertEqual(target.adjustment_kcal, -500)
        self.assertEqual(target.target_kcal, 2000)
        self.assertEqual(target.preset, CaloriePreset.MODERATE_DEFICIT)
        self.assertEqual(apply_calorie_preset(2500, CaloriePreset.MILD_SURPLUS).target_kcal, 2750)

    def test_unknown_preset_is_maintenance(self):
        with self.assertLogs("energy_planning", level="WARNING"):
            target = apply_calorie_preset(2200, "starve")
        self.assertEqual(target.target_kcal, 2200)
        self.assertEqual(target.preset, CaloriePreset.MAINTENANCE)

    def test_recommend_preset(self):
        self.assertEqual(recommend_calorie_preset(36, "lose"), CaloriePreset.MODERATE_DEFICIT)
        self.assertEqual(recommend_calorie_preset(28, "perder"), CaloriePreset.MILD_DEFICIT)
        self.assertEqual(recommend_calorie_preset(22, "gain"), CaloriePreset.MILD_SURPLUS)
        self.assertEqual(recommend_calorie_preset(22, "maintain"), CaloriePreset.MAINTENANCE)

    def test_carbohydrate_bands(self):
        self.assertEqual(carbohydrate_targets(70, "sedentary")["min_g"], 210)
        moderate = carbohydrate_targets(70, "moderate")
        self.assertEqual((moderate["min_g"], moderate["max_g"]), (280, 420))
        elite = carbohydrate_targets(70, "elite")
        self.assertEqual((elite["min_g"], elite["max_g"]), (560, 840))

    def test_unknown_activity_carbohydrate_uses_moderate(self):
        with self.assertLogs("energy_planning", level="WARNING"):
            carbs = carbohydrate_targets(70, "bogus")
        self.assertEqual((carbs["min_g"], carbs["max_g"]), (280, 420))
        self.assertEqual(carbs["label"], "Moderate training")
        self.assertIsNotNone(carbs["substitution"])
        self.assertIsNone(carbohydrate_targets(70, "moderate")["substitution"])

    def test_hydration_by_life_stage(self):
        self.assertEqual(hydration_requirement(8, 2)["ml"], 800)
        self.assertEqual(hydration_requirement(15, 5)["ml"], 1250)
        self.assertEqual(hydration_requirement(30, 10)["ml"], 1700)
        self.assertEqual(hydration_requirement(40, 70)["ml"], 1500)
        self.assertEqual(hydration_requirement(60, 70)["ml"], 1800)
        self.assertEqual(hydration_requirement(70, 35)["ml"], 2450)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(-745.75), -746)


if __name__ == "__main__":
    unittest.main()
