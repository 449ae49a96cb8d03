"""
Energy Expenditure and Nutrition Target Engine

This module estimates basal and total daily energy expenditure, selects the
weight used for protein dosing and derives the daily protein, carbohydrate,
hydration and calorie targets shown alongside a body-composition evaluation.

Research Foundation:
- Mifflin et al. (1990) and Harris-Benedict (Roza & Shizgal 1984 revision)
- FAO/WHO/UNU (2001) Schofield equations and Henry (2005) Oxford equations
- Katch-McArdle (1975) and Cunningham (1980) fat-free mass equations
- IOM (2005) Dietary Reference Intakes, pediatric EER (ages 3-18)
- PROT-AGE Study Group / ESPEN protein guidance for older adults
- ISSN / ACSM carbohydrate guidance for training loads
- Holliday & Segar (1957) maintenance fluid requirements

Key Behaviour:
- Every selector accepts an enum or a loose string; unknown values fall back
  to a documented default and the substitution is reported, never raised
- Ages 3-18 are routed to the pediatric EER path regardless of the formula
- Outputs in kcal and grams are rounded half-up to whole numbers
"""

import logging
import math
from typing import Dict, Optional

from shared_models import (
    ACTIVITY_FACTORS,
    CALORIE_GOAL_PRESETS,
    PEDIATRIC_PA_COEFFICIENTS,
    TEF_FACTOR,
    ActivityLevel,
    BMRFormula,
    CalorieTarget,
    CaloriePreset,
    EnergyExpenditureParams,
    EnergyExpenditureResult,
    PediatricFormula,
    ProteinBasis,
    ProteinRange,
    ProteinTargetWeight,
    Sex,
)

logger = logging.getLogger(__name__)

# Substituted when a record lacks the value
DEFAULT_WEIGHT_KG = 70.0
DEFAULT_STATURE_CM = 170.0
DEFAULT_AGE_YEARS = 25.0

PEDIATRIC_AGE_RANGE = (3, 18)
GERIATRIC_PROTEIN_AGE = 65
IOM_BMR_DIVISOR = 1.2

# Age-banded (upper age bound, slope, intercept); last band is open-ended
FAO_WHO_BANDS = {
    True: [(3, 60.9, -54), (10, 22.7, 495), (18, 17.5, 651), (30, 15.3, 679), (60, 11.6, 879), (None, 13.5, 487)],
    False: [(3, 61.0, -51), (10, 22.5, 499), (18, 12.2, 746), (30, 14.7, 496), (60, 8.7, 829), (None, 10.5, 596)],
}
HENRY_BANDS = {
    True: [(3, 61.0, -33.7), (10, 23.3, 514), (18, 18.4, 581), (30, 16.0, 545), (60, 14.2, 593), (None, 13.5, 514)],
    False: [(3, 58.3, -31.1), (10, 22.5, 499), (18, 12.2, 746), (30, 10.1, 569), (60, 11.0, 543), (None, 10.9, 514)],
}

FORMULA_NAMES = {
    BMRFormula.MIFFLIN: "Mifflin-St Jeor",
    BMRFormula.HARRIS: "Harris-Benedict",
    BMRFormula.FAO: "FAO/OMS",
    BMRFormula.HENRY: "Henry (2005)",
    BMRFormula.KATCH: "Katch-McArdle",
    BMRFormula.CUNNINGHAM: "Cunningham",
}
PEDIATRIC_FORMULA_NAMES = {
    PediatricFormula.IOM: "IOM 2005",
    PediatricFormula.FAO: "FAO/OMS (Schofield)",
    PediatricFormula.HENRY: "Henry (2005)",
}
MIFFLIN_FALLBACK_NAME = "Mifflin-St Jeor (fallback)"

# ISSN / ACSM daily carbohydrate bands (g/kg)
CARBOHYDRATE_BANDS = {
    ActivityLevel.SEDENTARY: (3, 5, "Base / recreational"),
    ActivityLevel.LIGHT: (3, 5, "Base / recreational"),
    ActivityLevel.MODERATE: (4, 6, "Moderate training"),
    ActivityLevel.ACTIVE: (6, 8, "Intense training (1-3 h)"),
    ActivityLevel.VERY_ACTIVE: (6, 8, "Intense training (1-3 h)"),
    ActivityLevel.ELITE: (8, 12, "Performance / endurance loading"),
    ActivityLevel.ULTRA: (8, 12, "Performance / endurance loading"),
}

SARCOPENIA_WARNING = (
    "Elevated protein requirement (minimum 1.2 g/kg) to prevent sarcopenia "
    "and clinical frailty"
)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 always going up."""
    return int(math.floor(value + 0.5))


def _is_male(sex) -> bool:
    return Sex.parse(sex) == Sex.MALE


def _banded(bands, weight_kg: float, age_years: float) -> float:
    for upper, slope, intercept in bands[:-1]:
        if age_years < upper:
            return slope * weight_kg + intercept
    _, slope, intercept = bands[-1]
    return slope * weight_kg + intercept


# ---------------------------------------------------------------------------
# BASAL METABOLIC RATE EQUATIONS
# ---------------------------------------------------------------------------


def mifflin_st_jeor(weight_kg: float, stature_cm: float, age_years: float, sex) -> float:
    """Mifflin-St Jeor (1990) BMR in kcal/day."""
    base = 10 * weight_kg + 6.25 * stature_cm - 5 * age_years
    return base + 5 if _is_male(sex) else base - 161


def harris_benedict(weight_kg: float, stature_cm: float, age_years: float, sex) -> float:
    """Harris-Benedict BMR, Roza & Shizgal (1984) revision."""
    if _is_male(sex):
        return 88.362 + 13.397 * weight_kg + 4.799 * stature_cm - 5.677 * age_years
    return 447.593 + 9.247 * weight_kg + 3.098 * stature_cm - 4.330 * age_years


def fao_who(weight_kg: float, age_years: float, sex) -> float:
    """FAO/WHO/UNU (Schofield) age-banded BMR."""
    return _banded(FAO_WHO_BANDS[_is_male(sex)], weight_kg, age_years)


def henry(weight_kg: float, age_years: float, sex) -> float:
    """Henry (2005) Oxford age-banded BMR."""
    return _banded(HENRY_BANDS[_is_male(sex)], weight_kg, age_years)


def fat_free_mass(weight_kg: float, fat_pct: float) -> float:
    return weight_kg * (1 - fat_pct / 100)


def katch_mcardle(weight_kg: float, fat_pct: float) -> float:
    """Katch-McArdle BMR = 370 + 21.6 x FFM."""
    return 370 + 21.6 * fat_free_mass(weight_kg, fat_pct)


def cunningham(weight_kg: float, fat_pct: float) -> float:
    """Cunningham BMR = 500 + 22 x FFM."""
    return 500 + 22 * fat_free_mass(weight_kg, fat_pct)


# ---------------------------------------------------------------------------
# PEDIATRIC ESTIMATED ENERGY REQUIREMENT
# ---------------------------------------------------------------------------


def pediatric_pa_key(activity: ActivityLevel) -> str:
    """Map the seven activity bands onto the four IOM PA categories."""
    if activity in (ActivityLevel.SEDENTARY, ActivityLevel.LIGHT):
        return activity.value
    if activity in (ActivityLevel.MODERATE, ActivityLevel.ACTIVE):
        return "moderate"
    return "very_active"


def pediatric_eer(
    age_years: float,
    weight_kg: float,
    stature_cm: float,
    sex,
    activity: ActivityLevel,
    method: PediatricFormula = PediatricFormula.IOM,
) -> Dict[str, float]:
    """
    Estimated Energy Requirement for children and adolescents (3-18 years).

    IOM (2005) already folds growth and the thermic effect of food into the
    EER. FAO/WHO and Henry multiply their age-banded BMR by the adult activity
    factor.

    Args:
        age_years: Age in years
        weight_kg: Body weight
        stature_cm: Stature
        sex: Sex enum or string; anything but male uses the female equation
        activity: Normalised activity level
        method: IOM, FAO or HENRY

    Returns:
        Dict with eer, bmr, activity_factor and formula name
    """
    male = _is_male(sex)

    if method == PediatricFormula.IOM:
        coefficients = PEDIATRIC_PA_COEFFICIENTS[Sex.MALE if male else Sex.FEMALE]
        pa = coefficients[pediatric_pa_key(activity)]
        stature_m = stature_cm / 100
        if male:
            eer = 88.5 - 61.9 * age_years + pa * (26.7 * weight_kg + 903 * stature_m) + 20
        else:
            eer = 135.3 - 30.8 * age_years + pa * (10.0 * weight_kg + 934 * stature_m) + 20
        eer = round_half_up(eer)
        return {
            "eer": eer,
            "bmr": round_half_up(eer / IOM_BMR_DIVISOR),
            "activity_factor": pa,
            "formula": PEDIATRIC_FORMULA_NAMES[method],
        }

    if method == PediatricFormula.FAO:
        bmr = fao_who(weight_kg, age_years, sex)
    else:
        bmr = henry(weight_kg, age_years, sex)
    factor = ACTIVITY_FACTORS[activity]
    return {
        "eer": round_half_up(bmr * factor),
        "bmr": round_half_up(bmr),
        "activity_factor": factor,
        "formula": PEDIATRIC_FORMULA_NAMES[method],
    }


# ---------------------------------------------------------------------------
# TOTAL DAILY ENERGY EXPENDITURE
# ---------------------------------------------------------------------------


def _resolve_activity(activity_level):
    """Parse an activity key, substituting moderate for unknown values."""
    activity = ActivityLevel.parse(activity_level)
    if activity is not None:
        return activity, None
    logger.warning(f"Unknown activity level {activity_level!r}, using moderate")
    return ActivityLevel.MODERATE, f"Unknown activity level {activity_level!r}; using moderate"


def _positive_or_default(value, default: float, label: str, substitutions) -> float:
    if value is None or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        substitutions.append(f"Missing {label}; using default {default:g}")
        return default
    return float(value)


def compute_energy_expenditure(params: EnergyExpenditureParams) -> EnergyExpenditureResult:
    """
    Calculate BMR and TDEE = BMR x activity factor (+ 10% TEF).

    Patients aged 3-18 are routed to the pediatric EER: FAO and Henry requests
    are honoured, any other formula maps to IOM 2005. Katch-McArdle and
    Cunningham need a fat percentage and otherwise fall back to Mifflin-St Jeor.

    Args:
        params: Inputs, with selectors as enums or loose strings

    Returns:
        EnergyExpenditureResult naming the formula that actually ran, with any
        default or fallback listed in ``substitutions``
    """
    substitutions = []

    activity, note = _resolve_activity(params.activity_level)
    if note:
        substitutions.append(note)

    formula = BMRFormula.parse(params.formula)
    if formula is None:
        formula = BMRFormula.MIFFLIN
        substitutions.append(f"Unknown formula {params.formula!r}; using Mifflin-St Jeor")
        logger.warning(f"Unknown BMR formula {params.formula!r}, using Mifflin-St Jeor")

    weight = _positive_or_default(params.weight_kg, DEFAULT_WEIGHT_KG, "weight", substitutions)
    stature = _positive_or_default(params.stature_cm, DEFAULT_STATURE_CM, "stature", substitutions)
    age = _positive_or_default(params.age_years, DEFAULT_AGE_YEARS, "age", substitutions)

    if PEDIATRIC_AGE_RANGE[0] <= age <= PEDIATRIC_AGE_RANGE[1]:
        method = {
            BMRFormula.FAO: PediatricFormula.FAO,
            BMRFormula.HENRY: PediatricFormula.HENRY,
        }.get(formula, PediatricFormula.IOM)
        if method == PediatricFormula.IOM and formula != BMRFormula.IOM:
            substitutions.append(
                f"{formula.value} is not valid for age {age:g}; using IOM 2005"
            )
        result = pediatric_eer(age, weight, stature, params.sex, activity, method)
        logger.info(f"Pediatric EER via {result['formula']}: {result['eer']} kcal")
        return EnergyExpenditureResult(
            bmr_kcal=result["bmr"],
            activity_factor=result["activity_factor"],
            tef_kcal=0,
            tdee_kcal=result["eer"],
            formula=result["formula"],
            substitutions=substitutions,
        )

    fat_pct = params.fat_pct
    has_fat = fat_pct is not None and 0 <= fat_pct <= 100

    if formula in (BMRFormula.KATCH, BMRFormula.CUNNINGHAM) and not has_fat:
        logger.warning(
            f"{FORMULA_NAMES[formula]} needs a body fat percentage; falling back to Mifflin-St Jeor"
        )
        substitutions.append(f"No body fat percentage for {FORMULA_NAMES[formula]}")
        bmr = mifflin_st_jeor(weight, stature, age, params.sex)
        name = MIFFLIN_FALLBACK_NAME
    elif formula == BMRFormula.KATCH:
        bmr, name = katch_mcardle(weight, fat_pct), FORMULA_NAMES[formula]
    elif formula == BMRFormula.CUNNINGHAM:
        bmr, name = cunningham(weight, fat_pct), FORMULA_NAMES[formula]
    elif formula == BMRFormula.HARRIS:
        bmr, name = harris_benedict(weight, stature, age, params.sex), FORMULA_NAMES[formula]
    elif formula == BMRFormula.FAO:
        bmr, name = fao_who(weight, age, params.sex), FORMULA_NAMES[formula]
    elif formula == BMRFormula.HENRY:
        bmr, name = henry(weight, age, params.sex), FORMULA_NAMES[formula]
    else:
        if formula == BMRFormula.IOM:
            substitutions.append("IOM 2005 applies to ages 3-18; using Mifflin-St Jeor")
        bmr = mifflin_st_jeor(weight, stature, age, params.sex)
        name = FORMULA_NAMES[BMRFormula.MIFFLIN]

    factor = ACTIVITY_FACTORS[activity]
    base = bmr * factor
    tef = base * TEF_FACTOR if params.include_tef else 0.0
    logger.info(f"{name}: BMR={bmr:.0f} kcal, factor={factor}, TEF={tef:.0f} kcal")

    return EnergyExpenditureResult(
        bmr_kcal=round_half_up(bmr),
        activity_factor=factor,
        tef_kcal=round_half_up(tef),
        tdee_kcal=round_half_up(base + tef),
        formula=name,
        substitutions=substitutions,
    )


# ---------------------------------------------------------------------------
# WEIGHT BASIS AND PROTEIN
# ---------------------------------------------------------------------------


def _positive_or_none(value) -> Optional[float]:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return float(value)


def ideal_body_weight(stature_cm: float, sex) -> float:
    """Devine (1974): 50 / 45.5 kg + 2.3 kg per inch over five feet."""
    inches_over = max(0.0, stature_cm / 2.54 - 60)
    base = 50.0 if _is_male(sex) else 45.5
    return base + 2.3 * inches_over


def adjusted_body_weight(actual_kg: float, ideal_kg: float) -> float:
    """IBW + 25% of the excess; no adjustment at or below ideal weight."""
    if actual_kg <= ideal_kg:
        return actual_kg
    return ideal_kg + 0.25 * (actual_kg - ideal_kg)


def protein_target_weight(
    actual_kg: float,
    stature_cm: float,
    sex,
    basis="total",
    lean_mass_kg: Optional[float] = None,
    is_athlete: bool = False,
) -> ProteinTargetWeight:
    """
    Select the weight used as the protein multiplier.

    Args:
        actual_kg: Measured body weight
        stature_cm: Stature
        sex: Sex enum or string
        basis: total, ideal, adjusted or lean (unknown values use total)
        lean_mass_kg: Lean mass, required for the lean basis
        is_athlete: Suppresses the obesity advisory on the total basis

    Returns:
        ProteinTargetWeight rounded to 0.1 kg
    """
    parsed = ProteinBasis.parse(basis) or ProteinBasis.TOTAL
    actual_kg = _positive_or_none(actual_kg)
    stature_cm = _positive_or_none(stature_cm)
    lean_mass_kg = _positive_or_none(lean_mass_kg)

    if parsed == ProteinBasis.LEAN and lean_mass_kg is not None:
        return ProteinTargetWeight(round(lean_mass_kg, 1), "Lean mass", parsed)

    if actual_kg is None:
        logger.warning("No body weight; protein target weight unavailable")
        return ProteinTargetWeight(
            0.0, "Unavailable", parsed, warning="No body weight; protein target unavailable"
        )

    if stature_cm is None:
        if parsed == ProteinBasis.TOTAL:
            return ProteinTargetWeight(round(actual_kg, 1), "Total weight", parsed)
        logger.warning(f"No stature for the {parsed.value} basis, using total weight")
        return ProteinTargetWeight(
            round(actual_kg, 1),
            "Total weight",
            ProteinBasis.TOTAL,
            warning="No stature; ideal weight unavailable, using total weight instead",
        )

    ideal = ideal_body_weight(stature_cm, sex)

    if parsed == ProteinBasis.IDEAL:
        return ProteinTargetWeight(round(ideal, 1), "Ideal weight (Devine)", parsed)

    if parsed == ProteinBasis.ADJUSTED:
        return ProteinTargetWeight(
            round(adjusted_body_weight(actual_kg, ideal), 1), "Adjusted weight", parsed
        )

    if parsed == ProteinBasis.LEAN:
        return ProteinTargetWeight(
            round(adjusted_body_weight(actual_kg, ideal), 1),
            "Adjusted weight (estimated)",
            ProteinBasis.ADJUSTED,
            warning="No body composition data; using adjusted weight instead",
        )

    bmi = actual_kg / (stature_cm / 100) ** 2
    if bmi >= 30 and not is_athlete:
        return ProteinTargetWeight(
            round(actual_kg, 1),
            "Total weight",
            parsed,
            warning=(
                f"Obesity (BMI {bmi:.1f}): consider ideal or adjusted weight; total "
                "weight can overestimate protein needs in non-athletes"
            ),
        )
    return ProteinTargetWeight(
        round(actual_kg, 1), "Total weight (athlete)" if is_athlete else "Total weight", parsed
    )


def sarcopenia_safe_protein(weight_kg: float, age_years: Optional[float], activity_level="sedentary") -> ProteinRange:
    """
    Daily protein range with the PROT-AGE floor for patients 65 and older.

    Older adults get 1.2-1.5 g/kg (1.5-1.8 g/kg when active) and a critical
    flag so callers never negotiate the floor downward. Younger adults follow
    the RDA and sports-nutrition bands by activity.
    """
    activity, note = _resolve_activity(activity_level)

    if age_years is not None and age_years >= GERIATRIC_PROTEIN_AGE:
        if activity in (
            ActivityLevel.ACTIVE,
            ActivityLevel.VERY_ACTIVE,
            ActivityLevel.ELITE,
            ActivityLevel.ULTRA,
        ):
            low, high = 1.5, 1.8
        else:
            low, high = 1.2, 1.5
        return ProteinRange(
            min_g=round_half_up(low * weight_kg),
            max_g=round_half_up(high * weight_kg),
            is_critical=True,
            warning=SARCOPENIA_WARNING,
            substitution=note,
        )

    if activity == ActivityLevel.MODERATE:
        low, high = 1.2, 1.5
    elif activity == ActivityLevel.ACTIVE:
        low, high = 1.6, 2.0
    elif activity in (ActivityLevel.VERY_ACTIVE, ActivityLevel.ELITE, ActivityLevel.ULTRA):
        low, high = 2.0, 2.5
    else:
        low, high = 0.8, 1.2
    return ProteinRange(
        min_g=round_half_up(low * weight_kg),
        max_g=round_half_up(high * weight_kg),
        substitution=note,
    )


# ---------------------------------------------------------------------------
# CALORIE, CARBOHYDRATE AND FLUID TARGETS
# ---------------------------------------------------------------------------


def apply_calorie_preset(tdee_kcal: float, preset) -> CalorieTarget:
    """Apply a deficit/surplus preset; unknown presets mean maintenance."""
    parsed = CaloriePreset.parse(preset)
    if parsed is None:
        logger.warning(f"Unknown calorie preset {preset!r}, using maintenance")
        parsed = CaloriePreset.MAINTENANCE
    config = CALORIE_GOAL_PRESETS[parsed]
    adjustment = round_half_up(tdee_kcal * config["percentage"] / 100)
    return CalorieTarget(
        target_kcal=tdee_kcal + adjustment,
        adjustment_kcal=adjustment,
        percentage=config["percentage"],
        preset=parsed,
        label=config["label"],
        description=config["description"],
    )


_LOSS_GOALS = {"lose", "loss", "perder", "perdida", "pérdida"}
_GAIN_GOALS = {"gain", "ganar", "ganancia"}


def recommend_calorie_preset(bmi: float, goal: str) -> CaloriePreset:
    """Suggest a preset from BMI and the weight goal (lose, maintain, gain)."""
    goal = str(goal or "").strip().lower()
    if goal in _LOSS_GOALS:
        return CaloriePreset.MODERATE_DEFICIT if bmi >= 35 else CaloriePreset.MILD_DEFICIT
    if goal in _GAIN_GOALS:
        return CaloriePreset.MILD_SURPLUS
    return CaloriePreset.MAINTENANCE


def carbohydrate_targets(weight_kg: float, activity_level) -> Dict[str, object]:
    """Daily carbohydrate range in grams from ISSN / ACSM g/kg bands."""
    activity, note = _resolve_activity(activity_level)
    low, high, label = CARBOHYDRATE_BANDS[activity]
    return {
        "min_g": round_half_up(low * weight_kg),
        "max_g": round_half_up(high * weight_kg),
        "label": label,
        "substitution": note,
    }


def hydration_requirement(weight_kg: float, age_years: Optional[float]) -> Dict[str, object]:
    """
    Daily water requirement in ml.

    - Under 19: Holliday-Segar (100 ml/kg for the first 10 kg, 50 ml/kg for
      the next 10 kg, 20 ml/kg beyond)
    - 60 and over: 30 ml/kg with a 1500 ml floor
    - Adults: 35 ml/kg
    """
    if age_years is not None and age_years < 19:
        if weight_kg <= 10:
            ml = 100 * weight_kg
        elif weight_kg <= 20:
            ml = 1000 + 50 * (weight_kg - 10)
        else:
            ml = 1500 + 20 * (weight_kg - 20)
        method = "Holliday-Segar"
    elif age_years is not None and age_years >= 60:
        ml = max(1500, 30 * weight_kg)
        method = "Geriatric (30 ml/kg)"
    else:
        ml = 35 * weight_kg
        method = "Adult (35 ml/kg)"
    return {"ml": round_half_up(ml), "method": method}
