"""
Core Anthropometry Engine Logic

This module contains the body-composition calculation logic, evaluation
processing and orchestration for the anthropometry engine. It is the
computational core that the CLI and any persistence/UI collaborator call.

Sections:
- Input sanitising (missing vs. measured sites, ISAK replicate takes)
- Body density equations and the Siri conversion
- Heath-Carter somatotype
- Kerr five-component fractionation (Phantom stratagem)
- BMI interpretation by life stage (WHO 2007 BMI-for-age LMS)
- Data processing and orchestration
"""

import functools
import json
import logging
import math
import os
from collections import namedtuple
from datetime import datetime

import numpy as np
import pandas as pd
import scipy.stats as stats
from jsonschema import ValidationError, validate
from scipy.interpolate import interp1d

from energy_planning import (
    apply_calorie_preset,
    carbohydrate_targets,
    compute_energy_expenditure,
    hydration_requirement,
    protein_target_weight,
    sarcopenia_safe_protein,
)
from measurement_quality import overall_reliability
from shared_models import (
    PHANTOM_REFERENCE,
    PHANTOM_STATURE_CM,
    SOMATOTYPE_FLOOR,
    ActivityLevel,
    BMIResult,
    Breadths,
    CompositionResult,
    DensityProfile,
    DensityResult,
    EnergyExpenditureParams,
    Girths,
    KerrMasses,
    MeasurementRecord,
    Sex,
    Skinfolds,
    Somatotype,
)

logger = logging.getLogger(__name__)

DATA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")

# Siri (1961) physiological clamp for fat percentage
BODY_FAT_BOUNDS = (3.0, 60.0)

# Densities outside this range (g/cm3) come from degenerate skinfold input
PLAUSIBLE_DENSITY_RANGE = (0.9, 1.2)

_SITE_VALUE = {
    "oneOf": [
        {"type": "number", "minimum": 0},
        {"type": "null"},
        {
            "type": "array",
            "minItems": 1,
            "maxItems": 3,
            "items": {"type": "number", "minimum": 0},
        },
        {
            "type": "object",
            "properties": {
                "val1": {"type": "number", "minimum": 0},
                "val2": {"type": "number", "minimum": 0},
                "val3": {"type": "number", "minimum": 0},
                "final": {"type": "number", "minimum": 0},
            },
            "additionalProperties": False,
        },
    ]
}


def _site_group(names):
    return {
        "type": "object",
        "properties": {name: _SITE_VALUE for name in names},
        "additionalProperties": False,
    }


# JSON Schema for evaluation file validation
CONFIG_SCHEMA = {
    "type": "object",
    "required": ["patient_info", "evaluations"],
    "properties": {
        "patient_info": {
            "type": "object",
            "required": ["sex"],
            "properties": {
                "sex": {"type": "string", "minLength": 1},
                "birth_date": {"type": "string", "pattern": "^\\d{2}/\\d{2}/\\d{4}$"},
                "age_years": {"type": "number", "minimum": 0, "maximum": 120},
                "activity_level": {"type": "string"},
                "profile": {"type": "string"},
                "bmr_formula": {"type": "string"},
                "protein_basis": {
                    "type": "string",
                    "enum": ["total", "ideal", "adjusted", "lean"],
                },
                "is_athlete": {"type": "boolean"},
                "calorie_preset": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "evaluations": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["weight_kg", "stature_cm"],
                "properties": {
                    "date": {"type": "string", "pattern": "^\\d{2}/\\d{2}/\\d{4}$"},
                    "age_years": {"type": "number", "minimum": 0, "maximum": 120},
                    "weight_kg": {"type": "number", "exclusiveMinimum": 0},
                    "stature_cm": {"type": "number", "exclusiveMinimum": 0},
                    "skinfolds": _site_group(
                        [
                            "triceps",
                            "subscapular",
                            "biceps",
                            "iliac_crest",
                            "supraspinale",
                            "abdominal",
                            "thigh",
                            "calf",
                        ]
                    ),
                    "girths": _site_group(
                        ["arm_relaxed", "arm_flexed", "waist", "hip", "mid_thigh", "calf"]
                    ),
                    "breadths": _site_group(
                        ["humerus", "femur", "biacromial", "biiliocristal", "bistyloid"]
                    ),
                },
                "additionalProperties": False,
            },
        },
    },
    "additionalProperties": False,
}


class ConfigurationError(Exception):
    """Raised when an evaluation file is schema-valid but semantically unusable"""

    pass


# ---------------------------------------------------------------------------
# INPUT SANITISING
# ---------------------------------------------------------------------------


def resolve_replicates(values):
    """
    Reduces ISAK replicate takes to the final site value.

    Takes of zero or less count as not taken. One take is used as-is, two
    takes are averaged and three or more use the median, as the ISAK protocol
    prescribes.

    Args:
        values (list): Replicate measurements, already numeric.

    Returns:
        float or None: The final value, or None when no take is usable.
    """
    takes = [v for v in (sanitize_measurement(x) for x in values) if is_measured(v)]
    if not takes:
        return None
    if len(takes) <= 2:
        return float(np.mean(takes))
    return float(np.median(takes))


def sanitize_measurement(value):
    """
    Coerces an arbitrary numeric-like input to a safe non-negative float.

    Args:
        value: A number, numeric string, list of ISAK takes, or a mapping with
            ``val1``/``val2``/``val3`` and/or ``final`` keys.

    Returns:
        float or None: None when the site was not measured (missing, empty,
        non-numeric, NaN or infinite); negative numbers are clamped to 0.0.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        if value.get("final") is not None:
            return sanitize_measurement(value["final"])
        takes = [value.get(k) for k in ("val1", "val2", "val3")]
        return resolve_replicates([t for t in takes if t is not None])
    if isinstance(value, (list, tuple)):
        return resolve_replicates(value)
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(0.0, number)


def is_measured(value):
    """A site counts as measured only when present and strictly positive."""
    return value is not None and value > 0


def _sanitize_group(cls, data):
    data = data or {}
    if not isinstance(data, dict):
        data = vars(data)
    return cls(**{name: sanitize_measurement(data.get(name)) for name in cls.__dataclass_fields__})


def build_measurement_record(evaluation, sex, age_years=None):
    """
    Builds a sanitised MeasurementRecord from a loose evaluation dictionary.

    Unknown site names are ignored; every known site goes through
    ``sanitize_measurement`` so absent values stay absent.

    Args:
        evaluation (dict): Evaluation with weight_kg, stature_cm and optional
            skinfolds/girths/breadths dictionaries.
        sex (Sex or str): Patient sex.
        age_years (float): Age, used when the evaluation has none.

    Returns:
        MeasurementRecord: The sanitised record.
    """
    age = evaluation.get("age_years", age_years)
    return MeasurementRecord(
        weight_kg=sanitize_measurement(evaluation.get("weight_kg")),
        stature_cm=sanitize_measurement(evaluation.get("stature_cm")),
        sex=sex,
        age_years=sanitize_measurement(age),
        skinfolds=_sanitize_group(Skinfolds, evaluation.get("skinfolds")),
        girths=_sanitize_group(Girths, evaluation.get("girths")),
        breadths=_sanitize_group(Breadths, evaluation.get("breadths")),
        date=evaluation.get("date"),
    )


# ---------------------------------------------------------------------------
# BODY DENSITY AND BODY FAT
# ---------------------------------------------------------------------------

DensityEquation = namedtuple("DensityEquation", ["formula", "sites", "compute"])


def _sum(sf, sites):
    return sum(getattr(sf, site) for site in sites)


_CONTROL_SITES = ("triceps", "biceps", "subscapular", "iliac_crest")
_WITHERS_MALE_SITES = (
    "triceps",
    "subscapular",
    "biceps",
    "supraspinale",
    "abdominal",
    "thigh",
    "calf",
)
_WITHERS_FEMALE_SITES = ("triceps", "subscapular", "supraspinale", "calf")

# (profile, is_male) -> equation. Sex.OTHER uses the female equations.
DENSITY_EQUATIONS = {
    (DensityProfile.GENERAL, True): DensityEquation(
        "Wilmore & Behnke (1969)",
        ("abdominal", "thigh"),
        lambda sf: 1.08543 - 0.000886 * sf.abdominal - 0.00040 * sf.thigh,
    ),
    (DensityProfile.GENERAL, False): DensityEquation(
        "Wilmore & Behnke (1970)",
        ("subscapular", "triceps", "thigh"),
        lambda sf: 1.06234
        - 0.00068 * sf.subscapular
        - 0.00039 * sf.triceps
        - 0.00025 * sf.thigh,
    ),
    (DensityProfile.CONTROL, True): DensityEquation(
        "Durnin & Womersley (1974)",
        _CONTROL_SITES,
        lambda sf: 1.1765 - 0.0744 * math.log10(_sum(sf, _CONTROL_SITES)),
    ),
    (DensityProfile.CONTROL, False): DensityEquation(
        "Durnin & Womersley (1974)",
        _CONTROL_SITES,
        lambda sf: 1.1567 - 0.0717 * math.log10(_sum(sf, _CONTROL_SITES)),
    ),
    # NOTE: the +0.00054 abdominal term departs from the all-negative published
    # regression; kept verbatim pending clinical review.
    (DensityProfile.FITNESS, True): DensityEquation(
        "Katch & McArdle (1973)",
        ("triceps", "subscapular", "abdominal"),
        lambda sf: 1.09655
        - 0.00103 * sf.triceps
        - 0.00056 * sf.subscapular
        + 0.00054 * sf.abdominal,
    ),
    (DensityProfile.FITNESS, False): DensityEquation(
        "Katch & McArdle (1973)",
        ("subscapular", "iliac_crest"),
        lambda sf: 1.09246 - 0.00049 * sf.subscapular - 0.00075 * sf.iliac_crest,
    ),
    (DensityProfile.ATHLETE, True): DensityEquation(
        "Withers et al. (1987)",
        _WITHERS_MALE_SITES,
        lambda sf: 1.0988 - 0.0004 * _sum(sf, _WITHERS_MALE_SITES),
    ),
    (DensityProfile.ATHLETE, False): DensityEquation(
        "Withers et al. (1987)",
        _WITHERS_FEMALE_SITES,
        lambda sf: 1.20953 - 0.08294 * math.log10(_sum(sf, _WITHERS_FEMALE_SITES)),
    ),
    (DensityProfile.RAPID, True): DensityEquation(
        "Sloan (1967)",
        ("thigh", "subscapular"),
        lambda sf: 1.1043 - 0.001327 * sf.thigh - 0.001310 * sf.subscapular,
    ),
    (DensityProfile.RAPID, False): DensityEquation(
        "Sloan (1962)",
        ("iliac_crest", "triceps"),
        lambda sf: 1.0764 - 0.00081 * sf.iliac_crest - 0.00088 * sf.triceps,
    ),
}

FITNESS_MALE_REVIEW_NOTE = (
    "Katch & McArdle male equation uses +0.00054 x abdominal; "
    "flagged for clinical review"
)


def _select_density_equation(profile, sex):
    profile = DensityProfile.parse(profile)
    if profile is None:
        return None
    return DENSITY_EQUATIONS[(profile, Sex.parse(sex) == Sex.MALE)]


def required_skinfolds(profile, sex):
    """
    Lists the skinfold sites a density equation needs.

    Args:
        profile (DensityProfile or str): Measurement profile.
        sex (Sex or str): Patient sex.

    Returns:
        list: Site names, or an empty list for an unknown profile.
    """
    equation = _select_density_equation(profile, sex)
    return list(equation.sites) if equation else []


def estimate_body_density(record, profile=DensityProfile.GENERAL):
    """
    Estimates body density (g/cm3) with the skinfold equation for the profile.

    Never raises for missing data or an unknown profile: both return a
    DensityResult with density 0.0 and a diagnostic.

    Args:
        record (MeasurementRecord): Sanitised measurement record.
        profile (DensityProfile or str): general, control, fitness, athlete or rapid.

    Returns:
        DensityResult: Density, formula name and any missing sites.
    """
    equation = _select_density_equation(profile, record.sex)
    if equation is None:
        logger.warning(f"Unknown density profile: {profile!r}")
        return DensityResult(
            density=0.0,
            formula="Unknown profile",
            diagnostic=f"Unknown profile: {profile}",
        )

    skinfolds = record.skinfolds
    missing = [s for s in equation.sites if not is_measured(getattr(skinfolds, s))]
    if missing:
        return DensityResult(
            density=0.0,
            formula=equation.formula,
            missing_sites=missing,
            diagnostic=f"Missing skinfolds: {', '.join(missing)}",
        )

    density = equation.compute(skinfolds)
    notes = []
    if equation is DENSITY_EQUATIONS[(DensityProfile.FITNESS, True)]:
        logger.warning(FITNESS_MALE_REVIEW_NOTE)
        notes.append(FITNESS_MALE_REVIEW_NOTE)
    low, high = PLAUSIBLE_DENSITY_RANGE
    if not low <= density <= high:
        message = (
            f"Density {density:.4f} g/cm3 outside the plausible range "
            f"{low}-{high}; body fat will be clamped"
        )
        logger.warning(message)
        notes.append(message)
    diagnostic = "; ".join(notes) or None

    logger.debug(f"{equation.formula}: density={density:.6f}")
    return DensityResult(density=density, formula=equation.formula, diagnostic=diagnostic)


def siri_body_fat(density):
    """
    Converts body density to fat percentage with the Siri equation.

    fat% = 495 / density - 450, clamped to the physiological range [3, 60].

    Args:
        density (float): Body density in g/cm3.

    Returns:
        float: Fat percentage, or 0.0 when the density is not positive.
    """
    if density is None or not math.isfinite(density) or density <= 0:
        return 0.0
    fat = 495.0 / density - 450.0
    return float(np.clip(fat, *BODY_FAT_BOUNDS))


# ---------------------------------------------------------------------------
# HEATH-CARTER SOMATOTYPE
# ---------------------------------------------------------------------------


def _floor_somatotype(diagnostic):
    return Somatotype(SOMATOTYPE_FLOOR, SOMATOTYPE_FLOOR, SOMATOTYPE_FLOOR, diagnostic)


def _floor_component(value):
    return max(SOMATOTYPE_FLOOR, round(value, 1))


def calculate_endomorphy(triceps, subscapular, supraspinale, stature_cm):
    """Height-corrected three-skinfold endomorphy polynomial."""
    x = (triceps + subscapular + supraspinale) * (PHANTOM_STATURE_CM / stature_cm)
    return -0.7182 + 0.1451 * x - 0.00068 * x**2 + 0.0000014 * x**3


def calculate_mesomorphy(
    humerus, femur, arm_flexed, calf_girth, stature_cm, triceps=None, calf_skinfold=None
):
    """Mesomorphy from breadths and skinfold-corrected girths."""
    arm_corrected = arm_flexed - (triceps or 0.0) / 10
    calf_corrected = calf_girth - (calf_skinfold or 0.0) / 10
    return (
        0.858 * humerus
        + 0.601 * femur
        + 0.188 * arm_corrected
        + 0.161 * calf_corrected
        - 0.131 * stature_cm
        + 4.5
    )


def calculate_ectomorphy(stature_cm, weight_kg):
    """Ectomorphy from the height-weight ratio (ponderal index)."""
    hwr = stature_cm / np.cbrt(weight_kg)
    if hwr >= 40.75:
        return 0.732 * hwr - 28.58
    elif hwr > 38.25:
        return 0.463 * hwr - 17.63
    return SOMATOTYPE_FLOOR


def compute_somatotype(record):
    """
    Computes the Heath-Carter anthropometric somatotype.

    The adult Heath-Carter reference is not valid for growing skeletons, so
    patients younger than 18 receive the floor triple (0.1, 0.1, 0.1), as do
    records missing weight, stature or any of the three endomorphy skinfolds.
    Mesomorphy falls to the floor on its own when a breadth or girth it needs
    is missing.

    Args:
        record (MeasurementRecord): Sanitised measurement record.

    Returns:
        Somatotype: Components rounded to one decimal, each >= 0.1.
    """
    if record.age_years is not None and record.age_years < 18:
        return _floor_somatotype("Somatotype not applicable under 18 years")

    weight, stature = record.weight_kg, record.stature_cm
    if not is_measured(weight) or not is_measured(stature):
        return _floor_somatotype("Missing weight or stature")

    sf, gi, br = record.skinfolds, record.girths, record.breadths
    endo_sites = ("triceps", "subscapular", "supraspinale")
    missing = [s for s in endo_sites if not is_measured(getattr(sf, s))]
    if missing:
        return _floor_somatotype(f"Missing skinfolds: {', '.join(missing)}")

    endo = calculate_endomorphy(sf.triceps, sf.subscapular, sf.supraspinale, stature)

    diagnostic = None
    meso_inputs = {
        "humerus": br.humerus,
        "femur": br.femur,
        "arm_flexed": gi.arm_flexed,
        "calf_girth": gi.calf,
    }
    meso_missing = [k for k, v in meso_inputs.items() if not is_measured(v)]
    if meso_missing:
        meso = SOMATOTYPE_FLOOR
        diagnostic = f"Mesomorphy missing: {', '.join(meso_missing)}"
    else:
        meso = calculate_mesomorphy(
            br.humerus,
            br.femur,
            gi.arm_flexed,
            gi.calf,
            stature,
            triceps=sf.triceps,
            calf_skinfold=sf.calf,
        )

    ecto = calculate_ectomorphy(stature, weight)

    return Somatotype(
        endomorphy=_floor_component(endo),
        mesomorphy=_floor_component(meso),
        ectomorphy=_floor_component(ecto),
        diagnostic=diagnostic,
    )


def component_level(value):
    """Heath-Carter rating band for a single component."""
    if value < 3:
        return "low"
    if value <= 5.5:
        return "moderate"
    if value <= 7.5:
        return "high"
    return "very high"


def classify_somatotype(endo, meso, ecto):
    """
    Classifies a somatotype into one of the 13 Heath-Carter categories.

    Args:
        endo (float): Endomorphy.
        meso (float): Mesomorphy.
        ecto (float): Ectomorphy.

    Returns:
        str: Category name, e.g. "central" or "ecto-mesomorph".
    """
    d_endo_meso = abs(endo - meso)
    d_meso_ecto = abs(meso - ecto)
    d_ecto_endo = abs(ecto - endo)

    # No component differs by more than one unit from the other two
    if d_endo_meso <= 1 and d_meso_ecto <= 1 and d_ecto_endo <= 1:
        return "central"

    if endo > meso + 0.5 and endo > ecto + 0.5:
        if d_meso_ecto <= 0.5:
            return "balanced endomorph"
        return "mesomorphic endomorph" if meso > ecto else "ectomorphic endomorph"

    if meso > endo + 0.5 and meso > ecto + 0.5:
        if d_ecto_endo <= 0.5:
            return "balanced mesomorph"
        return "endomorphic mesomorph" if endo > ecto else "ectomorphic mesomorph"

    if ecto > endo + 0.5 and ecto > meso + 0.5:
        if d_endo_meso <= 0.5:
            return "balanced ectomorph"
        return "mesomorphic ectomorph" if meso > endo else "endomorphic ectomorph"

    if d_endo_meso <= 0.5 and endo > ecto and meso > ecto:
        return "mesomorph-endomorph"
    if d_meso_ecto <= 0.5 and meso > endo and ecto > endo:
        return "mesomorph-ectomorph"
    if d_ecto_endo <= 0.5 and endo > meso and ecto > meso:
        return "endomorph-ectomorph"

    if endo >= meso and endo >= ecto:
        return "endomorph"
    if meso >= endo and meso >= ecto:
        return "mesomorph"
    return "ectomorph"


# ---------------------------------------------------------------------------
# KERR FIVE-COMPONENT FRACTIONATION
# ---------------------------------------------------------------------------

_ADIPOSE_SITES = ("triceps", "subscapular", "supraspinale", "abdominal", "thigh", "calf")
_BONE_SITES = ("biacromial", "biiliocristal", "humerus", "femur")


def phantom_zscore(value, reference_key, stature_cm):
    """
    Phantom proportionality Z-score of a single dimension.

    Z = (value * 170.18 / stature - P) / S

    Returns:
        float or None: None when the value is not measured.
    """
    if not is_measured(value):
        return None
    ref = PHANTOM_REFERENCE[reference_key]
    return (value * (PHANTOM_STATURE_CM / stature_cm) - ref.p) / ref.s


def mean_phantom_zscore(items, stature_cm):
    """
    Averages the Phantom Z-scores of the measured items.

    Unmeasured items are excluded rather than counted as zero; a group with no
    measured item yields the neutral Z of 0.

    Args:
        items (list): (value, reference_key) pairs.
        stature_cm (float): Stature used for the height correction.

    Returns:
        float: Mean Z-score.
    """
    zscores = [phantom_zscore(v, key, stature_cm) for v, key in items]
    zscores = [z for z in zscores if z is not None]
    if not zscores:
        return 0.0
    return float(np.mean(zscores))


def phantom_mass(zscore, reference_key, stature_cm):
    """Reverse Phantom transform of a Z-score to kg, clamped at 0."""
    ref = PHANTOM_REFERENCE[reference_key]
    return max(0.0, (zscore * ref.s + ref.p) / (PHANTOM_STATURE_CM / stature_cm) ** 3)


def _corrected_girth(girth, skinfold):
    if not is_measured(girth):
        return None
    return girth - (skinfold or 0.0) / 10


def fractionate_kerr(record):
    """
    Fractionates body mass into skin, adipose, muscle, bone and residual mass.

    Implements the Kerr (1988) five-component model with the Ross & Wilson
    Phantom stratagem:
    1. Skin mass directly from weight and stature
    2. Mean Phantom Z-score per tissue from its measured sites
    3. Residual Z as the mean of the adipose, muscle and bone Z-scores
    4. Reverse Phantom transform to absolute masses
    5. Proportional rescale so the five masses sum to measured weight

    Args:
        record (MeasurementRecord): Sanitised measurement record.

    Returns:
        KerrMasses: The five masses in kg, or all zero with a diagnostic when
        weight, stature or the raw mass sum is not positive.
    """
    weight, stature = record.weight_kg, record.stature_cm
    if not is_measured(weight) or not is_measured(stature):
        return KerrMasses(diagnostic="Missing weight or stature")

    sf, gi, br = record.skinfolds, record.girths, record.breadths

    skin_raw = max(0.0, 0.000105 * weight * stature + 0.5)

    z_adipose = mean_phantom_zscore(
        [(getattr(sf, site), site) for site in _ADIPOSE_SITES], stature
    )
    z_muscle = mean_phantom_zscore(
        [
            (_corrected_girth(gi.arm_flexed, sf.triceps), "arm_corrected"),
            (_corrected_girth(gi.mid_thigh, sf.thigh), "thigh_corrected"),
            (_corrected_girth(gi.calf, sf.calf), "calf_corrected"),
        ],
        stature,
    )
    z_bone = mean_phantom_zscore(
        [(getattr(br, site), site) for site in _BONE_SITES], stature
    )
    z_residual = (z_adipose + z_muscle + z_bone) / 3
    logger.debug(
        f"Phantom Z: adipose={z_adipose:.3f}, muscle={z_muscle:.3f}, "
        f"bone={z_bone:.3f}, residual={z_residual:.3f}"
    )

    raw = {
        "skin_kg": skin_raw,
        "adipose_kg": phantom_mass(z_adipose, "adipose_mass", stature),
        "muscle_kg": phantom_mass(z_muscle, "muscle_mass", stature),
        "bone_kg": phantom_mass(z_bone, "bone_mass", stature),
        "residual_kg": phantom_mass(z_residual, "residual_mass", stature),
    }

    total = sum(raw.values())
    if total <= 0:
        return KerrMasses(diagnostic="Insufficient data for fractionation")

    factor = weight / total
    return KerrMasses(**{name: mass * factor for name, mass in raw.items()})


# ---------------------------------------------------------------------------
# BMI INTERPRETATION
# ---------------------------------------------------------------------------


def compute_zscore(y, L, M, S, eps=1e-4):
    """
    Calculates the Z-score for a given value y using the LMS method.

    Args:
        y (float): The measured value (e.g., a BMI value).
        L (float): The lambda parameter (Box-Cox power for skewness).
        M (float): The mu parameter (the median of the reference population).
        S (float): The sigma parameter (the coefficient of variation).
        eps (float): Threshold below which L is treated as zero.

    Returns:
        float: The calculated Z-score, or NaN if any input is invalid or y is non-positive.
    """
    if y <= 0 or pd.isna(y) or pd.isna(L) or pd.isna(M) or pd.isna(S):
        return np.nan
    if abs(L) < eps:
        return np.log(y / M) / S
    return (((y / M) ** L) - 1) / (L * S)


@functools.lru_cache(maxsize=8)
def load_lms_data(sex_code, data_path=DATA_PATH):
    """
    Loads WHO 2007 BMI-for-age LMS data and creates interpolation functions.

    Ages outside the table are clamped to its first/last row.

    Args:
        sex_code (int): 0 for male, 1 for female.
        data_path (str): Directory containing the LMS CSV files.

    Returns:
        tuple: (L_func, M_func, S_func) interpolating on age in months, or
               (None, None, None) if loading fails.
    """
    filename = f"WHO2007_BMI_for_age_gender{sex_code}.csv"
    filepath = os.path.join(data_path, filename)

    if not os.path.exists(filepath):
        logger.error(f"LMS data file not found: {filepath}")
        return None, None, None

    try:
        df = pd.read_csv(filepath)
    except (OSError, pd.errors.ParserError) as e:
        logger.error(f"Error loading LMS data from {filepath}: {e}")
        return None, None, None

    df = df.rename(columns={"age": "Age", "lambda": "L", "mu": "M", "sigma": "S"})
    required_columns = ["Age", "L", "M", "S"]
    if not all(col in df.columns for col in required_columns):
        logger.error(
            f"LMS file {filepath} missing required columns: {required_columns}"
        )
        return None, None, None

    df = df.sort_values("Age")
    funcs = tuple(
        interp1d(
            df["Age"],
            df[col],
            kind="linear",
            bounds_error=False,
            fill_value=(df[col].iloc[0], df[col].iloc[-1]),
        )
        for col in ("L", "M", "S")
    )
    logger.info(f"Loaded LMS data: {filename}")
    return funcs


def interpret_bmi_for_age_zscore(z):
    """WHO growth-reference interpretation of a BMI-for-age Z-score."""
    if z > 3:
        return "Obesity"
    if z > 2:
        return "Overweight"
    if z > 1:
        return "Risk of overweight"
    if z >= -2:
        return "Normal"
    if z >= -3:
        return "Thinness"
    return "Severe thinness"


def bmi_for_age_zscore(bmi, age_months, sex, data_path=DATA_PATH):
    """
    WHO 2007 BMI-for-age Z-score and percentile.

    Returns:
        tuple: (z_score, percentile) with Z clamped to [-5, 5] and rounded to 2
        decimals and percentile on a 0-100 scale, or (None, None) when the
        reference data is unavailable.
    """
    sex_code = 0 if Sex.parse(sex) == Sex.MALE else 1
    L_func, M_func, S_func = load_lms_data(sex_code, data_path)
    if L_func is None:
        return None, None

    z = compute_zscore(
        bmi, float(L_func(age_months)), float(M_func(age_months)), float(S_func(age_months))
    )
    if pd.isna(z):
        return None, None
    z = round(float(np.clip(z, -5, 5)), 2)
    percentile = round(float(stats.norm.cdf(z)) * 100, 1)
    return z, percentile


def classify_bmi(weight_kg, stature_cm, age_years=None, sex=Sex.FEMALE, data_path=DATA_PATH):
    """
    Calculates BMI and interprets it for the patient's life stage.

    - 5 to 18 years: WHO 2007 BMI-for-age Z-score
    - 60 years and over: geriatric cut points (Lipschitz / MNA)
    - otherwise: adult WHO bands

    Args:
        weight_kg (float): Body weight.
        stature_cm (float): Stature.
        age_years (float): Age; whole ages are taken as mid-year (+6 months).
        sex (Sex or str): Patient sex, used for the pediatric reference.

    Returns:
        BMIResult: BMI rounded to one decimal with its diagnosis.
    """
    weight_kg = sanitize_measurement(weight_kg)
    stature_cm = sanitize_measurement(stature_cm)
    if not is_measured(weight_kg) or not is_measured(stature_cm):
        return BMIResult(value=0.0, diagnosis="Invalid data")

    bmi = round(weight_kg / (stature_cm / 100) ** 2, 1)

    if age_years is not None and 5 <= age_years < 19:
        age_months = age_years * 12
        if float(age_years).is_integer():
            age_months += 6
        z, percentile = bmi_for_age_zscore(bmi, age_months, sex, data_path)
        if z is not None:
            return BMIResult(
                value=bmi,
                diagnosis=interpret_bmi_for_age_zscore(z),
                z_score=z,
                percentile=percentile,
            )

    if age_years is not None and age_years >= 60:
        if bmi < 23:
            diagnosis = "Underweight (sarcopenia risk)"
        elif bmi <= 28:
            diagnosis = "Normal (protective range)"
        elif bmi <= 32:
            diagnosis = "Overweight"
        else:
            diagnosis = "Geriatric obesity"
        return BMIResult(value=bmi, diagnosis=diagnosis)

    if bmi < 18.5:
        diagnosis = "Underweight"
    elif bmi < 25:
        diagnosis = "Normal"
    elif bmi < 30:
        diagnosis = "Overweight"
    elif bmi < 35:
        diagnosis = "Obesity class I"
    elif bmi < 40:
        diagnosis = "Obesity class II"
    else:
        diagnosis = "Obesity class III"
    return BMIResult(value=bmi, diagnosis=diagnosis)


# ---------------------------------------------------------------------------
# DATA PROCESSING AND ORCHESTRATION
# ---------------------------------------------------------------------------


def compute_composition(record, profile=DensityProfile.GENERAL):
    """
    Computes the full body composition of one measurement record.

    Combines the density equation for the profile, the Siri fat percentage,
    the Kerr five-component fractionation and the Heath-Carter somatotype.
    Missing data never raises; it surfaces as zero/floor values plus entries
    in ``diagnostics``.

    Args:
        record (MeasurementRecord): Sanitised measurement record.
        profile (DensityProfile or str): Density equation profile.

    Returns:
        CompositionResult: The composed result.
    """
    density_result = estimate_body_density(record, profile)
    fat_pct = siri_body_fat(density_result.density)
    weight = record.weight_kg if is_measured(record.weight_kg) else 0.0
    fat_mass = fat_pct / 100 * weight

    kerr = fractionate_kerr(record)
    somatotype = compute_somatotype(record)

    diagnostics = [
        d
        for d in (density_result.diagnostic, kerr.diagnostic, somatotype.diagnostic)
        if d
    ]
    logger.info(
        f"Composition via {density_result.formula}: "
        f"density={density_result.density:.4f}, fat={fat_pct:.1f}%"
    )

    return CompositionResult(
        body_density=density_result.density,
        body_fat_pct=fat_pct,
        fat_mass_kg=fat_mass,
        kerr=kerr,
        somatotype=somatotype,
        density_formula=density_result.formula,
        profile=DensityProfile.parse(profile),
        diagnostics=diagnostics,
    )


def compute_all_density_formulas(record):
    """
    Runs every density profile on one record for side-by-side comparison.

    Returns:
        pd.DataFrame: One row per profile with formula, density, body fat and
        the missing sites.
    """
    rows = []
    for profile in DensityProfile:
        result = estimate_body_density(record, profile)
        rows.append(
            {
                "profile": profile.value,
                "formula": result.formula,
                "density": result.density,
                "body_fat_pct": siri_body_fat(result.density),
                "missing_sites": ", ".join(result.missing_sites),
            }
        )
    return pd.DataFrame(rows)


def calculate_age_precise(birth_date_str, eval_date_str):
    """
    Calculates the precise age in decimal years between two dates.

    Args:
        birth_date_str (str): The birth date in "MM/DD/YYYY" format.
        eval_date_str (str): The evaluation date in "MM/DD/YYYY" format.

    Returns:
        float: The age in decimal years, accounting for leap years.
    """
    birth_date = datetime.strptime(birth_date_str, "%m/%d/%Y")
    eval_date = datetime.strptime(eval_date_str, "%m/%d/%Y")
    return (eval_date - birth_date).days / 365.2425


def load_config_json(config_path, quiet=False):
    """
    Loads and validates a JSON evaluation file.

    Args:
        config_path (str): Path to the JSON file.
        quiet (bool): If True, suppress print statements

    Returns:
        dict: Configuration with patient_info and evaluations sections.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        json.JSONDecodeError: If the JSON is malformed.
        ValidationError: If the JSON doesn't match the required schema.
    """
    if not quiet:
        print(f"Loading evaluations from {config_path}...")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config = json.load(f)

    validate(config, CONFIG_SCHEMA)

    if not quiet:
        print(f"Successfully loaded {len(config['evaluations'])} evaluations")
    return config


def parse_sex(sex_str):
    """
    Converts a user-friendly sex string to a Sex value.

    Raises:
        ValueError: If the string is not recognized
    """
    sex = Sex.parse(sex_str)
    if sex is None:
        raise ValueError(
            f"Unrecognized sex: {sex_str}. Use 'm', 'f', 'male', 'female' or 'other'."
        )
    return sex


def extract_data_from_config(config):
    """
    Extracts patient info and evaluations from a validated config.

    Ages come from the evaluation, else from birth_date and the evaluation
    date, else from patient_info.age_years.

    Returns:
        tuple: (patient_info, evaluations)

    Raises:
        ConfigurationError: If an evaluation has no way to derive an age.
    """
    patient_info = config["patient_info"].copy()
    patient_info["sex"] = parse_sex(patient_info["sex"])

    evaluations = []
    for i, evaluation in enumerate(config["evaluations"]):
        evaluation = evaluation.copy()
        if "age_years" not in evaluation:
            if "birth_date" in patient_info and "date" in evaluation:
                evaluation["age_years"] = calculate_age_precise(
                    patient_info["birth_date"], evaluation["date"]
                )
            elif "age_years" in patient_info:
                evaluation["age_years"] = patient_info["age_years"]
            else:
                raise ConfigurationError(
                    f"Evaluation {i} has no age: provide age_years, or birth_date with dates"
                )
        evaluations.append(evaluation)

    return patient_info, evaluations


def extract_replications(evaluation):
    """
    Collects the sites of an evaluation that were taken more than once.

    The calf girth is reported as "calf_girth" so it does not collide with
    the calf skinfold.

    Returns:
        dict: Site name to its list of takes.
    """
    replications = {}
    for group in ("skinfolds", "girths", "breadths"):
        for site, value in (evaluation.get(group) or {}).items():
            if isinstance(value, dict):
                takes = [value.get(k) for k in ("val1", "val2", "val3")]
            elif isinstance(value, (list, tuple)):
                takes = list(value)
            else:
                continue
            takes = [sanitize_measurement(t) for t in takes]
            takes = [t for t in takes if is_measured(t)]
            if len(takes) >= 2:
                name = "calf_girth" if group == "girths" and site == "calf" else site
                replications[name] = takes
    return replications


def _add_change_columns(df, columns):
    for col in columns:
        df[f"{col}_change_last"] = df[col].diff()
        df[f"{col}_change_first"] = df[col] - df[col].iloc[0]
        df.loc[0, f"{col}_change_first"] = np.nan
    return df


def process_evaluations(patient_info, evaluations, profile=None):
    """
    Processes an evaluation history into a results DataFrame.

    This function:
    1. Builds a sanitised record per evaluation
    2. Computes composition, somatotype, BMI and energy expenditure
    3. Calculates changes versus the previous and the first evaluation

    Args:
        patient_info (dict): Patient info with sex and optional selectors.
        evaluations (list): Evaluation dictionaries, each with an age.
        profile (str): Density profile overriding patient_info.profile.

    Returns:
        pd.DataFrame: One row per evaluation, in date order when dated.
    """
    sex = parse_sex(patient_info["sex"])
    profile = profile or patient_info.get("profile", DensityProfile.GENERAL.value)
    activity = patient_info.get("activity_level", ActivityLevel.MODERATE.value)
    formula = patient_info.get("bmr_formula", "mifflin")

    rows = []
    for evaluation in evaluations:
        record = build_measurement_record(evaluation, sex)
        composition = compute_composition(record, profile)
        somatotype = composition.somatotype
        bmi = classify_bmi(record.weight_kg, record.stature_cm, record.age_years, sex)
        energy = compute_energy_expenditure(
            EnergyExpenditureParams(
                weight_kg=record.weight_kg,
                stature_cm=record.stature_cm,
                age_years=record.age_years,
                sex=sex,
                activity_level=activity,
                formula=formula,
                fat_pct=composition.body_fat_pct or None,
            )
        )

        rows.append(
            {
                "date": record.date,
                "age_years": record.age_years,
                "weight_kg": record.weight_kg,
                "stature_cm": record.stature_cm,
                "bmi": bmi.value,
                "bmi_diagnosis": bmi.diagnosis,
                "density_formula": composition.density_formula,
                "body_density": composition.body_density,
                "body_fat_pct": composition.body_fat_pct,
                "fat_mass_kg": composition.fat_mass_kg,
                **composition.kerr.as_dict(),
                "endomorphy": somatotype.endomorphy,
                "mesomorphy": somatotype.mesomorphy,
                "ectomorphy": somatotype.ectomorphy,
                "somatotype_class": (
                    None
                    if somatotype.is_floor
                    else classify_somatotype(*somatotype.as_tuple())
                ),
                "bmr_kcal": energy.bmr_kcal,
                "tdee_kcal": energy.tdee_kcal,
                "energy_formula": energy.formula,
                "diagnostics": "; ".join(composition.diagnostics),
            }
        )

    df = pd.DataFrame(rows)
    if df["date"].notna().all():
        df["eval_date"] = pd.to_datetime(df["date"], format="%m/%d/%Y")
        df = df.sort_values("eval_date").drop(columns="eval_date").reset_index(drop=True)

    return _add_change_columns(
        df, ["weight_kg", "body_fat_pct", "adipose_kg", "muscle_kg"]
    )


def run_analysis_from_data(patient_info, evaluations, profile=None):
    """
    Runs the analysis directly from data dictionaries.

    Returns:
        tuple: (df_results, latest) where latest is a dict holding the
        CompositionResult, EnergyExpenditureResult, BMIResult, protein target
        weight, protein range and hydration requirement of the last evaluation.
    """
    df_results = process_evaluations(patient_info, evaluations, profile)

    sex = parse_sex(patient_info["sex"])
    last = evaluations[-1]
    if df_results["date"].notna().all():
        last = max(
            evaluations, key=lambda e: datetime.strptime(e["date"], "%m/%d/%Y")
        )
    record = build_measurement_record(last, sex)
    composition = compute_composition(
        record, profile or patient_info.get("profile", DensityProfile.GENERAL.value)
    )
    activity = patient_info.get("activity_level", ActivityLevel.MODERATE.value)
    energy = compute_energy_expenditure(
        EnergyExpenditureParams(
            weight_kg=record.weight_kg,
            stature_cm=record.stature_cm,
            age_years=record.age_years,
            sex=sex,
            activity_level=activity,
            formula=patient_info.get("bmr_formula", "mifflin"),
            fat_pct=composition.body_fat_pct or None,
        )
    )
    lean_mass = None
    if composition.body_fat_pct > 0:
        lean_mass = record.weight_kg - composition.fat_mass_kg

    latest = {
        "record": record,
        "composition": composition,
        "energy": energy,
        "bmi": classify_bmi(record.weight_kg, record.stature_cm, record.age_years, sex),
        "protein_weight": protein_target_weight(
            record.weight_kg,
            record.stature_cm,
            sex,
            patient_info.get("protein_basis", "total"),
            lean_mass_kg=lean_mass,
            is_athlete=patient_info.get("is_athlete", False),
        ),
        "protein_range": sarcopenia_safe_protein(
            record.weight_kg, record.age_years, activity
        ),
        "hydration": hydration_requirement(record.weight_kg, record.age_years),
        "carbohydrate": carbohydrate_targets(record.weight_kg, activity),
        "calorie_target": None,
        "reliability": None,
    }
    if patient_info.get("calorie_preset"):
        latest["calorie_target"] = apply_calorie_preset(
            energy.tdee_kcal, patient_info["calorie_preset"]
        )
    replications = extract_replications(last)
    if replications:
        latest["reliability"] = overall_reliability(replications)
    return df_results, latest


def _print_summary(patient_info, latest):
    composition = latest["composition"]
    kerr = composition.kerr
    somatotype = composition.somatotype
    energy = latest["energy"]
    protein_weight = latest["protein_weight"]
    protein_range = latest["protein_range"]

    print("\nLatest Evaluation:")
    print(f"  - Density formula: {composition.density_formula}")
    print(f"  - Body density: {composition.body_density:.4f} g/cm3")
    print(f"  - Body fat: {composition.body_fat_pct:.1f}% ({composition.fat_mass_kg:.1f} kg)")
    print(f"  - BMI: {latest['bmi'].value} ({latest['bmi'].diagnosis})")
    print("\nFive-Component Fractionation (Kerr):")
    for name, mass in kerr.as_dict().items():
        print(f"  - {name.replace('_kg', '').capitalize()}: {mass:.1f} kg")
    print(
        f"\nSomatotype: {somatotype.endomorphy}-{somatotype.mesomorphy}-"
        f"{somatotype.ectomorphy}"
    )
    if not somatotype.is_floor:
        print(f"  - Classification: {classify_somatotype(*somatotype.as_tuple())}")
    print("\nEnergy Expenditure:")
    print(f"  - Formula: {energy.formula}")
    print(f"  - BMR: {energy.bmr_kcal:.0f} kcal")
    print(f"  - Activity factor: {energy.activity_factor}")
    print(f"  - TDEE: {energy.tdee_kcal:.0f} kcal")
    for note in energy.substitutions:
        print(f"  - Note: {note}")
    print("\nProtein:")
    print(f"  - Basis: {protein_weight.label} ({protein_weight.weight_kg} kg)")
    if protein_weight.warning:
        print(f"  - Warning: {protein_weight.warning}")
    print(f"  - Range: {protein_range.min_g}-{protein_range.max_g} g/day")
    if protein_range.is_critical:
        print(f"  - CRITICAL: {protein_range.warning}")
    carbohydrate = latest["carbohydrate"]
    print(
        f"\nCarbohydrate: {carbohydrate['min_g']}-{carbohydrate['max_g']} g/day "
        f"({carbohydrate['label']})"
    )
    print(
        f"Hydration: {latest['hydration']['ml']} ml/day ({latest['hydration']['method']})"
    )
    target = latest["calorie_target"]
    if target is not None:
        print(
            f"\nCalorie target ({target.label}, {target.percentage:+d}%): "
            f"{target.target_kcal} kcal ({target.description})"
        )
    reliability = latest["reliability"]
    if reliability is not None:
        print(
            f"\nMeasurement reliability: {reliability.rating} "
            f"(mean TEM {reliability.mean_tem_pct}%)"
        )
        for site in reliability.sites:
            if site.needs_remeasurement:
                print(f"  - Re-measure {site.site}: TEM {site.tem_pct}%")
    for diagnostic in composition.diagnostics:
        print(f"\nDiagnostic: {diagnostic}")


def run_analysis(
    config_path="example_config.json",
    profile=None,
    bmr_formula=None,
    csv_path=None,
    return_results=False,
):
    """
    Main analysis function that orchestrates the evaluation workflow.

    Args:
        config_path (str): Path to the JSON evaluation file
        profile (str): Density profile override
        bmr_formula (str): BMR formula override
        csv_path (str): If set, the results DataFrame is written there
        return_results (bool): If True, returns results instead of printing

    Returns:
        int or tuple: Exit code (0 for success, 1 for error) if return_results=False,
                     or (df_results, latest) if return_results=True
    """
    if not return_results:
        print("Anthropometric Body Composition Analysis")
        print("=" * 41)

    try:
        config = load_config_json(config_path, quiet=return_results)
        patient_info, evaluations = extract_data_from_config(config)
        if bmr_formula:
            patient_info["bmr_formula"] = bmr_formula

        df_results, latest = run_analysis_from_data(patient_info, evaluations, profile)

        if return_results:
            return df_results, latest

        print("Patient Info:")
        print(f"  - Sex: {patient_info['sex'].value}")
        print(f"  - Evaluations: {len(evaluations)}")
        _print_summary(patient_info, latest)

        if csv_path:
            df_results.to_csv(csv_path, index=False)
            print(f"\nResults written to {csv_path}")
        return 0

    except ValidationError as e:
        if return_results:
            raise
        print(f"Error: invalid evaluation file: {e.message}")
        return 1
    except (FileNotFoundError, ValueError, ConfigurationError) as e:
        if return_results:
            raise
        print(f"Error: {e}")
        return 1
