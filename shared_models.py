"""
Shared Data Models for the Anthropometry Engine

This module contains all shared dataclasses, enums and static reference tables
used throughout the body-composition and energy-expenditure engine, the JSON
evaluation loader and the command line interface.

Unified data models provide:
- One closed enum per decision axis (profile, sex, formula, activity level)
- Explicit "measured / not measured" sites (Optional per site, never a bare 0)
- Immutable reference tables shared safely between concurrent callers
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Optional

# ============================================================================
# ENUMS
# ============================================================================


class Sex(Enum):
    """Biological sex used to select sex-specific equations"""

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"

    @classmethod
    def parse(cls, value):
        """Map loose user strings (m, f, masculino, femenino...) to a Sex, or None."""
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        return _SEX_ALIASES.get(str(value).strip().lower())


class DensityProfile(Enum):
    """Measurement profile that selects the skinfold density equation"""

    GENERAL = "general"  # Wilmore & Behnke
    CONTROL = "control"  # Durnin & Womersley
    FITNESS = "fitness"  # Katch & McArdle
    ATHLETE = "athlete"  # Withers et al.
    RAPID = "rapid"  # Sloan

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        return _PROFILE_ALIASES.get(str(value).strip().lower())


class ActivityLevel(Enum):
    """Named activity bands for the activity-factor table"""

    SEDENTARY = "sedentary"
    LIGHT = "light"
    MODERATE = "moderate"
    ACTIVE = "active"
    VERY_ACTIVE = "very_active"
    ELITE = "elite"
    ULTRA = "ultra"

    @classmethod
    def parse(cls, value):
        """Normalise English and Spanish activity keys; None when unrecognised."""
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        key = str(value).strip().lower().replace(" ", "_").replace("-", "_")
        if key in _ACTIVITY_ALIASES:
            return _ACTIVITY_ALIASES[key]
        if key.startswith("sedent"):
            return cls.SEDENTARY
        if key.startswith("moderat"):
            return cls.MODERATE
        if "intens" in key:
            return cls.VERY_ACTIVE
        return None


class BMRFormula(Enum):
    """Adult basal metabolic rate equations"""

    MIFFLIN = "mifflin"
    HARRIS = "harris"
    FAO = "fao"
    HENRY = "henry"
    KATCH = "katch"
    CUNNINGHAM = "cunningham"
    IOM = "iom"  # Only meaningful for the pediatric path

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        return _FORMULA_ALIASES.get(str(value).strip().lower())


class PediatricFormula(Enum):
    """Estimated Energy Requirement equations for ages 3-18"""

    IOM = "iom"
    FAO = "fao"
    HENRY = "henry"


class ProteinBasis(Enum):
    """Weight used as the multiplier for protein dosing"""

    TOTAL = "total"
    IDEAL = "ideal"
    ADJUSTED = "adjusted"
    LEAN = "lean"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class CaloriePreset(Enum):
    """Percentage adjustments applied to a TDEE value"""

    AGGRESSIVE_DEFICIT = "aggressive_deficit"
    MODERATE_DEFICIT = "moderate_deficit"
    MILD_DEFICIT = "mild_deficit"
    MAINTENANCE = "maintenance"
    MILD_SURPLUS = "mild_surplus"
    MODERATE_SURPLUS = "moderate_surplus"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_SEX_ALIASES = {
    "m": Sex.MALE,
    "male": Sex.MALE,
    "masculino": Sex.MALE,
    "hombre": Sex.MALE,
    "f": Sex.FEMALE,
    "female": Sex.FEMALE,
    "femenino": Sex.FEMALE,
    "mujer": Sex.FEMALE,
    "other": Sex.OTHER,
    "otro": Sex.OTHER,
    "x": Sex.OTHER,
}

_PROFILE_ALIASES = {
    "general": DensityProfile.GENERAL,
    "control": DensityProfile.CONTROL,
    "fitness": DensityProfile.FITNESS,
    "athlete": DensityProfile.ATHLETE,
    "atleta": DensityProfile.ATHLETE,
    "rapid": DensityProfile.RAPID,
    "rapida": DensityProfile.RAPID,
    "rápida": DensityProfile.RAPID,
}

_ACTIVITY_ALIASES = {
    "sedentary": ActivityLevel.SEDENTARY,
    "light": ActivityLevel.LIGHT,
    "ligera": ActivityLevel.LIGHT,
    "moderate": ActivityLevel.MODERATE,
    "moderada": ActivityLevel.MODERATE,
    "active": ActivityLevel.ACTIVE,
    "activa": ActivityLevel.ACTIVE,
    "very_active": ActivityLevel.VERY_ACTIVE,
    "muy_activa": ActivityLevel.VERY_ACTIVE,
    "elite": ActivityLevel.ELITE,
    "ultra": ActivityLevel.ULTRA,
}

_FORMULA_ALIASES = {
    "mifflin": BMRFormula.MIFFLIN,
    "mifflin-st jeor": BMRFormula.MIFFLIN,
    "harris": BMRFormula.HARRIS,
    "harris-benedict": BMRFormula.HARRIS,
    "fao": BMRFormula.FAO,
    "henry": BMRFormula.HENRY,
    "katch": BMRFormula.KATCH,
    "katch-mcardle": BMRFormula.KATCH,
    "cunningham": BMRFormula.CUNNINGHAM,
    "iom": BMRFormula.IOM,
}


# ============================================================================
# MEASUREMENT INPUT STRUCTURES
# ============================================================================


@dataclass
class Skinfolds:
    """ISAK skinfold sites in millimetres (None = not measured)"""

    triceps: Optional[float] = None
    subscapular: Optional[float] = None
    biceps: Optional[float] = None
    iliac_crest: Optional[float] = None  # Durnin/Katch/Sloan "suprailiac"
    supraspinale: Optional[float] = None  # Heath-Carter endomorphy site
    abdominal: Optional[float] = None
    thigh: Optional[float] = None
    calf: Optional[float] = None


@dataclass
class Girths:
    """Girths in centimetres"""

    arm_relaxed: Optional[float] = None
    arm_flexed: Optional[float] = None
    waist: Optional[float] = None
    hip: Optional[float] = None
    mid_thigh: Optional[float] = None
    calf: Optional[float] = None


@dataclass
class Breadths:
    """Bone breadths in centimetres"""

    humerus: Optional[float] = None
    femur: Optional[float] = None
    biacromial: Optional[float] = None
    biiliocristal: Optional[float] = None
    bistyloid: Optional[float] = None


@dataclass
class MeasurementRecord:
    """A single anthropometric evaluation of one patient"""

    weight_kg: Optional[float]
    stature_cm: Optional[float]
    sex: Sex
    age_years: Optional[float] = None
    skinfolds: Skinfolds = field(default_factory=Skinfolds)
    girths: Girths = field(default_factory=Girths)
    breadths: Breadths = field(default_factory=Breadths)
    date: Optional[str] = None  # MM/DD/YYYY, informational only

    def __post_init__(self):
        """Accept sex strings and raw group dicts for convenience"""
        if not isinstance(self.sex, Sex):
            parsed = Sex.parse(self.sex)
            if parsed is None:
                raise ValueError(f"Unrecognized sex: {self.sex}")
            self.sex = parsed
        if isinstance(self.skinfolds, dict):
            self.skinfolds = Skinfolds(**_known_fields(Skinfolds, self.skinfolds))
        if isinstance(self.girths, dict):
            self.girths = Girths(**_known_fields(Girths, self.girths))
        if isinstance(self.breadths, dict):
            self.breadths = Breadths(**_known_fields(Breadths, self.breadths))


def _known_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ============================================================================
# RESULT STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class PhantomValue:
    """Ross & Wilson Phantom population mean (p) and standard deviation (s)"""

    p: float
    s: float


@dataclass
class DensityResult:
    """Outcome of a skinfold density equation"""

    density: float  # g/cm3, 0.0 when the equation could not run
    formula: str  # Published name/year, for audit traceability
    missing_sites: List[str] = field(default_factory=list)
    diagnostic: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.density > 0


@dataclass
class Somatotype:
    """Heath-Carter anthropometric somatotype"""

    endomorphy: float
    mesomorphy: float
    ectomorphy: float
    diagnostic: Optional[str] = None

    @property
    def somatochart_x(self) -> float:
        return round(self.ectomorphy - self.endomorphy, 1)

    @property
    def somatochart_y(self) -> float:
        return round(2 * self.mesomorphy - (self.endomorphy + self.ectomorphy), 1)

    @property
    def is_floor(self) -> bool:
        """True when every component sits at the non-computable floor"""
        return (
            self.endomorphy == SOMATOTYPE_FLOOR
            and self.mesomorphy == SOMATOTYPE_FLOOR
            and self.ectomorphy == SOMATOTYPE_FLOOR
        )

    def as_tuple(self):
        return (self.endomorphy, self.mesomorphy, self.ectomorphy)


@dataclass
class KerrMasses:
    """Five-component fractionation (kg); sums to body weight or is all zero"""

    skin_kg: float = 0.0
    adipose_kg: float = 0.0
    muscle_kg: float = 0.0
    bone_kg: float = 0.0
    residual_kg: float = 0.0
    diagnostic: Optional[str] = None

    @property
    def total_kg(self) -> float:
        return (
            self.skin_kg
            + self.adipose_kg
            + self.muscle_kg
            + self.bone_kg
            + self.residual_kg
        )

    def as_dict(self) -> Dict[str, float]:
        return {
            "skin_kg": self.skin_kg,
            "adipose_kg": self.adipose_kg,
            "muscle_kg": self.muscle_kg,
            "bone_kg": self.bone_kg,
            "residual_kg": self.residual_kg,
        }


@dataclass
class CompositionResult:
    """Complete body composition for one measurement record"""

    body_density: float
    body_fat_pct: float
    fat_mass_kg: float  # Two-component (Siri) lipid mass
    kerr: KerrMasses
    somatotype: Somatotype
    density_formula: str
    profile: Optional[DensityProfile] = None
    diagnostics: List[str] = field(default_factory=list)


@dataclass
class BMIResult:
    """Body mass index and its life-stage interpretation"""

    value: float
    diagnosis: str
    z_score: Optional[float] = None  # Only for the pediatric BMI-for-age path
    percentile: Optional[float] = None  # 0-100 scale


@dataclass
class EnergyExpenditureParams:
    """Inputs of the energy expenditure calculator"""

    weight_kg: Optional[float]
    stature_cm: Optional[float]
    age_years: Optional[float]
    sex: Sex
    activity_level: object = ActivityLevel.MODERATE  # enum or loose string
    formula: object = BMRFormula.MIFFLIN  # enum or loose string
    fat_pct: Optional[float] = None  # Required for Katch-McArdle / Cunningham
    include_tef: bool = True


@dataclass
class EnergyExpenditureResult:
    """Basal and total daily energy expenditure (kcal/day)"""

    bmr_kcal: float
    activity_factor: float
    tef_kcal: float
    tdee_kcal: float
    formula: str  # Name of the formula that actually executed
    substitutions: List[str] = field(default_factory=list)


@dataclass
class ProteinTargetWeight:
    """Weight selected for protein dosing"""

    weight_kg: float
    label: str
    basis: ProteinBasis
    warning: Optional[str] = None


@dataclass
class ProteinRange:
    """Daily protein range in grams"""

    min_g: int
    max_g: int
    is_critical: bool = False  # Floor must not be negotiated downward
    warning: Optional[str] = None
    substitution: Optional[str] = None  # Set when an unknown activity was replaced


@dataclass
class CalorieTarget:
    """TDEE after a deficit/surplus preset"""

    target_kcal: float
    adjustment_kcal: float
    percentage: float
    preset: CaloriePreset
    label: str
    description: str


# ============================================================================
# CONSTANTS AND REFERENCE TABLES
# ============================================================================

SOMATOTYPE_FLOOR = 0.1

# Heath-Carter / Phantom height normalisation (cm)
PHANTOM_STATURE_CM = 170.18

# Ross & Wilson (1974) Phantom reference body
PHANTOM_REFERENCE = MappingProxyType(
    {
        # Breadths (cm)
        "humerus": PhantomValue(6.48, 0.35),
        "femur": PhantomValue(9.52, 0.48),
        "biacromial": PhantomValue(38.04, 1.92),
        "biiliocristal": PhantomValue(28.84, 1.75),
        # Corrected girths (cm)
        "arm_corrected": PhantomValue(26.89, 2.33),
        "thigh_corrected": PhantomValue(55.82, 4.23),
        "calf_corrected": PhantomValue(35.25, 2.30),
        # Skinfolds (mm)
        "triceps": PhantomValue(15.4, 4.47),
        "subscapular": PhantomValue(17.2, 5.07),
        "supraspinale": PhantomValue(15.4, 4.47),
        "abdominal": PhantomValue(25.4, 7.36),
        "thigh": PhantomValue(27.0, 7.83),
        "calf": PhantomValue(23.1, 6.70),
        # Tissue masses (kg)
        "bone_mass": PhantomValue(10.50, 1.36),
        "muscle_mass": PhantomValue(24.50, 5.40),
        "residual_mass": PhantomValue(6.10, 1.41),
        "adipose_mass": PhantomValue(25.60, 5.85),
    }
)

# Activity factors (multiples of BMR)
ACTIVITY_FACTORS = MappingProxyType(
    {
        ActivityLevel.SEDENTARY: 1.2,
        ActivityLevel.LIGHT: 1.375,
        ActivityLevel.MODERATE: 1.55,
        ActivityLevel.ACTIVE: 1.725,
        ActivityLevel.VERY_ACTIVE: 1.9,
        ActivityLevel.ELITE: 2.2,
        ActivityLevel.ULTRA: 2.5,
    }
)

# IOM (2005) physical activity coefficients, ages 3-18
PEDIATRIC_PA_COEFFICIENTS = MappingProxyType(
    {
        Sex.MALE: MappingProxyType(
            {"sedentary": 1.00, "light": 1.13, "moderate": 1.26, "very_active": 1.42}
        ),
        Sex.FEMALE: MappingProxyType(
            {"sedentary": 1.00, "light": 1.16, "moderate": 1.31, "very_active": 1.56}
        ),
    }
)

# Thermic effect of food as a fraction of BMR x activity factor
TEF_FACTOR = 0.10

CALORIE_GOAL_PRESETS = MappingProxyType(
    {
        CaloriePreset.AGGRESSIVE_DEFICIT: {
            "label": "Aggressive deficit",
            "percentage": -25,
            "description": "Rapid loss (max. 1 kg/week)",
        },
        CaloriePreset.MODERATE_DEFICIT: {
            "label": "Moderate deficit",
            "percentage": -20,
            "description": "Sustainable loss (0.5-0.75 kg/week)",
        },
        CaloriePreset.MILD_DEFICIT: {
            "label": "Mild deficit",
            "percentage": -15,
            "description": "Gradual loss (0.25-0.5 kg/week)",
        },
        CaloriePreset.MAINTENANCE: {
            "label": "Maintenance",
            "percentage": 0,
            "description": "Keep current weight",
        },
        CaloriePreset.MILD_SURPLUS: {
            "label": "Mild surplus",
            "percentage": 10,
            "description": "Lean muscle gain",
        },
        CaloriePreset.MODERATE_SURPLUS: {
            "label": "Moderate surplus",
            "percentage": 15,
            "description": "Bulking phase",
        },
    }
)
