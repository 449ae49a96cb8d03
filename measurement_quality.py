"""
Measurement Reliability (ISAK Technical Error of Measurement)

Quantifies the precision of repeated anthropometric takes so a measurer can
tell whether a site must be re-measured before it feeds the composition
equations.

References:
- Dahlberg (1940): TEM = sqrt(sum(d^2) / 2n)
- ISAK (2011): intra-observer %TEM targets, < 5% skinfolds, < 1% girths and breadths
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Intra-observer %TEM limits: (excellent, acceptable)
ISAK_TEM_THRESHOLDS = {
    "skinfolds": (2.5, 5.0),
    "girths": (0.5, 1.0),
    "breadths": (0.5, 1.0),
    "basic": (0.2, 0.5),
}

MEASUREMENT_CATEGORIES = {
    "triceps": "skinfolds",
    "subscapular": "skinfolds",
    "biceps": "skinfolds",
    "iliac_crest": "skinfolds",
    "supraspinale": "skinfolds",
    "abdominal": "skinfolds",
    "thigh": "skinfolds",
    "calf": "skinfolds",
    "arm_relaxed": "girths",
    "arm_flexed": "girths",
    "waist": "girths",
    "hip": "girths",
    "mid_thigh": "girths",
    "calf_girth": "girths",
    "humerus": "breadths",
    "femur": "breadths",
    "biacromial": "breadths",
    "biiliocristal": "breadths",
    "bistyloid": "breadths",
    "weight": "basic",
    "stature": "basic",
}


@dataclass
class SiteReliability:
    """TEM assessment of one measurement site"""

    site: str
    tem: float  # Absolute, in the site's unit
    tem_pct: float
    mean: float
    rating: str  # excellent, acceptable or poor

    @property
    def needs_remeasurement(self) -> bool:
        return self.rating == "poor"


@dataclass
class OverallReliability:
    """Aggregate reliability of an evaluation session"""

    mean_tem: float
    mean_tem_pct: float
    rating: str
    sites: List[SiteReliability] = field(default_factory=list)

    @property
    def meets_isak_standard(self) -> bool:
        return all(not s.needs_remeasurement for s in self.sites)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "site": s.site,
                    "tem": s.tem,
                    "tem_pct": s.tem_pct,
                    "mean": s.mean,
                    "rating": s.rating,
                    "needs_remeasurement": s.needs_remeasurement,
                }
                for s in self.sites
            ]
        )


def site_category(site: str) -> str:
    """Threshold category of a site; unknown sites are judged as skinfolds."""
    return MEASUREMENT_CATEGORIES.get(site, "skinfolds")


def technical_error(values: Sequence[float]) -> float:
    """
    Dahlberg TEM over every pair of replicate takes.

    Args:
        values: Two or more takes of the same site

    Returns:
        TEM in the measurement unit, 0.0 with fewer than two takes
    """
    if len(values) < 2:
        return 0.0
    diffs = np.array([a - b for a, b in combinations(values, 2)])
    return float(np.sqrt(np.sum(diffs**2) / (2 * len(diffs))))


def site_reliability(values: Sequence[float], site: str) -> SiteReliability:
    """
    Rate the precision of one site's replicate takes.

    A single take cannot be assessed and is rated poor.
    """
    values = [float(v) for v in values]
    if len(values) < 2:
        return SiteReliability(
            site=site,
            tem=0.0,
            tem_pct=0.0,
            mean=values[0] if values else 0.0,
            rating="poor",
        )

    mean = float(np.mean(values))
    tem = technical_error(values)
    tem_pct = tem / mean * 100 if mean > 0 else 0.0

    excellent, acceptable = ISAK_TEM_THRESHOLDS[site_category(site)]
    if tem_pct <= excellent:
        rating = "excellent"
    elif tem_pct <= acceptable:
        rating = "acceptable"
    else:
        rating = "poor"
        logger.info(f"{site}: TEM {tem_pct:.1f}% exceeds ISAK limit, re-measure")

    return SiteReliability(
        site=site,
        tem=round(tem, 2),
        tem_pct=round(tem_pct, 2),
        mean=round(mean, 2),
        rating=rating,
    )


def needs_third_measurement(value1: float, value2: float, site: str) -> bool:
    """ISAK rule: take a third measurement when the first two differ too much."""
    mean = (value1 + value2) / 2
    pct_diff = abs(value1 - value2) / mean * 100 if mean > 0 else 0.0
    return pct_diff > ISAK_TEM_THRESHOLDS[site_category(site)][1]


def overall_reliability(replications: Dict[str, Sequence[float]]) -> OverallReliability:
    """
    Combine site assessments into a session rating.

    Poor if any site is poor, acceptable if more than half of the sites are
    acceptable, excellent otherwise. Means only include sites with a TEM.

    Args:
        replications: Mapping of site name to its replicate takes

    Returns:
        OverallReliability with the per-site breakdown
    """
    sites = [site_reliability(values, site) for site, values in replications.items()]
    scored = [s for s in sites if s.tem > 0]

    ratings = [s.rating for s in sites]
    if "poor" in ratings:
        rating = "poor"
    elif ratings.count("acceptable") > len(ratings) / 2:
        rating = "acceptable"
    else:
        rating = "excellent"

    return OverallReliability(
        mean_tem=round(float(np.mean([s.tem for s in scored])), 2) if scored else 0.0,
        mean_tem_pct=round(float(np.mean([s.tem_pct for s in scored])), 2) if scored else 0.0,
        rating=rating,
        sites=sites,
    )
