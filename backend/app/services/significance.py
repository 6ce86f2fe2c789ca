"""Two-proportion z-test used to decide whether a challenger beats the control."""
import math
from typing import NamedTuple

# Abramowitz & Stegun 7.1.26 coefficients (max error ~1.5e-7).
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911

SIGNIFICANCE_LEVEL = 0.05
MAX_CONFIDENCE = 99.9


class SignificanceResult(NamedTuple):
    """Outcome of a two-tailed significance test."""
    significant: bool
    confidence: float  # percent, clamped to [0, 99.9]
    p_value: float


NOT_SIGNIFICANT = SignificanceResult(significant=False, confidence=0.0, p_value=1.0)


def normal_cdf(z: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun erf approximation."""
    sign = -1 if z < 0 else 1
    x = abs(z) / math.sqrt(2)

    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t) * math.exp(-x * x)

    return 0.5 * (1.0 + sign * y)


def calculate_significance(
    conversions1: int,
    views1: int,
    conversions2: int,
    views2: int
) -> SignificanceResult:
    """
    Compare two conversion rates with a pooled two-proportion z-test.

    Degenerate inputs (no views on either side, or a pooled rate of exactly
    0 or 1) resolve to "not significant" instead of dividing by zero.

    Args:
        conversions1: Conversions of the first group (usually the control)
        views1: Views of the first group
        conversions2: Conversions of the second group
        views2: Views of the second group

    Returns:
        SignificanceResult with a two-tailed p-value

    Example:
        >>> calculate_significance(30, 1000, 90, 1000).significant
        True
    """
    if views1 == 0 or views2 == 0:
        return NOT_SIGNIFICANT

    p1 = conversions1 / views1
    p2 = conversions2 / views2
    p_pooled = (conversions1 + conversions2) / (views1 + views2)
    if p_pooled <= 0 or p_pooled >= 1:
        return NOT_SIGNIFICANT

    se = math.sqrt(p_pooled * (1 - p_pooled) * (1 / views1 + 1 / views2))
    if se == 0:
        return NOT_SIGNIFICANT

    z = abs(p1 - p2) / se
    p_value = 2 * (1 - normal_cdf(z))
    confidence = min(max((1 - p_value) * 100, 0.0), MAX_CONFIDENCE)

    return SignificanceResult(
        significant=p_value < SIGNIFICANCE_LEVEL,
        confidence=confidence,
        p_value=p_value
    )
