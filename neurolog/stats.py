"""
Statistical primitives shared by every analysis.

All functions are total: empty inputs, zero variance and zero totals return
documented neutral values instead of raising. Nothing here touches records;
inputs are plain numbers and sequences.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Interval:
    """Confidence interval around a point estimate."""

    lower: float
    upper: float
    point: float


@dataclass(frozen=True)
class MultipleComparisonResult:
    adjusted_p_values: List[float]
    significant: List[bool]


@dataclass(frozen=True)
class TrendTest:
    tau: float
    p_value: float
    trend: str  # increasing | decreasing | no_trend


@dataclass(frozen=True)
class WelchResult:
    t_statistic: float
    p_value: float
    significant: bool


@dataclass(frozen=True)
class OutlierResult:
    outliers: List[float]
    indices: List[int]
    lower_bound: float
    upper_bound: float


@dataclass(frozen=True)
class CalibrationBin:
    bin_center: float
    predicted_mean: float
    actual_mean: float
    count: int


@dataclass(frozen=True)
class CalibrationResult:
    brier_score: float
    calibration_bins: List[CalibrationBin] = field(default_factory=list)
    is_calibrated: bool = True


# ---------------------------------------------------------------------------
# Distributions
# ---------------------------------------------------------------------------

def normal_cdf(x: float) -> float:
    """Standard normal CDF (Abramowitz & Stegun 7.1.26), saturating outside ±8."""
    if x < -8:
        return 0.0
    if x > 8:
        return 1.0

    a1, a2, a3, a4, a5 = (
        0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429,
    )
    p = 0.3275911

    sign = -1.0 if x < 0 else 1.0
    z = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + p * z)
    y = 1.0 - ((((a5 * t + a4) * t + a3) * t + a2) * t + a1) * t * math.exp(-z * z)
    return 0.5 * (1.0 + sign * y)


_MAX_LOG_FLOAT = math.log(1.7976931348623157e308)
_GAMMA_MAX_TERMS = 200
_GAMMA_EPS = 1e-12
_GAMMA_TINY = 1e-300

_LANCZOS = (
    0.99999999999980993,
    676.5203681218851,
    -1259.1392167224028,
    771.32342877765313,
    -176.61502916214059,
    12.507343278686905,
    -0.13857109526572012,
    9.9843695780195716e-6,
    1.5056327351493116e-7,
)


def log_gamma(z: float) -> float:
    """ln Γ(z) for z > 0 via the Lanczos series (g=7)."""
    if z < 0.5:
        # Γ(z) = π / (sin(πz) Γ(1-z)); sin(πz) > 0 on (0, 0.5)
        return math.log(math.pi / math.sin(math.pi * z)) - log_gamma(1.0 - z)

    z -= 1.0
    g = 7
    x = _LANCZOS[0]
    for i in range(1, g + 2):
        x += _LANCZOS[i] / (z + i)
    t = z + g + 0.5
    return 0.5 * math.log(2 * math.pi) + (z + 0.5) * math.log(t) - t + math.log(x)


def gamma_function(z: float) -> float:
    """
    Gamma function via Lanczos (g=7), with reflection for z < 0.5.

    Returns inf at the poles (0, -1, -2, ...) and once Γ(z) exceeds the
    float range (z above ~171.6).
    """
    if z <= 0 and z == math.floor(z):
        return math.inf
    if z < 0.5:
        return math.pi / (math.sin(math.pi * z) * gamma_function(1.0 - z))

    log_value = log_gamma(z)
    if log_value > _MAX_LOG_FLOAT:
        return math.inf
    return math.exp(log_value)


def gamma_cdf(x: float, a: float) -> float:
    """
    Regularized lower incomplete gamma P(a, x).

    For x < a + 1 the series

        P(a, x) = x^a e^-x / Γ(a) · Σ x^n / (a (a+1) ... (a+n))

    converges quickly. Beyond that it needs far more than 100 terms, so the
    upper tail Q(a, x) is taken from its continued fraction (modified Lentz)
    and P = 1 - Q.
    """
    if x <= 0 or a <= 0:
        return 0.0

    # x^a overflows for large x; combine in log space
    log_prefix = a * math.log(x) - x - log_gamma(a)

    if x < a + 1.0:
        term = 1.0 / a
        total = term
        for n in range(1, _GAMMA_MAX_TERMS):
            term *= x / (a + n)
            total += term
            if abs(term) < _GAMMA_EPS * abs(total):
                break
        return min(1.0, math.exp(log_prefix + math.log(total)))

    b = x + 1.0 - a
    c = 1.0 / _GAMMA_TINY
    d = 1.0 / b
    h = d
    for i in range(1, _GAMMA_MAX_TERMS):
        an = -i * (i - a)
        b += 2.0
        d = an * d + b
        if abs(d) < _GAMMA_TINY:
            d = _GAMMA_TINY
        c = b + an / c
        if abs(c) < _GAMMA_TINY:
            c = _GAMMA_TINY
        d = 1.0 / d
        delta = d * c
        h *= delta
        if abs(delta - 1.0) < _GAMMA_EPS:
            break
    upper = math.exp(log_prefix) * h
    return min(1.0, max(0.0, 1.0 - upper))


def chi_squared_p_value(chi_sq: float, df: int = 1) -> float:
    """Upper-tail p-value of the chi-squared distribution."""
    if chi_sq <= 0 or df <= 0:
        return 1.0
    if df == 1:
        p = 2.0 * (1.0 - normal_cdf(math.sqrt(chi_sq)))
    else:
        p = 1.0 - gamma_cdf(chi_sq / 2.0, df / 2.0)
    return float(min(1.0, max(0.0, p)))


_ACKLAM_A = (
    -3.969683028665376e+01, 2.209460984245205e+02, -2.759285104469687e+02,
    1.383577518672690e+02, -3.066479806614716e+01, 2.506628277459239e+00,
)
_ACKLAM_B = (
    -5.447609879822406e+01, 1.615858368580409e+02, -1.556989798598866e+02,
    6.680131188771972e+01, -1.328068155288572e+01,
)
_ACKLAM_C = (
    -7.784894002430293e-03, -3.223964580411365e-01, -2.400758277161838e+00,
    -2.549732539343734e+00, 4.374664141464968e+00, 2.938163982698783e+00,
)
_ACKLAM_D = (
    7.784695709041462e-03, 3.224671290700398e-01, 2.445134137142996e+00,
    3.754408661907416e+00,
)


def normal_quantile(p: float) -> float:
    """Inverse standard normal CDF (Acklam's rational approximation)."""
    if p <= 0:
        return -math.inf
    if p >= 1:
        return math.inf
    if p == 0.5:
        return 0.0

    a, b, c, d = _ACKLAM_A, _ACKLAM_B, _ACKLAM_C, _ACKLAM_D
    p_low = 0.02425
    p_high = 1 - p_low

    if p < p_low:
        q = math.sqrt(-2 * math.log(p))
        return (((((c[0] * q + c[1]) * q + c[2]) * q + c[3]) * q + c[4]) * q + c[5]) / \
               ((((d[0] * q + d[1]) * q + d[2]) * q + d[3]) * q + 1)
    if p <= p_high:
        q = p - 0.5
        r = q * q
        return (((((a[0] * r + a[1]) * r + a[2]) * r + a[3]) * r + a[4]) * r + a[5]) * q / \
               (((((b[0] * r + b[1]) * r + b[2]) * r + b[3]) * r + b[4]) * r + 1)
    q = math.sqrt(-2 * math.log(1 - p))
    return -(((((c[0] * q + c[1]) * q + c[2]) * q + c[3]) * q + c[4]) * q + c[5]) / \
           ((((d[0] * q + d[1]) * q + d[2]) * q + d[3]) * q + 1)


# ---------------------------------------------------------------------------
# Confidence intervals
# ---------------------------------------------------------------------------

def wilson_score_interval(
    successes: float,
    total: float,
    confidence: float = 0.95,
) -> Interval:
    """
    Wilson score interval for a binomial proportion.

    Well-behaved at small n and at proportions of 0 or 1, unlike the
    normal-approximation interval. total = 0 → [0, 1] around 0.
    """
    if total <= 0:
        return Interval(lower=0.0, upper=1.0, point=0.0)

    z = normal_quantile((1 + confidence) / 2)
    n = float(total)
    p = min(1.0, max(0.0, successes / n))

    denominator = 1 + z * z / n
    center = p + z * z / (2 * n)
    margin = z * math.sqrt((p * (1 - p) + z * z / (4 * n)) / n)

    lower = max(0.0, (center - margin) / denominator)
    upper = min(1.0, (center + margin) / denominator)
    # Floating error can push a bound a hair past the point at p = 0 or 1
    return Interval(lower=min(lower, p), upper=max(upper, p), point=p)


def bootstrap_mean_ci(
    data: Sequence[float],
    confidence: float = 0.95,
    iterations: int = 1000,
    seed: Optional[int] = None,
) -> Interval:
    """
    Percentile bootstrap interval for the mean.

    Resamples with replacement `iterations` times. Pass `seed` for a
    reproducible interval; without it results vary run-to-run.
    """
    values = np.asarray(data, dtype=np.float64)
    if values.size == 0:
        return Interval(lower=0.0, upper=0.0, point=0.0)
    if values.size == 1:
        v = float(values[0])
        return Interval(lower=v, upper=v, point=v)

    iterations = max(1, int(iterations))
    rng = np.random.default_rng(seed)
    idx = rng.integers(0, values.size, size=(iterations, values.size))
    means = np.sort(values[idx].mean(axis=1))

    alpha = (1 - confidence) / 2
    lower_idx = int(math.floor(alpha * iterations))
    upper_idx = min(int(math.floor((1 - alpha) * iterations)), iterations - 1)

    return Interval(
        lower=float(means[lower_idx]),
        upper=float(means[upper_idx]),
        point=float(values.mean()),
    )


# ---------------------------------------------------------------------------
# Multiple comparison correction
# ---------------------------------------------------------------------------

def bonferroni_correction(
    p_values: Sequence[float],
    alpha: float = 0.05,
) -> Tuple[float, List[bool]]:
    """Naive family-wise correction: significant iff p < alpha / n."""
    n = len(p_values)
    if n == 0:
        return alpha, []
    corrected = alpha / n
    return corrected, [p < corrected for p in p_values]


def benjamini_hochberg_correction(
    p_values: Sequence[float],
    fdr_level: float = 0.05,
) -> MultipleComparisonResult:
    """
    Benjamini–Hochberg false discovery rate adjustment.

    Sorted ascending, each p is scaled by n / rank; a running minimum is
    carried from the largest rank down so adjusted values stay monotone.
    Results are reported in the caller's original order.
    """
    n = len(p_values)
    if n == 0:
        return MultipleComparisonResult(adjusted_p_values=[], significant=[])

    order = sorted(range(n), key=lambda i: p_values[i])
    adjusted = [1.0] * n
    running_min = 1.0
    for pos in range(n - 1, -1, -1):
        idx = order[pos]
        rank = pos + 1
        running_min = min(running_min, p_values[idx] * n / rank)
        adjusted[idx] = running_min

    return MultipleComparisonResult(
        adjusted_p_values=adjusted,
        significant=[p < fdr_level for p in adjusted],
    )


# ---------------------------------------------------------------------------
# Trend detection
# ---------------------------------------------------------------------------

def mann_kendall_test(data: Sequence[float]) -> TrendTest:
    """
    Mann–Kendall monotonic trend test.

    S sums sign(x_j - x_i) over all pairs i < j; Var(S) = n(n-1)(2n+5)/18
    (no tie correction). Z is continuity corrected and the two-sided p-value
    comes from the normal CDF. tau = 2S / (n(n-1)). A trend is declared only
    when p < 0.05.
    """
    n = len(data)
    if n < 4:
        return TrendTest(tau=0.0, p_value=1.0, trend="no_trend")

    x = np.asarray(data, dtype=np.float64)
    diffs = x[np.newaxis, :] - x[:, np.newaxis]
    s = int(np.sign(diffs[np.triu_indices(n, k=1)]).sum())

    variance = n * (n - 1) * (2 * n + 5) / 18.0
    if s > 0:
        z = (s - 1) / math.sqrt(variance)
    elif s < 0:
        z = (s + 1) / math.sqrt(variance)
    else:
        z = 0.0

    p_value = 2.0 * (1.0 - normal_cdf(abs(z)))
    tau = 2.0 * s / (n * (n - 1))

    trend = "no_trend"
    if p_value < 0.05:
        trend = "increasing" if tau > 0 else "decreasing"
    return TrendTest(tau=tau, p_value=p_value, trend=trend)


# ---------------------------------------------------------------------------
# Quantile-based discretization
# ---------------------------------------------------------------------------

def percentile_value(values: Sequence[float], q: float) -> Optional[float]:
    """Empirical percentile by floor index into the sorted values (q in [0, 1])."""
    if len(values) == 0:
        return None
    ordered = sorted(values)
    idx = min(int(math.floor(q * len(ordered))), len(ordered) - 1)
    return ordered[max(idx, 0)]


def calculate_quantile_thresholds(values: Sequence[float], num_bins: int = 3) -> List[float]:
    """Cut points for equal-frequency bins: num_bins - 1 thresholds."""
    if len(values) == 0:
        return []
    return [percentile_value(values, i / num_bins) for i in range(1, num_bins)]


def assign_to_bin(value: float, thresholds: Sequence[float]) -> int:
    """Index of the first threshold the value falls below."""
    for i, threshold in enumerate(thresholds):
        if value < threshold:
            return i
    return len(thresholds)


# ---------------------------------------------------------------------------
# Outliers and effect size
# ---------------------------------------------------------------------------

def detect_outliers_iqr(values: Sequence[float], multiplier: float = 1.5) -> OutlierResult:
    """Tukey fences at Q1 - k·IQR and Q3 + k·IQR."""
    if len(values) < 4:
        return OutlierResult(outliers=[], indices=[], lower_bound=-math.inf, upper_bound=math.inf)

    q1 = percentile_value(values, 0.25)
    q3 = percentile_value(values, 0.75)
    iqr = q3 - q1
    lower = q1 - multiplier * iqr
    upper = q3 + multiplier * iqr

    indices = [i for i, v in enumerate(values) if v < lower or v > upper]
    return OutlierResult(
        outliers=[values[i] for i in indices],
        indices=indices,
        lower_bound=lower,
        upper_bound=upper,
    )


def welch_t_test(
    sample1: Sequence[float],
    sample2: Sequence[float],
    alpha: float = 0.05,
) -> WelchResult:
    """
    Welch's unequal-variance t statistic with a normal-approximation
    two-sided p-value. Degenerate input (n < 2 or zero standard error)
    yields t = 0, p = 1.
    """
    if len(sample1) < 2 or len(sample2) < 2:
        return WelchResult(t_statistic=0.0, p_value=1.0, significant=False)

    a = np.asarray(sample1, dtype=np.float64)
    b = np.asarray(sample2, dtype=np.float64)
    se = math.sqrt(a.var(ddof=1) / len(a) + b.var(ddof=1) / len(b))
    if se == 0:
        return WelchResult(t_statistic=0.0, p_value=1.0, significant=False)

    t = float((a.mean() - b.mean()) / se)
    p = min(1.0, max(0.0, 2.0 * (1.0 - normal_cdf(abs(t)))))
    return WelchResult(t_statistic=t, p_value=p, significant=p < alpha)


def cohens_d(group1: Sequence[float], group2: Sequence[float]) -> float:
    """Cohen's d with pooled sample standard deviation; 0 when undefined."""
    n1, n2 = len(group1), len(group2)
    if n1 == 0 or n2 == 0 or n1 + n2 <= 2:
        return 0.0

    a = np.asarray(group1, dtype=np.float64)
    b = np.asarray(group2, dtype=np.float64)
    var1 = a.var(ddof=1) if n1 > 1 else 0.0
    var2 = b.var(ddof=1) if n2 > 1 else 0.0

    pooled = math.sqrt(((n1 - 1) * var1 + (n2 - 1) * var2) / (n1 + n2 - 2))
    if pooled == 0:
        return 0.0
    return float((a.mean() - b.mean()) / pooled)


def interpret_effect_size(d: float) -> str:
    magnitude = abs(d)
    if magnitude < 0.2:
        return "negligible"
    if magnitude < 0.5:
        return "small"
    if magnitude < 0.8:
        return "medium"
    return "large"


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------

def calibration_check(
    predictions: Sequence[Tuple[float, bool]],
    num_bins: int = 10,
    min_bin_count: int = 5,
    tolerance: float = 0.10,
) -> CalibrationResult:
    """
    Brier score plus reliability bins for (predicted probability, outcome) pairs.

    Calibrated iff every bin with at least `min_bin_count` samples has
    |mean predicted - observed rate| < tolerance.
    """
    if len(predictions) == 0:
        return CalibrationResult(brier_score=0.0, calibration_bins=[], is_calibrated=True)

    predicted = np.array([p for p, _ in predictions], dtype=np.float64)
    actual = np.array([1.0 if a else 0.0 for _, a in predictions], dtype=np.float64)
    brier = float(np.mean((predicted - actual) ** 2))

    bin_idx = np.clip(np.floor(predicted * num_bins).astype(int), 0, num_bins - 1)
    bins: List[CalibrationBin] = []
    for i in range(num_bins):
        mask = bin_idx == i
        count = int(mask.sum())
        center = (i + 0.5) / num_bins
        if count == 0:
            bins.append(CalibrationBin(center, 0.0, 0.0, 0))
            continue
        bins.append(CalibrationBin(
            bin_center=center,
            predicted_mean=float(predicted[mask].mean()),
            actual_mean=float(actual[mask].mean()),
            count=count,
        ))

    max_dev = max(
        (abs(b.predicted_mean - b.actual_mean) for b in bins if b.count >= min_bin_count),
        default=0.0,
    )
    return CalibrationResult(brier_score=brier, calibration_bins=bins, is_calibrated=max_dev < tolerance)


# ---------------------------------------------------------------------------
# Back-testing helper
# ---------------------------------------------------------------------------

def train_test_split(items: Sequence, test_ratio: float = 0.2, seed: Optional[int] = None) -> Tuple[list, list]:
    """Shuffle (seeded when `seed` is given) and split into (train, test)."""
    shuffled = list(items)
    rng = np.random.default_rng(seed)
    for i in range(len(shuffled) - 1, 0, -1):
        j = int(rng.integers(0, i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    split = int(math.floor(len(shuffled) * (1 - test_ratio)))
    return shuffled[:split], shuffled[split:]
