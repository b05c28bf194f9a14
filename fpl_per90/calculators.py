"""
FPL Per-90 - Calculators Module

Per-90 scaling and the derived metrics calculator. Every derived field
(value, xGI per price, form score, price bucket) is computed here and only
here; normalizers produce partial records and hand them to complete_metrics().
"""

from dataclasses import replace

from fpl_per90.config import CONFIG, MetricsConfig
from fpl_per90.constants import round_metric
from fpl_per90.models import PlayerMetrics, PriceBucket

__all__ = [
    "per90_scale",
    "scale_to_per90",
    "price_from_cost",
    "ratio_per_price",
    "calculate_form_score",
    "get_price_bucket",
    "complete_metrics",
]


# =============================================================================
# PER-90 SCALING
# =============================================================================

def per90_scale(minutes: float, config: MetricsConfig = None) -> float:
    """90 / minutes, or 0 when the player has not played."""
    cfg = config or CONFIG["metrics"]
    if minutes > 0:
        return cfg.minutes_basis / minutes
    return 0.0


def scale_to_per90(total: float, scale: float) -> float:
    return round_metric(total * scale)


def price_from_cost(now_cost: float, config: MetricsConfig = None) -> float:
    """FPL now_cost is in tenths: 80 -> 8.0."""
    cfg = config or CONFIG["metrics"]
    return now_cost / cfg.price_divisor


# =============================================================================
# DERIVED METRICS
# =============================================================================

def ratio_per_price(rate: float, price: float) -> float:
    if price > 0:
        return round_metric(rate / price)
    return 0.0


def calculate_form_score(points_per90: float, xgi_per90: float, config: MetricsConfig = None) -> float:
    """
    Composite form score.

    formScore = 0.6 * pts/90 + 0.4 * xGI/90
    Points dominate; xGI keeps unlucky finishers from dropping out.
    """
    cfg = config or CONFIG["metrics"]
    return round_metric(cfg.form_points_weight * points_per90 + cfg.form_xgi_weight * xgi_per90)


def get_price_bucket(price: float, config: MetricsConfig = None) -> str:
    """
    Bucket a price (currency units).

    <= 5.5 budget, <= 7.5 mid, anything above premium.
    """
    cfg = config or CONFIG["metrics"]
    if price <= cfg.budget_max_price:
        return PriceBucket.BUDGET.value
    if price <= cfg.mid_max_price:
        return PriceBucket.MID.value
    return PriceBucket.PREMIUM.value


def complete_metrics(record: PlayerMetrics, config: MetricsConfig = None) -> PlayerMetrics:
    """
    Fill the derived fields of a (possibly partial) canonical record.

    value is always recomputed from pts/90 and price. xgi_per_price and
    form_score keep a supplied truthy value; price_bucket keeps any supplied
    value. Returns a new record, the input is never mutated.
    """
    price = record.price or 0.0

    value = ratio_per_price(record.points_per90, price)

    xgi_per_price = record.xgi_per_price
    if not xgi_per_price:
        xgi_per_price = ratio_per_price(record.xgi_per90, price)

    form_score = record.form_score
    if not form_score:
        form_score = calculate_form_score(record.points_per90, record.xgi_per90, config)

    price_bucket = record.price_bucket
    if price_bucket is None:
        price_bucket = get_price_bucket(price, config)

    return replace(
        record,
        value=value,
        xgi_per_price=xgi_per_price,
        form_score=form_score,
        price_bucket=price_bucket,
    )
