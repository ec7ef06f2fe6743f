import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from energy_classifier import MetricType, SourceType, MONTHS

logger = logging.getLogger(__name__)


class ForecastConfig:
    """Configuration constants for aggregation and projection"""

    # Projection policies
    NEXT_MONTH = 'next_month'        # only the month after the last actual month
    REMAINING_YEAR = 'remaining'     # every month after the last actual month
    DEFAULT_POLICY = NEXT_MONTH

    # Usage volumes in mixed units cannot be summed across sources
    USAGE_AS_TOE = 'toe'
    USAGE_RAW_SUM = 'raw'
    DEFAULT_USAGE_POLICY = USAGE_AS_TOE

    TREND_WINDOW = 3
    PEAK_MONTH_INDICES = (0, 1, 5, 6, 7, 11)  # Jan, Feb, Jun, Jul, Aug, Dec
    PEAK_SEASON_UPLIFT = 1.05


SERIES_COLUMNS = ['month', 'label', 'previous', 'current', 'projected', 'diff']


def empty_series() -> pd.DataFrame:
    """Twelve months with no previous-year values and no actuals"""
    series = pd.DataFrame({
        'month': range(1, 13),
        'label': MONTHS,
        'previous': 0.0,
        'current': np.nan,
        'projected': np.nan,
        'diff': 0.0,
    })
    return series[SERIES_COLUMNS]


def find_last_actual_index(values: Iterable) -> int:
    """Index of the last month with a positive value, -1 when there is none"""
    last = -1
    for i, value in enumerate(values):
        if value is not None and not pd.isna(value) and value > 0:
            last = i
    return last


def resolve_metric(metric: MetricType, source: SourceType,
                   usage_policy: str = ForecastConfig.DEFAULT_USAGE_POLICY) -> MetricType:
    """
    Metric actually read from the store for a selection.

    Usage across all sources mixes kWh, m³ and MWh, so under the default policy
    the energy-equivalent (TOE) total is read instead.
    """
    metric = MetricType(metric)
    if (usage_policy == ForecastConfig.USAGE_AS_TOE
            and metric is MetricType.USAGE and SourceType(source) is SourceType.ALL):
        return MetricType.TOE
    return metric


def aggregate(store, view: str, entities: Sequence[str], metric: MetricType, source: SourceType,
              usage_policy: str = ForecastConfig.DEFAULT_USAGE_POLICY) -> pd.DataFrame:
    """
    Sum the monthly cells of the selected entities into one 12-month series.

    Null current-year cells count as 0 in the sums; the last actual month of the
    result is recomputed from the summed values and later months are nulled.

    Parameters:
    store: SeriesStore to read (never modified)
    view: 'Building' or 'Tenant'
    entities: selected entity names; unknown names are ignored
    metric, source: metric type and source filter
    usage_policy: ForecastConfig.USAGE_AS_TOE or ForecastConfig.USAGE_RAW_SUM
    """
    series = empty_series()
    if store is None or not entities:
        return series

    target_metric = resolve_metric(metric, source, usage_policy)
    cells = store.cells(view, entities, target_metric, source)

    missing = set(entities) - set(cells['entity'])
    if missing:
        logger.debug("Ignoring unknown %s entities: %s", view, sorted(missing))

    sums = cells.groupby('month')[['previous', 'current']].sum().reindex(range(1, 13), fill_value=0.0)
    series['previous'] = sums['previous'].to_numpy(dtype=float)
    series['current'] = sums['current'].to_numpy(dtype=float)

    last = find_last_actual_index(series['current'])
    series['current'] = series['current'].where(series.index <= last)
    series['diff'] = np.where(series['current'].notna(), series['current'] - series['previous'], 0.0)
    return series


def compute_trend_ratio(series: pd.DataFrame, last_index: int,
                        window: int = ForecastConfig.TREND_WINDOW) -> float:
    """Mean current/previous ratio over the trailing actual months with previous > 0"""
    if last_index < 0:
        return 1.0
    recent = series.iloc[max(0, last_index - window + 1):last_index + 1]
    recent = recent[recent['previous'] > 0]
    if recent.empty:
        return 1.0
    ratios = recent['current'].fillna(0.0) / recent['previous']
    return float(ratios.mean())


def seasonal_rate(trend_ratio: float, month_index: int) -> float:
    """Apply the peak-season uplift to a rising trend"""
    if month_index in ForecastConfig.PEAK_MONTH_INDICES and trend_ratio > 1.0:
        return trend_ratio * ForecastConfig.PEAK_SEASON_UPLIFT
    return trend_ratio


def project(series: pd.DataFrame, policy: str = ForecastConfig.DEFAULT_POLICY) -> pd.DataFrame:
    """
    Fill projected values after the last actual month.

    The projection is previous-year value × trend ratio (with the seasonal
    uplift). Under NEXT_MONTH only the month right after the last actual month
    is projected; under REMAINING_YEAR every later month is. Months at or before
    the last actual month never carry a projection.
    """
    if policy not in (ForecastConfig.NEXT_MONTH, ForecastConfig.REMAINING_YEAR):
        raise ValueError(f"Unknown projection policy: {policy}")

    projected = series.copy()
    last = find_last_actual_index(projected['current'])
    ratio = compute_trend_ratio(projected, last)

    projected['current'] = projected['current'].where(projected.index <= last)
    projected['projected'] = np.nan

    if policy == ForecastConfig.NEXT_MONTH:
        targets = [last + 1] if last + 1 < 12 else []
    else:
        targets = list(range(last + 1, 12))

    for idx in targets:
        projected.loc[idx, 'projected'] = projected.loc[idx, 'previous'] * seasonal_rate(ratio, idx)

    logger.debug("Projected months %s with trend ratio %.4f", [t + 1 for t in targets], ratio)
    return projected


def build_series(store, view: str, entities: Sequence[str], metric: MetricType, source: SourceType,
                 policy: str = ForecastConfig.DEFAULT_POLICY,
                 usage_policy: str = ForecastConfig.DEFAULT_USAGE_POLICY) -> pd.DataFrame:
    """Aggregate a selection and project it"""
    return project(aggregate(store, view, entities, metric, source, usage_policy), policy)
