import logging
from typing import Dict, Optional, Sequence

import pandas as pd

from energy_classifier import MetricType, SourceType, MIX_SOURCES, MONTHS
from energy_forecast import ForecastConfig, build_series, find_last_actual_index

logger = logging.getLogger(__name__)

NEXT_YEAR_LABEL = '내년 1월'


def _percent(diff: float, base: float) -> float:
    return diff / base * 100 if base else 0.0


def calculate_summary(series: pd.DataFrame, years=None) -> Dict:
    """
    Year-to-date totals and latest/next month figures for a projected series.

    YTD totals cover months up to and including the last actual month.
    Months without an actual or projected value count as 0.
    """
    last = find_last_actual_index(series['current'])
    previous = series['previous'].astype(float)
    current = series['current'].fillna(0.0)
    projected = series['projected'].fillna(0.0)

    total_previous_ytd = float(previous.iloc[:last + 1].sum())
    total_current_actual = float(current.iloc[:last + 1].sum())
    total_projected = total_current_actual + float(projected.sum())
    diff = total_current_actual - total_previous_ytd

    if last > -1:
        latest_value = float(current.iloc[last])
        latest_previous = float(previous.iloc[last])
        latest = {
            'label': series['label'].iloc[last],
            'value': latest_value,
            'previous': latest_previous,
            'diff': latest_value - latest_previous,
            'percent': _percent(latest_value - latest_previous, latest_previous),
        }
    else:
        latest = {'label': '-', 'value': 0.0, 'previous': 0.0, 'diff': 0.0, 'percent': 0.0}

    next_idx = last + 1
    if next_idx < len(series):
        next_previous = float(previous.iloc[next_idx])
        next_projected = float(projected.iloc[next_idx])
        next_month = {
            'label': series['label'].iloc[next_idx],
            'previous': next_previous,
            'projected': next_projected,
            'diff': next_projected - next_previous,
            'percent': _percent(next_projected - next_previous, next_previous),
        }
    else:
        next_month = {'label': NEXT_YEAR_LABEL, 'previous': 0.0, 'projected': 0.0, 'diff': 0.0, 'percent': 0.0}

    summary = {
        'last_actual_index': last,
        'total_previous_ytd': total_previous_ytd,
        'total_current_actual': total_current_actual,
        'total_projected': total_projected,
        'diff': diff,
        'yoy_percent': _percent(diff, total_previous_ytd),
        'latest_month': latest,
        'next_month': next_month,
    }
    if years is not None:
        summary['previous_year'] = years.previous
        summary['current_year'] = years.current
    return summary


def _actual_plus_projected(series: pd.DataFrame) -> float:
    return float(series['current'].fillna(0.0).sum() + series['projected'].fillna(0.0).sum())


def calculate_source_mix(store, view: str, entities: Sequence[str], metric: MetricType,
                         source: SourceType = SourceType.ALL,
                         policy: str = ForecastConfig.DEFAULT_POLICY) -> Optional[pd.DataFrame]:
    """
    Per-source totals (actual + projected) of the selection.

    Only defined for the "전체" source filter; returns None otherwise. Sources
    with a zero total are left out.
    """
    if SourceType(source) is not SourceType.ALL or store is None or not entities:
        return None

    rows = []
    for mix_source in MIX_SOURCES:
        series = build_series(store, view, entities, metric, mix_source, policy)
        rows.append({'source': mix_source.value, 'value': _actual_plus_projected(series)})

    mix = pd.DataFrame(rows, columns=['source', 'value'])
    mix = mix[mix['value'] > 0].reset_index(drop=True)
    total = mix['value'].sum()
    mix['share'] = mix['value'] / total * 100 if total else 0.0
    return mix


def calculate_growth_ranking(store, view: str, entities: Sequence[str], metric: MetricType,
                             source: SourceType, policy: str = ForecastConfig.DEFAULT_POLICY,
                             usage_policy: str = ForecastConfig.DEFAULT_USAGE_POLICY) -> pd.DataFrame:
    """
    Treemap input: one row per selected entity with its actual + projected total
    and the growth rate against the previous year over the same months.

    Entities with a zero total are excluded; rows are sorted by total, largest first.
    """
    rows = []
    for entity in entities:
        if store is None or not store.has_entity(view, entity):
            continue
        series = build_series(store, view, [entity], metric, source, policy, usage_policy)
        covered = series['current'].notna() | series['projected'].notna()
        value = _actual_plus_projected(series)
        if value <= 0:
            continue
        previous = float(series.loc[covered, 'previous'].sum())
        rows.append({
            'entity': entity,
            'value': value,
            'previous': previous,
            'rate': (value - previous) / previous if previous else 0.0,
        })

    ranking = pd.DataFrame(rows, columns=['entity', 'value', 'previous', 'rate'])
    return ranking.sort_values('value', ascending=False, kind='mergesort').reset_index(drop=True)


def build_export_table(series: pd.DataFrame, summary: Dict, years) -> pd.DataFrame:
    """
    Two-axis table for spreadsheet export: month columns plus a total column,
    one row per fiscal year. The current-year row shows actuals and, after the
    last actual month, projections.
    """
    previous_values = series['previous'].astype(float).tolist()
    current_values = series['current'].combine_first(series['projected'])
    current_values = [None if pd.isna(v) else float(v) for v in current_values]

    table = pd.DataFrame(
        [
            [f"{years.previous}년"] + previous_values + [float(sum(previous_values))],
            [f"{years.current}년"] + current_values + [summary['total_projected']],
        ],
        columns=['구분'] + MONTHS + ['합계'],
    )
    return table


def export_filename(metric: MetricType) -> str:
    return f"Energy_Pro_Report_{MetricType(metric).value}.xlsx"


def export_to_excel(table: pd.DataFrame, path, sheet_name: str = 'Data'):
    """Write the export table to an .xlsx path or binary buffer"""
    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        table.to_excel(writer, sheet_name=sheet_name, index=False)
    logger.info("Exported %d rows to sheet '%s'", len(table), sheet_name)
    return path
