import io
import logging
import re
import warnings
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from energy_classifier import (
    MetricType, SourceType, CONCRETE_SOURCES,
    classify_metric_type, classify_row_metric, classify_source,
    resolve_building_label, resolve_entity_alias, resolve_tenant_alias,
)

warnings.filterwarnings('ignore', category=UserWarning, module='openpyxl')

logger = logging.getLogger(__name__)


class Config:
    """Configuration constants for the energy data processor"""

    # Views
    BUILDING_VIEW = 'Building'
    TENANT_VIEW = 'Tenant'

    # Parse modes
    STRICT_MODE = 'strict'
    LOOSE_MODE = 'loose'
    DEFAULT_PARSE_MODE = STRICT_MODE

    # Sheet and header discovery
    HEADER_SCAN_ROWS = 200
    SHEET_RESULT_MARKERS = ('실적', '에너지')
    SHEET_YEAR_MARKERS = ('년', '20')
    MONTH_MARKERS = ('1월', 'jan', 'january')
    CATEGORY_MARKERS = ('년도', '구분')
    MONTH_SUFFIX = '월'

    # Header labels per logical column
    COLUMN_LABELS = {
        'year': ('년도', '연도', 'Year'),
        'category': ('구분',),
        'detail': ('상세구분',),
        'source': ('에너지원',),
        'building': ('건물',),
        'usage': ('사용처',),
        'tenant': ('입주사',),
        'unit': ('단위',),
    }
    DEFAULT_MONTH_START = 9
    FALLBACK_YEAR_COLUMN = 1

    # Row classification (strict mode)
    BUILDING_CATEGORY = '건물별 에너지실적'
    TENANT_CATEGORY = '입주사별 에너지실적'
    VALID_BUILDING_DETAILS = ('전유', '배분(전유)', '배분(공용)')

    # Row classification (loose mode)
    TENANT_MARKER = '입주사'
    META_CELLS = 10
    TENANT_SCAN_START = 4
    TENANT_SCAN_END = 12
    TENANT_SKIP_LABELS = ('사용량', '비용')

    # Years
    YEAR_MIN = 2000
    YEAR_MAX = 2099

    # Default data files probed on start-up
    DEFAULT_DATA_DIR = 'data'
    DEFAULT_DATA_FILES = ('energy_data.xlsx', 'data.xlsx', 'energy.xlsx')


class EnergyDataError(ValueError):
    """Base class for workbook problems surfaced to the caller"""


class HeaderNotFoundError(EnergyDataError):
    """No header row was found inside the scan window"""

    def __init__(self, sheet_name: str, scan_rows: int):
        self.sheet_name = sheet_name
        self.scan_rows = scan_rows
        super().__init__(
            f"헤더를 찾을 수 없습니다: sheet '{sheet_name}', first {scan_rows} rows "
            f"(년도/구분 and 1월 columns expected)"
        )


class EmptyInputError(EnergyDataError):
    """The workbook holds no data rows"""


@dataclass(frozen=True)
class FiscalYearPair:
    previous: int
    current: int

    def key_for(self, year: Optional[int]) -> Optional[str]:
        if year == self.previous:
            return 'previous'
        if year == self.current:
            return 'current'
        return None


@dataclass(frozen=True)
class MonthCell:
    month: int
    previous: float
    current: Optional[float]
    projected: Optional[float]
    diff: float


@dataclass
class ColumnMap:
    year: int = -1
    category: int = -1
    detail: int = -1
    source: int = -1
    building: int = -1
    usage: int = -1
    tenant: int = -1
    unit: int = -1
    month_start: int = -1

    @property
    def months(self) -> List[int]:
        return [self.month_start + m for m in range(12)]


STORE_KEYS = ['view', 'entity', 'metric', 'source']
STORE_COLUMNS = STORE_KEYS + ['month', 'previous', 'current', 'projected', 'diff']
MONTH_COLUMNS = [f'm{m}' for m in range(1, 13)]


def _nan_to_none(value):
    return None if pd.isna(value) else float(value)


class SeriesStore:
    """
    Normalized per-entity monthly series produced by one parse.

    ``frame`` holds one row per (view, entity, metric, source, month) cell with
    ``previous``/``current`` year values; ``current`` is NaN after the last
    month with a positive observation. The store is built once and only read
    afterwards.
    """

    def __init__(self, frame: pd.DataFrame, years: FiscalYearPair, sheet_name: str = '',
                 skipped_rows: int = 0, coerced_cells: int = 0):
        self.frame = frame
        self.years = years
        self.sheet_name = sheet_name
        self.skipped_rows = skipped_rows
        self.coerced_cells = coerced_cells

    def __eq__(self, other):
        if not isinstance(other, SeriesStore):
            return NotImplemented
        return self.years == other.years and self.frame.equals(other.frame)

    def entities(self, view: str) -> List[str]:
        names = self.frame.loc[self.frame['view'] == view, 'entity'].unique().tolist()
        return sorted(names)

    def has_entity(self, view: str, entity: str) -> bool:
        return entity in set(self.frame.loc[self.frame['view'] == view, 'entity'])

    def cells(self, view: str, entities, metric: MetricType, source: SourceType) -> pd.DataFrame:
        """Cells of the given entities for one metric/source, ordered by entity and month"""
        df = self.frame
        mask = (
            (df['view'] == view)
            & df['entity'].isin(list(entities))
            & (df['metric'] == MetricType(metric).value)
            & (df['source'] == SourceType(source).value)
        )
        return df.loc[mask].copy()

    def series(self, view: str, entity: str, metric: MetricType, source: SourceType) -> List[MonthCell]:
        cells = self.cells(view, [entity], metric, source).sort_values('month')
        return [
            MonthCell(
                month=int(row.month),
                previous=float(row.previous),
                current=_nan_to_none(row.current),
                projected=_nan_to_none(row.projected),
                diff=float(row.diff),
            )
            for row in cells.itertuples(index=False)
        ]

    def as_nested(self, view: str) -> Dict[str, Dict[MetricType, Dict[SourceType, List[MonthCell]]]]:
        """entity -> metric -> source -> 12 MonthCells"""
        nested = {}
        for entity in self.entities(view):
            nested[entity] = {
                metric: {source: self.series(view, entity, metric, source) for source in SourceType}
                for metric in MetricType
            }
        return nested

    @property
    def buildings(self):
        return self.as_nested(Config.BUILDING_VIEW)

    @property
    def tenants(self):
        return self.as_nested(Config.TENANT_VIEW)


def coerce_number(value) -> Tuple[float, bool]:
    """
    Convert a spreadsheet cell to a float.

    Returns:
        (value, coerced) where coerced is True when a non-blank cell could not be
        read as a number and was replaced by 0
    """
    if value is None or isinstance(value, bool):
        return 0.0, False
    if isinstance(value, (int, float, np.integer, np.floating)):
        if pd.isna(value):
            return 0.0, False
        return float(value), False
    text = str(value).replace(',', '').strip()
    if not text:
        return 0.0, False
    try:
        number = float(text)
    except ValueError:
        return 0.0, True
    if np.isnan(number):
        return 0.0, True
    return number, False


_YEAR_PATTERN = re.compile(r'(?<!\d)(20\d{2})(?!\d)')


def parse_year(value) -> Optional[int]:
    """Read a 4-digit year (2000-2099) from a year cell"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        if pd.isna(value) or float(value) != int(value):
            return None
        year = int(value)
        return year if Config.YEAR_MIN <= year <= Config.YEAR_MAX else None
    match = _YEAR_PATTERN.search(str(value))
    return int(match.group(1)) if match else None


def find_years_in_text(text: str) -> List[int]:
    return [int(y) for y in _YEAR_PATTERN.findall(text)]


def _cell(row: list, idx: int):
    if idx < 0 or idx >= len(row):
        return None
    return row[idx]


def _text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _is_blank_row(row: list) -> bool:
    return all(_text(c) == '' for c in row)


class EnergyDataProcessor:
    """
    Parse a monthly utility-consumption workbook into a SeriesStore.

    Two row-classification modes exist:
    - strict: rows are routed by an exact category-column match
      ("건물별 에너지실적" / "입주사별 에너지실적") and a building detail whitelist
    - loose: rows are routed by the presence of the tenant marker anywhere in the
      row and entities are matched against the known building/tenant tables
    """

    def __init__(self, mode: str = None, header_scan_rows: int = None):
        self.mode = mode or Config.DEFAULT_PARSE_MODE
        if self.mode not in (Config.STRICT_MODE, Config.LOOSE_MODE):
            raise ValueError(f"Unknown parse mode: {self.mode}")
        self.header_scan_rows = header_scan_rows or Config.HEADER_SCAN_ROWS

    # ------------------------------------------------------------------
    # Workbook access
    # ------------------------------------------------------------------

    def select_sheet(self, sheet_names: List[str]) -> str:
        """Prefer a sheet named like a yearly results sheet, else the first one"""
        if not sheet_names:
            raise EmptyInputError("Workbook contains no sheets")
        for name in sheet_names:
            if (any(m in name for m in Config.SHEET_RESULT_MARKERS)
                    and any(m in name for m in Config.SHEET_YEAR_MARKERS)):
                return name
        return sheet_names[0]

    def read_workbook(self, source) -> Tuple[str, List[list]]:
        """Load the chosen sheet as a list of rows (blank cells as None)"""
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        try:
            with pd.ExcelFile(source) as workbook:
                sheet_name = self.select_sheet([str(n) for n in workbook.sheet_names])
                raw = workbook.parse(sheet_name, header=None, dtype=object, keep_default_na=False)
        except EnergyDataError:
            raise
        except Exception as e:
            raise EnergyDataError(f"Could not read workbook: {e}") from e

        raw = raw.astype(object).where(pd.notna(raw), None)
        logger.info("Reading sheet '%s' (%d rows)", sheet_name, len(raw))
        return sheet_name, raw.values.tolist()

    # ------------------------------------------------------------------
    # Structure discovery
    # ------------------------------------------------------------------

    def is_header_row(self, row: list) -> bool:
        cells = [_text(c) for c in row]
        has_month = any(c.lower() in Config.MONTH_MARKERS for c in cells)
        if self.mode == Config.LOOSE_MODE:
            return has_month
        joined = ''.join(''.join(c.split()) for c in cells)
        if not (has_month or Config.MONTH_SUFFIX in joined):
            return False
        return any(m in joined for m in Config.CATEGORY_MARKERS)

    def find_header_row(self, rows: List[list], sheet_name: str = '') -> int:
        for i, row in enumerate(rows[:self.header_scan_rows]):
            if row and self.is_header_row(row):
                logger.info("Header row found at index %d", i)
                return i
        raise HeaderNotFoundError(sheet_name, self.header_scan_rows)

    def map_columns(self, header_row: list) -> ColumnMap:
        labels = [_text(c) for c in header_row]
        columns = ColumnMap()
        for field_name, candidates in Config.COLUMN_LABELS.items():
            for idx, label in enumerate(labels):
                if label in candidates:
                    setattr(columns, field_name, idx)
                    break

        if columns.year == -1:
            columns.year = Config.FALLBACK_YEAR_COLUMN
            logger.warning("No year column in header; using column %d", columns.year)

        for idx, label in enumerate(labels):
            if label.lower() in Config.MONTH_MARKERS:
                columns.month_start = idx
                break
        if columns.month_start == -1:
            columns.month_start = columns.unit + 1 if columns.unit > -1 else Config.DEFAULT_MONTH_START
            logger.warning("No '1월' column; month block assumed to start at column %d", columns.month_start)
        return columns

    def detect_years(self, rows: List[list], header_idx: int, columns: ColumnMap) -> FiscalYearPair:
        """Two largest distinct years in the year column, falling back to a free-text scan"""
        years = set()
        for row in rows[header_idx + 1:]:
            year = parse_year(_cell(row, columns.year))
            if year is not None:
                years.add(year)

        if len(years) < 2:
            logger.warning("Fewer than two years in column %d; scanning row text", columns.year)
            for row in rows:
                years.update(find_years_in_text(' '.join(c for c in row if isinstance(c, str))))

        ordered = sorted(years)
        if len(ordered) >= 2:
            pair = FiscalYearPair(previous=ordered[-2], current=ordered[-1])
        elif len(ordered) == 1:
            pair = FiscalYearPair(previous=ordered[0] - 1, current=ordered[0])
            logger.warning("Only year %d found; previous year assumed to be %d", pair.current, pair.previous)
        else:
            current = date.today().year
            pair = FiscalYearPair(previous=current - 1, current=current)
            logger.warning("No years found; defaulting to %d/%d", pair.previous, pair.current)
        logger.info("Fiscal years: previous=%d current=%d", pair.previous, pair.current)
        return pair

    # ------------------------------------------------------------------
    # Row classification
    # ------------------------------------------------------------------

    def _month_values(self, row: list, columns: ColumnMap) -> Tuple[List[float], int]:
        values, coerced = [], 0
        for idx in columns.months:
            value, failed = coerce_number(_cell(row, idx))
            if failed:
                logger.debug("Unparseable value %r in column %d treated as 0", _cell(row, idx), idx)
                coerced += 1
            values.append(value)
        return values, coerced

    def _classify_strict(self, row: list, columns: ColumnMap, years: FiscalYearPair):
        """Returns (view, entity, metric, source, year_key) or a skip reason string"""
        year_key = years.key_for(parse_year(_cell(row, columns.year)))
        if year_key is None:
            return 'year'

        category = _text(_cell(row, columns.category))
        detail = _text(_cell(row, columns.detail))
        metric = classify_metric_type(_text(_cell(row, columns.unit)), category)
        source = classify_source(_text(_cell(row, columns.source)))

        if category == Config.BUILDING_CATEGORY:
            if columns.detail > -1 and detail not in Config.VALID_BUILDING_DETAILS:
                return 'detail'
            building = _text(_cell(row, columns.building))
            if not building or building == '-':
                return 'entity'
            context = ' '.join(_text(_cell(row, i)) for i in (columns.detail, columns.usage))
            entity = resolve_building_label(building, context)
            view = Config.BUILDING_VIEW
        elif category == Config.TENANT_CATEGORY:
            tenant = _text(_cell(row, columns.tenant))
            if not tenant or tenant == '-':
                tenant = _text(_cell(row, columns.usage))
            entity = resolve_tenant_alias(tenant, allow_unknown=True)
            view = Config.TENANT_VIEW
        else:
            return 'category'

        if entity is None:
            return 'entity'
        return view, entity, metric, source, year_key

    def _loose_year_key(self, row: list, columns: ColumnMap, years: FiscalYearPair) -> Optional[str]:
        year_key = years.key_for(parse_year(_cell(row, columns.year)))
        if year_key is not None:
            return year_key
        meta = ' '.join(_text(c) for c in row[:Config.META_CELLS])
        for year, key in ((years.previous, 'previous'), (years.current, 'current')):
            if str(year) in meta or f"{str(year)[2:]}년" in meta:
                return key
        return None

    def _classify_loose(self, row: list, columns: ColumnMap, years: FiscalYearPair) -> List[tuple]:
        """Loose mode may route a row to a building, a tenant, or nothing"""
        year_key = self._loose_year_key(row, columns, years)
        if year_key is None:
            return []

        row_text = '|'.join(_text(c) for c in row)
        metric = classify_row_metric(row_text)
        if metric is None:
            return []
        source = classify_source(row_text)

        if Config.TENANT_MARKER not in row_text:
            meta_cells = [_text(c) for c in row[:Config.META_CELLS]]
            meta = ' '.join(meta_cells)
            for cell in meta_cells:
                building = resolve_entity_alias(cell, meta)
                if building is not None:
                    return [(Config.BUILDING_VIEW, building, metric, source, year_key)]
            return []

        for cell in row[Config.TENANT_SCAN_START:Config.TENANT_SCAN_END]:
            label = _text(cell)
            if not label or label in Config.TENANT_SKIP_LABELS:
                continue
            tenant = resolve_tenant_alias(label)
            if tenant is not None:
                return [(Config.TENANT_VIEW, tenant, metric, source, year_key)]
        return []

    def extract_records(self, rows: List[list], header_idx: int, columns: ColumnMap,
                        years: FiscalYearPair) -> Tuple[pd.DataFrame, int, int]:
        """
        Classify every data row below the header.

        Returns:
            (records, skipped_rows, coerced_cells) where records has one row per
            accepted spreadsheet row: view, entity, metric, source, year_key, m1..m12
        """
        data_rows = [row for row in rows[header_idx + 1:] if row and not _is_blank_row(row)]
        if not data_rows:
            raise EmptyInputError("No data rows found below the header row")

        records, skipped, coerced = [], 0, 0
        for row in data_rows:
            if self.mode == Config.STRICT_MODE:
                result = self._classify_strict(row, columns, years)
                if isinstance(result, str):
                    logger.debug("Skipping row (%s): %s", result, row[:Config.META_CELLS])
                    skipped += 1
                    continue
                targets = [result]
            else:
                targets = self._classify_loose(row, columns, years)
                if not targets:
                    skipped += 1
                    continue

            values, failed = self._month_values(row, columns)
            coerced += failed
            for view, entity, metric, source, year_key in targets:
                records.append([view, entity, metric.value, source.value, year_key] + values)

        frame = pd.DataFrame(records, columns=STORE_KEYS + ['year_key'] + MONTH_COLUMNS)
        return frame, skipped, coerced

    # ------------------------------------------------------------------
    # Store construction
    # ------------------------------------------------------------------

    def accumulate(self, records: pd.DataFrame) -> pd.DataFrame:
        """
        Sum records into the full cell grid of every referenced entity.

        The "전체" source of each cell is the sum of that cell over the concrete
        sources.
        """
        long = records.melt(
            id_vars=STORE_KEYS + ['year_key'], value_vars=MONTH_COLUMNS,
            var_name='month', value_name='value',
        )
        long['month'] = long['month'].str[1:].astype(int)

        by_source = long.pivot_table(
            index=STORE_KEYS + ['month'], columns='year_key', values='value',
            aggfunc='sum', fill_value=0.0,
        ).reindex(columns=['previous', 'current'], fill_value=0.0)

        entity_keys = records[['view', 'entity']].drop_duplicates().itertuples(index=False)
        grid = pd.MultiIndex.from_tuples(
            [
                (view, entity, metric.value, source.value, month)
                for view, entity in entity_keys
                for metric in MetricType
                for source in CONCRETE_SOURCES
                for month in range(1, 13)
            ],
            names=STORE_KEYS + ['month'],
        )
        by_source = by_source.reindex(grid, fill_value=0.0).astype(float)

        totals = by_source.groupby(level=['view', 'entity', 'metric', 'month'], sort=False).sum()
        totals = pd.concat({SourceType.ALL.value: totals}, names=['source'])
        totals = totals.reorder_levels(STORE_KEYS + ['month'])

        combined = pd.concat([by_source, totals]).reset_index()
        combined.columns.name = None

        source_order = {s.value: i for i, s in enumerate(SourceType)}
        metric_order = {m.value: i for i, m in enumerate(MetricType)}
        combined = combined.sort_values(
            ['view', 'entity', 'metric', 'source', 'month'],
            key=lambda col: (
                col.map(metric_order) if col.name == 'metric'
                else col.map(source_order) if col.name == 'source'
                else col
            ),
        ).reset_index(drop=True)
        return combined

    def finalize(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Null out current-year months after the last positive observation and compute diffs"""
        frame = frame.copy()
        observed = frame['month'].where(frame['current'] > 0)
        last_actual = observed.groupby([frame[k] for k in STORE_KEYS]).transform('max').fillna(0)
        frame['current'] = frame['current'].where(frame['month'] <= last_actual)
        frame['projected'] = np.nan
        frame['diff'] = np.where(frame['current'].notna(), frame['current'] - frame['previous'], 0.0)
        return frame[STORE_COLUMNS]

    def _empty_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(columns=STORE_COLUMNS)
        return frame.astype({
            'view': object, 'entity': object, 'metric': object, 'source': object, 'month': int,
            'previous': float, 'current': float, 'projected': float, 'diff': float,
        })

    def parse_rows(self, rows: List[list], sheet_name: str = '') -> SeriesStore:
        """Run header discovery, year detection, row classification and finalization"""
        header_idx = self.find_header_row(rows, sheet_name)
        columns = self.map_columns(rows[header_idx])
        years = self.detect_years(rows, header_idx, columns)
        records, skipped, coerced = self.extract_records(rows, header_idx, columns, years)

        if records.empty:
            logger.warning("No data rows matched years %d/%d", years.previous, years.current)
            frame = self._empty_frame()
        else:
            frame = self.finalize(self.accumulate(records))

        if coerced:
            logger.warning("%d non-numeric month cells treated as 0", coerced)
        store = SeriesStore(frame, years, sheet_name=sheet_name, skipped_rows=skipped, coerced_cells=coerced)
        logger.info(
            "Parsed %d buildings, %d tenants (%d rows skipped)",
            len(store.entities(Config.BUILDING_VIEW)), len(store.entities(Config.TENANT_VIEW)), skipped,
        )
        return store

    def load_file(self, source) -> SeriesStore:
        """Parse workbook bytes, a path or a binary file object"""
        sheet_name, rows = self.read_workbook(source)
        if not rows:
            raise EmptyInputError(f"Sheet '{sheet_name}' is empty")
        return self.parse_rows(rows, sheet_name)


def find_default_data_file(base_dir=None) -> Optional[Path]:
    """First existing default workbook under the data directory, if any"""
    data_dir = Path(base_dir) if base_dir is not None else Path(Config.DEFAULT_DATA_DIR)
    for name in Config.DEFAULT_DATA_FILES:
        candidate = data_dir / name
        if candidate.is_file():
            return candidate
    return None
