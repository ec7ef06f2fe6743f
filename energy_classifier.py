from enum import Enum
from typing import Optional, Iterable


class MetricType(str, Enum):
    """Measured quantity of a consumption row"""
    COST = 'Cost'
    USAGE = 'Usage'
    TOE = 'TOE'
    TCO2 = 'tCO2'

    @property
    def label(self) -> str:
        return METRIC_LABELS[self]


class SourceType(str, Enum):
    """Utility commodity of a consumption row ("전체" is the running total)"""
    ALL = '전체'
    ELECTRICITY = '전력'
    CITY_GAS = '도시가스'
    MEDIUM_TEMP_WATER = '중온수'
    WATER_SEWAGE = '상하수도'
    RECLAIMED_WATER = '재이용수'
    OTHER = '기타'


METRIC_LABELS = {
    MetricType.COST: '비용',
    MetricType.USAGE: '사용량',
    MetricType.TOE: '에너지',
    MetricType.TCO2: '온실가스',
}

# Concrete sources, i.e. everything that rolls up into SourceType.ALL
CONCRETE_SOURCES = [s for s in SourceType if s is not SourceType.ALL]

# Sources shown in the portfolio mix
MIX_SOURCES = [
    SourceType.ELECTRICITY,
    SourceType.CITY_GAS,
    SourceType.MEDIUM_TEMP_WATER,
    SourceType.WATER_SEWAGE,
    SourceType.RECLAIMED_WATER,
]

MONTHS = ['1월', '2월', '3월', '4월', '5월', '6월', '7월', '8월', '9월', '10월', '11월', '12월']

BUILDING_LIST = [
    'DP2', 'DP3_CA', 'LGC_DP3', 'LGC_D22', 'CNS_D22', 'CNS_D25', 'D22_CA', 'D25_CA',
    'ISC', 'SLC', 'LGD', 'LXH', 'LGIT', 'LGES', 'LGCS', 'LGHH', 'LGU', 'LXG', 'DP2_2단계',
]

TENANT_DISPLAY_MAPPING = {
    'LGE': 'LG전자',
    'LGES': 'LG에너지솔루션',
    'LGD': 'LG디스플레이',
    'LGIT': 'LG이노텍',
    'LGC_D22': 'LG화학_D22',
    'LGC': 'LG화학',
    'LGHH': 'LG생활건강',
    'LGU': 'LG유플러스',
    'CNS': 'LG씨앤에스',
    'LGCNS': 'LG씨앤에스',
    'LGCS': 'LG화학_E5,E7',
    'LXH': 'LX하우시스',
    'LXG': 'LX글라스',
    'LGE_DP3': 'LG전자_DP3',
    'DP3_CA': 'DP3_공용',
    'D22_CA': 'D22_공용',
    'D25_CA': 'D25_공용',
}

TENANT_GROUPS = {
    'DP3': ['LG디스플레이', 'LG에너지솔루션', 'LG이노텍', 'LG화학', 'LX글라스', 'LX하우시스', 'LG전자_DP3'],
    'D22/D25': ['LG생활건강', 'LG씨앤에스', 'LG유플러스', 'LG화학_D22'],
}

# Phase-2 site of DP2; the shorter code must never claim these rows
PHASE2_BUILDING = 'DP2_2단계'
PHASE2_BASE_CODE = 'DP2'
PHASE2_MARKERS = ('2단계', '2차')

# Tenant labels outside the alias table are kept when they look like an affiliate
TENANT_PREFIXES = ('LG', 'LX', 'CNS')

# Ordered substring tables; first hit wins
COST_MARKERS = ('비용', '원', '₩', 'krw')
TOE_MARKERS = ('toe',)
EMISSION_MARKERS = ('tco2', '온실가스', 'co2')

SOURCE_ALIASES = [
    (SourceType.ELECTRICITY, ('전력',)),
    (SourceType.CITY_GAS, ('가스', 'lng')),
    (SourceType.WATER_SEWAGE, ('상하수도', '수도')),
    (SourceType.MEDIUM_TEMP_WATER, ('중온수', '지역난방', '난방')),
    (SourceType.RECLAIMED_WATER, ('재이용수',)),
]

USAGE_UNIT_MARKERS = ('kwh', 'm3', '㎥', 'm³', 'mwh')


def _normalize(text) -> str:
    if text is None:
        return ''
    return ''.join(str(text).lower().split())


def _contains_any(text: str, markers: Iterable[str]) -> bool:
    return any(marker in text for marker in markers)


def classify_metric_type(unit_text, category_text='') -> MetricType:
    """
    Map unit/category text to a metric type.

    Cost markers win over the TOE marker, which wins over the emissions
    markers; anything else is a physical usage volume.
    """
    text = _normalize(unit_text) + _normalize(category_text)
    if _contains_any(text, COST_MARKERS):
        return MetricType.COST
    if _contains_any(text, TOE_MARKERS):
        return MetricType.TOE
    if _contains_any(text, EMISSION_MARKERS):
        return MetricType.TCO2
    return MetricType.USAGE


def classify_row_metric(row_text) -> Optional[MetricType]:
    """Row-text metric detection used by the loose parse mode; None skips the row"""
    text = _normalize(row_text)
    if '비용' in text:
        return MetricType.COST
    if '사용량' in text and _contains_any(text, USAGE_UNIT_MARKERS):
        return MetricType.USAGE
    if _contains_any(text, TOE_MARKERS):
        return MetricType.TOE
    if 'tco2' in text or '온실가스' in text:
        return MetricType.TCO2
    return None


def classify_source(source_text) -> SourceType:
    text = _normalize(source_text)
    for source, aliases in SOURCE_ALIASES:
        if _contains_any(text, aliases):
            return source
    return SourceType.OTHER


def _is_blank_label(label) -> bool:
    return not label or label == '-'


def _has_phase2_marker(text: str) -> bool:
    return (
        PHASE2_BUILDING in text
        or (PHASE2_BASE_CODE in text and '2단계' in text)
        or '2차부지' in text
    )


def resolve_building_label(raw_label, row_text: str = '') -> Optional[str]:
    """
    Building name of a strict-mode row, read from the building column as written.

    Only the phase-2 site is re-routed: a "DP2_2단계"-style label, or a plain "DP2"
    label on a row whose detail/usage text carries a phase-2 marker. Every other
    label is kept verbatim, known code or not.
    """
    label = '' if raw_label is None else str(raw_label).strip()
    if _is_blank_label(label):
        return None
    if _has_phase2_marker(label):
        return PHASE2_BUILDING
    if label == PHASE2_BASE_CODE and _contains_any(row_text or '', PHASE2_MARKERS):
        return PHASE2_BUILDING
    return label


def resolve_entity_alias(raw_label, row_text: str = '') -> Optional[str]:
    """
    Match a free-text cell against the known building codes (loose parse mode).

    Args:
        raw_label: Cell text (may be None)
        row_text: Joined text of the row's leading cells; a phase-2 marker anywhere
            in it claims the row for the phase-2 site

    Returns:
        Canonical building code, or None when the cell names no known building
    """
    label = '' if raw_label is None else str(raw_label).strip()
    context = f"{label} {row_text or ''}"

    if _is_blank_label(label) and not row_text:
        return None

    if _has_phase2_marker(context):
        return PHASE2_BUILDING

    if label in BUILDING_LIST:
        if label == PHASE2_BASE_CODE and _contains_any(context, PHASE2_MARKERS):
            return None
        return label

    # Longest code first so "LGC_D22" is tried before "LGD"-like short codes
    for code in sorted(BUILDING_LIST, key=len, reverse=True):
        if code == PHASE2_BUILDING:
            continue
        if code == PHASE2_BASE_CODE and _contains_any(context, PHASE2_MARKERS):
            continue
        if label and code in label:
            return code
    return None


def _matches_tenant_key(label: str, key: str) -> bool:
    # "LGD 2공장" and "LGD_식당" match LGD; "LGCNS" must not match LGC
    if not label.startswith(key):
        return False
    rest = label[len(key):]
    return not rest or not (rest[0].isascii() and rest[0].isalnum())


def resolve_tenant_alias(raw_label, allow_unknown: bool = False) -> Optional[str]:
    """Resolve a raw tenant label (corporate abbreviation or display name) to its display name"""
    label = '' if raw_label is None else str(raw_label).strip()
    if _is_blank_label(label):
        return None

    for key in sorted(TENANT_DISPLAY_MAPPING, key=len, reverse=True):
        if _matches_tenant_key(label, key):
            return TENANT_DISPLAY_MAPPING[key]

    if label in TENANT_DISPLAY_MAPPING.values():
        return label
    if label.startswith(TENANT_PREFIXES) or allow_unknown:
        return label
    return None


def get_unit(metric: MetricType, source: SourceType) -> str:
    """Display unit for a metric/source selection"""
    metric = MetricType(metric)
    source = SourceType(source)
    if metric is MetricType.COST:
        return '원'
    if metric is MetricType.TOE:
        return 'TOE'
    if metric is MetricType.TCO2:
        return 'tCO2'
    if source is SourceType.ELECTRICITY:
        return 'kWh'
    if source is SourceType.MEDIUM_TEMP_WATER:
        return 'MWh'
    if source in (SourceType.CITY_GAS, SourceType.WATER_SEWAGE, SourceType.RECLAIMED_WATER):
        return 'm³'
    return 'TOE'


def format_value(value, metric: MetricType) -> str:
    """Thousands-separated display string; '-' for missing values"""
    if value is None or value != value:
        return '-'
    if MetricType(metric) is MetricType.COST:
        return f"{value:,.0f}"
    if abs(value) < 1000:
        return f"{value:,.1f}"
    return f"{value:,.0f}"
