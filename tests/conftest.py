"""
Shared fixtures: small in-memory workbooks laid out like the monthly
energy results sheet.
"""

import io

import pytest
from openpyxl import Workbook

from energy_processor import EnergyDataProcessor

MONTH_HEADERS = [f'{m}월' for m in range(1, 13)]

STRICT_HEADER = ['No', '년도', '구분', '상세구분', '에너지원', '건물', '사용처', '입주사', '단위'] + MONTH_HEADERS

BUILDING = '건물별 에너지실적'
TENANT = '입주사별 에너지실적'


def strict_row(year, category, detail, source, building, usage, tenant, unit, values):
    values = list(values) + [None] * (12 - len(values))
    return [None, year, category, detail, source, building, usage, tenant, unit] + values


def make_workbook(rows, sheet_name='2025년 에너지실적', extra_sheets=()):
    """Serialize rows into .xlsx bytes; extra_sheets are placed before the data sheet"""
    wb = Workbook()
    first = wb.active
    if extra_sheets:
        first.title = extra_sheets[0]
        first.append(['memo'])
        for name in extra_sheets[1:]:
            wb.create_sheet(name).append(['memo'])
        sheet = wb.create_sheet(sheet_name)
    else:
        sheet = first
        sheet.title = sheet_name
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def strict_rows():
    return [
        ['2025년 에너지 실적 보고'],
        [],
        STRICT_HEADER,
        strict_row(2024, BUILDING, '전유', '전력', 'DP2', None, None, '원', [100] * 12),
        strict_row(2025, BUILDING, '전유', '전력', 'DP2', None, None, '원', [110] * 6),
        strict_row(2024, BUILDING, '전유', '도시가스', 'DP2', None, None, '원', [50] * 12),
        strict_row(2025, BUILDING, '전유', '도시가스', 'DP2', None, None, '원', [40] * 6),
        strict_row(2025, BUILDING, '배분(공용)', '전력', 'DP2_2단계', None, None, '원', [30] * 3),
        strict_row(2024, BUILDING, '기타', '전력', 'DP2', None, None, '원', [999] * 12),
        strict_row(2024, BUILDING, '전유', '전력', '-', None, None, '원', [999] * 12),
        strict_row(2024, TENANT, None, '전력', None, None, 'LGD', 'kWh', [1000] * 12),
        strict_row(2025, TENANT, None, '전력', None, None, 'LGD', 'kWh', ['1,200'] * 3),
        strict_row(2024, TENANT, None, '전력', None, None, 'LGD', 'TOE', [2] * 12),
        strict_row(2025, TENANT, None, '전력', None, 'LG이노텍', None, 'kWh', [500, 500, 'n/a']),
        strict_row(2023, TENANT, None, '전력', None, None, 'LGD', 'kWh', [777] * 12),
    ]


@pytest.fixture
def strict_bytes(strict_rows):
    return make_workbook(strict_rows)


@pytest.fixture
def store(strict_bytes):
    return EnergyDataProcessor().load_file(strict_bytes)
