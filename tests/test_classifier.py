"""Tests for label classification and alias resolution"""

import math

import pytest

from energy_classifier import (
    MetricType, SourceType, CONCRETE_SOURCES, MIX_SOURCES,
    classify_metric_type, classify_row_metric, classify_source,
    format_value, get_unit, resolve_building_label, resolve_entity_alias, resolve_tenant_alias,
)


class TestMetricType:

    @pytest.mark.parametrize("unit, category, expected", [
        ('원', '', MetricType.COST),
        ('₩', '', MetricType.COST),
        ('TOE', '', MetricType.TOE),
        ('tCO2eq', '', MetricType.TCO2),
        ('온실가스', '', MetricType.TCO2),
        ('kWh', '', MetricType.USAGE),
        ('m³', '', MetricType.USAGE),
        ('', '', MetricType.USAGE),
    ])
    def test_unit_text(self, unit, category, expected):
        assert classify_metric_type(unit, category) is expected

    def test_cost_wins_over_toe(self):
        assert classify_metric_type('TOE', '비용') is MetricType.COST

    def test_currency_unit_with_toe_category_is_cost(self):
        assert classify_metric_type('원', 'TOE 환산') is MetricType.COST

    def test_toe_wins_over_emissions(self):
        assert classify_metric_type('tCO2', 'toe') is MetricType.TOE

    def test_none_is_usage(self):
        assert classify_metric_type(None) is MetricType.USAGE

    def test_labels(self):
        assert MetricType.COST.label == '비용'
        assert MetricType.TOE.label == '에너지'


class TestRowMetric:
    """Loose-mode row text detection"""

    def test_cost(self):
        assert classify_row_metric('DP2|전력 비용|원') is MetricType.COST

    def test_usage_needs_a_unit(self):
        assert classify_row_metric('전력 사용량|kWh') is MetricType.USAGE
        assert classify_row_metric('전력 사용량') is None

    def test_toe_and_emissions(self):
        assert classify_row_metric('에너지|TOE') is MetricType.TOE
        assert classify_row_metric('온실가스 배출') is MetricType.TCO2

    def test_unrelated_row(self):
        assert classify_row_metric('비고|메모') is None


class TestSource:

    @pytest.mark.parametrize("text, expected", [
        ('전력', SourceType.ELECTRICITY),
        ('도시가스', SourceType.CITY_GAS),
        ('LNG', SourceType.CITY_GAS),
        ('지역난방', SourceType.MEDIUM_TEMP_WATER),
        ('중온수', SourceType.MEDIUM_TEMP_WATER),
        ('상수도', SourceType.WATER_SEWAGE),
        ('재이용수', SourceType.RECLAIMED_WATER),
        ('스팀', SourceType.OTHER),
        (None, SourceType.OTHER),
    ])
    def test_classify(self, text, expected):
        assert classify_source(text) is expected

    def test_concrete_sources_exclude_total(self):
        assert SourceType.ALL not in CONCRETE_SOURCES
        assert len(CONCRETE_SOURCES) == 6

    def test_mix_sources_exclude_other(self):
        assert SourceType.OTHER not in MIX_SOURCES
        assert SourceType.ALL not in MIX_SOURCES


class TestBuildingLabel:
    """Strict-mode building column"""

    def test_label_is_kept_as_written(self):
        assert resolve_building_label('DP2') == 'DP2'
        assert resolve_building_label(' LGD ') == 'LGD'
        assert resolve_building_label('신규동') == '신규동'

    def test_no_substring_folding(self):
        assert resolve_building_label('ISC2') == 'ISC2'
        assert resolve_building_label('LGC_D22 공장') == 'LGC_D22 공장'

    def test_phase2_label(self):
        assert resolve_building_label('DP2_2단계') == 'DP2_2단계'
        assert resolve_building_label('DP2 2차부지') == 'DP2_2단계'

    def test_base_code_with_phase2_row_text(self):
        assert resolve_building_label('DP2', '배분(공용) 2단계') == 'DP2_2단계'
        assert resolve_building_label('DP2', '2차 변전실') == 'DP2_2단계'

    def test_other_buildings_ignore_row_text(self):
        assert resolve_building_label('LGD', '전유 2차부지 식당') == 'LGD'
        assert resolve_building_label('ISC', 'DP2 2단계 공용') == 'ISC'

    def test_blank_labels(self):
        assert resolve_building_label(None) is None
        assert resolve_building_label('-', '2차부지') is None


class TestEntityAlias:
    """Loose-mode building matching"""

    def test_exact_code(self):
        assert resolve_entity_alias('DP2') == 'DP2'
        assert resolve_entity_alias(' LGD ') == 'LGD'

    def test_phase2_marker_in_context(self):
        assert resolve_entity_alias('DP2', '배분(공용) 2단계') == 'DP2_2단계'
        assert resolve_entity_alias('DP2_2단계') == 'DP2_2단계'
        assert resolve_entity_alias('DP2 2차부지') == 'DP2_2단계'

    def test_phase2_rows_never_resolve_to_base_code(self):
        assert resolve_entity_alias('DP2', '2차 증설') is None
        assert resolve_entity_alias('DP2동', '2차') is None

    def test_longest_code_first(self):
        assert resolve_entity_alias('LGC_D22 공장') == 'LGC_D22'
        assert resolve_entity_alias('D25_CA 공용부') == 'D25_CA'

    def test_blank_labels(self):
        assert resolve_entity_alias(None) is None
        assert resolve_entity_alias('') is None
        assert resolve_entity_alias('-') is None

    def test_unknown_label(self):
        assert resolve_entity_alias('신규동') is None


class TestTenantAlias:

    @pytest.mark.parametrize("label, expected", [
        ('LGE', 'LG전자'),
        ('LGE_DP3', 'LG전자_DP3'),
        ('LGES', 'LG에너지솔루션'),
        ('LGCS', 'LG화학_E5,E7'),
        ('LGD', 'LG디스플레이'),
        ('CNS', 'LG씨앤에스'),
        ('LGCNS', 'LG씨앤에스'),
        ('LGD 2공장', 'LG디스플레이'),
        ('LGD_식당', 'LG디스플레이'),
    ])
    def test_mapping_table(self, label, expected):
        assert resolve_tenant_alias(label) == expected

    def test_display_name_passes_through(self):
        assert resolve_tenant_alias('LG이노텍') == 'LG이노텍'

    def test_affiliate_prefix_is_kept(self):
        assert resolve_tenant_alias('LG신규법인') == 'LG신규법인'

    def test_longer_code_is_not_cut_to_a_known_prefix(self):
        assert resolve_tenant_alias('LGCX', allow_unknown=True) == 'LGCX'
        assert resolve_tenant_alias('LGDX') == 'LGDX'

    def test_unknown_tenant(self):
        assert resolve_tenant_alias('ACME') is None
        assert resolve_tenant_alias('ACME', allow_unknown=True) == 'ACME'

    def test_blank(self):
        assert resolve_tenant_alias('-') is None
        assert resolve_tenant_alias(None, allow_unknown=True) is None


class TestUnitsAndFormatting:

    @pytest.mark.parametrize("metric, source, expected", [
        (MetricType.COST, SourceType.ELECTRICITY, '원'),
        (MetricType.TOE, SourceType.ALL, 'TOE'),
        (MetricType.TCO2, SourceType.CITY_GAS, 'tCO2'),
        (MetricType.USAGE, SourceType.ELECTRICITY, 'kWh'),
        (MetricType.USAGE, SourceType.MEDIUM_TEMP_WATER, 'MWh'),
        (MetricType.USAGE, SourceType.CITY_GAS, 'm³'),
        (MetricType.USAGE, SourceType.ALL, 'TOE'),
    ])
    def test_get_unit(self, metric, source, expected):
        assert get_unit(metric, source) == expected

    def test_format_value(self):
        assert format_value(1234567.4, MetricType.COST) == '1,234,567'
        assert format_value(12.34, MetricType.TOE) == '12.3'
        assert format_value(12345.6, MetricType.USAGE) == '12,346'

    def test_missing_values(self):
        assert format_value(None, MetricType.COST) == '-'
        assert format_value(math.nan, MetricType.USAGE) == '-'
