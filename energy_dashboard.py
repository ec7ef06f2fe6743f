import io
import logging

import streamlit as st
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from energy_classifier import MetricType, SourceType, TENANT_GROUPS, format_value
from energy_processor import Config, EnergyDataError, HeaderNotFoundError
from energy_session import EnergySession
from energy_summary import export_filename, export_to_excel

logging.basicConfig(level=logging.INFO)

#%%
# Page configuration
st.set_page_config(
    page_title="LGSP 에너지레터",
    page_icon="⚡",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Dashboard Configuration
DASHBOARD_CONFIG = {
    'colors': {
        'previous': '#94a3b8',
        'current': '#881337',
        'latest': '#e11d48',
        'projected': '#fbbf24',
        'mix': ['#A50034', '#F97316', '#3B82F6', '#10B981', '#6366F1'],
    },
    'display': {
        'chart_height': 420,
        'treemap_height': 420,
    }
}

DASHBOARD_CSS = """
<style>
    .stMetric {
        background-color: #f0f2f6;
        padding: 10px;
        border-radius: 5px;
    }
</style>
"""

st.markdown(DASHBOARD_CSS, unsafe_allow_html=True)


def get_session() -> EnergySession:
    if 'energy_session' not in st.session_state:
        session = EnergySession()
        try:
            session.load_default()
        except EnergyDataError as e:
            st.warning(f"기본 데이터 파일을 읽지 못했습니다: {e}")
        st.session_state['energy_session'] = session
    return st.session_state['energy_session']


session = get_session()

#%%
# File upload
uploaded = st.sidebar.file_uploader("엑셀 파일 업로드", type=['xlsx'])
if uploaded is not None and st.session_state.get('uploaded_name') != uploaded.name:
    try:
        session.load(uploaded.getvalue(), name=uploaded.name)
        st.session_state['uploaded_name'] = uploaded.name
    except HeaderNotFoundError as e:
        st.error(f"헤더를 찾을 수 없습니다 (년도, 구분, 월 컬럼 확인 필요): {e}")
    except EnergyDataError as e:
        st.error(f"파일 처리 중 오류가 발생했습니다: {e}")

if not session.is_loaded:
    st.title("LGSP 에너지레터")
    st.info("사이드바에서 에너지 실적 엑셀 파일을 업로드하세요.")
    st.stop()

#%%
# Sidebar configuration
st.sidebar.header("🔍 Filters")

view_labels = {Config.TENANT_VIEW: '입주사', Config.BUILDING_VIEW: '건물'}
view = st.sidebar.radio(
    "View", list(view_labels), format_func=view_labels.get,
    index=list(view_labels).index(session.view), horizontal=True
)
session.set_view(view)

col1, col2 = st.sidebar.columns(2)
with col1:
    if st.button("전체 선택/해제", use_container_width=True):
        session.toggle_all()
with col2:
    if view == Config.TENANT_VIEW:
        for group_name in TENANT_GROUPS:
            if st.button(group_name, use_container_width=True):
                session.select_group(group_name)

entities = session.entity_list()
session.selected = st.sidebar.multiselect(
    "Entities", entities,
    default=[e for e in session.selected if e in entities]
)

session.metric = st.sidebar.selectbox(
    "Data Type", list(MetricType), format_func=lambda m: m.label,
    index=list(MetricType).index(session.metric)
)
session.source = st.sidebar.selectbox(
    "Source", [s for s in SourceType if s is not SourceType.OTHER], format_func=lambda s: s.value
)

#%%
snapshot = session.snapshot()
series = snapshot['series']
summary = snapshot['summary']
unit = snapshot['unit']
years = session.years


def fmt(value):
    return format_value(value, session.metric)


st.title("LGSP 에너지레터")
st.caption(f"{years.previous}년 대비 {years.current}년 · {session.source_name or ''}")

if not session.selected:
    st.info("Please select entities from the sidebar.")
    st.stop()

tab1, tab2, tab3 = st.tabs(["📊 Overview", "🗺️ Portfolio", "📋 Data"])

#%%
# Tab 1: Overview
with tab1:
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric(f"{years.current}년 누적 ({unit})", fmt(summary['total_current_actual']),
                  delta=f"{summary['yoy_percent']:.1f}%")
    with col2:
        st.metric(f"{years.previous}년 동기 ({unit})", fmt(summary['total_previous_ytd']))
    with col3:
        latest = summary['latest_month']
        st.metric(f"최근 실적 ({latest['label']})", fmt(latest['value']),
                  delta=f"{latest['percent']:.1f}%")
    with col4:
        next_month = summary['next_month']
        st.metric(f"예측 ({next_month['label']})", fmt(next_month['projected']),
                  delta=f"{next_month['percent']:.1f}%")

    last = summary['last_actual_index']
    current_colors = [
        DASHBOARD_CONFIG['colors']['latest'] if i == last else DASHBOARD_CONFIG['colors']['current']
        for i in range(len(series))
    ]

    fig = go.Figure()
    fig.add_trace(go.Bar(x=series['label'], y=series['previous'], name=f"{years.previous}년",
                         marker_color=DASHBOARD_CONFIG['colors']['previous']))
    fig.add_trace(go.Bar(x=series['label'], y=series['current'], name=f"{years.current}년",
                         marker_color=current_colors))
    fig.add_trace(go.Bar(x=series['label'], y=series['projected'], name="예측",
                         marker_color=DASHBOARD_CONFIG['colors']['projected']))
    fig.update_layout(
        barmode='group',
        height=DASHBOARD_CONFIG['display']['chart_height'],
        yaxis_title=unit,
        hovermode='x unified'
    )
    st.plotly_chart(fig, use_container_width=True)

#%%
# Tab 2: Portfolio
with tab2:
    col1, col2 = st.columns(2)
    with col1:
        st.subheader("에너지원 구성")
        mix = snapshot['mix']
        if mix is not None and len(mix) > 0:
            fig = px.pie(mix, names='source', values='value', hole=0.5,
                         color_discrete_sequence=DASHBOARD_CONFIG['colors']['mix'])
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("전체 에너지원 선택 시 표시됩니다.")
    with col2:
        st.subheader("증감 현황")
        ranking = snapshot['ranking']
        if len(ranking) > 0:
            ranking = ranking.assign(rate_pct=ranking['rate'] * 100)
            fig = px.treemap(
                ranking, path=['entity'], values='value', color='rate_pct',
                color_continuous_scale=['#059669', '#64748b', '#A50034'],
                color_continuous_midpoint=0,
                height=DASHBOARD_CONFIG['display']['treemap_height']
            )
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("No data for the selected entities.")

#%%
# Tab 3: Data
with tab3:
    export = snapshot['export']
    st.dataframe(export.set_index('구분').style.format(lambda v: fmt(v) if pd.notna(v) else '-'),
                 use_container_width=True)

    buffer = io.BytesIO()
    export_to_excel(export, buffer)
    st.download_button(
        "엑셀 다운로드", data=buffer.getvalue(),
        file_name=export_filename(session.metric),
        mime='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
