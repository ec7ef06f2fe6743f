import logging
import threading
from typing import Dict, List, Optional

from energy_classifier import MetricType, SourceType, TENANT_GROUPS, get_unit
from energy_forecast import ForecastConfig, build_series
from energy_processor import Config, EnergyDataProcessor, SeriesStore, find_default_data_file
from energy_summary import (
    build_export_table, calculate_growth_ranking, calculate_source_mix, calculate_summary,
)

logger = logging.getLogger(__name__)


class EnergySession:
    """
    Selection state of one dashboard user plus the currently loaded store.

    Loads are last-load-wins: a load that finishes after a newer load has
    started is discarded. A failed load leaves the previous store in place.
    """

    def __init__(self, processor: EnergyDataProcessor = None,
                 policy: str = ForecastConfig.DEFAULT_POLICY,
                 usage_policy: str = ForecastConfig.DEFAULT_USAGE_POLICY):
        self.processor = processor or EnergyDataProcessor()
        self.policy = policy
        self.usage_policy = usage_policy
        self.store: Optional[SeriesStore] = None
        self.source_name: Optional[str] = None
        self.view = Config.TENANT_VIEW
        self.selected: List[str] = []
        self.metric = MetricType.COST
        self.source = SourceType.ALL
        self._generation = 0
        self._lock = threading.Lock()

    # Loading

    def begin_load(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def publish(self, token: int, store: SeriesStore, name: str = None) -> bool:
        """Install a parsed store unless a newer load has started since ``token``"""
        with self._lock:
            if token != self._generation:
                logger.info("Discarding stale load %d (latest is %d)", token, self._generation)
                return False
            self.store = store
            self.source_name = name
            self.view = Config.TENANT_VIEW
            self.selected = []
            return True

    def load(self, source, name: str = None) -> Optional[SeriesStore]:
        """
        Parse a workbook and make it the active store.

        Raises EnergyDataError (including HeaderNotFoundError) without touching
        the active store. Returns None when the result was superseded.
        """
        token = self.begin_load()
        store = self.processor.load_file(source)
        if self.publish(token, store, name):
            return store
        return None

    def load_default(self, base_dir=None) -> Optional[SeriesStore]:
        path = find_default_data_file(base_dir)
        if path is None:
            logger.info("No default data file found; waiting for an upload")
            return None
        logger.info("Loading default data file %s", path)
        return self.load(path, name=path.name)

    @property
    def is_loaded(self) -> bool:
        return self.store is not None

    @property
    def years(self):
        return self.store.years if self.store is not None else None

    # Selection

    def set_view(self, view: str):
        if view not in (Config.BUILDING_VIEW, Config.TENANT_VIEW):
            raise ValueError(f"Unknown view: {view}")
        if view != self.view:
            self.view = view
            self.selected = []

    def entity_list(self) -> List[str]:
        return self.store.entities(self.view) if self.store is not None else []

    def toggle_entity(self, name: str):
        if name in self.selected:
            self.selected = [e for e in self.selected if e != name]
        else:
            self.selected = self.selected + [name]

    def toggle_all(self):
        all_entities = self.entity_list()
        self.selected = [] if len(self.selected) == len(all_entities) else list(all_entities)

    def select_group(self, group_name: str):
        """Select every loaded member of a tenant group, or clear them when all are selected"""
        members = TENANT_GROUPS.get(group_name)
        if not members or self.store is None:
            return
        available = [m for m in members if self.store.has_entity(Config.TENANT_VIEW, m)]
        if all(m in self.selected for m in available):
            self.selected = [e for e in self.selected if e not in available]
        else:
            self.selected = sorted(set(self.selected) | set(available))

    # Derived results

    @property
    def unit(self) -> str:
        return get_unit(self.metric, self.source)

    def current_series(self):
        return build_series(self.store, self.view, self.selected, self.metric, self.source,
                            self.policy, self.usage_policy)

    def snapshot(self) -> Dict:
        """Everything the presentation layer needs for the current selection"""
        series = self.current_series()
        summary = calculate_summary(series, self.years)
        result = {
            'series': series,
            'summary': summary,
            'mix': calculate_source_mix(self.store, self.view, self.selected, self.metric,
                                        self.source, self.policy),
            'ranking': calculate_growth_ranking(self.store, self.view, self.selected, self.metric,
                                                self.source, self.policy, self.usage_policy),
            'unit': self.unit,
        }
        if self.years is not None:
            result['export'] = build_export_table(series, summary, self.years)
        return result
