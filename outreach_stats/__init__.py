"""
Outreach 코호트 통계 엔진

로컬 스냅샷(SQLite)을 읽어 기간·팀·필터 기준 인원 수, 분포, 평균과
각 집계의 드릴다운 레코드를 계산합니다.
"""

from outreach_stats.models import (
    NON_RENSEIGNE,
    Filter,
    FilterDefinition,
    GroupCount,
    Period,
    PersonRow,
    Population,
    StatsContext,
)
from outreach_stats.store import SnapshotStore, get_store
from outreach_stats.population import resolve_population, state_at
from outreach_stats.filters import compile_filters
from outreach_stats.buckets import day_count_to_human_readable
from outreach_stats.aggregations import count_persons, grouped_count
from outreach_stats.drilldown import drill_down

__all__ = [
    "NON_RENSEIGNE",
    "Filter",
    "FilterDefinition",
    "GroupCount",
    "Period",
    "PersonRow",
    "Population",
    "StatsContext",
    "SnapshotStore",
    "get_store",
    "resolve_population",
    "state_at",
    "compile_filters",
    "day_count_to_human_readable",
    "count_persons",
    "grouped_count",
    "drill_down",
]

__version__ = "0.1.0"
