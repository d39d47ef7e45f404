"""
Aggregation Library — 코호트 ⨝ 필터 ⨝ 집계 1건

각 함수는 filtered_population_cte()로 시작하는 단일 SQL을 실행한다.
Store가 돌려주는 숫자는 행 모델(int/float)로 명시 변환한 뒤 사용.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from outreach_stats.buckets import day_count_to_human_readable
from outreach_stats.groupings import (
    AGE_GROUP, FOLLOW_DURATION, GENDER, OUT_OF_ACTIVE_LIST_REASON, WANDERING_DURATION,
    Grouping, choice_grouping, field_grouping,
)
from outreach_stats.models import (
    NON_RENSEIGNE, AverageResult, FilterDefinition, GroupCount, NumberFieldStats,
    Population, StatsContext,
)
from outreach_stats.population import filtered_population_cte
from outreach_stats.sql_utils import (
    SqlFragment, column, conjoin, join_fragments, json_param, now_param, where_clause,
)
from outreach_stats.store import SnapshotStore

logger = logging.getLogger(__name__)


# ── 공통 ─────────────────────────────────────────────────

async def _fetch_total(store: SnapshotStore, query: SqlFragment) -> int:
    value = await store.fetchval(query.sql, query.params)
    return int(value or 0)


def _sort_groups(rows: List[dict], labels: Optional[Sequence[str]]) -> List[GroupCount]:
    groups = [GroupCount(group=str(r["group_value"]), total=int(r["total"])) for r in rows]
    if labels:
        order = {label: i for i, label in enumerate(labels)}
        return sorted(groups, key=lambda g: (order.get(g.group, len(order)), g.group))
    return sorted(groups, key=lambda g: (-g.total, g.group))


async def count_persons_where(
    store: SnapshotStore, context: StatsContext, population: Population, extra: SqlFragment,
) -> int:
    base = filtered_population_cte(context, population)
    where = where_clause(extra)
    return await _fetch_total(store, SqlFragment(
        f"{base.sql} SELECT COUNT(*) AS total FROM filtered_persons {where.sql}",
        base.params + where.params,
    ))


# ── 단순 count ───────────────────────────────────────────

async def count_persons(
    store: SnapshotStore, context: StatsContext, population: Population = Population.CREATED,
) -> int:
    """코호트 + 필터 적용 인원"""
    return await count_persons_where(store, context, population, SqlFragment(""))


async def count_created(store: SnapshotStore, context: StatsContext) -> int:
    return await count_persons(store, context, Population.CREATED)


async def count_followed(store: SnapshotStore, context: StatsContext) -> int:
    return await count_persons(store, context, Population.FOLLOWED)


OUT_OF_ACTIVE_LIST = SqlFragment("filtered_persons.outOfActiveList = 1")
VULNERABLE = SqlFragment("filtered_persons.alertness = 1")


async def count_out_of_active_list(
    store: SnapshotStore, context: StatsContext, population: Population = Population.FOLLOWED,
) -> int:
    """file active에서 나간 인원"""
    return await count_persons_where(store, context, population, OUT_OF_ACTIVE_LIST)


async def count_vulnerable(
    store: SnapshotStore, context: StatsContext, population: Population = Population.FOLLOWED,
) -> int:
    return await count_persons_where(store, context, population, VULNERABLE)


# ── 활동 기반 count ──────────────────────────────────────

@dataclass(frozen=True)
class ActivitySource:
    table: str
    # 활동 자신의 팀 소속 조건 (팀 목록 JSON 1개 바인딩)
    team_sql: str
    period_columns: Tuple[str, ...]
    soft_delete: bool = False

    def team_predicate(self, teams: List[str]) -> SqlFragment:
        return SqlFragment(self.team_sql, (json_param(teams),))

    def period_predicate(self, context: StatsContext) -> SqlFragment:
        if not context.period.is_bounded:
            return SqlFragment("")
        period = context.period
        return join_fragments(
            (
                SqlFragment(f'{self.table}."{c}" BETWEEN ? AND ?', (period.from_, period.to))
                for c in self.period_columns
            ),
            " OR ",
        )


ACTIONS = ActivitySource(
    "action",
    "EXISTS (SELECT 1 FROM action_team WHERE action_team.actionId = action._id "
    "AND action_team.teamId IN (SELECT value FROM json_each(?)))",
    ("dueAt", "completedAt"),
    soft_delete=True,
)
CONSULTATIONS = ActivitySource(
    "consultation",
    "EXISTS (SELECT 1 FROM json_each(CASE WHEN json_valid(consultation.teams) "
    "THEN consultation.teams END) AS ct WHERE ct.value IN (SELECT value FROM json_each(?)))",
    ("dueAt", "completedAt"),
    soft_delete=True,
)
PASSAGES = ActivitySource(
    "passage",
    "passage.teamId IN (SELECT value FROM json_each(?))",
    ("date",),
)
ENCOUNTERS = ActivitySource(
    "rencontre",
    "rencontre.teamId IN (SELECT value FROM json_each(?))",
    ("date",),
)

ACTIVITY_SOURCES = {
    "actions": ACTIONS,
    "consultations": CONSULTATIONS,
    "passages": PASSAGES,
    "encounters": ENCOUNTERS,
}


def _activity_filter(source: ActivitySource, context: StatsContext) -> SqlFragment:
    t = source.table
    parts = []
    if source.soft_delete:
        parts.append(SqlFragment(f"{t}.deletedAt IS NULL"))
    parts.append(source.team_predicate(context.teams))
    parts.append(source.period_predicate(context))
    parts.append(SqlFragment(
        f"EXISTS (SELECT 1 FROM filtered_persons WHERE filtered_persons._id = {t}.personId)"
    ))
    return conjoin(parts)


async def count_activities(store: SnapshotStore, context: StatsContext, kind: str) -> int:
    """활동 건수 — 활동 자체의 팀 소속 기준 (person 현재 팀과 다를 수 있음)

    Raises:
        ValueError: 알 수 없는 kind
    """
    source = ACTIVITY_SOURCES.get(kind)
    if source is None:
        raise ValueError(f"Unknown activity kind: {kind}")
    base = filtered_population_cte(context, Population.ALL)
    where = where_clause(_activity_filter(source, context))
    return await _fetch_total(store, SqlFragment(
        f'{base.sql} SELECT COUNT(DISTINCT "{source.table}"._id) AS total '
        f'FROM "{source.table}" {where.sql}',
        base.params + where.params,
    ))


async def count_actions(store: SnapshotStore, context: StatsContext) -> int:
    return await count_activities(store, context, "actions")


async def count_consultations(store: SnapshotStore, context: StatsContext) -> int:
    return await count_activities(store, context, "consultations")


async def count_passages(store: SnapshotStore, context: StatsContext) -> int:
    return await count_activities(store, context, "passages")


async def count_encounters(store: SnapshotStore, context: StatsContext) -> int:
    return await count_activities(store, context, "encounters")


def _has_activity(source: ActivitySource, context: StatsContext) -> SqlFragment:
    t = source.table
    parts = [SqlFragment(f"{t}.personId = filtered_persons._id")]
    if source.soft_delete:
        parts.append(SqlFragment(f"{t}.deletedAt IS NULL"))
    parts.append(source.period_predicate(context))
    cond = conjoin(parts)
    return SqlFragment(f'EXISTS (SELECT 1 FROM "{t}" WHERE {cond.sql})', cond.params)


async def count_persons_with_action(store: SnapshotStore, context: StatsContext) -> int:
    """followed 인원 중 기간 내 action이 1건 이상인 인원"""
    return await count_persons_where(
        store, context, Population.FOLLOWED, _has_activity(ACTIONS, context),
    )


async def count_persons_with_consultation(store: SnapshotStore, context: StatsContext) -> int:
    return await count_persons_where(
        store, context, Population.FOLLOWED, _has_activity(CONSULTATIONS, context),
    )


# ── 그룹 count ───────────────────────────────────────────

def grouped_query(
    context: StatsContext, population: Population, grouping: Grouping, now: Optional[datetime] = None,
) -> SqlFragment:
    """WITH ..., bucketed AS (...) — 집계·드릴다운 공용 시작부"""
    base = filtered_population_cte(context, population)
    bucketed = grouping.cte(now_param(now))
    return SqlFragment(f"{base.sql}, {bucketed.sql}", base.params + bucketed.params)


async def grouped_count(
    store: SnapshotStore,
    context: StatsContext,
    population: Population,
    grouping: Grouping,
    now: Optional[datetime] = None,
) -> List[GroupCount]:
    query = grouped_query(context, population, grouping, now)
    rows = await store.fetch(
        f"{query.sql} SELECT group_value, COUNT(DISTINCT _id) AS total "
        "FROM bucketed GROUP BY group_value",
        query.params,
    )
    logger.debug("grouped_count(%s): %d groups", grouping.name, len(rows))
    return _sort_groups(rows, grouping.labels)


async def persons_by_age_group_count(
    store: SnapshotStore, context: StatsContext, population: Population, now: Optional[datetime] = None,
) -> List[GroupCount]:
    return await grouped_count(store, context, population, AGE_GROUP, now)


async def persons_by_follow_duration_count(
    store: SnapshotStore, context: StatsContext, population: Population, now: Optional[datetime] = None,
) -> List[GroupCount]:
    return await grouped_count(store, context, population, FOLLOW_DURATION, now)


async def persons_by_wandering_duration_count(
    store: SnapshotStore, context: StatsContext, population: Population, now: Optional[datetime] = None,
) -> List[GroupCount]:
    return await grouped_count(store, context, population, WANDERING_DURATION, now)


async def persons_by_gender_count(
    store: SnapshotStore, context: StatsContext, population: Population,
) -> List[GroupCount]:
    return await grouped_count(store, context, population, GENDER)


async def persons_by_field_count(
    store: SnapshotStore, context: StatsContext, population: Population, field: FilterDefinition,
) -> List[GroupCount]:
    """enum / boolean / yes-no 커스텀 필드별 인원"""
    return await grouped_count(store, context, population, field_grouping(field))


async def persons_by_choice_field_count(
    store: SnapshotStore, context: StatsContext, population: Population, field: FilterDefinition,
) -> List[GroupCount]:
    """multi-choice 필드 — 선택값마다 1회씩 집계 (합계 ≠ 인원)"""
    return await grouped_count(store, context, population, choice_grouping(field.id))


async def persons_by_out_of_active_list_reason_count(
    store: SnapshotStore, context: StatsContext, population: Population = Population.FOLLOWED,
) -> List[GroupCount]:
    return await grouped_count(store, context, population, OUT_OF_ACTIVE_LIST_REASON)


# ── action 카테고리 ──────────────────────────────────────

def action_categories_query(
    context: StatsContext, categories: Sequence[str] = (), statuses: Sequence[str] = (),
) -> SqlFragment:
    """WITH ..., action_categories(_id, personId, group_value)"""
    base = filtered_population_cte(context, Population.ALL)
    scoped = _activity_filter(ACTIONS, context)
    if statuses:
        scoped = conjoin([
            scoped,
            SqlFragment("action.status IN (SELECT value FROM json_each(?))", (json_param(statuses),)),
        ])
    category_filter = SqlFragment("")
    if categories:
        category_filter = SqlFragment(
            "WHERE group_value IN (SELECT value FROM json_each(?))", (json_param(categories),),
        )
    return SqlFragment(
        f"{base.sql}, scoped_actions AS (SELECT action.* FROM action WHERE {scoped.sql}), "
        "action_categories AS (SELECT * FROM ("
        "SELECT scoped_actions._id AS _id, scoped_actions.personId AS personId, "
        "COALESCE(CAST(category.value AS TEXT), ?) AS group_value FROM scoped_actions "
        "LEFT JOIN json_each(CASE WHEN json_valid(scoped_actions.categories) "
        "THEN scoped_actions.categories END) AS category"
        f") {category_filter.sql})",
        base.params + scoped.params + (NON_RENSEIGNE,) + category_filter.params,
    )


async def actions_by_category_count(
    store: SnapshotStore,
    context: StatsContext,
    categories: Sequence[str] = (),
    statuses: Sequence[str] = (),
) -> List[GroupCount]:
    """카테고리별 action 건수 (여러 카테고리를 가진 action은 각각 집계)"""
    query = action_categories_query(context, categories, statuses)
    rows = await store.fetch(
        f"{query.sql} SELECT group_value, COUNT(DISTINCT _id) AS total "
        "FROM action_categories GROUP BY group_value",
        query.params,
    )
    return _sort_groups(rows, None)


async def persons_by_action_category_count(
    store: SnapshotStore,
    context: StatsContext,
    categories: Sequence[str] = (),
    statuses: Sequence[str] = (),
) -> List[GroupCount]:
    query = action_categories_query(context, categories, statuses)
    rows = await store.fetch(
        f"{query.sql} SELECT group_value, COUNT(DISTINCT personId) AS total "
        "FROM action_categories GROUP BY group_value",
        query.params,
    )
    return _sort_groups(rows, None)


# ── 평균 ─────────────────────────────────────────────────

def _average_result(value) -> AverageResult:
    if value is None:
        return AverageResult()
    days = float(value)
    return AverageResult(days=days, human=day_count_to_human_readable(days))


async def _average(
    store: SnapshotStore,
    context: StatsContext,
    population: Population,
    expr: SqlFragment,
    extra: SqlFragment = SqlFragment(""),
) -> AverageResult:
    base = filtered_population_cte(context, population)
    where = where_clause(extra)
    value = await store.fetchval(
        f"{base.sql} SELECT AVG({expr.sql}) AS average FROM filtered_persons {where.sql}",
        base.params + expr.params + where.params,
    )
    return _average_result(value)


async def average_follow_duration(
    store: SnapshotStore, context: StatsContext, population: Population, now: Optional[datetime] = None,
) -> AverageResult:
    """평균 추적 기간 (followedSince → outOfActiveListDate 또는 현재)"""
    return await _average(store, context, population, SqlFragment(
        "julianday(COALESCE(filtered_persons.outOfActiveListDate, ?)) "
        "- julianday(COALESCE(filtered_persons.followedSince, filtered_persons.createdAt))",
        (now_param(now),),
    ))


async def average_wandering_duration(
    store: SnapshotStore, context: StatsContext, population: Population, now: Optional[datetime] = None,
) -> AverageResult:
    """평균 거리생활 기간 (wanderingAt 있는 인원만)"""
    return await _average(
        store, context, population,
        SqlFragment("julianday(?) - julianday(filtered_persons.wanderingAt)", (now_param(now),)),
        SqlFragment("filtered_persons.wanderingAt IS NOT NULL"),
    )


async def average_date_field(
    store: SnapshotStore,
    context: StatsContext,
    population: Population,
    field: FilterDefinition,
    now: Optional[datetime] = None,
) -> AverageResult:
    """날짜 커스텀 필드 — 해당 날짜부터 현재까지 평균 일수"""
    col = column("filtered_persons", field.id)
    return await _average(
        store, context, population,
        SqlFragment(f"julianday(?) - julianday({col})", (now_param(now),)),
        SqlFragment(f"{col} IS NOT NULL"),
    )


async def number_field_stats(
    store: SnapshotStore, context: StatsContext, population: Population, field: FilterDefinition,
) -> NumberFieldStats:
    """숫자 커스텀 필드 — 입력 인원 수 + 평균"""
    col = column("filtered_persons", field.id)
    base = filtered_population_cte(context, population)
    row = await store.fetchrow(
        f"{base.sql} SELECT COUNT({col}) AS total, AVG(CAST({col} AS REAL)) AS average "
        "FROM filtered_persons",
        base.params,
    )
    if row is None:
        return NumberFieldStats()
    average = row["average"]
    return NumberFieldStats(
        total=int(row["total"] or 0),
        average=float(average) if average is not None else None,
    )
