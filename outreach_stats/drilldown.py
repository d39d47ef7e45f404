"""
Drill-Down Library — 집계 1개 그룹의 실제 레코드 조회

집계 함수와 동일한 grouped_query / action_categories_query를 재사용하고
group_value 조건만 추가한다. 따라서 Σ len(drill-down(g)) == count.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from outreach_stats.aggregations import (
    OUT_OF_ACTIVE_LIST, VULNERABLE, action_categories_query, grouped_query,
)
from outreach_stats.groupings import (
    AGE_GROUP, FOLLOW_DURATION, GENDER, OUT_OF_ACTIVE_LIST_REASON, WANDERING_DURATION,
    Grouping, choice_grouping, field_grouping,
)
from outreach_stats.models import ActionRow, FilterDefinition, PersonRow, Population, StatsContext
from outreach_stats.population import filtered_population_cte
from outreach_stats.store import SnapshotStore
from outreach_stats.sql_utils import SqlFragment, where_clause

logger = logging.getLogger(__name__)

# 현재 배정 팀 (쉼표 연결)
ASSIGNED_TEAMS = (
    "(SELECT group_concat(DISTINCT pht.teamId) FROM person_history_team pht "
    "WHERE pht.personId = filtered_persons._id AND pht.toDate IS NULL) AS assignedTeams"
)


def _person_rows_query(prefix: SqlFragment, condition: SqlFragment) -> SqlFragment:
    where = where_clause(condition)
    return SqlFragment(
        f"{prefix.sql} SELECT filtered_persons.*, {ASSIGNED_TEAMS} "
        f"FROM filtered_persons {where.sql} "
        "ORDER BY filtered_persons.name COLLATE NOCASE, filtered_persons._id",
        prefix.params + where.params,
    )


async def _fetch_persons(store: SnapshotStore, query: SqlFragment) -> List[PersonRow]:
    rows = await store.fetch(query.sql, query.params)
    return [PersonRow.model_validate(row) for row in rows]


async def drill_down(
    store: SnapshotStore,
    context: StatsContext,
    population: Population,
    grouping: Grouping,
    group_value: str,
    now: Optional[datetime] = None,
) -> List[PersonRow]:
    """grouped_count()의 group_value 그룹에 속한 person 목록"""
    query = _person_rows_query(
        grouped_query(context, population, grouping, now),
        SqlFragment(
            "filtered_persons._id IN (SELECT _id FROM bucketed WHERE group_value = ?)",
            (group_value,),
        ),
    )
    persons = await _fetch_persons(store, query)
    logger.debug("drill_down(%s=%s): %d persons", grouping.name, group_value, len(persons))
    return persons


async def persons_where(
    store: SnapshotStore, context: StatsContext, population: Population, condition: SqlFragment,
) -> List[PersonRow]:
    """scalar count와 같은 조건의 person 목록"""
    return await _fetch_persons(
        store, _person_rows_query(filtered_population_cte(context, population), condition),
    )


async def persons(
    store: SnapshotStore, context: StatsContext, population: Population = Population.CREATED,
) -> List[PersonRow]:
    return await persons_where(store, context, population, SqlFragment(""))


async def persons_out_of_active_list(
    store: SnapshotStore, context: StatsContext, population: Population = Population.FOLLOWED,
) -> List[PersonRow]:
    return await persons_where(store, context, population, OUT_OF_ACTIVE_LIST)


async def persons_vulnerable(
    store: SnapshotStore, context: StatsContext, population: Population = Population.FOLLOWED,
) -> List[PersonRow]:
    return await persons_where(store, context, population, VULNERABLE)


async def persons_by_age_group(
    store: SnapshotStore, context: StatsContext, population: Population, age_group: str,
    now: Optional[datetime] = None,
) -> List[PersonRow]:
    return await drill_down(store, context, population, AGE_GROUP, age_group, now)


async def persons_by_follow_duration(
    store: SnapshotStore, context: StatsContext, population: Population, group: str,
    now: Optional[datetime] = None,
) -> List[PersonRow]:
    return await drill_down(store, context, population, FOLLOW_DURATION, group, now)


async def persons_by_wandering_duration(
    store: SnapshotStore, context: StatsContext, population: Population, group: str,
    now: Optional[datetime] = None,
) -> List[PersonRow]:
    return await drill_down(store, context, population, WANDERING_DURATION, group, now)


async def persons_by_gender(
    store: SnapshotStore, context: StatsContext, population: Population, gender: str,
) -> List[PersonRow]:
    return await drill_down(store, context, population, GENDER, gender)


async def persons_by_field(
    store: SnapshotStore, context: StatsContext, population: Population,
    field: FilterDefinition, value: str,
) -> List[PersonRow]:
    return await drill_down(store, context, population, field_grouping(field), value)


async def persons_by_choice_field(
    store: SnapshotStore, context: StatsContext, population: Population,
    field: FilterDefinition, choice: str,
) -> List[PersonRow]:
    return await drill_down(store, context, population, choice_grouping(field.id), choice)


async def persons_by_out_of_active_list_reason(
    store: SnapshotStore, context: StatsContext, population: Population, reason: str,
) -> List[PersonRow]:
    return await drill_down(store, context, population, OUT_OF_ACTIVE_LIST_REASON, reason)


# ── action 카테고리 ──────────────────────────────────────

async def actions_by_category(
    store: SnapshotStore,
    context: StatsContext,
    category: str,
    categories: Sequence[str] = (),
    statuses: Sequence[str] = (),
) -> List[ActionRow]:
    """actions_by_category_count()의 category 그룹 action 목록"""
    query = action_categories_query(context, categories, statuses)
    rows = await store.fetch(
        f"{query.sql} SELECT action.* FROM action "
        "WHERE action._id IN (SELECT _id FROM action_categories WHERE group_value = ?) "
        "ORDER BY action.dueAt, action._id",
        query.params + (category,),
    )
    return [ActionRow.model_validate(row) for row in rows]


async def persons_by_action_category(
    store: SnapshotStore,
    context: StatsContext,
    category: str,
    categories: Sequence[str] = (),
    statuses: Sequence[str] = (),
) -> List[PersonRow]:
    query = _person_rows_query(
        action_categories_query(context, categories, statuses),
        SqlFragment(
            "filtered_persons._id IN (SELECT personId FROM action_categories WHERE group_value = ?)",
            (category,),
        ),
    )
    return await _fetch_persons(store, query)
