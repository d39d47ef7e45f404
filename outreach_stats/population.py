"""
Population Resolver — 기간·팀 기준 코호트(created / followed / all) 결정

SQL 생성 규칙:
  - 팀 목록은 json_each(?) 한 개의 바인드 값으로 전달
  - 기간 값은 ISO 타임스탬프 문자열 비교 (스냅샷 저장 형식과 동일)
  - 기간이 한쪽만 지정되면 '전체 기간'으로 취급 (오류 아님)
"""
import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from outreach_stats.filters import compile_filters
from outreach_stats.models import HistoryState, Period, Population, StatsContext
from outreach_stats.sql_utils import (
    SqlFragment, conjoin, join_fragments, json_param, now_param, to_iso_timestamp, where_clause,
)
from outreach_stats.store import SnapshotStore

logger = logging.getLogger(__name__)

# followed 판정에 사용하는 활동 테이블 → 기간 비교 날짜 컬럼
FOLLOW_UP_SOURCES: List[Tuple[str, Tuple[str, ...]]] = [
    ("person_history", ("fromDate",)),
    ("action", ("dueAt", "completedAt", "createdAt")),
    ("consultation", ("dueAt", "completedAt", "createdAt")),
    ("passage", ("date", "createdAt")),
    ("rencontre", ("date", "createdAt")),
    ("treatment", ("createdAt",)),
    ("person_place", ("createdAt",)),
    ("comment", ("date", "createdAt")),
]


def date_in_period(columns: Tuple[str, ...], table: str, period: Period) -> SqlFragment:
    """컬럼 중 하나라도 [from, to] 안에 있으면 참 (OR)"""
    return join_fragments(
        (
            SqlFragment(f'{table}."{c}" BETWEEN ? AND ?', (period.from_, period.to))
            for c in columns
        ),
        " OR ",
    )


def team_overlap(period: Period, teams: List[str], table: str = "person") -> SqlFragment:
    """기간과 겹치는 팀 소속 이력이 하나라도 있는지"""
    return SqlFragment(
        "EXISTS (SELECT 1 FROM person_history_team pht "
        f"WHERE pht.personId = {table}._id "
        "AND pht.teamId IN (SELECT value FROM json_each(?)) "
        "AND pht.fromDate < ? AND (pht.toDate > ? OR pht.toDate IS NULL))",
        (json_param(teams), period.to, period.from_),
    )


def currently_in_teams(teams: List[str], table: str = "person") -> SqlFragment:
    """현재(toDate IS NULL) teams 중 하나에 소속"""
    return SqlFragment(
        "EXISTS (SELECT 1 FROM person_history_team pht "
        f"WHERE pht.personId = {table}._id "
        "AND pht.teamId IN (SELECT value FROM json_each(?)) "
        "AND pht.toDate IS NULL)",
        (json_param(teams),),
    )


def _followed_since_in_period(period: Period, table: str) -> SqlFragment:
    return SqlFragment(
        f"COALESCE({table}.followedSince, {table}.createdAt) BETWEEN ? AND ?",
        (period.from_, period.to),
    )


def _activity_in_period(period: Period, table: str) -> SqlFragment:
    checks = [_followed_since_in_period(period, table)]
    for source, columns in FOLLOW_UP_SOURCES:
        dates = date_in_period(columns, source, period)
        checks.append(SqlFragment(
            f'EXISTS (SELECT 1 FROM "{source}" '
            f'WHERE "{source}".personId = {table}._id AND ({dates.sql}))',
            dates.params,
        ))
    return join_fragments(checks, " OR ")


def population_predicate(
    period: Period, teams: List[str], kind: Population, table: str = "person",
) -> SqlFragment:
    """코호트 멤버십 조건 (person 테이블 기준 WHERE 절 내용)"""
    kind = Population(kind)
    not_deleted = SqlFragment(f"{table}.deletedAt IS NULL")

    if kind == Population.ALL:
        return not_deleted

    if not period.is_bounded:
        return conjoin([not_deleted, currently_in_teams(teams, table)])

    if kind == Population.CREATED:
        return conjoin([
            not_deleted,
            team_overlap(period, teams, table),
            _followed_since_in_period(period, table),
        ])

    return conjoin([
        not_deleted,
        team_overlap(period, teams, table),
        _activity_in_period(period, table),
    ])


def population_cte(period: Period, teams: List[str], kind: Population) -> SqlFragment:
    where = where_clause(population_predicate(period, teams, kind))
    return SqlFragment(f"population AS (SELECT * FROM person {where.sql})", where.params)


def filtered_population_cte(context: StatsContext, kind: Population) -> SqlFragment:
    """WITH population AS (...), filtered_persons AS (...)

    모든 집계·드릴다운 쿼리가 공유하는 시작부.
    """
    base = population_cte(context.period, context.teams, kind)
    filters = where_clause(compile_filters(
        context.filters, context.base_filters, context.period, table="population",
    ))
    return SqlFragment(
        f"WITH {base.sql}, filtered_persons AS (SELECT * FROM population {filters.sql})",
        base.params + filters.params,
    )


async def resolve_population(
    store: SnapshotStore, period: Period, teams: List[str], kind: Population,
) -> Set[str]:
    """코호트 person id 집합"""
    cte = population_cte(period, teams, kind)
    rows = await store.fetch(f"WITH {cte.sql} SELECT _id FROM population", cte.params)
    logger.debug("resolve_population(%s): %d persons", Population(kind).value, len(rows))
    return {row["_id"] for row in rows}


# ── 시점 상태 (person_history) ───────────────────────────

def person_state_cte(instant: str) -> SqlFragment:
    """instant 시점에 유효한 이력 행을 person별 1건으로 선택

    같은 fromDate가 여러 건이면 가장 나중에 삽입된 행(rowid)을 택한다.
    (personId, fromDate) 인덱스 사용.
    """
    return SqlFragment(
        "person_state AS ("
        "SELECT personId, fromDate, toDate, data FROM ("
        "SELECT personId, fromDate, toDate, data, "
        "ROW_NUMBER() OVER (PARTITION BY personId ORDER BY fromDate DESC, rowid DESC) AS rn "
        "FROM person_history "
        "WHERE fromDate <= ? AND (toDate > ? OR toDate IS NULL)"
        ") ranked WHERE rn = 1)",
        (instant, instant),
    )


async def state_at(
    store: SnapshotStore, person_id: str, instant: Optional[datetime] = None,
) -> Optional[HistoryState]:
    """person의 instant 시점 상태 (기본: 현재)"""
    at = to_iso_timestamp(instant) if instant is not None else now_param()
    cte = person_state_cte(at)
    row = await store.fetchrow(
        f"WITH {cte.sql} SELECT personId, fromDate, toDate, data "
        "FROM person_state WHERE personId = ?",
        cte.params + (person_id,),
    )
    if row is None:
        return None
    return HistoryState(
        person_id=row["personId"],
        from_date=row["fromDate"],
        to_date=row["toDate"],
        data=row["data"],
    )
