"""
그룹 키 정의 — 집계(aggregations)와 드릴다운(drilldown)이 공유

Grouping.cte(now)는 filtered_persons 위에 `bucketed(_id, group_value)` CTE를 만든다.
집계는 group_value별 COUNT(DISTINCT _id), 드릴다운은 group_value = ? 조건을 사용.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from outreach_stats.buckets import AGE_GROUPS, DURATION_GROUPS, bucket_case, bucket_labels
from outreach_stats.models import NON, NON_RENSEIGNE, OUI, FilterDefinition
from outreach_stats.sql_utils import SqlFragment, column


@dataclass(frozen=True)
class Grouping:
    name: str
    cte: Callable[[str], SqlFragment]
    labels: Optional[Tuple[str, ...]] = None
    # 다중값(JSON 배열) 그룹은 한 사람이 여러 그룹에 속할 수 있음
    multi_valued: bool = False


def _scalar_cte(key: SqlFragment) -> SqlFragment:
    return SqlFragment(
        f"bucketed AS (SELECT filtered_persons._id AS _id, {key.sql} AS group_value "
        "FROM filtered_persons)",
        key.params,
    )


def _age_cte(now: str) -> SqlFragment:
    # 기간 종료일이 아니라 실행 시점 기준 (연도 차)
    age = SqlFragment(
        "CAST(strftime('%Y', ?) AS INTEGER) - CAST(strftime('%Y', filtered_persons.birthdate) AS INTEGER)",
        (now,),
    )
    return _scalar_cte(bucket_case(age, AGE_GROUPS))


def _follow_duration_cte(now: str) -> SqlFragment:
    days = SqlFragment(
        "julianday(COALESCE(filtered_persons.outOfActiveListDate, ?)) "
        "- julianday(COALESCE(filtered_persons.followedSince, filtered_persons.createdAt))",
        (now,),
    )
    return _scalar_cte(bucket_case(days, DURATION_GROUPS))


def _wandering_duration_cte(now: str) -> SqlFragment:
    days = SqlFragment(
        "CASE WHEN filtered_persons.wanderingAt IS NULL THEN NULL "
        "ELSE julianday(?) - julianday(filtered_persons.wanderingAt) END",
        (now,),
    )
    return _scalar_cte(bucket_case(days, DURATION_GROUPS))


AGE_GROUP = Grouping("age_group", _age_cte, bucket_labels(AGE_GROUPS))
FOLLOW_DURATION = Grouping("follow_duration", _follow_duration_cte, bucket_labels(DURATION_GROUPS))
WANDERING_DURATION = Grouping("wandering_duration", _wandering_duration_cte, bucket_labels(DURATION_GROUPS))


def field_grouping(field: FilterDefinition) -> Grouping:
    """enum / boolean / yes-no / text 필드 원값 그룹 (NULL → Non renseigné)"""
    col = column("filtered_persons", field.id)

    if field.type in ("boolean", "yes-no"):
        key = SqlFragment(
            f"CASE WHEN {col} IS NULL THEN ? WHEN {col} = 1 THEN ? ELSE ? END",
            (NON_RENSEIGNE, OUI, NON),
        )
        labels: Optional[Tuple[str, ...]] = (OUI, NON, NON_RENSEIGNE)
    else:
        key = SqlFragment(f"COALESCE(CAST({col} AS TEXT), ?)", (NON_RENSEIGNE,))
        labels = None

    return Grouping(f"field:{field.id}", lambda now: _scalar_cte(key), labels)


def choice_grouping(field_id: str) -> Grouping:
    """JSON 배열 컬럼 → 선택값별 그룹 (빈 배열/NULL → Non renseigné)"""
    col = column("filtered_persons", field_id)
    cte = SqlFragment(
        "bucketed AS (SELECT filtered_persons._id AS _id, COALESCE(CAST(choice.value AS TEXT), ?) AS group_value "
        f"FROM filtered_persons LEFT JOIN json_each(CASE WHEN json_valid({col}) THEN {col} END) AS choice)",
        (NON_RENSEIGNE,),
    )
    return Grouping(f"choice:{field_id}", lambda now: cte, multi_valued=True)


GENDER = field_grouping(FilterDefinition(id="gender", type="enum", label="Genre"))
OUT_OF_ACTIVE_LIST_REASON = choice_grouping("outOfActiveListReasons")

GROUPINGS: Dict[str, Grouping] = {
    "age_group": AGE_GROUP,
    "follow_duration": FOLLOW_DURATION,
    "wandering_duration": WANDERING_DURATION,
    "gender": GENDER,
    "out_of_active_list_reason": OUT_OF_ACTIVE_LIST_REASON,
}


def get_grouping(name: str, field: Optional[FilterDefinition] = None) -> Grouping:
    """이름 → Grouping ('field' / 'choice'는 필드 정의 필요)

    Raises:
        ValueError: 알 수 없는 이름 또는 필드 누락
    """
    if name in GROUPINGS:
        return GROUPINGS[name]
    if name in ("field", "choice"):
        if field is None:
            raise ValueError(f"grouping '{name}' requires a field definition")
        return field_grouping(field) if name == "field" else choice_grouping(field.id)
    raise ValueError(f"Unknown grouping: {name}")
