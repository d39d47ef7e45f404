"""
Filter Compiler — 사용자 필터 → 바인드 파라미터 조건

입력 형태 오류(카탈로그에 없는 id, 빈 값, 형식이 맞지 않는 값)는
예외 없이 해당 조건만 생략한다.
"""
import logging
from typing import Any, Dict, List, Optional

from outreach_stats.models import NON, NON_RENSEIGNE, OUI, Filter, FilterDefinition, Period
from outreach_stats.sql_utils import (
    SqlFragment, column, conjoin, is_valid_identifier, json_param, to_iso_timestamp,
)

logger = logging.getLogger(__name__)

HAS_CONSULTATION_FILTER = "hasAtLeastOneConsultation"
DATE_TYPES = ("date", "date-with-time", "duration")
DATE_COMPARATORS = ("unfilled", "before", "after", "equals")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _has_consultation(value: Any, period: Period, table: str) -> Optional[SqlFragment]:
    if not value or not isinstance(value, str):
        return None
    negate = "" if value == OUI else "NOT "
    sql = (
        f"{negate}EXISTS (SELECT 1 FROM consultation "
        f"WHERE consultation.personId = {table}._id AND consultation.deletedAt IS NULL"
    )
    if not period.is_bounded:
        return SqlFragment(sql + ")")
    return SqlFragment(
        sql + " AND (consultation.dueAt BETWEEN ? AND ? "
        "OR consultation.completedAt BETWEEN ? AND ? "
        "OR consultation.createdAt BETWEEN ? AND ?))",
        (period.from_, period.to) * 3,
    )


def _text(col: str, value: Any) -> Optional[SqlFragment]:
    if not value or not isinstance(value, str):
        return None
    if value == NON_RENSEIGNE:
        return SqlFragment(f"{col} IS NULL OR {col} = ''")
    return SqlFragment(f"{col} LIKE ? ESCAPE '\\'", (f"%{_escape_like(value)}%",))


def _enum(col: str, value: Any) -> Optional[SqlFragment]:
    if isinstance(value, str):
        value = [value]
    if not value or not isinstance(value, (list, tuple)):
        return None
    literals = [v for v in value if v != NON_RENSEIGNE]
    includes_unfilled = len(literals) != len(value)

    if not literals:
        return SqlFragment(f"{col} IS NULL")
    in_list = SqlFragment(f"{col} IN (SELECT value FROM json_each(?))", (json_param(literals),))
    if includes_unfilled:
        return SqlFragment(f"{in_list.sql} OR {col} IS NULL", in_list.params)
    return in_list


def _multi_choice(col: str, value: Any) -> Optional[SqlFragment]:
    if isinstance(value, str):
        value = [value]
    if not value or not isinstance(value, (list, tuple)):
        return None
    literals = [v for v in value if v != NON_RENSEIGNE]
    unfilled = (
        f"({col} IS NULL OR "
        f"json_array_length(CASE WHEN json_valid({col}) THEN {col} ELSE '[]' END) = 0)"
    )
    if not literals:
        return SqlFragment(unfilled)
    contains = SqlFragment(
        f"EXISTS (SELECT 1 FROM json_each(CASE WHEN json_valid({col}) THEN {col} END) choice "
        "WHERE choice.value IN (SELECT value FROM json_each(?)))",
        (json_param(literals),),
    )
    if len(literals) != len(value):
        return SqlFragment(f"{contains.sql} OR {unfilled}", contains.params)
    return contains


def _date(col: str, value: Any) -> Optional[SqlFragment]:
    if not isinstance(value, dict):
        return None
    comparator = value.get("comparator")
    if not value.get("date") or comparator not in DATE_COMPARATORS:
        return None
    if comparator == "unfilled":
        return SqlFragment(f"{col} IS NULL")

    date_value = to_iso_timestamp(value["date"])
    if date_value is None:
        return None
    if comparator == "before":
        return SqlFragment(f"{col} < ?", (date_value,))
    if comparator == "after":
        return SqlFragment(f"{col} > ?", (date_value,))
    return SqlFragment(f"date({col}) = date(?)", (date_value,))


def _boolean(col: str, value: Any) -> Optional[SqlFragment]:
    if not value or not isinstance(value, str):
        return None
    return SqlFragment(f"{col} = ?", (1 if value == OUI else 0,))


def _yes_no(col: str, value: Any) -> Optional[SqlFragment]:
    if value is not None and not isinstance(value, str):
        return None
    if value == OUI:
        return SqlFragment(f"{col} = 1")
    if value == NON:
        return SqlFragment(f"{col} = 0")
    return SqlFragment(f"{col} IS NULL")


def _number(col: str, value: Any) -> Optional[SqlFragment]:
    if value is None or value == "":
        return None
    if value == NON_RENSEIGNE:
        return SqlFragment(f"{col} IS NULL")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return SqlFragment(f"CAST({col} AS REAL) = ?", (number,))


_COMPILERS = {
    "text": _text,
    "textarea": _text,
    "enum": _enum,
    "multi-choice": _multi_choice,
    "date": _date,
    "date-with-time": _date,
    "duration": _date,
    "boolean": _boolean,
    "yes-no": _yes_no,
    "number": _number,
}


def compile_filter(
    f: Filter, definition: FilterDefinition, period: Period, table: str = "population",
) -> Optional[SqlFragment]:
    """단일 필터 → 조건 (생략 시 None)"""
    if f.id == HAS_CONSULTATION_FILTER:
        return _has_consultation(f.value, period, table)
    if not is_valid_identifier(f.id):
        logger.warning("filter id ignored (invalid identifier): %r", f.id)
        return None
    compiler = _COMPILERS.get(definition.type)
    if compiler is None:
        return None
    return compiler(column(table, f.id), f.value)


def compile_filters(
    filters: List[Filter],
    base_filters: List[FilterDefinition],
    period: Period,
    table: str = "population",
) -> SqlFragment:
    """활성 필터 전체를 AND로 결합한 조건 (없으면 빈 조각)"""
    catalog: Dict[str, FilterDefinition] = {d.id: d for d in base_filters}
    predicates = []
    for f in filters:
        definition = catalog.get(f.id)
        if definition is None:
            continue
        predicate = compile_filter(f, definition, period, table)
        if predicate is not None:
            predicates.append(predicate)
    return conjoin(predicates)
