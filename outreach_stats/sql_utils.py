"""
SQL 조립 유틸리티

모든 값은 바인드 파라미터(?)로 전달하고, 식별자(컬럼명)만 검증 후 인용한다.
"""

import json
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional, Sequence, Tuple

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


@dataclass(frozen=True)
class SqlFragment:
    """SQL 조각 + 바인드 파라미터"""

    sql: str
    params: Tuple[Any, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.sql)


def join_fragments(fragments: Iterable[SqlFragment], separator: str) -> SqlFragment:
    """비어있지 않은 조각들을 separator로 연결합니다."""
    parts = [f for f in fragments if f]
    return SqlFragment(
        separator.join(f.sql for f in parts),
        tuple(p for f in parts for p in f.params),
    )


def conjoin(fragments: Iterable[SqlFragment]) -> SqlFragment:
    """조건들을 AND로 결합 (각 조건은 괄호로 감쌈)"""
    parts = [f for f in fragments if f]
    return join_fragments((SqlFragment(f"({f.sql})", f.params) for f in parts), " AND ")


def where_clause(predicate: SqlFragment) -> SqlFragment:
    if not predicate:
        return SqlFragment("")
    return SqlFragment(f"WHERE {predicate.sql}", predicate.params)


def is_valid_identifier(name: Any) -> bool:
    return isinstance(name, str) and bool(IDENTIFIER_PATTERN.fullmatch(name))


def quote_identifier(name: str) -> str:
    """컬럼명 검증 후 큰따옴표 인용

    Raises:
        ValueError: 허용되지 않는 문자가 포함된 경우
    """
    if not is_valid_identifier(name):
        raise ValueError(f"Invalid column identifier: {name!r}")
    return f'"{name}"'


def column(table: str, name: str) -> str:
    return f"{table}.{quote_identifier(name)}"


def json_param(values: Sequence[Any]) -> str:
    """json_each(?)에 바인딩할 JSON 배열 문자열"""
    return json.dumps(list(values), ensure_ascii=False)


def to_iso_timestamp(value: Any) -> Optional[str]:
    """날짜/시각 → 스냅샷 저장 형식 (UTC, 밀리초, 'Z')

    파싱 불가한 값은 None을 반환한다 (호출측에서 조건 생략).

    Example:
        >>> to_iso_timestamp("2023-01-10")
        '2023-01-10T00:00:00.000Z'
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_param(now: Optional[datetime] = None) -> str:
    """평가 시점 'now' 바인드 값 (기본: 현재 UTC)"""
    return to_iso_timestamp(now or datetime.now(timezone.utc))
