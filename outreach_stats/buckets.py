"""
구간(bucket) 정의 — (상한, 라벨) 순서 목록 + 공통 구간화 함수

집계와 드릴다운이 같은 CASE 식을 사용하므로 건수 합계가 항상 일치한다.
"""
from typing import List, Optional, Sequence, Tuple

from outreach_stats.models import NON_RENSEIGNE, HumanDuration
from outreach_stats.sql_utils import SqlFragment

# 상한은 미포함(<), None은 나머지 전부
Bucket = Tuple[Optional[float], str]

AGE_GROUPS: List[Bucket] = [
    (3, "- de 2 ans"),
    (18, "3 - 17 ans"),
    (25, "18 - 24 ans"),
    (45, "25 - 44 ans"),
    (60, "45 - 59 ans"),
    (None, "60+ ans"),
]

# 일수 기준
DURATION_GROUPS: List[Bucket] = [
    (180, "0-6 mois"),
    (365, "6-12 mois"),
    (730, "1-2 ans"),
    (1825, "2-5 ans"),
    (3650, "5-10 ans"),
    (None, "+ 10 ans"),
]


def bucket_labels(buckets: Sequence[Bucket]) -> Tuple[str, ...]:
    """표시 순서 라벨 (Non renseigné 포함)"""
    return (NON_RENSEIGNE,) + tuple(label for _, label in buckets)


def assign_bucket(value: Optional[float], buckets: Sequence[Bucket]) -> str:
    """값 → 라벨 (None은 Non renseigné)"""
    if value is None:
        return NON_RENSEIGNE
    for upper, label in buckets:
        if upper is None or value < upper:
            return label
    return buckets[-1][1]


def bucket_case(expr: SqlFragment, buckets: Sequence[Bucket]) -> SqlFragment:
    """assign_bucket과 동일한 규칙의 SQL CASE 식"""
    sql = f"CASE WHEN ({expr.sql}) IS NULL THEN ?"
    params = list(expr.params) + [NON_RENSEIGNE]
    for upper, label in buckets:
        if upper is None:
            break
        sql += f" WHEN ({expr.sql}) < ? THEN ?"
        params += list(expr.params) + [upper, label]
    sql += " ELSE ? END"
    params.append(buckets[-1][1])
    return SqlFragment(sql, tuple(params))


def day_count_to_human_readable(days: float) -> HumanDuration:
    """일수 → 사람이 읽는 단위 (90일 미만: 일, 24개월 미만: 월, 그 외: 년)"""
    if days < 90:
        return HumanDuration(value=round(days), unit="jours")
    months = days / (365.25 / 12)
    if months < 24:
        return HumanDuration(value=round(months), unit="mois")
    return HumanDuration(value=round(days / 365.25), unit="ans")
