"""
통계 엔진 Pydantic 모델 — 입력 컨텍스트 + 결과 행
"""
import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from outreach_stats.sql_utils import to_iso_timestamp

NON_RENSEIGNE = "Non renseigné"
OUI = "Oui"
NON = "Non"

FieldType = Literal[
    "text", "textarea", "enum", "date", "date-with-time", "duration",
    "boolean", "yes-no", "number", "multi-choice",
]


class Population(str, Enum):
    CREATED = "created"
    FOLLOWED = "followed"
    ALL = "all"


# ── 입력 모델 ────────────────────────────────────────────

class Period(BaseModel):
    """보고 기간 — from/to 모두 지정되어야 유효, 한쪽만 있으면 '전체 기간'"""
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[str] = Field(None, alias="from")
    to: Optional[str] = None

    @field_validator("from_", "to", mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Optional[str]:
        return to_iso_timestamp(v)

    @property
    def is_bounded(self) -> bool:
        return bool(self.from_ and self.to)


class FilterDefinition(BaseModel):
    id: str
    type: FieldType
    label: str = ""
    options: Optional[List[str]] = None


class Filter(BaseModel):
    id: str
    value: Any = None


class StatsContext(BaseModel):
    """모든 쿼리에 전달되는 단일 컨텍스트"""
    model_config = ConfigDict(populate_by_name=True)

    base_filters: List[FilterDefinition] = Field(default_factory=list, alias="baseFilters")
    filters: List[Filter] = Field(default_factory=list)
    teams: List[str] = Field(default_factory=list)
    period: Period = Field(default_factory=Period)


# ── 결과 모델 ────────────────────────────────────────────

class GroupCount(BaseModel):
    group: str
    total: int


class HumanDuration(BaseModel):
    value: int
    unit: Literal["jours", "mois", "ans"]


class AverageResult(BaseModel):
    days: Optional[float] = None
    human: Optional[HumanDuration] = None


class NumberFieldStats(BaseModel):
    total: int = 0
    average: Optional[float] = None


class PersonRow(BaseModel):
    """드릴다운 결과 person 행 (커스텀 필드는 extra로 보존)"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="_id")
    name: Optional[str] = None
    gender: Optional[str] = None
    birthdate: Optional[str] = None
    followed_since: Optional[str] = Field(None, alias="followedSince")
    created_at: Optional[str] = Field(None, alias="createdAt")
    assigned_teams: List[str] = Field(default_factory=list, alias="assignedTeams")

    @field_validator("assigned_teams", mode="before")
    @classmethod
    def split_teams(cls, v: Any) -> List[str]:
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return sorted(t for t in v.split(",") if t)
        return list(v)


class ActionRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="_id")
    person_id: Optional[str] = Field(None, alias="personId")
    status: Optional[str] = None
    due_at: Optional[str] = Field(None, alias="dueAt")
    completed_at: Optional[str] = Field(None, alias="completedAt")
    categories: List[str] = Field(default_factory=list)

    @field_validator("categories", mode="before")
    @classmethod
    def parse_categories(cls, v: Any) -> List[str]:
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except ValueError:
                return []
            return [str(c) for c in parsed] if isinstance(parsed, list) else []
        return list(v)


class HistoryState(BaseModel):
    """특정 시점의 person 상태 (person_history 1행)"""
    person_id: str
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def parse_data(cls, v: Any) -> Dict[str, Any]:
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            parsed = json.loads(v)
            return parsed if isinstance(parsed, dict) else {}
        return dict(v)
