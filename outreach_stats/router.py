"""
통계 API — 앱 셸에서 사용하는 in-process 라우터

  - /count, /activities/{kind}
  - /groups/{grouping}, /groups/{grouping}/drill-down
  - /groups/action-categories, /groups/action-categories/drill-down
  - /averages/{metric}
  - /persons/{person_id}/state
"""
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from outreach_stats import aggregations, drilldown
from outreach_stats.groupings import get_grouping
from outreach_stats.models import FilterDefinition, Population, StatsContext
from outreach_stats.population import state_at
from outreach_stats.store import SnapshotStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/stats", tags=["Stats"])


class StatsRequest(BaseModel):
    context: StatsContext
    population: Population = Population.CREATED
    field: Optional[FilterDefinition] = None
    now: Optional[datetime] = None


class DrillDownRequest(StatsRequest):
    group_value: str


class ActionCategoryRequest(BaseModel):
    context: StatsContext
    categories: List[str] = Field(default_factory=list)
    statuses: List[str] = Field(default_factory=list)


class ActionCategoryDrillDownRequest(ActionCategoryRequest):
    group_value: str


def _store_error(e: sqlite3.Error) -> HTTPException:
    logger.error("stats query failed: %s", e)
    return HTTPException(status_code=500, detail=f"스냅샷 조회 오류: {e}")


@router.post("/count")
async def stats_count(req: StatsRequest, store: SnapshotStore = Depends(get_store)):
    """코호트 인원 수"""
    try:
        total = await aggregations.count_persons(store, req.context, req.population)
    except sqlite3.Error as e:
        raise _store_error(e)
    return {"population": req.population.value, "total": total}


@router.post("/activities/{kind}")
async def stats_activities(kind: str, req: StatsRequest, store: SnapshotStore = Depends(get_store)):
    """활동 건수 (actions / consultations / passages / encounters)
    + persons-with-actions / persons-with-consultations"""
    try:
        if kind == "persons-with-actions":
            total = await aggregations.count_persons_with_action(store, req.context)
        elif kind == "persons-with-consultations":
            total = await aggregations.count_persons_with_consultation(store, req.context)
        else:
            total = await aggregations.count_activities(store, req.context, kind)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.Error as e:
        raise _store_error(e)
    return {"kind": kind, "total": total}


@router.post("/groups/action-categories")
async def stats_action_categories(req: ActionCategoryRequest, store: SnapshotStore = Depends(get_store)):
    try:
        actions = await aggregations.actions_by_category_count(
            store, req.context, req.categories, req.statuses,
        )
        persons = await aggregations.persons_by_action_category_count(
            store, req.context, req.categories, req.statuses,
        )
    except sqlite3.Error as e:
        raise _store_error(e)
    return {
        "actions": [g.model_dump() for g in actions],
        "persons": [g.model_dump() for g in persons],
    }


@router.post("/groups/action-categories/drill-down")
async def stats_action_categories_drill_down(
    req: ActionCategoryDrillDownRequest, store: SnapshotStore = Depends(get_store),
):
    """카테고리 1개의 action 목록 + person 목록"""
    try:
        actions = await drilldown.actions_by_category(
            store, req.context, req.group_value, req.categories, req.statuses,
        )
        persons = await drilldown.persons_by_action_category(
            store, req.context, req.group_value, req.categories, req.statuses,
        )
    except sqlite3.Error as e:
        raise _store_error(e)
    return {
        "actions": [a.model_dump(by_alias=True) for a in actions],
        "persons": [p.model_dump(by_alias=True) for p in persons],
    }


@router.post("/groups/{grouping}")
async def stats_groups(grouping: str, req: StatsRequest, store: SnapshotStore = Depends(get_store)):
    """그룹별 인원 (age_group, follow_duration, wandering_duration, gender,
    out_of_active_list_reason, field, choice)"""
    try:
        g = get_grouping(grouping, req.field)
        groups = await aggregations.grouped_count(store, req.context, req.population, g, req.now)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.Error as e:
        raise _store_error(e)
    return {
        "grouping": grouping,
        "groups": [gc.model_dump() for gc in groups],
        "total": sum(gc.total for gc in groups),
    }


@router.post("/groups/{grouping}/drill-down")
async def stats_drill_down(grouping: str, req: DrillDownRequest, store: SnapshotStore = Depends(get_store)):
    """그룹 1개의 person 목록"""
    try:
        g = get_grouping(grouping, req.field)
        rows = await drilldown.drill_down(
            store, req.context, req.population, g, req.group_value, req.now,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.Error as e:
        raise _store_error(e)
    return {
        "persons": [r.model_dump(by_alias=True) for r in rows],
        "count": len(rows),
    }


@router.post("/averages/{metric}")
async def stats_average(metric: str, req: StatsRequest, store: SnapshotStore = Depends(get_store)):
    """평균 (follow_duration, wandering_duration, date_field, number_field)"""
    try:
        if metric == "follow_duration":
            result = await aggregations.average_follow_duration(store, req.context, req.population, req.now)
        elif metric == "wandering_duration":
            result = await aggregations.average_wandering_duration(store, req.context, req.population, req.now)
        elif metric in ("date_field", "number_field"):
            if req.field is None:
                raise ValueError(f"metric '{metric}' requires a field definition")
            if metric == "date_field":
                result = await aggregations.average_date_field(
                    store, req.context, req.population, req.field, req.now,
                )
            else:
                result = await aggregations.number_field_stats(store, req.context, req.population, req.field)
        else:
            raise ValueError(f"Unknown metric: {metric}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.Error as e:
        raise _store_error(e)
    return {"metric": metric, **result.model_dump()}


@router.get("/persons/{person_id}/state")
async def person_state(person_id: str, at: Optional[datetime] = None, store: SnapshotStore = Depends(get_store)):
    """person의 특정 시점 상태 (person_history)"""
    try:
        state = await state_at(store, person_id, at)
    except sqlite3.Error as e:
        raise _store_error(e)
    if state is None:
        raise HTTPException(status_code=404, detail="이력을 찾을 수 없습니다")
    return state.model_dump()
