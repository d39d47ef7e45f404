"""
테스트 공유 fixtures — 임시 SQLite 스냅샷 + Store
"""
import json
import sqlite3
from datetime import datetime, timezone

import pytest

from outreach_stats.models import FilterDefinition, Filter, Period, StatsContext
from outreach_stats.schema import create_schema
from outreach_stats.sql_utils import to_iso_timestamp
from outreach_stats.store import SnapshotStore

# 연령·기간 구간 계산 기준 시점 (고정)
NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)

PERIOD_2023 = {"from": "2023-01-01", "to": "2023-12-31"}

CUSTOM_FIELDS = [
    "custom-housing",
    "custom-has-dog",
    "custom-rsa",
    "custom-first-contact-age",
    "custom-languages",
    "custom-notes",
    "custom-last-visit",
]

CATALOG = [
    FilterDefinition(id="gender", type="enum", label="Genre", options=["F", "M"]),
    FilterDefinition(id="custom-housing", type="enum", label="Hébergement"),
    FilterDefinition(id="custom-has-dog", type="yes-no", label="Avec animaux"),
    FilterDefinition(id="custom-rsa", type="boolean", label="RSA"),
    FilterDefinition(id="custom-first-contact-age", type="number", label="Âge au premier contact"),
    FilterDefinition(id="custom-languages", type="multi-choice", label="Langues"),
    FilterDefinition(id="custom-notes", type="textarea", label="Notes"),
    FilterDefinition(id="custom-last-visit", type="date", label="Dernière visite"),
    FilterDefinition(id="hasAtLeastOneConsultation", type="yes-no", label="A eu une consultation"),
]


def ts(value):
    return to_iso_timestamp(value)


def make_context(teams=("T1",), period=PERIOD_2023, filters=()):
    return StatsContext(
        baseFilters=CATALOG,
        filters=[f if isinstance(f, Filter) else Filter(**f) for f in filters],
        teams=list(teams),
        period=Period(**period) if isinstance(period, dict) else period,
    )


class SnapshotBuilder:
    """동기화 레이어 대신 스냅샷 테이블을 채우는 헬퍼"""

    def __init__(self, path):
        self.path = path
        self.conn = sqlite3.connect(str(path), isolation_level=None)
        create_schema(self.conn, CUSTOM_FIELDS)

    def _insert(self, table, row):
        cols = ", ".join(f'"{c}"' for c in row)
        marks = ", ".join("?" for _ in row)
        self.conn.execute(f'INSERT INTO "{table}" ({cols}) VALUES ({marks})', tuple(row.values()))

    def person(self, _id, team=None, followed_since=None, **fields):
        for key in ("birthdate", "wanderingAt", "outOfActiveListDate", "createdAt", "deletedAt", "custom-last-visit"):
            if fields.get(key):
                fields[key] = ts(fields[key])
        for key in ("outOfActiveListReasons", "custom-languages"):
            if isinstance(fields.get(key), list):
                fields[key] = json.dumps(fields[key], ensure_ascii=False)
        row = {
            "_id": _id,
            "name": fields.pop("name", _id),
            "followedSince": ts(followed_since),
            "createdAt": fields.pop("createdAt", ts(followed_since) or ts("2020-01-01")),
        }
        row.update(fields)
        self._insert("person", row)
        if team:
            self.team(_id, team, followed_since or "2020-01-01")
        return self

    def team(self, person_id, team_id, from_date, to_date=None):
        self._insert("person_history_team", {
            "personId": person_id, "teamId": team_id,
            "fromDate": ts(from_date), "toDate": ts(to_date),
        })
        return self

    def history(self, person_id, from_date, to_date=None, data=None):
        self._insert("person_history", {
            "personId": person_id, "fromDate": ts(from_date), "toDate": ts(to_date),
            "data": json.dumps(data or {}), "createdAt": ts(from_date),
        })
        return self

    def action(self, _id, person_id, teams=("T1",), due_at=None, completed_at=None,
               categories=None, status="A FAIRE", deleted_at=None, created_at="2020-01-01"):
        self._insert("action", {
            "_id": _id, "personId": person_id, "status": status,
            "categories": json.dumps(categories, ensure_ascii=False) if categories is not None else None,
            "dueAt": ts(due_at), "completedAt": ts(completed_at),
            "createdAt": ts(created_at), "deletedAt": ts(deleted_at),
        })
        for team_id in teams:
            self._insert("action_team", {"actionId": _id, "teamId": team_id})
        return self

    def consultation(self, _id, person_id, teams=("T1",), due_at=None, created_at="2020-01-01", deleted_at=None):
        self._insert("consultation", {
            "_id": _id, "personId": person_id, "teams": json.dumps(list(teams)),
            "dueAt": ts(due_at), "createdAt": ts(created_at), "deletedAt": ts(deleted_at),
        })
        return self

    def activity(self, table, _id, person_id, date=None, team_id="T1", created_at="2020-01-01"):
        """passage / rencontre / comment / treatment / person_place"""
        row = {"_id": _id, "personId": person_id, "createdAt": ts(created_at)}
        if table in ("passage", "rencontre"):
            row["teamId"] = team_id
        if table in ("passage", "rencontre", "comment"):
            row["date"] = ts(date)
        self._insert(table, row)
        return self

    def close(self):
        self.conn.close()


@pytest.fixture()
def snapshot(tmp_path):
    builder = SnapshotBuilder(tmp_path / "snapshot.db")
    yield builder
    builder.close()


@pytest.fixture()
def store(snapshot):
    return SnapshotStore(str(snapshot.path))


@pytest.fixture()
def worked_example(snapshot):
    """P1, P2 (T1, 2023 등록), P3 (T2, 2022 등록)"""
    snapshot.person("P1", team="T1", followed_since="2023-01-10", birthdate="1990-05-01", gender="M")
    snapshot.person("P2", team="T1", followed_since="2023-06-01", gender="F")
    snapshot.person("P3", team="T2", followed_since="2022-01-01", birthdate="1950-02-02")
    return snapshot
