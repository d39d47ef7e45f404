"""
로컬 스냅샷 스키마 (SQLite)

동기화 레이어가 생성·갱신하는 테이블 구조. 통계 엔진은 읽기만 하며,
이 DDL은 개발용 스냅샷 및 테스트 fixture 생성에 사용된다.
"""

import sqlite3
from typing import Iterable

from outreach_stats.sql_utils import quote_identifier

SNAPSHOT_SCHEMA = """
CREATE TABLE IF NOT EXISTS person (
    _id TEXT PRIMARY KEY,
    name TEXT,
    gender TEXT,
    birthdate TEXT,
    followedSince TEXT,
    createdAt TEXT,
    updatedAt TEXT,
    deletedAt TEXT,
    wanderingAt TEXT,
    outOfActiveList INTEGER,
    outOfActiveListDate TEXT,
    outOfActiveListReasons TEXT,
    alertness INTEGER
);

CREATE TABLE IF NOT EXISTS person_history (
    personId TEXT NOT NULL,
    fromDate TEXT NOT NULL,
    toDate TEXT,
    data TEXT,
    createdAt TEXT
);

CREATE TABLE IF NOT EXISTS person_history_team (
    personId TEXT NOT NULL,
    teamId TEXT NOT NULL,
    fromDate TEXT NOT NULL,
    toDate TEXT
);

CREATE TABLE IF NOT EXISTS "action" (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    status TEXT,
    categories TEXT,
    dueAt TEXT,
    completedAt TEXT,
    createdAt TEXT,
    deletedAt TEXT
);

CREATE TABLE IF NOT EXISTS action_team (
    actionId TEXT NOT NULL,
    teamId TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS consultation (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    type TEXT,
    status TEXT,
    teams TEXT,
    dueAt TEXT,
    completedAt TEXT,
    createdAt TEXT,
    deletedAt TEXT
);

CREATE TABLE IF NOT EXISTS passage (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    teamId TEXT,
    date TEXT,
    createdAt TEXT
);

CREATE TABLE IF NOT EXISTS rencontre (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    teamId TEXT,
    date TEXT,
    createdAt TEXT
);

CREATE TABLE IF NOT EXISTS treatment (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    createdAt TEXT
);

CREATE TABLE IF NOT EXISTS person_place (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    placeId TEXT,
    createdAt TEXT
);

CREATE TABLE IF NOT EXISTS comment (
    _id TEXT PRIMARY KEY,
    personId TEXT,
    date TEXT,
    createdAt TEXT
);

CREATE INDEX IF NOT EXISTS idx_person_history_person_from
    ON person_history(personId, fromDate);
CREATE INDEX IF NOT EXISTS idx_person_history_team_person
    ON person_history_team(personId, teamId);
CREATE INDEX IF NOT EXISTS idx_action_team_action
    ON action_team(actionId);
"""


def create_schema(conn: sqlite3.Connection, custom_fields: Iterable[str] = ()) -> None:
    """스냅샷 테이블 생성 + person 커스텀 필드 컬럼 추가"""
    conn.executescript(SNAPSHOT_SCHEMA)
    existing = {row[1] for row in conn.execute("PRAGMA table_info(person)")}
    for name in custom_fields:
        if name not in existing:
            conn.execute(f"ALTER TABLE person ADD COLUMN {quote_identifier(name)}")
    conn.commit()
