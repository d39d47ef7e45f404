"""
SQLite 스냅샷 Store — 읽기 전용 비동기 실행기

동기화 레이어가 유지하는 로컬 스냅샷을 읽기 전용(mode=ro)으로 연다.
쿼리마다 별도 연결을 사용하고 asyncio.to_thread에서 실행하므로
여러 통계 쿼리가 동시에 실행되어도 공유 상태가 없다.
"""
import asyncio
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from outreach_stats.config import settings

logger = logging.getLogger("snapshot_store")


class SnapshotStore:
    """읽기 전용 스냅샷 핸들 (모든 통계 함수에 주입)"""

    def __init__(
        self,
        db_path: str,
        timeout: float = settings.STATS_DB_TIMEOUT,
        slow_query_ms: float = settings.SLOW_QUERY_MS,
    ):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.slow_query_ms = slow_query_ms

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            f"{self.db_path.resolve().as_uri()}?mode=ro",
            uri=True,
            timeout=self.timeout,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch_sync(self, query: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        start = time.monotonic()
        conn = self._connect()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        except sqlite3.Error as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.error(f"QUERY ERROR ({elapsed_ms:.0f}ms): {query[:200]} | {e}")
            raise
        finally:
            conn.close()

        elapsed_ms = (time.monotonic() - start) * 1000
        if elapsed_ms > self.slow_query_ms:
            logger.warning(f"SLOW QUERY ({elapsed_ms:.0f}ms): {query[:200]}")
        return [dict(row) for row in rows]

    async def fetch(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """쿼리 실행 → dict 행 목록 (sqlite3.Error는 그대로 전파)"""
        logger.debug("fetch: %s | params=%s", query[:200], str(params)[:200])
        return await asyncio.to_thread(self._fetch_sync, query, params)

    async def fetchrow(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = await self.fetch(query, params)
        return rows[0] if rows else None

    async def fetchval(self, query: str, params: Sequence[Any] = ()) -> Any:
        row = await self.fetchrow(query, params)
        if row is None:
            return None
        return next(iter(row.values()), None)


_store: Optional[SnapshotStore] = None


def get_store() -> SnapshotStore:
    """기본 스냅샷 Store (lazy singleton, FastAPI dependency)"""
    global _store
    if _store is None:
        _store = SnapshotStore(settings.STATS_DB_PATH)
        logger.info("Snapshot store opened: %s", settings.STATS_DB_PATH)
    return _store


def reset_store() -> None:
    """설정 변경 후 Store 재생성 (종료 시 호출)"""
    global _store
    _store = None
