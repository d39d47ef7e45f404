"""
Outreach Stats 설정

로컬 스냅샷(SQLite) 경로 및 쿼리 실행 파라미터.
"""
from pydantic_settings import BaseSettings
import os


class Settings(BaseSettings):
    # 기본 설정
    APP_NAME: str = "Outreach Stats"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # 로컬 스냅샷 (동기화 레이어가 관리, 여기서는 읽기 전용)
    STATS_DB_PATH: str = os.getenv("STATS_DB_PATH", "snapshot.db")
    STATS_DB_TIMEOUT: float = float(os.getenv("STATS_DB_TIMEOUT", "30"))

    # 슬로우 쿼리 경고 threshold
    SLOW_QUERY_MS: float = float(os.getenv("SLOW_QUERY_MS", "1000"))

    class Config:
        env_file = ".env"


settings = Settings()
