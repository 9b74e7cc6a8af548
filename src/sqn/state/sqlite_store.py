from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import UTC, datetime

from ..models import NotificationData


logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class SqliteStateStore:
    """
    默认状态存储：SQLite

    表设计（最小可用）：
    - notification_data：每个 project_key 一条水位记录（JSON 形式保存）
    """

    sqlite_path: str

    def _connect(self) -> sqlite3.Connection:
        """
        打开一个新连接；调用方用 closing(...) 包裹，sqlite3 自带的上下文只负责提交/回滚。
        """
        conn = sqlite3.connect(self.sqlite_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_data (
                    project_key TEXT PRIMARY KEY,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def load_notification_data(self, project_key: str) -> NotificationData | None:
        """
        读取水位；记录损坏时记日志并按“无记录”处理（起始水位会回落到 24 小时前）。
        """
        with closing(self._connect()) as conn, conn:
            row = conn.execute(
                "SELECT data_json FROM notification_data WHERE project_key = ?",
                (project_key,),
            ).fetchone()
        if not row:
            return None
        try:
            return NotificationData.from_json_dict(json.loads(row["data_json"]))
        except (ValueError, TypeError, AttributeError):
            logger.warning("discarding unreadable notification data: project_key=%s", project_key, exc_info=True)
            return None

    def save_notification_data(self, project_key: str, data: NotificationData) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO notification_data(project_key, data_json, updated_at)
                VALUES(?, ?, ?)
                ON CONFLICT(project_key) DO UPDATE SET
                    data_json=excluded.data_json,
                    updated_at=excluded.updated_at
                """,
                (project_key, json.dumps(data.to_json_dict(), ensure_ascii=False), _utc_now_iso()),
            )
