"""
Store SQLite cho username.
Ràng buộc PRIMARY KEY của bảng là nguồn chính xác duy nhất cho xung đột đăng ký.
"""
from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from typing import Iterable, Iterator

from availability.collaborators.contracts import InsertResult
from availability.errors import StoreError


class SQLiteStore:
    """
    Store username trên file SQLite.
    Mỗi thao tác mở kết nối riêng nên có thể dùng từ nhiều luồng.
    """

    def __init__(self, db_path: str, timeout: float = 5.0, page_size: int = 1000) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self.page_size = page_size
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.timeout)

    def _initialize_db(self) -> None:
        """Khởi tạo bảng usernames."""
        with closing(self._connect()) as conn, conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS usernames (
                    username TEXT PRIMARY KEY,
                    created_at TIMESTAMP NOT NULL
                )
            ''')

    def exists(self, key: str) -> bool:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    "SELECT 1 FROM usernames WHERE username = ? LIMIT 1", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"exists({key!r}) failed: {exc}") from exc
        return row is not None

    def insert_unique(self, key: str) -> InsertResult:
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(
                    "INSERT INTO usernames (username, created_at) VALUES (?, ?)",
                    (key, _now()),
                )
        except sqlite3.IntegrityError:
            return InsertResult.ALREADY_EXISTS
        except sqlite3.Error:
            # lỗi tạm thời hoặc file hỏng, không phải xung đột
            return InsertResult.TRANSIENT_ERROR
        return InsertResult.CREATED

    def stream_all_keys(self) -> Iterator[str]:
        """Duyệt toàn bộ username theo từng trang fetchmany."""
        try:
            with closing(self._connect()) as conn:
                cursor = conn.execute("SELECT username FROM usernames")
                while True:
                    rows = cursor.fetchmany(self.page_size)
                    if not rows:
                        break
                    for (username,) in rows:
                        yield username
        except sqlite3.Error as exc:
            raise StoreError(f"stream_all_keys failed: {exc}") from exc

    def register_batch(self, keys: Iterable[str]) -> int:
        """Nạp hàng loạt (seed/migration), bỏ qua khóa trùng; trả về số dòng mới."""
        created_at = _now()
        rows = [(key, created_at) for key in keys]
        try:
            with closing(self._connect()) as conn, conn:
                before = conn.total_changes
                conn.executemany(
                    "INSERT OR IGNORE INTO usernames (username, created_at) VALUES (?, ?)", rows
                )
                return conn.total_changes - before
        except sqlite3.Error as exc:
            raise StoreError(f"register_batch failed: {exc}") from exc

    def remove(self, key: str) -> bool:
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute("DELETE FROM usernames WHERE username = ?", (key,))
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise StoreError(f"remove({key!r}) failed: {exc}") from exc

    def count(self) -> int:
        try:
            with closing(self._connect()) as conn:
                (total,) = conn.execute("SELECT COUNT(*) FROM usernames").fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"count failed: {exc}") from exc
        return int(total)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
