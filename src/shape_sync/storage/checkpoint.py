"""
断点持久化存储 - 与实体数据共用同一个 SQLite 连接
"""

import sqlite3
from typing import Dict, Optional

from shape_sync.utils.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    """
    断点存储管理器

    每个逻辑表一行，记录"该位置之前的变更均已持久化"。
    write() 只能在调用方已开启的事务中执行，自身从不开启或提交事务，
    从而保证断点与数据写入同时成功或同时回滚。

    数据库表结构:
        ```sql
        CREATE TABLE sync_checkpoint (
            table_name TEXT PRIMARY KEY,
            position TEXT NOT NULL
        );
        ```
    """

    def __init__(self, conn: sqlite3.Connection):
        """
        初始化断点存储

        参数:
            conn: 本地存储的连接（自动提交模式）
        """
        self._conn = conn
        self._ensure_table()

    def _ensure_table(self) -> None:
        """确保断点表存在"""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_checkpoint (
                table_name TEXT PRIMARY KEY,
                position TEXT NOT NULL
            )
        """)

    def read(self, table_name: str) -> Optional[str]:
        """
        读取断点

        参数:
            table_name: 逻辑表名

        返回:
            位置令牌，不存在则返回 None（表示从头开始）
        """
        row = self._conn.execute(
            "SELECT position FROM sync_checkpoint WHERE table_name = ?",
            (table_name,)
        ).fetchone()
        return row[0] if row else None

    def write(self, table_name: str, position: str) -> None:
        """
        覆盖写入断点

        参数:
            table_name: 逻辑表名
            position: 新的位置令牌

        异常:
            RuntimeError: 当前没有进行中的事务
        """
        if not self._conn.in_transaction:
            raise RuntimeError("断点必须在调用方事务中写入")

        self._conn.execute(
            "INSERT OR REPLACE INTO sync_checkpoint (table_name, position) VALUES (?, ?)",
            (table_name, position)
        )

    def delete(self, table_name: str) -> bool:
        """
        删除断点（下次启动将从头同步）

        可以在调用方事务中执行，也可以单独执行（自动提交）。

        返回:
            是否确实删除了记录
        """
        cursor = self._conn.execute(
            "DELETE FROM sync_checkpoint WHERE table_name = ?",
            (table_name,)
        )
        deleted = cursor.rowcount > 0
        logger.info("checkpoint_deleted", table=table_name, deleted=deleted)
        return deleted

    def list_all(self) -> Dict[str, str]:
        """列出所有断点 {table_name: position}"""
        rows = self._conn.execute(
            "SELECT table_name, position FROM sync_checkpoint ORDER BY table_name"
        ).fetchall()
        return {row[0]: row[1] for row in rows}
