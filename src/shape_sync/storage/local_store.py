"""
本地镜像存储 - SQLite 实体表与事务管理
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from shape_sync.models.event import EntityRow, Mutation, MutationKind
from shape_sync.utils.logging import get_logger

logger = get_logger(__name__)

# 预编译语句，sqlite3 按 SQL 文本缓存
UPSERT_SQL = "INSERT OR REPLACE INTO entities (id, name, description) VALUES (?, ?, ?)"
UPDATE_SQL = "UPDATE entities SET name = ?, description = ? WHERE id = ?"
DELETE_SQL = "DELETE FROM entities WHERE id = ?"

_STATEMENTS: Dict[MutationKind, str] = {
    MutationKind.UPSERT: UPSERT_SQL,
    MutationKind.UPDATE: UPDATE_SQL,
    MutationKind.DELETE: DELETE_SQL,
}


class LocalStore:
    """
    本地 SQLite 存储

    持有唯一的数据库连接。连接工作在自动提交模式，
    所有写入都通过 transaction() 显式开启事务。

    数据库表结构:
        ```sql
        CREATE TABLE entities (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT
        );
        ```
    """

    def __init__(
        self,
        db_path: Union[str, Path] = "local.db",
        journal_mode: Optional[str] = "WAL"
    ):
        """
        打开本地数据库

        参数:
            db_path: 数据库文件路径，":memory:" 表示内存库
            journal_mode: 日志模式，None 表示保持默认
        """
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            self.db_path, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row

        if journal_mode and self.db_path != ":memory:":
            self._conn.execute(f"PRAGMA journal_mode={journal_mode}")

        self._ensure_tables()
        logger.debug("local_store_opened", db_path=self.db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        """底层连接（已关闭时抛出 RuntimeError）"""
        if self._conn is None:
            raise RuntimeError("本地存储已关闭")
        return self._conn

    def is_closed(self) -> bool:
        """检查连接是否已关闭"""
        return self._conn is None

    def _ensure_tables(self) -> None:
        """确保实体表存在"""
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS entities (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT
            )
        """)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        事务上下文管理器

        正常退出时提交；任何异常（包括 KeyboardInterrupt）都会整体回滚后重新抛出。
        """
        conn = self.connection
        if conn.in_transaction:
            raise RuntimeError("已有事务在进行中")

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            # COMMIT 本身失败时 SQLite 可能已自动回滚
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def apply(self, mutation: Mutation) -> int:
        """
        在当前事务中执行一条写入

        参数:
            mutation: 变更描述符

        返回:
            受影响的行数（UPDATE/DELETE 命中不存在的行时为 0）
        """
        conn = self.connection
        if not conn.in_transaction:
            raise RuntimeError("apply 必须在事务中调用")

        cursor = conn.execute(_STATEMENTS[mutation.kind], mutation.params())
        return cursor.rowcount

    def purge(self) -> int:
        """
        在当前事务中清空实体表（配合重置断点从头同步）

        返回:
            删除的行数
        """
        conn = self.connection
        if not conn.in_transaction:
            raise RuntimeError("purge 必须在事务中调用")
        return conn.execute("DELETE FROM entities").rowcount

    def get(self, entity_id: int) -> Optional[EntityRow]:
        """按主键读取一行"""
        row = self.connection.execute(
            "SELECT id, name, description FROM entities WHERE id = ?",
            (entity_id,)
        ).fetchone()
        return EntityRow(**dict(row)) if row else None

    def list_rows(self) -> List[EntityRow]:
        """按主键顺序返回全部行"""
        rows = self.connection.execute(
            "SELECT id, name, description FROM entities ORDER BY id"
        ).fetchall()
        return [EntityRow(**dict(row)) for row in rows]

    def count(self) -> int:
        """实体行数"""
        return int(self.connection.execute("SELECT COUNT(*) FROM entities").fetchone()[0])

    def snapshot(self) -> List[Dict[str, Any]]:
        """以字典列表形式导出全部行（用于比对状态）"""
        return [row.model_dump() for row in self.list_rows()]

    def close(self) -> None:
        """关闭连接，未完成的事务会被回滚"""
        if self._conn is None:
            return
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")
        self._conn.close()
        self._conn = None
        logger.debug("local_store_closed", db_path=self.db_path)
