"""
批次协调器 - 累积写入并在上游静默时原子提交
"""

import sqlite3
from typing import List, Optional

from shape_sync.models.event import Mutation
from shape_sync.models.position import BatchState, SyncStatus
from shape_sync.storage.checkpoint import CheckpointStore
from shape_sync.storage.local_store import LocalStore
from shape_sync.utils.logging import get_logger

logger = get_logger(__name__)


class FlushError(Exception):
    """批次提交失败，事务已整体回滚，断点未推进"""
    pass


class BatchCoordinator:
    """
    批次协调器

    独占持有本地存储和待提交批次。状态机:
        ACCUMULATING --静默信号且批次非空--> FLUSHING --提交/回滚--> ACCUMULATING

    - append(): 追加写入并更新内存中的"最后看到的位置"，不做持久化
    - on_quiescent(): 在一个事务内按到达顺序执行全部写入并写入断点
    - discard(): 流错误时丢弃批次，断点保持不变
    """

    def __init__(
        self,
        store: LocalStore,
        checkpoints: CheckpointStore,
        table_name: str,
        status: Optional[SyncStatus] = None
    ):
        """
        初始化协调器

        参数:
            store: 本地存储
            checkpoints: 断点存储（与 store 共用连接）
            table_name: 断点对应的逻辑表名
            status: 共享的运行状态对象（用于统计）
        """
        self.store = store
        self.checkpoints = checkpoints
        self.table_name = table_name
        self.status = status or SyncStatus(table_name=table_name)

        self.state = BatchState.ACCUMULATING
        self._pending: List[Mutation] = []
        self._durable: Optional[str] = checkpoints.read(table_name)
        self._last_seen: Optional[str] = self._durable
        self.status.checkpoint = self._durable

    @property
    def pending(self) -> int:
        """待提交写入数"""
        return len(self._pending)

    @property
    def last_seen_position(self) -> Optional[str]:
        """内存中最后看到的位置（尚未持久化）"""
        return self._last_seen

    @property
    def durable_position(self) -> Optional[str]:
        """已持久化的断点"""
        return self._durable

    def append(self, mutation: Mutation, position: Optional[str]) -> None:
        """
        追加一条写入

        参数:
            mutation: 写入描述符
            position: 该事件之后的流位置
        """
        if self.state != BatchState.ACCUMULATING:
            raise RuntimeError(f"当前状态 {self.state.value} 不允许追加写入")

        self._pending.append(mutation)
        self.mark_seen(position)
        self.status.pending = len(self._pending)

    def mark_seen(self, position: Optional[str]) -> None:
        """记录已看到的位置（被拒绝的事件同样推进）"""
        if position is not None:
            self._last_seen = position

    def on_quiescent(self) -> int:
        """
        处理静默信号

        返回:
            本次提交的写入数；批次为空时为 0（空操作）

        异常:
            FlushError: 存储失败，事务已回滚
        """
        if not self._pending:
            return 0
        return self._flush()

    def _flush(self) -> int:
        """在单个事务内提交批次和断点"""
        position = self._last_seen
        if position is None:
            raise FlushError("批次没有可用的流位置，无法推进断点")

        batch = self._pending
        self.state = BatchState.FLUSHING
        try:
            with self.store.transaction():
                for mutation in batch:
                    self.store.apply(mutation)
                self.checkpoints.write(self.table_name, position)
        except sqlite3.Error as e:
            logger.error(
                "batch_flush_failed",
                table=self.table_name,
                mutations=len(batch),
                error=str(e)
            )
            self._reset_batch()
            self.status.batches_discarded += 1
            self.status.record_error(str(e))
            raise FlushError(f"批次提交失败，已回滚: {e}") from e
        finally:
            self.state = BatchState.ACCUMULATING

        self._durable = position
        self._reset_batch()
        self.status.record_flush(len(batch), position)

        logger.info(
            "batch_flushed",
            table=self.table_name,
            mutations=len(batch),
            position=position
        )
        return len(batch)

    def discard(self, reason: str = "") -> int:
        """
        丢弃待提交批次，断点不变

        返回:
            被丢弃的写入数
        """
        dropped = len(self._pending)
        self._reset_batch()
        if dropped:
            self.status.batches_discarded += 1
            logger.warning(
                "batch_discarded",
                table=self.table_name,
                mutations=dropped,
                reason=reason,
                checkpoint=self._durable
            )
        return dropped

    def _reset_batch(self) -> None:
        """清空批次，内存位置回退到已持久化的断点"""
        self._pending = []
        self._last_seen = self._durable
        self.status.pending = 0
