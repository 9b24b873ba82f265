"""
同步引擎 - 组装各组件并管理生命周期
"""

import asyncio
from typing import Optional

from shape_sync.core.applier import ChangeApplier
from shape_sync.core.batch import BatchCoordinator, FlushError
from shape_sync.core.subscriber import StreamSubscriber
from shape_sync.models.position import SyncState, SyncStatus
from shape_sync.models.sync_config import SyncConfig
from shape_sync.sources.base import MessageSource
from shape_sync.sources.shape_http import ShapeHttpSource
from shape_sync.storage.checkpoint import CheckpointStore
from shape_sync.storage.local_store import LocalStore
from shape_sync.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)


class SyncEngine:
    """
    同步引擎

    持有本地存储、批次协调器和订阅器，没有全局共享状态。

    关闭顺序:
        1. 停止接收上游消息（取消消费任务）
        2. 进行中的提交完成或整体回滚（提交过程没有 await 点，不会被取消打断）
        3. 丢弃未提交批次并释放存储连接
    """

    def __init__(self, config: SyncConfig, source: Optional[MessageSource] = None):
        """
        初始化同步引擎

        参数:
            config: 同步配置
            source: 消息源，默认根据配置创建 ShapeHttpSource
        """
        self.config = config
        self.status = SyncStatus(
            table_name=config.source.table,
            db_path=config.local.db_path
        )
        self._source = source
        self._store: Optional[LocalStore] = None
        self._coordinator: Optional[BatchCoordinator] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._stop_requested = False

    def _open(self) -> StreamSubscriber:
        """打开本地存储并组装组件"""
        self._store = LocalStore(
            self.config.local.db_path,
            journal_mode=self.config.local.journal_mode
        )
        checkpoints = CheckpointStore(self._store.connection)
        self._coordinator = BatchCoordinator(
            self._store,
            checkpoints,
            table_name=self.config.source.table,
            status=self.status
        )
        if self._source is None:
            self._source = ShapeHttpSource(self.config.source)

        return StreamSubscriber(
            source=self._source,
            applier=ChangeApplier(self.config.missing_row_policy),
            coordinator=self._coordinator,
            reconnect_delay=self.config.source.reconnect_delay,
            status=self.status
        )

    async def start(self) -> None:
        """
        启动同步并阻塞直到停止

        异常:
            FlushError: 本地存储提交失败
        """
        if self._running:
            raise RuntimeError("同步引擎已在运行")

        self._running = True
        self._stop_requested = False
        self._stop_event = asyncio.Event()
        bind_context(table=self.config.source.table)

        try:
            subscriber = self._open()
            self.status.state = SyncState.RUNNING
            logger.info(
                "sync_engine_start",
                db_path=self.config.local.db_path,
                url=self.config.source.url,
                checkpoint=self.status.checkpoint
            )

            self._task = asyncio.create_task(subscriber.run(self._stop_event))
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._stop_requested:
                    raise
        except FlushError as e:
            logger.error("sync_engine_error", error=str(e))
            self.status.record_error(str(e))
            raise
        except Exception as e:
            logger.exception("sync_engine_crashed", error=str(e))
            self.status.record_error(f"{type(e).__name__}: {e}")
            raise
        finally:
            await self._shutdown()

    def stop(self) -> None:
        """
        请求停止（可在信号处理函数中调用）

        已在处理中的消息会处理完毕，等待网络的读取会被取消。
        """
        if not self._running or self._stop_requested:
            return

        logger.info("sync_engine_stopping")
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _shutdown(self) -> None:
        """丢弃未提交批次，关闭消息源和本地存储"""
        if self._coordinator is not None:
            self._coordinator.discard(reason="shutdown")

        if self._source is not None:
            try:
                await self._source.close()
            except Exception as e:
                logger.warning("source_close_failed", error=str(e))

        if self._store is not None:
            self._store.close()
            self._store = None

        self._task = None
        self._running = False
        if self.status.state != SyncState.ERROR:
            self.status.state = SyncState.STOPPED
        logger.info("sync_engine_stopped", checkpoint=self.status.checkpoint)
        clear_context()

    def is_running(self) -> bool:
        """检查是否运行中"""
        return self._running

    def get_status(self) -> SyncStatus:
        """获取当前状态"""
        if self._coordinator is not None:
            self.status.pending = self._coordinator.pending
        return self.status
