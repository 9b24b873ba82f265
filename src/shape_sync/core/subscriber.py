"""
流订阅器 - 从断点订阅上游并按到达顺序分发消息
"""

import asyncio
from contextlib import aclosing
from typing import Any, Optional

from shape_sync.core.applier import ChangeApplier, MalformedEventError
from shape_sync.core.batch import BatchCoordinator
from shape_sync.models.event import ChangeMessage, ControlMessage
from shape_sync.models.position import SyncStatus
from shape_sync.sources.base import MessageSource, StreamError, parse_message
from shape_sync.utils.logging import get_logger

logger = get_logger(__name__)


class StreamSubscriber:
    """
    流订阅器

    单消费者: 同一时间只处理一条消息，批次提交在消费路径上同步完成，
    提交期间上游新消息留在传输层排队。

    流错误时丢弃待提交批次，等待 reconnect_delay 秒后从已持久化的断点重新订阅。
    """

    def __init__(
        self,
        source: MessageSource,
        applier: ChangeApplier,
        coordinator: BatchCoordinator,
        reconnect_delay: float = 5.0,
        status: Optional[SyncStatus] = None
    ):
        self.source = source
        self.applier = applier
        self.coordinator = coordinator
        self.reconnect_delay = reconnect_delay
        self.status = status or coordinator.status

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        订阅循环，直到 stop_event 被设置或消息源自然结束

        参数:
            stop_event: 停止信号

        异常:
            FlushError: 本地存储提交失败（致命）
        """
        while not stop_event.is_set():
            start_position = self.coordinator.durable_position
            logger.info(
                "stream_subscribe",
                table=self.coordinator.table_name,
                position=start_position or "beginning"
            )

            try:
                async with aclosing(self.source.messages(start_position)) as stream:
                    async for envelope in stream:
                        self.dispatch(envelope.payload, envelope.position)
                        if stop_event.is_set():
                            break
                    else:
                        logger.info("stream_ended", table=self.coordinator.table_name)
                        return
            except StreamError as e:
                self.coordinator.discard(reason="stream_error")
                logger.warning(
                    "stream_error",
                    table=self.coordinator.table_name,
                    error=str(e),
                    retry_in=self.reconnect_delay
                )
                self.status.last_error = str(e)
                await self._wait(stop_event)

    async def _wait(self, stop_event: asyncio.Event) -> None:
        """等待重连间隔，期间收到停止信号立即返回"""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            pass

    def dispatch(self, payload: Any, position: Optional[str]) -> None:
        """
        处理单条消息

        参数:
            payload: 线上消息
            position: 该消息之后的流位置
        """
        self.status.total_messages += 1

        try:
            message = parse_message(payload, position)
            if isinstance(message, ChangeMessage):
                mutation = self.applier.translate(message)
        except MalformedEventError as e:
            # 只拒绝这一条，已累积的批次保留
            self.status.malformed_events += 1
            self.coordinator.mark_seen(position)
            logger.warning(
                "malformed_event_skipped",
                table=self.coordinator.table_name,
                error=str(e),
                position=position
            )
            return

        if isinstance(message, ChangeMessage):
            self.coordinator.append(mutation, message.position)
        elif isinstance(message, ControlMessage):
            if message.is_quiescent:
                flushed = self.coordinator.on_quiescent()
                logger.debug("stream_up_to_date", flushed=flushed)
            else:
                logger.debug("control_message_ignored", signal=message.signal.value)
