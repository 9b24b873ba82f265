"""
消息源抽象基类与线上消息解码
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shape_sync.core.applier import MalformedEventError
from shape_sync.models.event import (
    ChangeMessage,
    ControlMessage,
    ControlSignal,
    Message,
    OperationType,
)


class StreamError(Exception):
    """上游流错误（传输失败、协议错误等），当前批次需要丢弃"""
    pass


class Envelope(BaseModel):
    """
    原始消息信封

    属性:
        payload: 线上消息（已解析的 JSON 对象）
        position: 该消息之后的流位置（不透明令牌）
    """
    model_config = ConfigDict(frozen=True)

    payload: Any = Field(..., description="线上消息")
    position: Optional[str] = Field(default=None, description="流位置")


def parse_message(payload: Any, position: Optional[str] = None) -> Message:
    """
    将线上消息解码为变更消息或控制消息

    线上格式:
        变更: {"headers": {"operation": "insert"}, "key": "...", "value": {...}}
        控制: {"headers": {"control": "up-to-date"}}

    参数:
        payload: 线上消息
        position: 流位置

    返回:
        ChangeMessage 或 ControlMessage

    异常:
        MalformedEventError: 无法识别的消息或操作类型
    """
    if not isinstance(payload, dict):
        raise MalformedEventError(f"消息必须是对象: {payload!r}")

    headers = payload.get("headers") or {}
    if not isinstance(headers, dict):
        raise MalformedEventError(f"headers 必须是对象: {headers!r}")

    if "control" in headers:
        try:
            signal = ControlSignal(headers["control"])
        except ValueError:
            signal = ControlSignal.OTHER
        return ControlMessage(signal=signal, position=position)

    if "operation" in headers:
        try:
            operation = OperationType(headers["operation"])
        except ValueError:
            raise MalformedEventError(f"未知操作类型: {headers['operation']!r}")
        try:
            return ChangeMessage(
                operation=operation,
                value=payload.get("value") or {},
                position=position,
            )
        except ValidationError as e:
            raise MalformedEventError(f"变更消息格式错误: {e}") from e

    raise MalformedEventError(f"无法识别的消息: {headers!r}")


class MessageSource(ABC):
    """
    上游消息源抽象基类

    约定: 按上游日志的全序逐条产出消息；每当当前可用的变更被取完，
    产出一条 up-to-date 控制消息。传输失败以 StreamError 抛出。
    """

    @abstractmethod
    def messages(self, start_position: Optional[str] = None) -> AsyncIterator[Envelope]:
        """
        从指定位置开始订阅

        参数:
            start_position: 断点位置，None 表示从头开始
        """
        raise NotImplementedError

    async def close(self) -> None:
        """释放底层资源"""
        return None
