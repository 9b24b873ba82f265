"""
同步状态模型 - 运行时状态与统计
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    """同步状态"""
    IDLE = "idle"  # 空闲
    RUNNING = "running"  # 运行中
    STOPPED = "stopped"  # 已停止
    ERROR = "error"  # 错误


class BatchState(str, Enum):
    """批次协调器状态"""
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


class SyncStatus(BaseModel):
    """
    同步状态信息

    运行时状态查询返回的数据。
    """
    state: SyncState = Field(default=SyncState.IDLE, description="当前状态")
    table_name: str = Field(default="", description="上游表名")
    db_path: str = Field(default="", description="本地数据库路径")

    # 统计信息
    total_messages: int = Field(default=0, description="已接收消息总数")
    batches_flushed: int = Field(default=0, description="已提交批次数")
    mutations_applied: int = Field(default=0, description="已提交写入数")
    batches_discarded: int = Field(default=0, description="已丢弃批次数")
    malformed_events: int = Field(default=0, description="被拒绝的异常事件数")
    pending: int = Field(default=0, description="当前待提交写入数")

    checkpoint: Optional[str] = Field(default=None, description="已持久化的位置")
    last_flush_at: Optional[datetime] = Field(default=None, description="最后提交时间")

    # 错误信息
    last_error: Optional[str] = Field(default=None, description="最后错误信息")
    last_error_at: Optional[datetime] = Field(default=None, description="最后错误时间")

    def is_running(self) -> bool:
        """检查是否运行中"""
        return self.state == SyncState.RUNNING

    def record_flush(self, mutations: int, position: str) -> None:
        """记录一次成功提交"""
        self.batches_flushed += 1
        self.mutations_applied += mutations
        self.checkpoint = position
        self.last_flush_at = datetime.now(timezone.utc)

    def record_error(self, error: str) -> None:
        """记录错误"""
        self.last_error = error
        self.last_error_at = datetime.now(timezone.utc)
        self.state = SyncState.ERROR
