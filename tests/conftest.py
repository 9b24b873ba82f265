"""
测试配置和共享工具 (unittest 兼容)
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Sequence, Union

from shape_sync.models.event import EntityRow, Mutation, MutationKind
from shape_sync.models.sync_config import LocalStoreConfig, ShapeSourceConfig, SyncConfig
from shape_sync.sources.base import Envelope, MessageSource


# ============================================================================
# 临时目录
# ============================================================================

class TempDir:
    """临时目录，tearDown 时调用 cleanup()"""

    def __init__(self) -> None:
        self.path = Path(tempfile.mkdtemp())

    def file(self, name: str) -> str:
        return str(self.path / name)

    def cleanup(self) -> None:
        # Windows 上文件可能被锁定，忽略
        shutil.rmtree(self.path, ignore_errors=True)


# ============================================================================
# 线上消息工厂函数
# ============================================================================

def insert(id: Any, name: Any, description: Optional[str] = None, position: Optional[str] = None) -> Envelope:
    """insert 变更消息"""
    return Envelope(
        payload={
            "headers": {"operation": "insert"},
            "key": f'"public"."items"/"{id}"',
            "value": {"id": id, "name": name, "description": description},
        },
        position=position,
    )


def update(id: Any, name: Any, description: Optional[str] = None, position: Optional[str] = None) -> Envelope:
    """update 变更消息（replica=full，完整行）"""
    return Envelope(
        payload={
            "headers": {"operation": "update"},
            "key": f'"public"."items"/"{id}"',
            "value": {"id": id, "name": name, "description": description},
        },
        position=position,
    )


def delete(id: Any, position: Optional[str] = None) -> Envelope:
    """delete 变更消息"""
    return Envelope(
        payload={
            "headers": {"operation": "delete"},
            "key": f'"public"."items"/"{id}"',
            "value": {"id": id},
        },
        position=position,
    )


def up_to_date(position: Optional[str] = None) -> Envelope:
    """up-to-date 控制消息"""
    return Envelope(payload={"headers": {"control": "up-to-date"}}, position=position)


def raw(payload: Any, position: Optional[str] = None) -> Envelope:
    """任意线上消息"""
    return Envelope(payload=payload, position=position)


# ============================================================================
# 写入描述符工厂函数
# ============================================================================

def upsert_mutation(id: int, name: str, description: Optional[str] = None) -> Mutation:
    return Mutation(
        kind=MutationKind.UPSERT,
        entity_id=id,
        row=EntityRow(id=id, name=name, description=description),
    )


def update_mutation(id: int, name: str, description: Optional[str] = None) -> Mutation:
    return Mutation(
        kind=MutationKind.UPDATE,
        entity_id=id,
        row=EntityRow(id=id, name=name, description=description),
    )


def delete_mutation(id: int) -> Mutation:
    return Mutation(kind=MutationKind.DELETE, entity_id=id)


# ============================================================================
# 回放消息源
# ============================================================================

SessionItem = Union[Envelope, Exception]


class ListSource(MessageSource):
    """
    回放消息源

    第 N 次订阅回放第 N 段消息；段内的异常实例会被原样抛出。
    block_when_done=True 时回放结束后一直挂起，模拟等待上游的长轮询。
    """

    def __init__(self, *sessions: Sequence[SessionItem], block_when_done: bool = False):
        self.sessions: List[Sequence[SessionItem]] = list(sessions)
        self.block_when_done = block_when_done
        self.start_positions: List[Optional[str]] = []
        self.closed = False

    async def messages(self, start_position: Optional[str] = None) -> AsyncIterator[Envelope]:
        self.start_positions.append(start_position)
        index = len(self.start_positions) - 1
        items = self.sessions[index] if index < len(self.sessions) else []

        for item in items:
            if isinstance(item, Exception):
                raise item
            yield item
            await asyncio.sleep(0)

        if self.block_when_done:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


# ============================================================================
# 配置工厂函数
# ============================================================================

def create_test_config(db_path: str, **overrides: Any) -> SyncConfig:
    """返回测试配置"""
    return SyncConfig(
        source=ShapeSourceConfig(
            url="http://shape.test/v1/shape",
            table="items",
            reconnect_delay=0,
        ),
        local=LocalStoreConfig(db_path=db_path),
        **overrides,
    )


def create_test_config_yaml(db_path: str) -> str:
    """返回测试配置 YAML 字符串"""
    return f"""
source:
  url: "http://shape.test/v1/shape"
  table: "items"
  reconnect_delay: 0

local:
  db_path: "{db_path}"

missing_row_policy: "ignore"
log_level: "DEBUG"
"""
