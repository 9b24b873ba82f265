"""
shape-sync

订阅远端 shape 变更流（CDC），将 insert/update/delete 镜像到本地 SQLite，
并与数据在同一事务中持久化可恢复的断点。
"""

from typing import Any

__version__ = "0.1.0"

# 延迟导入，避免循环依赖
__all__ = [
    "SyncEngine",
    "SyncConfig",
    "ChangeMessage",
    "ControlMessage",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """延迟加载核心类"""
    if name == "SyncEngine":
        from shape_sync.core.engine import SyncEngine
        return SyncEngine
    elif name == "SyncConfig":
        from shape_sync.models.sync_config import SyncConfig
        return SyncConfig
    elif name == "ChangeMessage":
        from shape_sync.models.event import ChangeMessage
        return ChangeMessage
    elif name == "ControlMessage":
        from shape_sync.models.event import ControlMessage
        return ControlMessage
    elif name == "load_config":
        from shape_sync.config import load_config
        return load_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
