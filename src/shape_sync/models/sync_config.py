"""
同步配置模型 - 使用 Pydantic 进行配置验证
"""

import os
import re
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class MissingRowPolicy(str, Enum):
    """update 事件命中不存在的行时的处理策略"""
    IGNORE = "ignore"  # 普通 UPDATE，行不存在时为空操作
    UPSERT = "upsert"  # 按完整行写入，补齐漏掉的 insert


class ShapeSourceConfig(BaseModel):
    """
    上游 shape 流配置

    属性:
        url: shape 接口地址
        table: 订阅的上游表名，同时作为断点的逻辑表名
        replica: 副本模式，full 表示 update 下发完整行
        where: 行过滤条件（可选）
        headers: 附加请求头（如鉴权）
        timeout: 单次请求超时（秒），需大于长轮询时长
        reconnect_delay: 流错误后重新订阅前的等待时间（秒）
    """
    url: str = Field(
        default="http://localhost:3000/v1/shape", description="shape 接口地址"
    )
    table: str = Field(default="items", min_length=1, description="上游表名")
    replica: Literal["full", "default"] = Field(default="full", description="副本模式")
    where: Optional[str] = Field(default=None, description="行过滤条件")
    headers: Dict[str, str] = Field(default_factory=dict, description="附加请求头")
    timeout: float = Field(default=60.0, gt=0, description="请求超时（秒）")
    reconnect_delay: float = Field(default=5.0, ge=0, description="重新订阅等待（秒）")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """验证 URL 协议"""
        if not v.startswith(("http://", "https://")):
            raise ValueError("url 必须以 http:// 或 https:// 开头")
        return v


class LocalStoreConfig(BaseModel):
    """
    本地 SQLite 存储配置

    属性:
        db_path: 数据库文件路径（":memory:" 仅用于测试）
        journal_mode: 日志模式
    """
    db_path: str = Field(default="local.db", min_length=1, description="数据库文件路径")
    journal_mode: Literal["WAL", "DELETE"] = Field(default="WAL", description="日志模式")


class SyncConfig(BaseModel):
    """
    同步配置根对象

    属性:
        source: 上游 shape 流配置
        local: 本地存储配置
        missing_row_policy: update 命中不存在行时的策略，默认 ignore
        log_level: 日志级别，默认 INFO
        json_logs: 是否输出 JSON 日志
    """
    source: ShapeSourceConfig = Field(
        default_factory=ShapeSourceConfig, description="上游配置"
    )
    local: LocalStoreConfig = Field(
        default_factory=LocalStoreConfig, description="本地存储配置"
    )
    missing_row_policy: MissingRowPolicy = Field(
        default=MissingRowPolicy.IGNORE, description="缺失行更新策略"
    )
    log_level: str = Field(default="INFO", description="日志级别")
    json_logs: bool = Field(default=False, description="JSON 日志输出")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"日志级别必须是以下之一: {valid_levels}")
        return v.upper()


def expand_env_vars(value: Any) -> Any:
    """
    递归展开值中的环境变量

    支持格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}
    """
    if isinstance(value, str):
        # 匹配 ${VAR} 或 ${VAR:-default}
        pattern = r'\$\{([^}:-]+)(?::-([^}]*))?\}'

        def replacer(match: "re.Match[str]") -> str:
            var_name = match.group(1)
            default_val = match.group(2)
            env_value = os.getenv(var_name)
            if env_value is None:
                if default_val is not None:
                    return default_val
                raise ValueError(f"环境变量 {var_name} 未设置且无默认值")
            return env_value

        return re.sub(pattern, replacer, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value
