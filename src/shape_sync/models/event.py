"""
流消息模型 - 变更消息、控制消息和变更描述符
"""

from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OperationType(str, Enum):
    """上游变更操作类型"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ControlSignal(str, Enum):
    """上游控制信号"""
    UP_TO_DATE = "up-to-date"  # 已追平上游，当前无更多缓冲变更
    MUST_REFETCH = "must-refetch"  # shape 已轮换
    OTHER = "other"


class MutationKind(str, Enum):
    """本地写入类型"""
    UPSERT = "upsert"
    UPDATE = "update"
    DELETE = "delete"


class EntityRow(BaseModel):
    """
    本地实体行

    上游按文本下发列值，数字字符串形式的 id 会被转为 int。

    属性:
        id: 稳定主键
        name: 名称（非空）
        description: 描述（可空）
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="主键")
    name: str = Field(..., description="名称")
    description: Optional[str] = Field(default=None, description="描述")

    @field_validator("id", mode="before")
    @classmethod
    def reject_bool_id(cls, v: Any) -> Any:
        """布尔值不是合法主键"""
        if isinstance(v, bool):
            raise ValueError("id 不能是布尔值")
        return v


class ChangeMessage(BaseModel):
    """
    变更消息

    上游下发的单行变更，接收后不可修改。

    属性:
        operation: 操作类型 (insert/update/delete)
        value: 行数据（insert/update 为完整行，delete 至少包含 id）
        position: 处理完该消息后的流位置（不透明令牌）

    示例:
        ```python
        msg = ChangeMessage(
            operation=OperationType.INSERT,
            value={"id": 1, "name": "A", "description": None},
            position="h1/0_0",
        )
        ```
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["change"] = "change"
    operation: OperationType = Field(..., description="操作类型")
    value: Dict[str, Any] = Field(default_factory=dict, description="行数据")
    position: Optional[str] = Field(default=None, description="流位置")


class ControlMessage(BaseModel):
    """
    控制消息

    属性:
        signal: 控制信号，up-to-date 表示上游已静默
        position: 当前流位置
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["control"] = "control"
    signal: ControlSignal = Field(..., description="控制信号")
    position: Optional[str] = Field(default=None, description="流位置")

    @property
    def is_quiescent(self) -> bool:
        """是否为静默（up-to-date）信号"""
        return self.signal == ControlSignal.UP_TO_DATE


Message = Union[ChangeMessage, ControlMessage]


class Mutation(BaseModel):
    """
    变更描述符

    由 ChangeApplier 生成，描述一次针对本地存储的写入，无副作用。

    属性:
        kind: 写入类型
        entity_id: 目标主键
        row: 完整行数据（UPSERT/UPDATE 时有值）
    """
    model_config = ConfigDict(frozen=True)

    kind: MutationKind = Field(..., description="写入类型")
    entity_id: int = Field(..., description="目标主键")
    row: Optional[EntityRow] = Field(default=None, description="行数据")

    @field_validator("entity_id", mode="before")
    @classmethod
    def reject_bool_id(cls, v: Any) -> Any:
        """布尔值不是合法主键"""
        if isinstance(v, bool):
            raise ValueError("entity_id 不能是布尔值")
        return v

    @model_validator(mode="after")
    def validate_row(self) -> "Mutation":
        """验证行数据与写入类型一致"""
        if self.kind in (MutationKind.UPSERT, MutationKind.UPDATE):
            if self.row is None:
                raise ValueError(f"{self.kind.value} 写入必须提供 row")
            if self.row.id != self.entity_id:
                raise ValueError("row.id 与 entity_id 不一致")
        return self

    def params(self) -> Tuple[Any, ...]:
        """返回 SQL 语句参数（与 LocalStore 中的语句顺序一致）"""
        if self.kind == MutationKind.DELETE:
            return (self.entity_id,)
        if self.row is None:
            raise ValueError(f"{self.kind.value} 写入缺少 row")
        if self.kind == MutationKind.UPSERT:
            return (self.row.id, self.row.name, self.row.description)
        return (self.row.name, self.row.description, self.row.id)
