"""
变更翻译器 - 将变更消息映射为本地写入描述符
"""

from typing import Any, Dict

from pydantic import ValidationError

from shape_sync.models.event import (
    ChangeMessage,
    EntityRow,
    Mutation,
    MutationKind,
    OperationType,
)
from shape_sync.models.sync_config import MissingRowPolicy


class MalformedEventError(ValueError):
    """无法翻译的变更事件（未知操作类型或缺少必需字段）"""
    pass


class ChangeApplier:
    """
    变更翻译器

    纯函数式翻译，无副作用，每个变更事件恰好产生一个写入描述符:
    - insert → UPSERT（按主键覆盖，重放安全）
    - update → UPDATE（行不存在时为空操作）；策略为 upsert 时改为 UPSERT
    - delete → DELETE（删除不存在的主键不是错误）
    """

    def __init__(self, missing_row_policy: MissingRowPolicy = MissingRowPolicy.IGNORE):
        self.missing_row_policy = missing_row_policy

    def translate(self, message: ChangeMessage) -> Mutation:
        """
        翻译单个变更事件

        参数:
            message: 变更消息

        返回:
            Mutation: 写入描述符

        异常:
            MalformedEventError: 操作类型未知或行数据不完整
        """
        operation = message.operation

        if operation == OperationType.INSERT:
            row = self._full_row(message.value)
            return Mutation(kind=MutationKind.UPSERT, entity_id=row.id, row=row)
        elif operation == OperationType.UPDATE:
            row = self._full_row(message.value)
            if self.missing_row_policy == MissingRowPolicy.UPSERT:
                return Mutation(kind=MutationKind.UPSERT, entity_id=row.id, row=row)
            return Mutation(kind=MutationKind.UPDATE, entity_id=row.id, row=row)
        elif operation == OperationType.DELETE:
            return self._delete(message.value)

        raise MalformedEventError(f"未知操作类型: {operation!r}")

    @staticmethod
    def _full_row(value: Dict[str, Any]) -> EntityRow:
        """从完整行数据构造 EntityRow"""
        try:
            return EntityRow(
                id=value.get("id"),
                name=value.get("name"),
                description=value.get("description"),
            )
        except ValidationError as e:
            raise MalformedEventError(f"行数据不完整: {e.errors(include_url=False)}") from e

    @staticmethod
    def _delete(value: Dict[str, Any]) -> Mutation:
        """delete 事件只需要主键"""
        if value.get("id") is None:
            raise MalformedEventError("delete 事件缺少 id")
        try:
            return Mutation(kind=MutationKind.DELETE, entity_id=value["id"])
        except ValidationError as e:
            raise MalformedEventError(f"非法 id: {value['id']!r}") from e
