"""
HTTP shape 流消息源 - 基于 httpx 的长轮询客户端
"""

from typing import AsyncIterator, Optional, Tuple

import httpx

from shape_sync.models.sync_config import ShapeSourceConfig
from shape_sync.sources.base import Envelope, MessageSource, StreamError
from shape_sync.utils.logging import get_logger

logger = get_logger(__name__)

INITIAL_OFFSET = "-1"
HANDLE_HEADER = "electric-handle"
OFFSET_HEADER = "electric-offset"

# 连续收到多少次 409 后升级为 error 日志
ROTATION_ALERT_THRESHOLD = 3


def encode_position(handle: Optional[str], offset: str) -> str:
    """将 shape handle 和 offset 编码为断点令牌 "{handle}/{offset}" """
    return f"{handle or ''}/{offset}"


def decode_position(position: Optional[str]) -> Tuple[Optional[str], str]:
    """
    解码断点令牌

    返回:
        (handle, offset)；position 为空时返回 (None, "-1")，即从头开始
    """
    if not position:
        return None, INITIAL_OFFSET
    handle, sep, offset = position.rpartition("/")
    if not sep:
        # 只有 offset 的旧令牌
        return None, position
    return handle or None, offset or INITIAL_OFFSET


class ShapeHttpSource(MessageSource):
    """
    HTTP shape 流消息源

    按 offset/handle 轮询 shape 接口；追平后改为 live 长轮询。
    不做重试和退避，任何传输或协议错误都以 StreamError 抛给订阅方，
    由订阅方从已持久化的断点重新订阅。
    """

    def __init__(
        self,
        config: ShapeSourceConfig,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        初始化消息源

        参数:
            config: 上游配置
            client: 外部提供的 httpx 客户端（测试注入 MockTransport），
                    不提供时自行创建并在 close() 时关闭
        """
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=config.headers,
            timeout=httpx.Timeout(config.timeout),
        )
        self.consecutive_rotations = 0

    def _build_params(self, handle: Optional[str], offset: str, live: bool) -> dict:
        """构造查询参数"""
        params = {
            "table": self.config.table,
            "replica": self.config.replica,
            "offset": offset,
        }
        if self.config.where:
            params["where"] = self.config.where
        if handle:
            params["handle"] = handle
        if live:
            params["live"] = "true"
        return params

    async def _fetch(self, params: dict) -> httpx.Response:
        """发起一次请求，把传输异常和错误状态码统一转为 StreamError"""
        try:
            response = await self._client.get(self.config.url, params=params)
        except httpx.HTTPError as e:
            raise StreamError(f"请求 shape 接口失败: {e}") from e

        if response.status_code == 409:
            self.consecutive_rotations += 1
            if self.consecutive_rotations >= ROTATION_ALERT_THRESHOLD:
                # 从同一断点重试不会恢复，只能人工重置
                logger.error(
                    "shape_rotation_stalled",
                    table=self.config.table,
                    attempts=self.consecutive_rotations,
                    hint="shape-sync reset -c <config> --purge"
                )
            raise StreamError("shape 已轮换 (409)，需要重置断点后重新同步")
        if response.is_error:
            raise StreamError(f"shape 接口返回 HTTP {response.status_code}")
        self.consecutive_rotations = 0
        return response

    async def messages(self, start_position: Optional[str] = None) -> AsyncIterator[Envelope]:
        """
        从指定位置开始产出消息

        参数:
            start_position: 断点令牌，None 表示从头开始
        """
        handle, offset = decode_position(start_position)
        live = False

        logger.info(
            "shape_stream_open",
            url=self.config.url,
            table=self.config.table,
            handle=handle,
            offset=offset
        )

        while True:
            response = await self._fetch(self._build_params(handle, offset, live))

            handle = response.headers.get(HANDLE_HEADER, handle)
            offset = response.headers.get(OFFSET_HEADER, offset)
            position = encode_position(handle, offset)

            if response.status_code == 204 or not response.content:
                payload = []
            else:
                try:
                    payload = response.json()
                except ValueError as e:
                    raise StreamError(f"无法解析响应 JSON: {e}") from e

            if not isinstance(payload, list):
                raise StreamError("响应必须是消息数组")

            logger.debug(
                "shape_response",
                count=len(payload),
                position=position,
                live=live
            )

            for raw in payload:
                # 格式错误的消息原样交给订阅方拒绝
                headers = raw.get("headers") if isinstance(raw, dict) else None
                if isinstance(headers, dict) and headers.get("control") == "up-to-date":
                    live = True
                yield Envelope(payload=raw, position=position)

    async def close(self) -> None:
        """关闭自建的 httpx 客户端"""
        if self._owns_client:
            await self._client.aclose()
