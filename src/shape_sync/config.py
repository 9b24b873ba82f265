"""
配置加载模块 - 支持 YAML 和环境变量
"""

from pathlib import Path

import yaml

from shape_sync.models.sync_config import SyncConfig, expand_env_vars


class ConfigError(Exception):
    """配置错误"""
    pass


def load_config(path: str | Path) -> SyncConfig:
    """
    加载 YAML 配置文件

    支持环境变量替换，格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}

    参数:
        path: 配置文件路径

    返回:
        SyncConfig: 验证后的配置对象

    异常:
        ConfigError: 配置文件不存在、格式错误或验证失败

    示例:
        ```python
        config = load_config("sync.yaml")
        print(config.local.db_path)
        ```
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"读取配置文件失败: {e}")

    return load_config_from_string(content)


def load_config_from_string(content: str) -> SyncConfig:
    """
    从字符串加载配置

    参数:
        content: YAML 配置字符串

    返回:
        SyncConfig: 验证后的配置对象
    """
    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("配置文件必须是一个对象")

    try:
        # 展开环境变量
        expanded_config = expand_env_vars(raw_config)
        return SyncConfig(**expanded_config)
    except ValueError as e:
        raise ConfigError(f"配置验证失败: {e}")


def generate_config_template() -> str:
    """
    生成配置模板

    返回:
        str: YAML 配置模板
    """
    return '''# shape-sync 配置

# 上游 shape 流
source:
  url: "${SHAPE_URL:-http://localhost:3000/v1/shape}"
  table: "items"
  replica: "full"           # update 下发完整行
  # where: "archived = false"
  # headers:
  #   Authorization: "Bearer ${SHAPE_TOKEN}"
  timeout: 60
  reconnect_delay: 5        # 流错误后重新订阅前等待（秒）

# 本地 SQLite
local:
  db_path: "./local.db"
  journal_mode: "WAL"

# update 命中不存在的行: ignore（空操作）或 upsert（按完整行写入）
missing_row_policy: "ignore"

log_level: "INFO"           # 日志级别 (DEBUG, INFO, WARNING, ERROR)
json_logs: false
'''


def save_config_template(path: str | Path) -> None:
    """
    保存配置模板到文件

    参数:
        path: 输出文件路径
    """
    config_path = Path(path)
    config_path.write_text(generate_config_template(), encoding="utf-8")
