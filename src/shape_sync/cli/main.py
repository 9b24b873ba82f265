"""
CLI 命令行入口 - 使用 Click 框架
"""

import asyncio
import signal
import sys
from pathlib import Path

import click

from shape_sync import __version__
from shape_sync.config import ConfigError, load_config, save_config_template
from shape_sync.core.batch import FlushError
from shape_sync.models.sync_config import SyncConfig
from shape_sync.storage.checkpoint import CheckpointStore
from shape_sync.storage.local_store import LocalStore
from shape_sync.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@click.group()
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default=None,
    help="日志级别（覆盖配置文件）",
)
@click.option("--json-logs", is_flag=True, default=False, help="输出 JSON 日志")
@click.version_option(version=__version__, prog_name="shape-sync")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, json_logs: bool) -> None:
    """
    shape-sync CLI

    订阅上游 shape 流并镜像到本地 SQLite。
    """
    configure_logging(log_level=log_level or "INFO", json_format=json_logs)

    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["json_logs"] = json_logs


@cli.command()
@click.argument("output_path", type=click.Path(), default="sync.yaml")
def init(output_path: str) -> None:
    """
    生成配置文件模板

    示例:
        shape-sync init sync.yaml
    """
    path = Path(output_path)

    if path.exists():
        click.confirm(f"文件 {output_path} 已存在，是否覆盖？", abort=True)

    save_config_template(output_path)
    click.echo(f"✓ 配置模板已生成: {output_path}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def validate(config_path: str) -> None:
    """
    验证配置文件

    示例:
        shape-sync validate sync.yaml
    """
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ 配置错误: {e}", err=True)
        sys.exit(1)

    click.echo("✓ 配置验证通过")
    click.echo(f"  上游: {config.source.url} (table={config.source.table})")
    click.echo(f"  本地: {config.local.db_path}")
    click.echo(f"  缺失行更新策略: {config.missing_row_policy.value}")


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
@click.pass_context
def sync(ctx: click.Context, config: str) -> None:
    """
    启动同步，Ctrl+C / SIGTERM 优雅退出

    示例:
        shape-sync sync -c sync.yaml
    """
    try:
        cfg = load_config(config)
    except ConfigError as e:
        click.echo(f"✗ 配置错误: {e}", err=True)
        sys.exit(1)

    # 命令行未指定时使用配置文件中的日志设置
    configure_logging(
        log_level=ctx.obj["log_level"] or cfg.log_level,
        json_format=ctx.obj["json_logs"] or cfg.json_logs,
    )

    try:
        asyncio.run(_run_sync(cfg))
    except FlushError as e:
        click.echo(f"✗ 本地提交失败: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        # 未能安装信号处理函数的平台
        click.echo("")

    click.echo("✓ 同步已停止")


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
def status(config: str) -> None:
    """
    查看本地同步状态

    示例:
        shape-sync status -c sync.yaml
    """
    try:
        cfg = load_config(config)
        store = LocalStore(cfg.local.db_path, journal_mode=None)
    except Exception as e:
        click.echo(f"✗ 获取状态失败: {e}", err=True)
        sys.exit(1)

    try:
        checkpoints = CheckpointStore(store.connection).list_all()

        click.echo("shape-sync 同步状态")
        click.echo("=" * 40)
        click.echo(f"本地数据库: {cfg.local.db_path}")
        click.echo(f"实体行数: {store.count()}")
        click.echo("")
        click.echo("[断点]")
        if not checkpoints:
            click.echo("  (无，下次启动将从头同步)")
        for table, position in checkpoints.items():
            click.echo(f"  {table}: {position}")
    finally:
        store.close()


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
@click.option(
    "--table",
    "-t",
    help="要重置的逻辑表名（默认配置中的上游表）",
)
@click.option(
    "--purge",
    is_flag=True,
    default=False,
    help="同时清空本地实体表",
)
def reset(config: str, table: str | None, purge: bool) -> None:
    """
    重置同步断点，下次启动从头同步

    示例:
        shape-sync reset -c sync.yaml
        shape-sync reset -c sync.yaml --purge
    """
    try:
        cfg = load_config(config)
        store = LocalStore(cfg.local.db_path, journal_mode=None)
    except Exception as e:
        click.echo(f"✗ 重置失败: {e}", err=True)
        sys.exit(1)

    target = table or cfg.source.table
    try:
        checkpoints = CheckpointStore(store.connection)
        with store.transaction():
            removed = store.purge() if purge else 0
            checkpoints.delete(target)
    except Exception as e:
        click.echo(f"✗ 重置失败: {e}", err=True)
        sys.exit(1)
    finally:
        store.close()

    click.echo(f"✓ 表 {target} 的断点已重置")
    if purge:
        click.echo(f"  已清空本地实体 {removed} 行")


# ============================================================================
# 异步执行函数
# ============================================================================

async def _run_sync(config: SyncConfig) -> None:
    """运行同步引擎，安装信号处理以优雅退出"""
    from shape_sync.core.engine import SyncEngine

    engine = SyncEngine(config)
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.stop)
        except (NotImplementedError, RuntimeError):
            # Windows 不支持 add_signal_handler
            pass

    click.echo("shape-sync 同步引擎")
    click.echo("=" * 40)
    click.echo(f"上游: {config.source.url} (table={config.source.table})")
    click.echo(f"本地: {config.local.db_path}")
    click.echo("按 Ctrl+C 停止...")

    try:
        await engine.start()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    status = engine.get_status()
    click.echo(
        f"已提交批次: {status.batches_flushed} | 写入: {status.mutations_applied} "
        f"| 断点: {status.checkpoint or '-'}"
    )


if __name__ == "__main__":
    cli()
