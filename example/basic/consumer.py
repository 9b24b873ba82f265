import asyncio
import signal

from shape_sync import SyncEngine, load_config


async def report(engine):
    while True:
        await asyncio.sleep(1)
        status = engine.get_status()
        print(
            f"\r已提交批次: {status.batches_flushed} | 待提交: {status.pending} "
            f"| 断点: {status.checkpoint or '-'}",
            end=""
        )


async def main():
    # 加载配置
    config = load_config("sync.yaml")

    # 创建同步引擎
    engine = SyncEngine(config)

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, engine.stop)

    reporter = asyncio.create_task(report(engine))
    try:
        # 阻塞直到 Ctrl+C
        await engine.start()
    finally:
        reporter.cancel()

    status = engine.get_status()
    print(f"\n状态: {status.state.value}")
    print(f"已处理: {status.total_messages} 条消息，写入 {status.mutations_applied} 行")

    # 查看本地镜像
    from shape_sync.storage.local_store import LocalStore
    store = LocalStore(config.local.db_path)
    for row in store.list_rows()[:10]:
        print(f"  {row.id}: {row.name} ({row.description or '-'})")
    store.close()


if __name__ == "__main__":
    asyncio.run(main())
