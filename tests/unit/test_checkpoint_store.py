"""
CheckpointStore 单元测试 (unittest)
"""

import unittest

from shape_sync.storage.checkpoint import CheckpointStore
from shape_sync.storage.local_store import LocalStore

from conftest import TempDir


class TestCheckpointStore(unittest.TestCase):
    """断点存储测试"""

    def setUp(self):
        self.store = LocalStore(":memory:")
        self.checkpoints = CheckpointStore(self.store.connection)

    def tearDown(self):
        self.store.close()

    def test_absent_checkpoint_is_none(self):
        """测试首次运行没有断点"""
        self.assertIsNone(self.checkpoints.read("items"))

    def test_write_requires_transaction(self):
        """测试断点只能在调用方事务中写入"""
        with self.assertRaises(RuntimeError):
            self.checkpoints.write("items", "h/0_0")
        self.assertIsNone(self.checkpoints.read("items"))

    def test_write_and_overwrite(self):
        """测试写入后覆盖，每个表只有一行"""
        with self.store.transaction():
            self.checkpoints.write("items", "h/0_0")
        with self.store.transaction():
            self.checkpoints.write("items", "h/3_0")

        self.assertEqual(self.checkpoints.read("items"), "h/3_0")
        count = self.store.connection.execute(
            "SELECT COUNT(*) FROM sync_checkpoint"
        ).fetchone()[0]
        self.assertEqual(count, 1)

    def test_write_rolled_back_with_transaction(self):
        """测试事务回滚时断点一起回滚"""
        with self.store.transaction():
            self.checkpoints.write("items", "h/0_0")

        with self.assertRaises(RuntimeError):
            with self.store.transaction():
                self.checkpoints.write("items", "h/9_0")
                raise RuntimeError("simulated crash")

        self.assertEqual(self.checkpoints.read("items"), "h/0_0")

    def test_tables_are_independent(self):
        """测试不同逻辑表的断点互不影响"""
        with self.store.transaction():
            self.checkpoints.write("items", "a/1_0")
            self.checkpoints.write("todos", "b/2_0")

        self.assertEqual(
            self.checkpoints.list_all(),
            {"items": "a/1_0", "todos": "b/2_0"}
        )

    def test_delete(self):
        """测试删除断点"""
        with self.store.transaction():
            self.checkpoints.write("items", "h/0_0")

        self.assertTrue(self.checkpoints.delete("items"))
        self.assertFalse(self.checkpoints.delete("items"))
        self.assertIsNone(self.checkpoints.read("items"))


class TestCheckpointPersistence(unittest.TestCase):
    """断点跨进程持久化测试"""

    def setUp(self):
        self.tmp = TempDir()
        self.db_path = self.tmp.file("local.db")

    def tearDown(self):
        self.tmp.cleanup()

    def test_survives_reopen(self):
        """测试重新打开后断点仍在"""
        store = LocalStore(self.db_path)
        with store.transaction():
            CheckpointStore(store.connection).write("items", "h/7_0")
        store.close()

        store = LocalStore(self.db_path)
        try:
            self.assertEqual(CheckpointStore(store.connection).read("items"), "h/7_0")
        finally:
            store.close()


if __name__ == "__main__":
    unittest.main()
