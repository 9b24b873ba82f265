"""
BatchCoordinator 单元测试 (unittest)
"""

import sqlite3
import unittest
from unittest.mock import patch

from shape_sync.core.batch import BatchCoordinator, FlushError
from shape_sync.models.position import BatchState
from shape_sync.storage.checkpoint import CheckpointStore
from shape_sync.storage.local_store import LocalStore

from conftest import TempDir, delete_mutation, update_mutation, upsert_mutation


class TestBatchCoordinator(unittest.TestCase):
    """批次协调器测试"""

    def setUp(self):
        self.store = LocalStore(":memory:")
        self.checkpoints = CheckpointStore(self.store.connection)
        self.coordinator = BatchCoordinator(self.store, self.checkpoints, "items")

    def tearDown(self):
        self.store.close()

    def test_append_does_not_persist(self):
        """测试追加只影响内存"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")

        self.assertEqual(self.coordinator.pending, 1)
        self.assertEqual(self.coordinator.last_seen_position, "h/1_0")
        self.assertEqual(self.store.count(), 0)
        self.assertIsNone(self.checkpoints.read("items"))

    def test_flush_on_quiescent(self):
        """测试静默信号提交批次和断点"""
        self.coordinator.append(upsert_mutation(1, "A", None), "h/1_0")
        self.coordinator.append(upsert_mutation(2, "B", "d"), "h/2_0")

        flushed = self.coordinator.on_quiescent()

        self.assertEqual(flushed, 2)
        self.assertEqual(
            self.store.snapshot(),
            [
                {"id": 1, "name": "A", "description": None},
                {"id": 2, "name": "B", "description": "d"},
            ]
        )
        self.assertEqual(self.checkpoints.read("items"), "h/2_0")
        self.assertEqual(self.coordinator.durable_position, "h/2_0")
        self.assertEqual(self.coordinator.pending, 0)
        self.assertEqual(self.coordinator.state, BatchState.ACCUMULATING)

    def test_empty_quiescent_is_noop(self):
        """测试空批次时静默信号为空操作"""
        self.coordinator.mark_seen("h/5_0")

        self.assertEqual(self.coordinator.on_quiescent(), 0)
        self.assertIsNone(self.checkpoints.read("items"))
        self.assertEqual(self.coordinator.status.batches_flushed, 0)

    def test_insert_then_delete_leaves_no_row(self):
        """测试同一批次内 insert 后 delete"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        self.coordinator.append(delete_mutation(1), "h/2_0")
        self.coordinator.on_quiescent()

        self.assertIsNone(self.store.get(1))

    def test_insert_then_update_keeps_latest(self):
        """测试同一批次内 insert 后 update"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        self.coordinator.append(update_mutation(1, "A2", "later"), "h/2_0")
        self.coordinator.on_quiescent()

        row = self.store.get(1)
        self.assertEqual((row.name, row.description), ("A2", "later"))

    def test_delete_then_insert_keeps_row(self):
        """测试同一批次内 delete 后 insert"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        self.coordinator.on_quiescent()

        self.coordinator.append(delete_mutation(1), "h/2_0")
        self.coordinator.append(upsert_mutation(1, "again"), "h/3_0")
        self.coordinator.on_quiescent()

        self.assertEqual(self.store.get(1).name, "again")

    def test_discard_keeps_checkpoint(self):
        """测试流错误丢弃批次，断点不变"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        self.coordinator.on_quiescent()

        self.coordinator.append(upsert_mutation(2, "B"), "h/2_0")
        dropped = self.coordinator.discard(reason="stream_error")

        self.assertEqual(dropped, 1)
        self.assertEqual(self.coordinator.pending, 0)
        self.assertEqual(self.coordinator.last_seen_position, "h/1_0")
        self.assertEqual(self.checkpoints.read("items"), "h/1_0")
        self.assertIsNone(self.store.get(2))
        self.assertEqual(self.coordinator.status.batches_discarded, 1)

    def test_quiescent_after_discard_is_noop(self):
        """测试丢弃后的静默信号不提交任何内容"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        self.coordinator.discard()

        self.assertEqual(self.coordinator.on_quiescent(), 0)
        self.assertEqual(self.store.count(), 0)
        self.assertIsNone(self.checkpoints.read("items"))

    def test_failure_mid_flush_rolls_back_everything(self):
        """测试提交中途失败时数据和断点都不变"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        self.coordinator.on_quiescent()
        before = self.store.snapshot()

        self.coordinator.append(upsert_mutation(2, "B"), "h/2_0")
        self.coordinator.append(upsert_mutation(3, "C"), "h/3_0")
        self.coordinator.append(delete_mutation(1), "h/4_0")

        original_apply = self.store.apply
        calls = []

        def flaky_apply(mutation):
            calls.append(mutation)
            if len(calls) == 2:
                raise sqlite3.OperationalError("database or disk is full")
            return original_apply(mutation)

        with patch.object(self.store, "apply", side_effect=flaky_apply):
            with self.assertRaises(FlushError):
                self.coordinator.on_quiescent()

        self.assertEqual(self.store.snapshot(), before)
        self.assertEqual(self.checkpoints.read("items"), "h/1_0")
        self.assertEqual(self.coordinator.durable_position, "h/1_0")
        self.assertEqual(self.coordinator.pending, 0)
        self.assertEqual(self.coordinator.state, BatchState.ACCUMULATING)
        self.assertFalse(self.store.connection.in_transaction)
        self.assertIsNotNone(self.coordinator.status.last_error)

    def test_checkpoint_write_failure_rolls_back_data(self):
        """测试断点写入失败时数据同样回滚"""
        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")

        with patch.object(
            self.checkpoints,
            "write",
            side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with self.assertRaises(FlushError):
                self.coordinator.on_quiescent()

        self.assertEqual(self.store.count(), 0)
        self.assertIsNone(self.checkpoints.read("items"))

    def test_append_while_flushing_rejected(self):
        """测试 FLUSHING 状态下不允许追加"""
        self.coordinator.state = BatchState.FLUSHING
        with self.assertRaises(RuntimeError):
            self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")

    def test_state_is_flushing_during_commit(self):
        """测试提交期间处于 FLUSHING 状态"""
        seen_states = []
        original_apply = self.store.apply

        def spy_apply(mutation):
            seen_states.append(self.coordinator.state)
            return original_apply(mutation)

        self.coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        with patch.object(self.store, "apply", side_effect=spy_apply):
            self.coordinator.on_quiescent()

        self.assertEqual(seen_states, [BatchState.FLUSHING])
        self.assertEqual(self.coordinator.state, BatchState.ACCUMULATING)

    def test_replay_after_flush_is_idempotent(self):
        """测试从旧断点重放已提交的批次结果相同"""
        batch = [
            (upsert_mutation(1, "A"), "h/1_0"),
            (upsert_mutation(2, "B", "d"), "h/2_0"),
            (update_mutation(1, "A2"), "h/3_0"),
            (delete_mutation(2), "h/4_0"),
        ]
        for mutation, position in batch:
            self.coordinator.append(mutation, position)
        self.coordinator.on_quiescent()
        once = self.store.snapshot()

        for mutation, position in batch:
            self.coordinator.append(mutation, position)
        self.coordinator.on_quiescent()

        self.assertEqual(self.store.snapshot(), once)
        self.assertEqual(self.checkpoints.read("items"), "h/4_0")

    def test_replay_after_partial_apply_is_idempotent(self):
        """测试部分写入后重放整个批次结果与只执行一次相同"""
        batch = [
            (upsert_mutation(1, "A"), "h/1_0"),
            (upsert_mutation(2, "B"), "h/2_0"),
            (delete_mutation(1), "h/3_0"),
        ]

        reference = LocalStore(":memory:")
        try:
            with reference.transaction():
                for mutation, _ in batch:
                    reference.apply(mutation)
            expected = reference.snapshot()
        finally:
            reference.close()

        # 前两条已写入但断点未推进
        with self.store.transaction():
            for mutation, _ in batch[:2]:
                self.store.apply(mutation)

        for mutation, position in batch:
            self.coordinator.append(mutation, position)
        self.coordinator.on_quiescent()

        self.assertEqual(self.store.snapshot(), expected)


class TestBatchCoordinatorRestart(unittest.TestCase):
    """跨重启的断点测试"""

    def setUp(self):
        self.tmp = TempDir()
        self.db_path = self.tmp.file("local.db")

    def tearDown(self):
        self.tmp.cleanup()

    def _open(self):
        store = LocalStore(self.db_path)
        checkpoints = CheckpointStore(store.connection)
        return store, BatchCoordinator(store, checkpoints, "items")

    def test_checkpoint_never_regresses_across_restarts(self):
        """测试断点跨重启单调推进"""
        positions = []

        store, coordinator = self._open()
        coordinator.append(upsert_mutation(1, "A"), "h/1_0")
        coordinator.on_quiescent()
        positions.append(coordinator.durable_position)
        coordinator.append(upsert_mutation(2, "B"), "h/2_0")
        coordinator.on_quiescent()
        positions.append(coordinator.durable_position)
        # 未提交的批次在重启时丢失
        coordinator.append(upsert_mutation(3, "C"), "h/3_0")
        store.close()

        store, coordinator = self._open()
        try:
            positions.append(coordinator.durable_position)
            self.assertEqual(positions, ["h/1_0", "h/2_0", "h/2_0"])
            self.assertEqual(coordinator.last_seen_position, "h/2_0")
            self.assertIsNone(store.get(3))
        finally:
            store.close()


if __name__ == "__main__":
    unittest.main()
