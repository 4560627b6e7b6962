import pytest

from undo import UndoManager


class TestUndoManager:
    def test_undo_runs_latest_action(self):
        manager = UndoManager()
        calls = []
        manager.add_action("first", lambda: calls.append(1))
        manager.add_action("second", lambda: calls.append(2))

        action = manager.undo()
        assert action.description == "second"
        assert calls == [2]
        assert len(manager) == 1

    def test_nothing_to_undo(self):
        manager = UndoManager()
        assert not manager.can_undo
        with pytest.raises(LookupError, match="Nothing to undo"):
            manager.undo()

    def test_stack_is_bounded(self):
        manager = UndoManager(max_size=3)
        for i in range(5):
            manager.add_action(f"action {i}", lambda: None)
        assert [a.description for a in manager.actions()] == ["action 2", "action 3", "action 4"]

    def test_failed_undo_keeps_action(self):
        manager = UndoManager()

        def boom():
            raise RuntimeError("db down")

        manager.add_action("risky", boom)
        with pytest.raises(RuntimeError):
            manager.undo()
        assert manager.last_action().description == "risky"

    def test_remove_last_and_clear(self):
        manager = UndoManager()
        manager.add_action("a", lambda: None, kind="merge_categories")
        assert manager.last_action().to_dict()["kind"] == "merge_categories"
        assert manager.remove_last_action().description == "a"
        assert manager.remove_last_action() is None
        manager.add_action("b", lambda: None)
        manager.clear()
        assert len(manager) == 0
