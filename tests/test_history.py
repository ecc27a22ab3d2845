import pytest

from orgchart_core.history import GESTURE_DRAG, GESTURE_RESIZE, HistoryManager
from orgchart_core.models import Position
from orgchart_core.snapshot import capture, materialize

from .helpers import person


@pytest.fixture
def history(graph, scheduler):
    def restore(snapshot):
        graph.load(*materialize(snapshot))

    return HistoryManager(
        capture=lambda: capture(graph.nodes, graph.connections),
        restore=restore,
        scheduler=scheduler,
        limit=5,
        edit_delay_ms=600,
    )


def discrete(history, mutate):
    before = history.checkpoint()
    result = mutate()
    history.commit_if_changed(before)
    return result


class TestDiscreteOperations:
    def test_undo_redo_walks_the_stack(self, graph, history):
        a = discrete(history, lambda: person(graph, 0, 0))
        discrete(history, lambda: person(graph, 100, 0))
        assert len(graph) == 2

        assert history.undo()
        assert [n.id for n in graph.nodes] == [a.id]
        assert history.undo()
        assert len(graph) == 0
        assert not history.undo()
        assert history.future_size == 2

        assert history.redo()
        assert history.redo()
        assert len(graph) == 2
        assert not history.redo()

    def test_no_op_leaves_no_entry(self, graph, history):
        discrete(history, lambda: person(graph))
        discrete(history, lambda: graph.remove_node("missing"))
        assert history.past_size == 1

    def test_new_action_clears_redo(self, graph, history):
        discrete(history, lambda: person(graph))
        history.undo()
        assert history.can_redo
        discrete(history, lambda: person(graph))
        assert not history.can_redo

    def test_stack_is_bounded(self, graph, history):
        for i in range(8):
            discrete(history, lambda: person(graph, i * 10, 0))
        assert history.past_size == 5
        while history.undo():
            pass
        # the three oldest steps are gone
        assert len(graph) == 3


class TestGestures:
    def test_drag_is_one_entry(self, graph, history):
        a = discrete(history, lambda: person(graph, 0, 0))
        assert history.begin_gesture(GESTURE_DRAG)
        for x in range(1, 20):
            assert not history.begin_gesture(GESTURE_DRAG)
            graph.set_node_position(a.id, Position(x=x * 5, y=0))
        assert history.is_paused
        assert history.end_gesture(GESTURE_DRAG)

        assert history.past_size == 2
        history.undo()
        assert graph.get_node(a.id).position.x == 0

    def test_end_without_begin_is_ignored(self, history):
        assert not history.end_gesture(GESTURE_RESIZE)
        assert history.past_size == 0

    def test_undo_mid_gesture_commits_the_gesture_first(self, graph, history):
        a = discrete(history, lambda: person(graph, 0, 0))
        history.begin_gesture(GESTURE_DRAG)
        graph.set_node_position(a.id, Position(x=50, y=50))

        assert history.undo()
        assert graph.get_node(a.id).position.x == 0
        assert not history.gesture_active(GESTURE_DRAG)


class TestEditBursts:
    def test_burst_inside_quiet_window_is_one_entry(self, graph, history, scheduler):
        a = discrete(history, lambda: person(graph))
        for name in ("A", "Al", "Ali", "Alic", "Alice"):
            history.begin_edit()
            graph.update_node_data(a.id, {"name": name})
            scheduler.advance(300)
        assert history.past_size == 1

        scheduler.advance(600)
        assert history.past_size == 2
        assert not history.is_paused

    def test_pause_splits_bursts(self, graph, history, scheduler):
        a = discrete(history, lambda: person(graph))
        history.begin_edit()
        graph.update_node_data(a.id, {"name": "A"})
        scheduler.advance(700)
        history.begin_edit()
        graph.update_node_data(a.id, {"name": "AB"})
        scheduler.advance(700)

        assert history.past_size == 3
        history.undo()
        assert graph.get_node(a.id).data.name == "A"

    def test_timer_commit_triggers_callback(self, graph, history, scheduler):
        committed = []
        history.on_edit_committed = lambda: committed.append(True)
        a = discrete(history, lambda: person(graph))
        history.begin_edit()
        graph.update_node_data(a.id, {"name": "Z"})
        scheduler.advance(600)
        assert committed == [True]

    def test_undo_flushes_pending_edit(self, graph, history, scheduler):
        a = discrete(history, lambda: person(graph))
        history.begin_edit()
        graph.update_node_data(a.id, {"name": "Typed"})
        assert history.can_undo

        assert history.undo()
        assert graph.get_node(a.id).data.name == "Nouveau"
        assert scheduler.pending == 0

        history.redo()
        assert graph.get_node(a.id).data.name == "Typed"

    def test_discrete_operation_keeps_burst_ordering(self, graph, history):
        a = discrete(history, lambda: person(graph))
        history.begin_edit()
        graph.update_node_data(a.id, {"name": "Typed"})
        discrete(history, lambda: person(graph, 300, 0))

        assert history.past_size == 3
        history.undo()
        assert len(graph) == 1
        assert graph.get_node(a.id).data.name == "Typed"

    def test_clear_discards_pending_state(self, graph, history, scheduler):
        a = discrete(history, lambda: person(graph))
        history.begin_edit()
        graph.update_node_data(a.id, {"name": "Typed"})
        history.begin_gesture(GESTURE_DRAG)

        history.clear()

        assert not history.can_undo
        assert not history.is_paused
        assert scheduler.pending == 0
        scheduler.advance(1000)
        assert history.past_size == 0
