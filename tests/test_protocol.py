"""
Tests for reconciling remote room snapshots into a participant's local view.
"""

from app.modules.battle.models import Outcome, Role, Room, RoomStatus
from app.modules.battle.protocol import LocalPhase, LocalView, SyncAction, reconcile


def _room(questions, **overrides) -> Room:
    data = dict(
        room_code="ROOM01",
        host_id="h",
        host_name="Hana",
        guest_id="g",
        guest_name="Gil",
        status=RoomStatus.READY,
        questions=questions,
    )
    data.update(overrides)
    return Room(**data)


class TestStart:
    def test_waiting_room_changes_nothing(self, questions):
        room = _room(questions, status=RoomStatus.WAITING, guest_id=None, guest_name=None)
        view, actions = reconcile(LocalView(role=Role.HOST), room)
        assert view.phase is LocalPhase.WAITING
        assert actions == []

    def test_guest_locks_questions_on_ready(self, questions):
        view, actions = reconcile(LocalView(role=Role.GUEST), _room(questions))
        assert view.phase is LocalPhase.PLAYING
        assert view.questions == questions
        assert view.opponent_name == "Hana"
        assert actions == [SyncAction.RESEED_TIMER]

    def test_host_starts_game_on_ready(self, questions):
        view, actions = reconcile(LocalView(role=Role.HOST), _room(questions))
        assert view.opponent_name == "Gil"
        assert actions == [SyncAction.START_GAME, SyncAction.RESEED_TIMER]

    def test_locked_questions_are_never_replaced(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions))
        reshuffled = list(reversed(questions))
        view, _ = reconcile(view, _room(reshuffled, status=RoomStatus.PLAYING, current_index=1))
        assert view.questions == questions


class TestPlaying:
    def test_scores_are_mapped_by_role(self, questions):
        room = _room(questions, status=RoomStatus.PLAYING, host_score=1, guest_score=0)
        host, _ = reconcile(LocalView(role=Role.HOST), room)
        guest, _ = reconcile(LocalView(role=Role.GUEST), room)
        assert (host.my_score, host.opponent_score) == (1, 0)
        assert (guest.my_score, guest.opponent_score) == (0, 1)

    def test_remote_advance_reseeds_and_clears_answer(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions, status=RoomStatus.PLAYING))
        view = view.model_copy(update={"selected_answer": "x"})
        view, actions = reconcile(view, _room(questions, status=RoomStatus.PLAYING, current_index=1))
        assert view.current_index == 1
        assert view.selected_answer is None
        assert actions == [SyncAction.RESEED_TIMER]

    def test_same_index_does_not_reseed(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions, status=RoomStatus.PLAYING))
        view, actions = reconcile(view, _room(questions, status=RoomStatus.PLAYING, host_score=1))
        assert actions == []
        assert view.opponent_score == 1


class TestStaleNotifications:
    def test_lower_index_is_ignored(self, questions):
        view, _ = reconcile(
            LocalView(role=Role.GUEST), _room(questions, status=RoomStatus.PLAYING, current_index=2)
        )
        again, actions = reconcile(view, _room(questions, status=RoomStatus.PLAYING, current_index=1))
        assert again == view
        assert actions == []

    def test_status_regression_is_ignored(self, questions):
        view, _ = reconcile(LocalView(role=Role.HOST), _room(questions, status=RoomStatus.PLAYING))
        again, actions = reconcile(view, _room(questions, status=RoomStatus.READY))
        assert again == view
        assert actions == []

    def test_scores_never_go_down(self, questions):
        view, _ = reconcile(
            LocalView(role=Role.HOST), _room(questions, status=RoomStatus.PLAYING, host_score=1)
        )
        view, _ = reconcile(view, _room(questions, status=RoomStatus.PLAYING, host_score=0))
        assert view.my_score == 1


class TestFinish:
    def test_finished_finalizes_with_final_scores(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions, status=RoomStatus.PLAYING))
        room = _room(questions, status=RoomStatus.FINISHED, current_index=9, host_score=4, guest_score=6)
        view, actions = reconcile(view, room)
        assert view.phase is LocalPhase.FINISHED
        assert actions == [SyncAction.FINALIZE]
        assert view.outcome().value == "win"

    def test_nothing_happens_after_finish(self, questions):
        view = LocalView(role=Role.HOST, phase=LocalPhase.FINISHED)
        again, actions = reconcile(view, _room(questions, status=RoomStatus.PLAYING))
        assert again is view and actions == []

    def test_deleted_room_abandons(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions))
        view, actions = reconcile(view, None)
        assert view.phase is LocalPhase.FINISHED
        assert view.abandoned
        assert actions == [SyncAction.OPPONENT_LEFT, SyncAction.FINALIZE]

    def test_room_finish_corrects_local_finish(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions, status=RoomStatus.PLAYING))
        view = view.model_copy(update={"phase": LocalPhase.FINISHED})
        room = _room(questions, status=RoomStatus.FINISHED, host_score=1, guest_score=0)
        view, actions = reconcile(view, room)
        assert actions == []
        assert (view.my_score, view.opponent_score) == (0, 1)
        assert view.outcome() is Outcome.LOSE

        again, _ = reconcile(view, room)
        assert again is view

    def test_abandoned_view_ignores_late_finish(self, questions):
        view, _ = reconcile(LocalView(role=Role.GUEST), _room(questions, status=RoomStatus.PLAYING))
        view, _ = reconcile(view, None)
        room = _room(questions, status=RoomStatus.FINISHED, host_score=1)
        again, actions = reconcile(view, room)
        assert again is view and actions == []
