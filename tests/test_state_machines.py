"""Tests for the todo, goal and project state machines and birthday math."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from pydantic import ValidationError

from dadgpt.state import goal as goal_sm
from dadgpt.state import project as project_sm
from dadgpt.state import todo as todo_sm
from dadgpt.state.family import FamilyMember, check_birthday, days_until_birthday, next_birthday
from dadgpt.state.schemas import Milestone

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

S = todo_sm.TodoState
E = todo_sm.TodoEventKind


def _make_todo(**overrides) -> todo_sm.Todo:
    fields = {"id": "t1", "title": "Fix the fence"}
    fields.update(overrides)
    return todo_sm.Todo(**fields)


def _make_goal(**overrides) -> goal_sm.Goal:
    fields = {"id": "g1", "title": "Run a 10k"}
    fields.update(overrides)
    return goal_sm.Goal(**fields)


def _make_project(**overrides) -> project_sm.Project:
    fields = {"id": "p1", "title": "Redo the garage"}
    fields.update(overrides)
    return project_sm.Project(**fields)


# ---------------------------------------------------------------------------
# Todo
# ---------------------------------------------------------------------------


class TestTodoMachine:
    """Todo lifecycle transitions."""

    def test_start_then_complete(self):
        todo, changed = todo_sm.apply_event(_make_todo(), todo_sm.TodoEvent(kind=E.START), NOW)
        assert changed
        assert todo.state == S.IN_PROGRESS

        todo, changed = todo_sm.apply_event(todo, todo_sm.TodoEvent(kind=E.COMPLETE), NOW)
        assert changed
        assert todo.state == S.DONE
        assert todo.completed_at == NOW
        assert [(h.from_state, h.to_state) for h in todo.state_history] == [
            ("pending", "in_progress"),
            ("in_progress", "done"),
        ]

    def test_complete_directly_from_pending(self):
        todo, _ = todo_sm.apply_event(_make_todo(), todo_sm.TodoEvent(kind=E.COMPLETE), NOW)
        assert todo.state == S.DONE

    def test_invalid_event_leaves_state_and_context_unchanged(self):
        original = _make_todo()
        state, context = todo_sm.transition(S.PENDING, original, todo_sm.TodoEvent(kind=E.UNBLOCK), NOW)
        assert state == S.PENDING
        assert context is original
        assert context.state_history == []

    def test_block_requires_reason(self):
        with pytest.raises(ValidationError):
            todo_sm.TodoEvent(kind=E.BLOCK)
        with pytest.raises(ValidationError):
            todo_sm.TodoEvent(kind=E.BLOCK, reason="   ")

    def test_block_and_unblock_track_reason(self):
        todo = _make_todo(state=S.IN_PROGRESS)
        todo, _ = todo_sm.apply_event(todo, todo_sm.TodoEvent(kind=E.BLOCK, reason="waiting on parts"), NOW)
        assert todo.state == S.BLOCKED
        assert todo.blocked_reason == "waiting on parts"
        assert todo.state_history[-1].reason == "waiting on parts"

        todo, _ = todo_sm.apply_event(todo, todo_sm.TodoEvent(kind=E.UNBLOCK), NOW)
        assert todo.state == S.IN_PROGRESS
        assert todo.blocked_reason is None

    def test_block_from_pending_is_noop(self):
        todo = _make_todo()
        result, changed = todo_sm.apply_event(todo, todo_sm.TodoEvent(kind=E.BLOCK, reason="x"), NOW)
        assert not changed
        assert result is todo

    def test_defer_escalates_timeframe(self):
        todo, _ = todo_sm.apply_event(_make_todo(timeframe="today"), todo_sm.TodoEvent(kind=E.DEFER), NOW)
        assert todo.state == S.DEFERRED
        assert todo.timeframe == "this_week"

    def test_defer_someday_stays_someday(self):
        todo, _ = todo_sm.apply_event(_make_todo(timeframe="someday"), todo_sm.TodoEvent(kind=E.DEFER), NOW)
        assert todo.timeframe == "someday"

    def test_defer_to_explicit_timeframe(self):
        todo, _ = todo_sm.apply_event(
            _make_todo(timeframe="today"), todo_sm.TodoEvent(kind=E.DEFER, timeframe="someday"), NOW
        )
        assert todo.timeframe == "someday"

    def test_activate_returns_to_pending(self):
        todo, _ = todo_sm.apply_event(_make_todo(state=S.DEFERRED), todo_sm.TodoEvent(kind=E.ACTIVATE), NOW)
        assert todo.state == S.PENDING

    @pytest.mark.parametrize("state", [S.PENDING, S.IN_PROGRESS, S.BLOCKED, S.DEFERRED])
    def test_cancel_from_any_open_state(self, state):
        todo, changed = todo_sm.apply_event(_make_todo(state=state), todo_sm.TodoEvent(kind=E.CANCEL), NOW)
        assert changed
        assert todo.state == S.CANCELLED

    @pytest.mark.parametrize("terminal", [S.DONE, S.CANCELLED])
    def test_terminal_states_accept_nothing(self, terminal):
        todo = _make_todo(state=terminal)
        for kind in E:
            reason = "r" if kind == E.BLOCK else None
            result, changed = todo_sm.apply_event(todo, todo_sm.TodoEvent(kind=kind, reason=reason), NOW)
            assert not changed
            assert result.state == terminal

    def test_history_length_counts_successful_transitions(self):
        todo = _make_todo()
        events = [E.START, E.UNBLOCK, E.DEFER, E.ACTIVATE, E.ACTIVATE, E.START, E.COMPLETE]
        successes = 0
        for kind in events:
            todo, changed = todo_sm.apply_event(todo, todo_sm.TodoEvent(kind=kind), NOW)
            successes += changed
        assert successes == 5
        assert len(todo.state_history) == successes

    def test_input_context_is_not_mutated(self):
        original = _make_todo()
        todo_sm.apply_event(original, todo_sm.TodoEvent(kind=E.START), NOW)
        assert original.state == S.PENDING
        assert original.state_history == []


# ---------------------------------------------------------------------------
# Goal
# ---------------------------------------------------------------------------


class TestGoalMachine:
    """Goal lifecycle, progress clamping and milestones."""

    GS = goal_sm.GoalState
    GE = goal_sm.GoalEventKind

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(150, 100), (-5, 0), (42.6, 43), (0, 0), (100, 100)],
    )
    def test_clamp_progress(self, value, expected):
        assert goal_sm.clamp_progress(value) == expected

    def test_update_progress_is_clamped(self):
        goal = _make_goal(state=self.GS.IN_PROGRESS)
        goal, changed = goal_sm.apply_event(
            goal, goal_sm.GoalEvent(kind=self.GE.UPDATE_PROGRESS, progress=250), NOW
        )
        assert changed
        assert goal.progress == 100
        assert goal.state == self.GS.IN_PROGRESS
        assert goal.state_history == []

    def test_update_progress_requires_in_progress(self):
        goal = _make_goal()
        result, changed = goal_sm.apply_event(
            goal, goal_sm.GoalEvent(kind=self.GE.UPDATE_PROGRESS, progress=40), NOW
        )
        assert not changed
        assert result.progress == 0

    def test_update_progress_without_value_is_rejected(self):
        with pytest.raises(ValidationError):
            goal_sm.GoalEvent(kind=self.GE.UPDATE_PROGRESS)

    def test_complete_forces_progress_to_100(self):
        goal = _make_goal(state=self.GS.IN_PROGRESS, progress=35)
        goal, _ = goal_sm.apply_event(goal, goal_sm.GoalEvent(kind=self.GE.COMPLETE), NOW)
        assert goal.state == self.GS.COMPLETED
        assert goal.progress == 100

    def test_pause_and_resume(self):
        goal = _make_goal(state=self.GS.IN_PROGRESS)
        goal, _ = goal_sm.apply_event(goal, goal_sm.GoalEvent(kind=self.GE.PAUSE, reason="busy month"), NOW)
        assert goal.state == self.GS.PAUSED
        goal, _ = goal_sm.apply_event(goal, goal_sm.GoalEvent(kind=self.GE.RESUME), NOW)
        assert goal.state == self.GS.IN_PROGRESS
        assert len(goal.state_history) == 2

    def test_complete_from_paused_is_noop(self):
        goal = _make_goal(state=self.GS.PAUSED)
        _, changed = goal_sm.apply_event(goal, goal_sm.GoalEvent(kind=self.GE.COMPLETE), NOW)
        assert not changed

    def test_abandon_from_paused(self):
        goal, _ = goal_sm.apply_event(
            _make_goal(state=self.GS.PAUSED), goal_sm.GoalEvent(kind=self.GE.ABANDON), NOW
        )
        assert goal.state == self.GS.ABANDONED

    def test_complete_milestone(self):
        goal = _make_goal(milestones=[Milestone(id="m1", title="5k"), Milestone(id="m2", title="8k")])
        goal, changed = goal_sm.apply_event(
            goal, goal_sm.GoalEvent(kind=self.GE.COMPLETE_MILESTONE, milestone_id="m1"), NOW
        )
        assert changed
        assert [m.completed for m in goal.milestones] == [True, False]

        _, changed = goal_sm.apply_event(
            goal, goal_sm.GoalEvent(kind=self.GE.COMPLETE_MILESTONE, milestone_id="m1"), NOW
        )
        assert not changed

    def test_unknown_milestone_is_noop(self):
        goal = _make_goal(milestones=[Milestone(id="m1", title="5k")])
        _, changed = goal_sm.apply_event(
            goal, goal_sm.GoalEvent(kind=self.GE.COMPLETE_MILESTONE, milestone_id="nope"), NOW
        )
        assert not changed


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class TestProjectMachine:
    PS = project_sm.ProjectState
    PE = project_sm.ProjectEventKind

    def test_full_lifecycle(self):
        project = _make_project()
        for kind, expected in [
            (self.PE.START, self.PS.ACTIVE),
            (self.PE.PAUSE, self.PS.ON_HOLD),
            (self.PE.RESUME, self.PS.ACTIVE),
            (self.PE.COMPLETE, self.PS.COMPLETED),
        ]:
            project, changed = project_sm.apply_event(project, project_sm.ProjectEvent(kind=kind), NOW)
            assert changed
            assert project.state == expected
        assert len(project.state_history) == 4

    def test_complete_from_planning_is_noop(self):
        project = _make_project()
        _, changed = project_sm.apply_event(project, project_sm.ProjectEvent(kind=self.PE.COMPLETE), NOW)
        assert not changed

    def test_add_milestone_in_planning(self):
        event = project_sm.ProjectEvent(
            kind=self.PE.ADD_MILESTONE, milestone=Milestone(id="m1", title="Clear out", completed=True)
        )
        project, changed = project_sm.apply_event(_make_project(), event, NOW)
        assert changed
        assert project.state == self.PS.PLANNING
        assert project.milestones[0].completed is False

    def test_complete_milestone_requires_active(self):
        project = _make_project(milestones=[Milestone(id="m1", title="Clear out")])
        event = project_sm.ProjectEvent(kind=self.PE.COMPLETE_MILESTONE, milestone_id="m1")
        _, changed = project_sm.apply_event(project, event, NOW)
        assert not changed

        active = project.model_copy(update={"state": self.PS.ACTIVE})
        updated, changed = project_sm.apply_event(active, event, NOW)
        assert changed
        assert updated.milestones[0].completed

    def test_cancel_from_on_hold(self):
        project, _ = project_sm.apply_event(
            _make_project(state=self.PS.ON_HOLD), project_sm.ProjectEvent(kind=self.PE.CANCEL), NOW
        )
        assert project.state == self.PS.CANCELLED


# ---------------------------------------------------------------------------
# Birthdays
# ---------------------------------------------------------------------------


class TestBirthdays:
    def test_check_birthday_accepts_both_formats(self):
        assert check_birthday("06-15") == "06-15"
        assert check_birthday("1985-06-15") == "1985-06-15"
        assert check_birthday("02-29") == "02-29"

    @pytest.mark.parametrize("value", ["6/15", "13-01", "02-30", "1985-6-15"])
    def test_check_birthday_rejects_bad_values(self, value):
        with pytest.raises(ValueError):
            check_birthday(value)

    def test_next_birthday_rolls_to_next_year(self):
        assert next_birthday("01-10", date(2025, 6, 1)) == date(2026, 1, 10)

    def test_leap_day_birthday_in_common_year(self):
        assert next_birthday("02-29", date(2025, 1, 1)) == date(2025, 2, 28)

    def test_days_until_birthday(self):
        assert days_until_birthday("06-01", date(2025, 6, 1)) == 0
        assert days_until_birthday("06-08", date(2025, 6, 1)) == 7

    def test_birth_year(self):
        assert FamilyMember(name="Ann", relationship="mother", birthday="1960-03-04").birth_year == 1960
        assert FamilyMember(name="Sam", relationship="son", birthday="03-04").birth_year is None
