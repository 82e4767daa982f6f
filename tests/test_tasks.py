from __future__ import annotations

from decimal import Decimal

import allure
import pytest

from mission_control.squad.models import SpawnRequest, TaskStatus
from mission_control.squad.tasks import TaskRepository

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Task Lifecycle"),
]


def _create(tasks: TaskRepository, **overrides: object) -> str:
    values: dict[str, object] = {
        "agent_id": "fury",
        "work": SpawnRequest(
            description="Write release notes",
            context="v1.2",
            deliverables=("Notes", "Changelog"),
            area_id="docs",
        ),
        "estimated_tokens": 2_000,
        "estimated_cost": Decimal(2),
    }
    values.update(overrides)
    return tasks.create_task(**values).task_id  # type: ignore[arg-type]


def test_create_task_persists_request_fields(task_repository: TaskRepository) -> None:
    task_id = _create(task_repository)

    task = task_repository.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.PENDING
    assert task.deliverables == ("Notes", "Changelog")
    assert task.area_id == "docs"
    assert task.estimated_cost == Decimal(2)
    assert task.completed_at is None
    assert not task.is_terminal


def test_escalated_task_is_created_terminal(task_repository: TaskRepository) -> None:
    task_id = _create(
        task_repository,
        status=TaskStatus.ESCALATED,
        escalation_reason="cost_exceeded",
    )

    task = task_repository.get_task(task_id)
    assert task is not None
    assert task.is_terminal
    assert task.completed_at is not None
    assert not task_repository.mark_running(task_id)
    assert not task_repository.fail_task(task_id, error="late")

    with pytest.raises(ValueError):
        _create(task_repository, status=TaskStatus.RUNNING)


def test_happy_path_transitions(task_repository: TaskRepository) -> None:
    task_id = _create(task_repository)

    assert task_repository.set_process_id(task_id, 111)
    assert not task_repository.update_progress(task_id, "too early")
    assert task_repository.mark_running(task_id, process_id=222)
    assert not task_repository.mark_running(task_id)
    assert task_repository.update_progress(task_id, "halfway")
    assert task_repository.complete_task(task_id, result="{}", actual_cost=Decimal("1.5"))

    task = task_repository.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.COMPLETED
    assert task.process_id == 222
    assert task.progress == "100%"
    assert task.exit_code == 0
    assert task.actual_cost == Decimal("1.5")
    assert task.completed_at is not None


def test_terminal_tasks_are_immutable(task_repository: TaskRepository) -> None:
    task_id = _create(task_repository)
    task_repository.mark_running(task_id)
    assert task_repository.fail_task(task_id, error="crashed", exit_code=3)

    assert not task_repository.complete_task(task_id, result="{}")
    assert not task_repository.fail_task(task_id, error="again")
    assert not task_repository.update_progress(task_id, "ghost")
    assert not task_repository.set_process_id(task_id, 1)

    task = task_repository.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.FAILED
    assert task.error == "crashed"
    assert task.exit_code == 3


def test_fail_task_respects_source_statuses(task_repository: TaskRepository) -> None:
    task_id = _create(task_repository)
    task_repository.mark_running(task_id)

    assert not task_repository.fail_task(
        task_id,
        error="dispatch",
        from_statuses=(TaskStatus.PENDING,),
    )
    assert task_repository.get_task(task_id).status is TaskStatus.RUNNING  # type: ignore[union-attr]


def test_list_tasks_filters(task_repository: TaskRepository) -> None:
    first = _create(task_repository)
    _create(task_repository, agent_id="mason")
    task_repository.mark_running(first)

    assert [task.task_id for task in task_repository.list_tasks(status=TaskStatus.RUNNING)] == [
        first,
    ]
    assert len(task_repository.list_tasks(agent_id="mason")) == 1
    assert len(task_repository.list_tasks(limit=1)) == 1
    assert task_repository.get_task("missing") is None
