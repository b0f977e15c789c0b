"""
Player progression and unlock notifications: pure functions on QuestState.

Each function mutates the state it is given; persisting it is the caller's job.
Tasks and subtasks are always located by id.
"""
import uuid

from ..models import CompletionLocation, QuestState, SubTask, Task, UnlockNotification

APPROVED_MESSAGE = (
    "This task has been manually unlocked for you by a Game Administrator based on your request."
)
REJECTED_MESSAGE = (
    "Your unlock request has been reviewed. Please study the task requirements again and re-attempt."
)


class ProgressError(ValueError):
    """Raised when a progression step refers to unknown content or is not allowed."""


def find_task(state: QuestState, task_id: str) -> Task | None:
    return next((t for t in state.quest.tasks if t.id == task_id), None)


def find_subtask(task: Task, subtask_id: str) -> SubTask | None:
    return next((st for st in task.sub_tasks if st.id == subtask_id), None)


def _require_subtask(state: QuestState, task_id: str, subtask_id: str) -> SubTask:
    task = find_task(state, task_id)
    if task is None:
        raise ProgressError(f"unknown task: {task_id}")
    subtask = find_subtask(task, subtask_id)
    if subtask is None:
        raise ProgressError(f"unknown subtask: {subtask_id}")
    return subtask


def check_riddle_answer(subtask: SubTask, answer: str) -> bool:
    """Case-insensitive, whitespace-trimmed comparison. False when no answer is set."""
    if subtask.type != "riddle" or not subtask.riddle_answer:
        return False
    return answer.strip().lower() == subtask.riddle_answer.strip().lower()


def set_subtask_completed(state: QuestState, task_id: str, subtask_id: str, completed: bool = True) -> None:
    _require_subtask(state, task_id, subtask_id).is_completed = completed


def all_subtasks_completed(task: Task) -> bool:
    return all(st.is_completed for st in task.sub_tasks)


def current_task(state: QuestState) -> Task | None:
    if state.current_task_index >= len(state.quest.tasks):
        return None
    return state.quest.tasks[state.current_task_index]


def complete_current_task(state: QuestState, location: CompletionLocation | None = None) -> Task:
    """
    Mark the task under the cursor complete and advance the cursor.
    The subtask gate is left to the caller: task completion is never derived
    from subtask state here.
    """
    task = current_task(state)
    if task is None:
        raise ProgressError("quest already complete")
    task.is_completed = True
    task.completion_location = location
    state.current_task_index += 1
    return task


def unlock_task(state: QuestState, task_index: int) -> None:
    """Admin override: move the cursor to any task, or to the end."""
    if not 0 <= task_index <= len(state.quest.tasks):
        raise ProgressError(f"task index out of range: {task_index}")
    state.current_task_index = task_index


def _notify(state: QuestState, subtask_id: str, kind: str, message: str) -> UnlockNotification:
    notification = UnlockNotification(
        id=f"notif-{'approve' if kind == 'approved' else 'reject'}-{uuid.uuid4().hex[:12]}",
        subtask_id=subtask_id,
        message=message,
        type=kind,
    )
    state.notifications.append(notification)
    return notification


def approve_unlock(state: QuestState, task_id: str, subtask_id: str) -> UnlockNotification:
    """
    Force the subtask complete (when it still exists) and queue an 'approved'
    notification for the player.
    """
    task = find_task(state, task_id)
    subtask = find_subtask(task, subtask_id) if task is not None else None
    if subtask is not None:
        subtask.is_completed = True
    return _notify(state, subtask_id, "approved", APPROVED_MESSAGE)


def reject_unlock(state: QuestState, subtask_id: str) -> UnlockNotification:
    return _notify(state, subtask_id, "rejected", REJECTED_MESSAGE)


def dismiss_notification(state: QuestState, notification_id: str) -> bool:
    remaining = [n for n in state.notifications if n.id != notification_id]
    removed = len(remaining) != len(state.notifications)
    state.notifications = remaining
    return removed
