"""
Quest template cloning and sync logic: pure functions, no store access.
"""
from ..models import Quest, QuestState, SubTask, Task


DEFAULT_MASTER_QUEST = Quest(
    id="master-quest-static-default",
    title="The Silent Forest's Secret",
    description=(
        "A mysterious silence has fallen over the once-lively forest. Uncover the secrets "
        "hidden within its ancient heart. This is a default quest template for the "
        "administrator to edit."
    ),
    tasks=[
        Task(
            id="task-default-1",
            title="The Whispering Leaves",
            riddle=("I speak without a mouth and hear without ears. I have no body, "
                    "but I come alive with wind. What am I?"),
            sub_tasks=[
                SubTask(id="subtask-default-1-1", type="checkbox",
                        description="Find a tree with whispering leaves and mark it as found."),
                SubTask(id="subtask-default-1-2", type="riddle", riddle_answer="An echo",
                        description="Solve the riddle of the wind."),
            ],
        ),
        Task(
            id="task-default-2",
            title="The Sunken Stone",
            riddle=("Find a stone that weeps by the river's edge, marked with the "
                    "symbol of a crescent moon."),
            sub_tasks=[
                SubTask(id="subtask-default-2-1", type="photo",
                        description="Take a photo of the crescent moon symbol on the stone."),
                SubTask(id="subtask-default-2-2", type="checkbox",
                        description="Confirm you have found the sunken stone."),
            ],
        ),
    ],
)


def clone_subtask(subtask: SubTask, reset_progress: bool = False) -> SubTask:
    return SubTask(
        id=subtask.id,
        description=subtask.description,
        type=subtask.type,
        riddle_answer=subtask.riddle_answer,
        is_completed=False if reset_progress else subtask.is_completed,
    )


def clone_task(task: Task, reset_progress: bool = False) -> Task:
    location = None
    if task.completion_location is not None and not reset_progress:
        location = task.completion_location.model_copy()
    return Task(
        id=task.id,
        title=task.title,
        riddle=task.riddle,
        is_completed=False if reset_progress else task.is_completed,
        sub_tasks=[clone_subtask(st, reset_progress) for st in task.sub_tasks],
        completion_location=location,
    )


def clone_quest(quest: Quest, reset_progress: bool = False) -> Quest:
    """
    Independent copy of a quest tree. With reset_progress every task and
    subtask completion flag is forced to False and completion locations dropped.
    """
    return Quest(
        id=quest.id,
        title=quest.title,
        description=quest.description,
        tasks=[clone_task(t, reset_progress) for t in quest.tasks],
    )


def fresh_quest_state(master: Quest) -> QuestState:
    return QuestState(quest=clone_quest(master, reset_progress=True), current_task_index=0, notifications=[])


def sync_task(master_task: Task, old_task: Task | None) -> Task:
    """
    Merge one master task with the player's copy of it.

    Definitions (title, riddle, subtask description/type/answer) always come
    from the master. Only completion flags and the completion location are
    carried over, and only for ids the player already had.
    """
    if old_task is None:
        return clone_task(master_task, reset_progress=True)

    old_subtasks = {st.id: st for st in old_task.sub_tasks}
    synced_subtasks = []
    for master_subtask in master_task.sub_tasks:
        subtask = clone_subtask(master_subtask, reset_progress=True)
        old_subtask = old_subtasks.get(master_subtask.id)
        if old_subtask is not None:
            subtask.is_completed = old_subtask.is_completed
        synced_subtasks.append(subtask)

    task = clone_task(master_task, reset_progress=True)
    task.sub_tasks = synced_subtasks
    task.is_completed = old_task.is_completed
    if old_task.completion_location is not None:
        task.completion_location = old_task.completion_location.model_copy()
    return task


def first_incomplete_index(tasks: list[Task], start: int = 0) -> int:
    """Index of the first incomplete task at or after start, or len(tasks) if there is none."""
    for i in range(max(start, 0), len(tasks)):
        if not tasks[i].is_completed:
            return i
    return len(tasks)


def resolve_task_index(old_tasks: list[Task], new_tasks: list[Task], index: int) -> int:
    """
    Keep the cursor while the same task id sits at the same index in the
    synced list.

    Otherwise move to the first incomplete task, searching from wherever the
    player's current task landed so tasks inserted ahead of it do not pull the
    cursor backward. When the current task was dropped, or nothing is left
    from its new position on, search the whole list.
    """
    # The fallback is anchored at the current task rather than the list head,
    # so a reorder with nothing added or removed follows the task to its new index.
    old_task = old_tasks[index] if 0 <= index < len(old_tasks) else None
    if old_task is None:
        return first_incomplete_index(new_tasks)
    if index < len(new_tasks) and new_tasks[index].id == old_task.id:
        return index

    new_position = next((i for i, t in enumerate(new_tasks) if t.id == old_task.id), None)
    if new_position is not None:
        candidate = first_incomplete_index(new_tasks, new_position)
        if candidate < len(new_tasks):
            return candidate
    return first_incomplete_index(new_tasks)


def sync_quest_state(state: QuestState, master: Quest) -> QuestState:
    """
    Returns a new QuestState with the master template's task order and
    definitions and the player's progress. The input state is not modified.
    Tasks the master no longer lists are dropped.
    """
    old_tasks = {t.id: t for t in state.quest.tasks}
    synced_tasks = [sync_task(mt, old_tasks.get(mt.id)) for mt in master.tasks]

    quest = Quest(
        id=state.quest.id,
        title=master.title,
        description=master.description,
        tasks=synced_tasks,
    )
    return QuestState(
        quest=quest,
        current_task_index=resolve_task_index(state.quest.tasks, synced_tasks, state.current_task_index),
        notifications=[n.model_copy() for n in state.notifications],
    )
