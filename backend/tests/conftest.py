import json
import pytest

from questhunt.models import Quest, QuestState, SubTask, Task, User


class MemoryStore:
    """In-memory key-value store. Values go through JSON like the jsonb column does."""

    def __init__(self):
        self.data: dict[str, str] = {}

    def get(self, key):
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key, value):
        self.data[key] = json.dumps(value)

    def remove(self, key):
        self.data.pop(key, None)


def make_subtask(sid, done=False, type="checkbox", description=None, answer=None):
    return SubTask(id=sid, description=description or f"do {sid}", type=type,
                   riddle_answer=answer, is_completed=done)


def make_task(tid, subtasks=(), done=False, title=None):
    return Task(id=tid, title=title or f"Task {tid}", riddle=f"riddle {tid}",
                is_completed=done, sub_tasks=list(subtasks))


def make_quest(*tasks, title="Quest", description="A quest"):
    return Quest(id="master", title=title, description=description, tasks=list(tasks))


def make_state(quest, index=0, notifications=()):
    return QuestState(quest=quest, current_task_index=index, notifications=list(notifications))


@pytest.fixture
def kv():
    return MemoryStore()


@pytest.fixture
def users():
    return [
        User(username="admin", role="admin", master_key="admin.001", first_name="Admin", last_name="User"),
        User(username="ada", role="player", master_key="ada.001", first_name="Ada", last_name="L"),
        User(username="bob", role="player", master_key="bob.001", first_name="Bob", last_name="B"),
    ]
