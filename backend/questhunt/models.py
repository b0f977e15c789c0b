from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional

SubTaskType = Literal["checkbox", "photo", "riddle", "screenshot_upload"]
Role = Literal["admin", "player"]
UnlockRequestStatus = Literal["Pending", "Approved", "Rejected"]


# ── Quest tree ────────────────────────────────────────────────────────────────

class SubTask(BaseModel):
    id: str
    description: str
    type: SubTaskType
    riddle_answer: Optional[str] = None   # only meaningful for type == 'riddle'
    is_completed: bool = False


class CompletionLocation(BaseModel):
    latitude: float
    longitude: float


class Task(BaseModel):
    id: str
    title: str
    riddle: str = ""
    is_completed: bool = False
    sub_tasks: list[SubTask] = []
    completion_location: Optional[CompletionLocation] = None


class Quest(BaseModel):
    id: str
    title: str
    description: str = ""
    tasks: list[Task] = []


class UnlockNotification(BaseModel):
    id: str
    subtask_id: str
    message: str
    type: Literal["approved", "rejected"]


class QuestState(BaseModel):
    quest: Quest
    current_task_index: int = Field(default=0, ge=0)
    notifications: list[UnlockNotification] = []


# ── Users / requests / activity ───────────────────────────────────────────────

class User(BaseModel):
    username: str
    role: Role = "player"
    master_key: str
    first_name: str = ""
    last_name: str = ""
    is_deleted: bool = False


class UnlockRequest(BaseModel):
    id: str
    user_id: str
    task_id: str
    subtask_id: Optional[str] = None
    task_title: str = ""
    subtask_description: Optional[str] = None
    reason: str
    timestamp: int
    status: UnlockRequestStatus = "Pending"


class ActivityData(BaseModel):
    distance: float = 0          # meters
    elevation_gain: float = 0    # meters
    elevation_loss: float = 0    # meters
    calories: float = 0          # kcal
    start_time: Optional[int] = None
    active_time: int = 0         # seconds
    rest_time: int = 0           # seconds
    model_config = {"extra": "ignore"}


# ── Request bodies ────────────────────────────────────────────────────────────

class SubTaskCompletion(BaseModel):
    completed: bool = True


class RiddleAnswer(BaseModel):
    answer: str = Field(min_length=1, max_length=200)


class TaskCompletion(BaseModel):
    location: Optional[CompletionLocation] = None


class TaskUnlock(BaseModel):
    task_index: int = Field(ge=0)


class UnlockRequestCreate(BaseModel):
    task_id: str
    subtask_id: Optional[str] = None
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        if not v.strip():
            raise ValueError("reason must not be blank")
        return v.strip()


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    master_key: str = Field(min_length=1, max_length=100)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
