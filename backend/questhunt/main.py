"""
Quest Hunt: FastAPI backend
"""
import logging
import os

from fastapi import FastAPI, Header, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .db import (
    MASTER_QUEST_KEY, UserDirectoryError,
    get_store, get_user, get_users, get_user_by_key, add_user, soft_delete_user, restore_user,
    initialize_master_quest, get_quest_state, save_quest_state,
    create_new_quest_state, reset_quest_state, reset_user_quest,
    get_activity_data, save_activity_data,
    get_unlock_requests, get_unlock_request, add_unlock_request, update_request_status,
)
from .engine.progress import (
    ProgressError, find_task, find_subtask, check_riddle_answer,
    set_subtask_completed, all_subtasks_completed, current_task,
    complete_current_task, unlock_task, approve_unlock, reject_unlock, dismiss_notification,
)
from .models import (
    ActivityData, Quest, QuestState, Task, User,
    SubTaskCompletion, RiddleAnswer, TaskCompletion, TaskUnlock,
    UnlockRequestCreate, UserCreate,
)
from .propagation import update_master_quest_and_propagate

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Quest Hunt API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = [
    o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.get("/health")
def health():
    try:
        get_store().get(MASTER_QUEST_KEY)
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check store failure: %s", e)
        raise HTTPException(status_code=503, detail="Store unavailable")


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_master_key(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return authorization.removeprefix("Bearer ").strip()


def require_user(master_key: str = Depends(get_master_key)) -> User:
    user = get_user_by_key(get_store(), master_key)
    if not user or user.is_deleted:
        raise HTTPException(status_code=401, detail="Unknown master key")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def require_player(user: User = Depends(require_user)) -> User:
    if user.role == "admin":
        raise HTTPException(status_code=403, detail="Admins have no quest")
    return user


# ── Player quest ──────────────────────────────────────────────────────────────

@app.get("/api/quest", response_model=QuestState)
def get_my_quest(user: User = Depends(require_player)):
    kv = get_store()
    return get_quest_state(kv, user.username) or create_new_quest_state(kv, user.username)


@app.post("/api/quest/reset", response_model=QuestState)
@limiter.limit("5/minute")
def reset_my_quest(request: Request, user: User = Depends(require_player)):
    kv = get_store()
    reset_quest_state(kv, user.username)
    logger.info("Quest reset for %s", user.username)
    return create_new_quest_state(kv, user.username)


@app.post("/api/quest/tasks/{task_id}/subtasks/{subtask_id}", response_model=QuestState)
def update_subtask(task_id: str, subtask_id: str, body: SubTaskCompletion,
                   user: User = Depends(require_player)):
    kv = get_store()
    state = _load_state(kv, user.username)
    _require_current_task(state, task_id)
    try:
        set_subtask_completed(state, task_id, subtask_id, body.completed)
    except ProgressError as e:
        raise HTTPException(status_code=404, detail=str(e))
    save_quest_state(kv, user.username, state)
    return state


@app.post("/api/quest/tasks/{task_id}/subtasks/{subtask_id}/answer")
@limiter.limit("30/minute")
def answer_riddle(request: Request, task_id: str, subtask_id: str, body: RiddleAnswer,
                  user: User = Depends(require_player)):
    kv = get_store()
    state = _load_state(kv, user.username)
    task = _require_current_task(state, task_id)
    subtask = find_subtask(task, subtask_id)
    if subtask is None:
        raise HTTPException(status_code=404, detail="Subtask not found")
    if subtask.type != "riddle":
        raise HTTPException(status_code=409, detail="Subtask is not a riddle")

    correct = check_riddle_answer(subtask, body.answer)
    if correct and not subtask.is_completed:
        subtask.is_completed = True
        save_quest_state(kv, user.username, state)
    return {"correct": correct}


@app.post("/api/quest/complete-task", response_model=QuestState)
def complete_task(body: TaskCompletion, user: User = Depends(require_player)):
    kv = get_store()
    state = _load_state(kv, user.username)
    task = current_task(state)
    if task is None:
        raise HTTPException(status_code=409, detail="Quest already complete")
    if not all_subtasks_completed(task):
        raise HTTPException(status_code=409, detail="Complete every sub-task first")
    complete_current_task(state, body.location)
    save_quest_state(kv, user.username, state)
    logger.info("Task %s completed by %s", task.id, user.username)
    return state


@app.delete("/api/quest/notifications/{notification_id}", response_model=QuestState)
def dismiss(notification_id: str, user: User = Depends(require_player)):
    kv = get_store()
    state = _load_state(kv, user.username)
    if not dismiss_notification(state, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    save_quest_state(kv, user.username, state)
    return state


# ── Activity ──────────────────────────────────────────────────────────────────

@app.get("/api/activity", response_model=ActivityData)
def get_my_activity(user: User = Depends(require_player)):
    return get_activity_data(get_store(), user.username)


@app.put("/api/activity", response_model=ActivityData)
@limiter.limit("60/minute")
def put_my_activity(request: Request, body: ActivityData, user: User = Depends(require_player)):
    save_activity_data(get_store(), user.username, body)
    return body


# ── Unlock requests ───────────────────────────────────────────────────────────

@app.post("/api/unlock-requests", status_code=201)
@limiter.limit("10/minute")
def request_unlock(request: Request, body: UnlockRequestCreate, user: User = Depends(require_player)):
    kv = get_store()
    state = _load_state(kv, user.username)
    task = _require_current_task(state, body.task_id)
    subtask = None
    if body.subtask_id:
        subtask = find_subtask(task, body.subtask_id)
        if subtask is None:
            raise HTTPException(status_code=404, detail="Subtask not found")

    unlock = add_unlock_request(
        kv, user.username, task.id, body.reason,
        subtask_id=subtask.id if subtask else None,
        task_title=task.title,
        subtask_description=subtask.description if subtask else None,
    )
    logger.info("Unlock requested by %s for task %s", user.username, task.id)
    return {"status": "pending", "id": unlock.id}


# ── Admin ─────────────────────────────────────────────────────────────────────

@app.get("/api/admin/master-quest", response_model=Quest)
def get_master(admin: User = Depends(require_admin)):
    return initialize_master_quest(get_store())


@app.put("/api/admin/master-quest")
@limiter.limit("10/minute")
def put_master(request: Request, body: Quest, admin: User = Depends(require_admin)):
    _check_unique_ids(body)
    counts = update_master_quest_and_propagate(get_store(), body)
    return {"status": "propagated", **counts}


@app.get("/api/admin/users")
def list_users(admin: User = Depends(require_admin)):
    return {"users": [u.model_dump(exclude={"master_key"}) for u in get_users(get_store())]}


@app.post("/api/admin/users", status_code=201)
def create_user(body: UserCreate, admin: User = Depends(require_admin)):
    try:
        user = add_user(get_store(), User(**body.model_dump()))
    except UserDirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "created", "username": user.username}


@app.post("/api/admin/users/{username}/delete")
def delete_user(username: str, admin: User = Depends(require_admin)):
    kv = get_store()
    _require_known_user(kv, username)
    try:
        soft_delete_user(kv, username)
    except UserDirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "deleted", "username": username}


@app.post("/api/admin/users/{username}/restore")
def restore(username: str, admin: User = Depends(require_admin)):
    kv = get_store()
    _require_known_user(kv, username)
    restore_user(kv, username)
    return {"status": "restored", "username": username}


@app.get("/api/admin/users/{username}/quest", response_model=QuestState)
def get_user_quest(username: str, admin: User = Depends(require_admin)):
    return _load_state(get_store(), username)


@app.post("/api/admin/users/{username}/quest/reset", response_model=QuestState)
def admin_reset_quest(username: str, admin: User = Depends(require_admin)):
    kv = get_store()
    _require_known_user(kv, username)
    try:
        return reset_user_quest(kv, username)
    except UserDirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/admin/users/{username}/unlock-task", response_model=QuestState)
def admin_unlock_task(username: str, body: TaskUnlock, admin: User = Depends(require_admin)):
    kv = get_store()
    state = _load_state(kv, username)
    try:
        unlock_task(state, body.task_index)
    except ProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    save_quest_state(kv, username, state)
    return state


@app.post("/api/admin/users/{username}/tasks/{task_id}/subtasks/{subtask_id}/unlock",
          response_model=QuestState)
def admin_unlock_subtask(username: str, task_id: str, subtask_id: str,
                         admin: User = Depends(require_admin)):
    kv = get_store()
    state = _load_state(kv, username)
    try:
        set_subtask_completed(state, task_id, subtask_id, True)
    except ProgressError as e:
        raise HTTPException(status_code=404, detail=str(e))
    save_quest_state(kv, username, state)
    return state


@app.get("/api/admin/unlock-requests")
def list_unlock_requests(admin: User = Depends(require_admin)):
    requests = get_unlock_requests(get_store())
    return {
        "requests": [r.model_dump() for r in requests],
        "pending": sum(1 for r in requests if r.status == "Pending"),
    }


@app.post("/api/admin/unlock-requests/{request_id}/approve")
def approve_request(request_id: str, admin: User = Depends(require_admin)):
    return _resolve_unlock_request(request_id, approved=True)


@app.post("/api/admin/unlock-requests/{request_id}/reject")
def reject_request(request_id: str, admin: User = Depends(require_admin)):
    return _resolve_unlock_request(request_id, approved=False)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_state(kv, username: str) -> QuestState:
    state = get_quest_state(kv, username)
    if state is None:
        if get_user(kv, username) is None:
            raise HTTPException(status_code=404, detail="User not found")
        raise HTTPException(status_code=404, detail="No quest state for user")
    return state


def _require_known_user(kv, username: str) -> User:
    user = get_user(kv, username)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _require_current_task(state: QuestState, task_id: str) -> Task:
    """Players may only work on the task under their cursor."""
    task = find_task(state, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    current = current_task(state)
    if current is None or current.id != task.id:
        raise HTTPException(status_code=409, detail="Task is not the current task")
    return task


def _check_unique_ids(quest: Quest) -> None:
    """Sync matches by id: task ids, and subtask ids within a task, must be unique."""
    task_ids = [t.id for t in quest.tasks]
    if len(task_ids) != len(set(task_ids)):
        raise HTTPException(status_code=422, detail="Duplicate task id in template")
    for task in quest.tasks:
        subtask_ids = [st.id for st in task.sub_tasks]
        if len(subtask_ids) != len(set(subtask_ids)):
            raise HTTPException(status_code=422, detail=f"Duplicate subtask id in task {task.id}")


def _resolve_unlock_request(request_id: str, approved: bool) -> dict:
    kv = get_store()
    unlock = get_unlock_request(kv, request_id)
    if unlock is None:
        raise HTTPException(status_code=404, detail="Unlock request not found")
    if unlock.status != "Pending":
        raise HTTPException(status_code=409, detail=f"Unlock request already {unlock.status.lower()}")
    state = _load_state(kv, unlock.user_id)

    if unlock.subtask_id:
        if approved:
            approve_unlock(state, unlock.task_id, unlock.subtask_id)
        else:
            reject_unlock(state, unlock.subtask_id)
        save_quest_state(kv, unlock.user_id, state)

    status = "Approved" if approved else "Rejected"
    update_request_status(kv, request_id, status)
    logger.info("Unlock request %s %s for %s", request_id, status.lower(), unlock.user_id)
    return {"status": status.lower()}
