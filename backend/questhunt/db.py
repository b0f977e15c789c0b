import os
import time
import uuid
import logging
from functools import lru_cache
from typing import Any, Protocol
from supabase import create_client, Client

from .engine.quests import DEFAULT_MASTER_QUEST, clone_quest, fresh_quest_state
from .models import ActivityData, Quest, QuestState, UnlockRequest, User

logger = logging.getLogger(__name__)

MASTER_QUEST_KEY = "treasure-hunt-master-quest"
QUEST_STATE_KEY_PREFIX = "treasure-quest-state-"
ACTIVITY_DATA_KEY_PREFIX = "treasure-activity-data-"
USERS_STORAGE_KEY = "treasure-hunt-users"
UNLOCK_REQUESTS_KEY = "treasure-hunt-unlock-requests"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...
    def remove(self, key: str) -> None: ...


class SupabaseStore:
    """
    Key-value store on a single Supabase table with a text `key` primary key
    and a jsonb `value` column.
    """

    def __init__(self, client: Client, table: str = "kv_store"):
        self.client = client
        self.table = table

    def get(self, key: str) -> Any | None:
        res = self.client.table(self.table).select("value").eq("key", key).execute()
        return res.data[0]["value"] if res.data else None

    def set(self, key: str, value: Any) -> None:
        self.client.table(self.table).upsert({"key": key, "value": value}).execute()

    def remove(self, key: str) -> None:
        self.client.table(self.table).delete().eq("key", key).execute()


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


@lru_cache(maxsize=1)
def get_store() -> KeyValueStore:
    return SupabaseStore(get_client(), os.environ.get("QUEST_KV_TABLE", "kv_store"))


def now_ms() -> int:
    return int(time.time() * 1000)


# ── Master template ───────────────────────────────────────────────────────────

def get_master_quest(kv: KeyValueStore) -> Quest | None:
    data = kv.get(MASTER_QUEST_KEY)
    return Quest.model_validate(data) if data else None


def save_master_quest(kv: KeyValueStore, quest: Quest) -> None:
    kv.set(MASTER_QUEST_KEY, quest.model_dump(mode="json"))


def initialize_master_quest(kv: KeyValueStore) -> Quest:
    quest = get_master_quest(kv)
    if quest is None:
        logger.info("No master quest found, saving the default template")
        quest = clone_quest(DEFAULT_MASTER_QUEST)
        save_master_quest(kv, quest)
    return quest


# ── Per-user quest state ──────────────────────────────────────────────────────

def get_quest_state(kv: KeyValueStore, username: str) -> QuestState | None:
    data = kv.get(f"{QUEST_STATE_KEY_PREFIX}{username}")
    return QuestState.model_validate(data) if data else None


def save_quest_state(kv: KeyValueStore, username: str, state: QuestState) -> None:
    kv.set(f"{QUEST_STATE_KEY_PREFIX}{username}", state.model_dump(mode="json"))


def create_new_quest_state(kv: KeyValueStore, username: str) -> QuestState:
    state = fresh_quest_state(initialize_master_quest(kv))
    save_quest_state(kv, username, state)
    return state


def reset_quest_state(kv: KeyValueStore, username: str) -> None:
    """Drop the player's quest state. A new quest means a new journey, so activity goes too."""
    kv.remove(f"{QUEST_STATE_KEY_PREFIX}{username}")
    reset_activity_data(kv, username)


# ── Activity ──────────────────────────────────────────────────────────────────

def get_activity_data(kv: KeyValueStore, username: str) -> ActivityData:
    data = kv.get(f"{ACTIVITY_DATA_KEY_PREFIX}{username}") or {}
    activity = ActivityData.model_validate(data)
    # older records predate start_time
    if activity.start_time is None:
        activity.start_time = now_ms()
    return activity


def save_activity_data(kv: KeyValueStore, username: str, data: ActivityData) -> None:
    kv.set(f"{ACTIVITY_DATA_KEY_PREFIX}{username}", data.model_dump(mode="json"))


def reset_activity_data(kv: KeyValueStore, username: str) -> None:
    kv.remove(f"{ACTIVITY_DATA_KEY_PREFIX}{username}")


# ── User directory ────────────────────────────────────────────────────────────

class UserDirectoryError(ValueError):
    """Raised when a user cannot be added to the directory."""


def get_users(kv: KeyValueStore) -> list[User]:
    return [User.model_validate(u) for u in (kv.get(USERS_STORAGE_KEY) or [])]


def save_users(kv: KeyValueStore, users: list[User]) -> None:
    kv.set(USERS_STORAGE_KEY, [u.model_dump(mode="json") for u in users])


def get_user_by_key(kv: KeyValueStore, master_key: str) -> User | None:
    return next((u for u in get_users(kv) if u.master_key == master_key), None)


def get_user(kv: KeyValueStore, username: str) -> User | None:
    return next((u for u in get_users(kv) if u.username == username), None)


def add_user(kv: KeyValueStore, user: User) -> User:
    """Add a player and give them a fresh quest log from the master template."""
    username = user.username.strip().lower()
    master_key = user.master_key.strip()
    if not username:
        raise UserDirectoryError("Username cannot be empty.")
    if not user.first_name.strip() or not user.last_name.strip():
        raise UserDirectoryError("First and Last name are required.")
    if not master_key:
        raise UserDirectoryError("Master Key cannot be empty.")

    users = get_users(kv)
    if any(u.username == username for u in users):
        raise UserDirectoryError("Username already exists.")
    if any(u.master_key == master_key for u in users):
        raise UserDirectoryError("Master Key already exists.")

    new_user = user.model_copy(update={"username": username, "master_key": master_key, "is_deleted": False})
    users.append(new_user)
    save_users(kv, users)
    if new_user.role != "admin":
        create_new_quest_state(kv, new_user.username)
    logger.info("User added: %s (%s)", new_user.username, new_user.role)
    return new_user


def _set_deleted(kv: KeyValueStore, username: str, deleted: bool) -> User:
    users = get_users(kv)
    user = next((u for u in users if u.username == username), None)
    if user is None:
        raise UserDirectoryError("User not found.")
    if deleted and user.role == "admin":
        raise UserDirectoryError("Cannot delete the admin user.")
    user.is_deleted = deleted
    save_users(kv, users)
    logger.info("User %s %s", username, "deleted" if deleted else "restored")
    return user


def soft_delete_user(kv: KeyValueStore, username: str) -> User:
    """Hide a player without losing their quest state; they can no longer sign in."""
    return _set_deleted(kv, username, True)


def restore_user(kv: KeyValueStore, username: str) -> User:
    return _set_deleted(kv, username, False)


def reset_user_quest(kv: KeyValueStore, username: str) -> QuestState:
    """Admin-side reset: wipe a player's quest and activity and start them over."""
    user = get_user(kv, username)
    if user is None:
        raise UserDirectoryError("User not found.")
    if user.role == "admin":
        raise UserDirectoryError("Admins have no quest.")
    reset_quest_state(kv, username)
    return create_new_quest_state(kv, username)


def initialize_users(kv: KeyValueStore, admin_master_key: str) -> bool:
    """Seed the directory with an admin account. Returns False if users already exist."""
    if get_users(kv):
        return False
    admin = User(username="admin", role="admin", master_key=admin_master_key,
                 first_name="Admin", last_name="User")
    save_users(kv, [admin])
    return True


# ── Unlock requests ───────────────────────────────────────────────────────────

def get_unlock_requests(kv: KeyValueStore) -> list[UnlockRequest]:
    requests = [UnlockRequest.model_validate(r) for r in (kv.get(UNLOCK_REQUESTS_KEY) or [])]
    return sorted(requests, key=lambda r: r.timestamp, reverse=True)


def save_unlock_requests(kv: KeyValueStore, requests: list[UnlockRequest]) -> None:
    kv.set(UNLOCK_REQUESTS_KEY, [r.model_dump(mode="json") for r in requests])


def add_unlock_request(kv: KeyValueStore, user_id: str, task_id: str, reason: str,
                       subtask_id: str | None = None, task_title: str = "",
                       subtask_description: str | None = None) -> UnlockRequest:
    requests = get_unlock_requests(kv)
    request = UnlockRequest(
        id=f"unlock-req-{uuid.uuid4().hex[:12]}",
        user_id=user_id,
        task_id=task_id,
        subtask_id=subtask_id,
        task_title=task_title,
        subtask_description=subtask_description,
        reason=reason,
        timestamp=now_ms(),
        status="Pending",
    )
    requests.append(request)
    save_unlock_requests(kv, requests)
    return request


def get_unlock_request(kv: KeyValueStore, request_id: str) -> UnlockRequest | None:
    return next((r for r in get_unlock_requests(kv) if r.id == request_id), None)


def update_request_status(kv: KeyValueStore, request_id: str, status: str) -> UnlockRequest | None:
    requests = get_unlock_requests(kv)
    for request in requests:
        if request.id == request_id:
            request.status = status
            save_unlock_requests(kv, requests)
            return request
    return None
