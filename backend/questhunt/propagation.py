"""
Push an edited master quest template out to every player's quest state.
"""
import logging

from .db import KeyValueStore, get_quest_state, get_users, save_master_quest, save_quest_state
from .engine.quests import fresh_quest_state, sync_quest_state
from .models import Quest

logger = logging.getLogger(__name__)


def update_master_quest_and_propagate(kv: KeyValueStore, master: Quest) -> dict[str, int]:
    """
    Save the template, then sync each non-admin user's quest state against it.

    Users are processed one at a time with no rollback: if this is interrupted
    some players will already be on the new template and others will not.
    Returns counts of synced and newly created states.
    """
    save_master_quest(kv, master)

    synced = created = 0
    for user in get_users(kv):
        if user.role == "admin":
            continue

        state = get_quest_state(kv, user.username)
        if state is None:
            save_quest_state(kv, user.username, fresh_quest_state(master))
            created += 1
            continue

        new_state = sync_quest_state(state, master)
        if new_state.current_task_index != state.current_task_index:
            logger.info("Cursor for %s moved %d -> %d",
                        user.username, state.current_task_index, new_state.current_task_index)
        save_quest_state(kv, user.username, new_state)
        synced += 1

    logger.info("Master quest %s propagated: %d synced, %d created", master.id, synced, created)
    return {"synced": synced, "created": created}
