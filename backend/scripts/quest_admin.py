"""
Maintenance commands for the quest store.

  seed    create the admin account and the default master quest if missing
  resync  re-propagate the stored master quest to every player

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... ADMIN_MASTER_KEY=... python scripts/quest_admin.py seed
    python scripts/quest_admin.py resync [--dry-run]
"""
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add project root to path so we can import the app package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from questhunt.db import (
    get_store, get_users, get_quest_state, initialize_master_quest, initialize_users,
)
from questhunt.engine.quests import sync_quest_state
from questhunt.propagation import update_master_quest_and_propagate


def seed(kv) -> None:
    admin_key = os.environ.get("ADMIN_MASTER_KEY")
    if not admin_key:
        print("❌ ADMIN_MASTER_KEY is not set")
        sys.exit(1)
    if initialize_users(kv, admin_key):
        print("  Admin account created.")
    else:
        print("  Users already present, directory left alone.")
    quest = initialize_master_quest(kv)
    print(f"  Master quest: {quest.title} ({len(quest.tasks)} tasks)")


def preview(kv) -> None:
    """Show what a resync would do to each player's cursor without writing."""
    master = initialize_master_quest(kv)
    for user in get_users(kv):
        if user.role == "admin":
            continue
        state = get_quest_state(kv, user.username)
        if state is None:
            print(f"    {user.username}: no state, would be created at task 0")
            continue
        synced = sync_quest_state(state, master)
        dropped = {t.id for t in state.quest.tasks} - {t.id for t in synced.quest.tasks}
        marker = "" if not dropped else f" (drops {', '.join(sorted(dropped))})"
        print(f"    {user.username}: cursor {state.current_task_index} -> {synced.current_task_index}{marker}")


def resync(kv, dry_run: bool = False) -> None:
    master = initialize_master_quest(kv)
    print(f"\n🔄 Resyncing players against: {master.title}\n")
    if dry_run:
        preview(kv)
        print("\n  DRY RUN: no changes written.")
        return
    counts = update_master_quest_and_propagate(kv, master)
    print(f"\n✅ {counts['synced']} synced, {counts['created']} created\n")


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    dry = "--dry-run" in sys.argv

    if not args or args[0] not in ("seed", "resync"):
        print("Usage: python scripts/quest_admin.py seed|resync [--dry-run]")
        sys.exit(1)

    store = get_store()
    if args[0] == "seed":
        seed(store)
    else:
        resync(store, dry_run=dry)
