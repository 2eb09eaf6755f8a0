import redis
import json
import logging
from datetime import datetime
from typing import Callable, List, Optional
from chorechamp.models.chore import Chore, ChoreStatus
from chorechamp.services import recurrence
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

UPDATES_CHANNEL = "chore_updates"


def chore_key(chore_id: str) -> str:
    return f"chore:{chore_id}"


class RedisService:
    def __init__(self):
        self.redis_client = redis.Redis(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", 6379)),
            password=os.getenv("REDIS_PASSWORD") or None,
            decode_responses=True
        )

    def transaction(self, func: Callable, *watch_keys: str):
        """Run func(pipe) under WATCH on the given keys and return its value.

        func reads through the pipe, calls pipe.multi() and queues its
        writes; redis-py re-runs it if a watched key changes before EXEC.
        """
        return self.redis_client.transaction(func, *watch_keys, value_from_callable=True)

    def dump_chore(self, chore: Chore, now: Optional[datetime] = None) -> str:
        """Serialize a chore, recomputing its next due date"""
        now = now or recurrence.utcnow()
        chore.next_due_date = recurrence.next_due_date(chore, now)
        chore.updated_at = now
        return chore.model_dump_json()

    def load_chore(self, chore_data: Optional[str], now: Optional[datetime] = None) -> Optional[Chore]:
        """Parse a stored chore and apply any reset that has come due"""
        if not chore_data:
            return None
        chore = Chore.model_validate_json(chore_data)
        now = now or recurrence.utcnow()
        if recurrence.apply_due_reset(chore, now):
            return self._persist_reset(chore.id, now)
        return chore

    def _persist_reset(self, chore_id: str, now: datetime) -> Optional[Chore]:
        """Write a due reset against the current document, not the copy read
        earlier, so a concurrent delete or edit is never overwritten"""
        key = chore_key(chore_id)

        def write(pipe):
            chore_data = pipe.get(key)
            if not chore_data:
                return None
            chore = Chore.model_validate_json(chore_data)
            if recurrence.apply_due_reset(chore, now):
                pipe.multi()
                pipe.set(key, self.dump_chore(chore, now))
            return chore

        return self.transaction(write, key)

    def read_chore(self, pipe, chore_id: str, now: datetime) -> Optional[Chore]:
        """Read a chore through a watching pipeline; due resets are applied
        in memory and persisted by the caller's own write"""
        chore_data = pipe.get(chore_key(chore_id))
        if not chore_data:
            return None
        chore = Chore.model_validate_json(chore_data)
        recurrence.apply_due_reset(chore, now)
        return chore

    def get_chore(self, chore_id: str, now: Optional[datetime] = None) -> Optional[Chore]:
        return self.load_chore(self.redis_client.get(chore_key(chore_id)), now)

    def _all_chores(self, now: Optional[datetime] = None) -> List[Chore]:
        chores = []
        for key in self.redis_client.keys("chore:*"):
            chore = self.load_chore(self.redis_client.get(key), now)
            if chore:
                chores.append(chore)
        chores.sort(key=lambda chore: chore.created_at)
        return chores

    def get_household_chores(self, household_id: str, now: Optional[datetime] = None) -> List[Chore]:
        return [chore for chore in self._all_chores(now) if chore.household_id == household_id]

    def get_assigned_chores(self, user_id: str, now: Optional[datetime] = None) -> List[Chore]:
        return [chore for chore in self._all_chores(now) if chore.assigned_to == user_id]

    def save_chore(self, chore: Chore, now: Optional[datetime] = None) -> None:
        self.redis_client.set(chore_key(chore.id), self.dump_chore(chore, now))

    def save_chores(self, chores: List[Chore], now: Optional[datetime] = None) -> None:
        pipe = self.redis_client.pipeline()
        for chore in chores:
            pipe.set(chore_key(chore.id), self.dump_chore(chore, now))
        pipe.execute()

    def delete_chore(self, chore_id: str) -> bool:
        return bool(self.redis_client.delete(chore_key(chore_id)))

    def unassign_user_chores(self, user_id: str) -> int:
        """Clear the assignee on every chore held by user_id"""
        chores = self.get_assigned_chores(user_id)
        for chore in chores:
            chore.assigned_to = None
            chore.status = ChoreStatus.PENDING
            recurrence.clear_completion(chore)
        if chores:
            self.save_chores(chores)
        return len(chores)

    def publish_update(self, update: dict) -> None:
        try:
            self.redis_client.publish(UPDATES_CHANNEL, json.dumps(update, default=str))
        except redis.RedisError:
            logger.warning("Could not publish %s update", update.get("type"), exc_info=True)

redis_service = RedisService()
