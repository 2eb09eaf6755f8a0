import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
from uuid import uuid4

from chorechamp.models.household import (
    Household,
    HouseholdParent,
    Invite,
    InviteStatus,
    MembershipStatus,
    ParentRole,
)
from chorechamp.models.user import User, UserRole
from chorechamp.services.auth_service import auth_service, user_key
from chorechamp.services.redis_service import redis_service

logger = logging.getLogger(__name__)

INVITE_LIFETIME = timedelta(hours=48)


def household_key(household_id: str) -> str:
    return f"household:{household_id}"


class HouseholdConflictError(Exception):
    """A membership precondition failed (already in a household, etc.)"""


class InviteNotFoundError(Exception):
    """Token unknown, already used, or expired"""


class InviteEmailMismatchError(Exception):
    """Invite was addressed to a different email"""


class HouseholdService:
    def get_redis_client(self):
        return redis_service.redis_client

    def load_household(self, household_data: Optional[str]) -> Optional[Household]:
        if household_data:
            return Household.model_validate_json(household_data)
        return None

    def get_household(self, household_id: str) -> Optional[Household]:
        return self.load_household(self.get_redis_client().get(household_key(household_id)))

    def get_household_for(self, user: User) -> Optional[Household]:
        if not user.household_id:
            return None
        household = self.get_household(user.household_id)
        if household and household.has_member(user.id):
            return household
        return None

    def find_by_invite_token(self, token: str) -> Optional[Household]:
        redis_client = self.get_redis_client()
        for key in redis_client.keys("household:*"):
            household = self.load_household(redis_client.get(key))
            if household and any(invite.token == token for invite in household.invites):
                return household
        return None

    def _read_user(self, pipe, user_id: str) -> Optional[User]:
        return auth_service.load_user(pipe.get(user_key(user_id)))

    def _modify(self, household_id: str, change: Callable, user_ids: Iterable[str] = ()) -> Household:
        """Re-read the household (and users) under WATCH, apply change, write back.

        change(household, users) mutates in place and may raise to abort.
        Users that no longer exist are passed as None and not written.
        """
        key = household_key(household_id)
        user_ids = list(user_ids)

        def write(pipe):
            household = self.load_household(pipe.get(key))
            if household is None:
                raise HouseholdConflictError("Household not found")
            users = [self._read_user(pipe, user_id) for user_id in user_ids]
            change(household, users)
            pipe.multi()
            pipe.set(key, household.model_dump_json())
            for user in users:
                if user is not None:
                    pipe.set(user_key(user.id), user.model_dump_json())
            return household

        return redis_service.transaction(write, key, *[user_key(user_id) for user_id in user_ids])

    def rename(self, household: Household, name: str) -> Household:
        def change(current, users):
            current.name = name

        return self._modify(household.id, change)

    def create_household(self, owner: User, name: str, now: datetime) -> Household:
        household = Household(
            id=str(uuid4()),
            name=name,
            created_by=owner.id,
            parents=[HouseholdParent(user_id=owner.id, role=ParentRole.OWNER, status=MembershipStatus.ACTIVE)],
            created_at=now,
        )

        def write(pipe):
            current = self._read_user(pipe, owner.id)
            if current is None:
                raise HouseholdConflictError("User not found")
            if current.household_id:
                raise HouseholdConflictError("You are already a member of a household")
            current.household_id = household.id
            pipe.multi()
            pipe.set(household_key(household.id), household.model_dump_json())
            pipe.set(user_key(current.id), current.model_dump_json())
            return household

        created = redis_service.transaction(write, user_key(owner.id))
        logger.info("Household %s created by %s", created.id, owner.username)
        return created

    def create_invite(self, household: Household, email: str, invited_by: User, now: datetime) -> Invite:
        invite = Invite(
            email=email.lower(),
            token=secrets.token_hex(32),
            role=ParentRole.CO_PARENT,
            status=InviteStatus.PENDING,
            expires_at=now + INVITE_LIFETIME,
            invited_by=invited_by.id,
        )

        def change(current, users):
            for existing in current.invites:
                if existing.email.lower() == invite.email and existing.is_open(now):
                    raise HouseholdConflictError("Invitation already sent")
            current.invites.append(invite)

        self._modify(household.id, change)
        return invite

    def expire_invite(self, household: Household, token: str, now: datetime) -> None:
        def change(current, users):
            for invite in current.invites:
                if invite.token == token and invite.status == InviteStatus.PENDING and not invite.is_open(now):
                    invite.status = InviteStatus.EXPIRED

        self._modify(household.id, change)

    def join(self, household_id: str, token: str, user: User, now: datetime) -> Household:
        key = household_key(household_id)

        def write(pipe):
            household = self.load_household(pipe.get(key))
            if household is None:
                raise InviteNotFoundError()
            invite = next((i for i in household.invites if i.token == token), None)
            if invite is None or not invite.is_open(now):
                raise InviteNotFoundError()
            if not user.email or invite.email.lower() != user.email.lower():
                raise InviteEmailMismatchError()
            current = self._read_user(pipe, user.id)
            if current is None:
                raise HouseholdConflictError("User not found")
            if current.household_id or household.find_parent(user.id):
                raise HouseholdConflictError("You are already a member of a household")

            household.parents.append(
                HouseholdParent(user_id=user.id, role=ParentRole.CO_PARENT, status=MembershipStatus.ACTIVE)
            )
            invite.status = InviteStatus.ACCEPTED
            current.household_id = household.id
            pipe.multi()
            pipe.set(key, household.model_dump_json())
            pipe.set(user_key(current.id), current.model_dump_json())
            return household

        household = redis_service.transaction(write, key, user_key(user.id))
        logger.info("%s joined household %s as co-parent", user.username, household.id)
        return household

    def add_children(self, household_id: str, child_ids: List[str]) -> Household:
        key = household_key(household_id)
        child_ids = list(dict.fromkeys(child_ids))
        watched = [key] + [user_key(child_id) for child_id in child_ids]

        def write(pipe):
            household = self.load_household(pipe.get(key))
            if household is None:
                raise HouseholdConflictError("Household not found")
            children = []
            for child_id in child_ids:
                child = self._read_user(pipe, child_id)
                if child is None or child.role != UserRole.CHILD:
                    raise HouseholdConflictError("One or more children not found")
                children.append(child)
            if any(child.household_id or child.id in household.children for child in children):
                raise HouseholdConflictError("One or more children are already in a household")

            pipe.multi()
            for child in children:
                child.household_id = household.id
                household.children.append(child.id)
                pipe.set(user_key(child.id), child.model_dump_json())
            pipe.set(key, household.model_dump_json())
            return household

        household = redis_service.transaction(write, *watched)
        logger.info("Added %d children to household %s", len(child_ids), household_id)
        return household

    def remove_child(self, household: Household, child_id: str) -> Household:
        def change(current, users):
            current.children = [cid for cid in current.children if cid != child_id]
            child = users[0]
            if child and child.household_id == current.id:
                child.household_id = None

        return self._modify(household.id, change, [child_id])

    def remove_parent(self, household: Household, user_id: str) -> Household:
        def change(current, users):
            current.parents = [p for p in current.parents if p.user_id != user_id]
            parent = users[0]
            if parent and parent.household_id == current.id:
                parent.household_id = None

        return self._modify(household.id, change, [user_id])

    def family_members(self, household: Household) -> List[User]:
        """Parents followed by children, as stored on the household"""
        ids = [p.user_id for p in household.parents] + list(household.children)
        return auth_service.get_users(ids)

household_service = HouseholdService()
