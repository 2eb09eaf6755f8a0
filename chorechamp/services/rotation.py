from typing import Dict, List

from chorechamp.models.chore import Chore
from chorechamp.models.household import Household, MembershipStatus
from chorechamp.models.user import User


def family_order(household: Household, children: List[User]) -> List[str]:
    """Rotation order: active parents as listed in the household, then children
    by chore_rotation_order (ties keep household order)."""
    parent_ids = [p.user_id for p in household.parents if p.status == MembershipStatus.ACTIVE]
    position = {child_id: i for i, child_id in enumerate(household.children)}
    ordered_children = sorted(
        (child for child in children if child.id in position),
        key=lambda child: (child.chore_rotation_order, position[child.id]),
    )
    return parent_ids + [child.id for child in ordered_children]


def plan_rotation(chores: List[Chore], members: List[str]) -> Dict[str, str]:
    """Map chore id -> next assignee for every chore that rotates.

    Locked and unassigned chores stay put, as do chores held by someone
    outside the family list. Members without chores still occupy their slot.
    """
    if not members:
        return {}
    index_of = {member_id: i for i, member_id in enumerate(members)}
    plan = {}
    for chore in chores:
        if chore.is_locked or chore.assigned_to is None:
            continue
        current = index_of.get(chore.assigned_to)
        if current is None:
            continue
        plan[chore.id] = members[(current + 1) % len(members)]
    return plan
