import logging
from fastapi import APIRouter, HTTPException, Depends, status
from typing import List, Optional
from uuid import uuid4
from chorechamp.models.chore import (
    AssignRequest,
    Chore,
    ChoreRequest,
    ChoreResponse,
    ChoreStatus,
    ChoreType,
    Frequency,
    LockRequest,
    Recurrence,
    RotateResponse,
)
from chorechamp.models.user import User, UserRole
from chorechamp.dependencies.auth import get_current_user, require_parent
from chorechamp.services import recurrence
from chorechamp.services.auth_service import auth_service, user_key
from chorechamp.services.email_service import EmailDeliveryError, email_service
from chorechamp.services.household_service import household_service
from chorechamp.services.redis_service import chore_key, redis_service
from chorechamp.services.rotation import family_order, plan_rotation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chores", tags=["chores"])


def to_response(chore: Chore, now) -> ChoreResponse:
    return ChoreResponse(**chore.model_dump(), is_due=recurrence.is_due(chore, now))


def publish_chore(event: str, chore: Chore) -> None:
    redis_service.publish_update({
        "type": event,
        "household_id": chore.household_id,
        "chore_id": chore.id,
        "chore": chore.model_dump(mode="json"),
    })


def get_visible_chore(chore_id: str, current_user: User, now) -> Chore:
    """Chore in the caller's scope: their household for parents, their own
    assignments for children"""
    chore = redis_service.get_chore(chore_id, now)
    if not chore:
        raise HTTPException(status_code=404, detail="Chore not found")
    if current_user.is_parent:
        if chore.household_id != current_user.household_id:
            raise HTTPException(status_code=404, detail="Chore not found")
    elif chore.assigned_to != current_user.id:
        raise HTTPException(status_code=404, detail="Chore not found")
    return chore


def require_creator(chore: Chore, current_user: User, action: str) -> None:
    if chore.created_by != current_user.id:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this chore")


def validate_assignee(household_id: str, assignee_id: str) -> User:
    household = household_service.get_household(household_id)
    assignee = auth_service.get_user_by_id(assignee_id)
    if not household or not assignee or not household.has_member(assignee.id):
        raise HTTPException(status_code=400, detail="Invalid assignment: not a member of this household")
    return assignee


def apply_definition(chore: Chore, request: ChoreRequest) -> None:
    """Copy the type-specific fields, clearing those of the other type"""
    chore.title = request.title
    chore.description = request.description or ""
    chore.points = request.points

    previous = chore.recurrence if chore.chore_type == ChoreType.RECURRING else None
    chore.chore_type = request.chore_type

    if request.chore_type == ChoreType.ONE_TIME:
        chore.due_date = request.due_date
        chore.recurrence = None
        return

    days = request.recurrence.days_of_week if request.recurrence.frequency == Frequency.WEEKLY else []
    chore.recurrence = Recurrence(frequency=request.recurrence.frequency, days_of_week=days)
    chore.due_date = None
    if chore.status != ChoreStatus.PENDING:
        # An open completion rolls over on the new schedule
        completed = chore.completed_at or (previous.last_completed if previous else None) or recurrence.utcnow()
        chore.recurrence.last_completed = completed
        chore.recurrence.reset_at = recurrence.next_reset_at(chore, completed)


def notify_assignee(assignee: User, chore: Chore) -> None:
    if not assignee.email:
        return
    try:
        email_service.send_chore_assigned(
            assignee.email, assignee.display_name, chore.title, chore.points, chore.next_due_date
        )
    except EmailDeliveryError:
        logger.warning("Assignment email for chore %s failed", chore.id, exc_info=True)


@router.get("", response_model=List[ChoreResponse])
async def get_chores(household_id: Optional[str] = None, current_user: User = Depends(get_current_user)):
    """Parents get every chore in their household; children get their own"""
    now = recurrence.utcnow()
    if current_user.is_parent:
        if household_id and household_id != current_user.household_id:
            raise HTTPException(status_code=403, detail="Not a member of this household")
        if not current_user.household_id:
            return []
        chores = redis_service.get_household_chores(current_user.household_id, now)
    else:
        chores = redis_service.get_assigned_chores(current_user.id, now)
    return [to_response(chore, now) for chore in chores]

@router.get("/assigned/{child_id}", response_model=List[ChoreResponse])
async def get_assigned_chores(child_id: str, current_user: User = Depends(get_current_user)):
    """Open chores currently assigned to a child"""
    now = recurrence.utcnow()
    if current_user.id != child_id:
        if not current_user.is_parent:
            raise HTTPException(status_code=403, detail="Not authorized to view these chores")
        child = auth_service.get_user_by_id(child_id)
        in_household = child is not None and child.household_id is not None \
            and child.household_id == current_user.household_id
        if not child or child.role != UserRole.CHILD or not (in_household or child.parent_id == current_user.id):
            raise HTTPException(status_code=403, detail="Not authorized to view these chores")

    chores = redis_service.get_assigned_chores(child_id, now)
    return [to_response(chore, now) for chore in chores if chore.status == ChoreStatus.PENDING]

@router.get("/{chore_id}", response_model=ChoreResponse)
async def get_chore(chore_id: str, current_user: User = Depends(get_current_user)):
    now = recurrence.utcnow()
    return to_response(get_visible_chore(chore_id, current_user, now), now)

@router.post("", response_model=ChoreResponse, status_code=status.HTTP_201_CREATED)
async def create_chore(request: ChoreRequest, current_user: User = Depends(require_parent)):
    """Create a new chore in the caller's household"""
    now = recurrence.utcnow()
    household = household_service.get_household_for(current_user)
    if not household:
        raise HTTPException(status_code=404, detail="Household not found")

    assignee = validate_assignee(household.id, request.assigned_to) if request.assigned_to else None

    chore = Chore(
        id=str(uuid4()),
        title=request.title,
        points=request.points,
        household_id=household.id,
        assigned_to=assignee.id if assignee else None,
        created_by=current_user.id,
        chore_type=request.chore_type,
        created_at=now,
        updated_at=now,
    )
    apply_definition(chore, request)
    redis_service.save_chore(chore, now)
    logger.info("Chore %s '%s' created by %s", chore.id, chore.title, current_user.username)

    if assignee:
        notify_assignee(assignee, chore)
    publish_chore("chore_created", chore)
    return to_response(chore, now)

@router.put("/{chore_id}", response_model=ChoreResponse)
async def update_chore(chore_id: str, request: ChoreRequest, current_user: User = Depends(require_parent)):
    """Replace a chore's definition (creator only)"""
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)
    require_creator(chore, current_user, "edit")

    # Assignment only changes when the field is sent
    if request.assigned_to and request.assigned_to != chore.assigned_to:
        assignee = validate_assignee(chore.household_id, request.assigned_to)
        chore.assigned_to = assignee.id
    elif "assigned_to" in request.model_fields_set and not request.assigned_to and chore.assigned_to:
        chore.assigned_to = None
        chore.status = ChoreStatus.PENDING
        recurrence.clear_completion(chore)

    apply_definition(chore, request)
    redis_service.save_chore(chore, now)
    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.delete("/{chore_id}")
async def delete_chore(chore_id: str, current_user: User = Depends(require_parent)):
    """Delete a chore (only creator can delete)"""
    chore = get_visible_chore(chore_id, current_user, recurrence.utcnow())
    require_creator(chore, current_user, "delete")

    redis_service.delete_chore(chore_id)
    redis_service.publish_update({
        "type": "chore_deleted",
        "household_id": chore.household_id,
        "chore_id": chore_id,
    })
    return {"message": "Chore deleted successfully"}

@router.patch("/{chore_id}/lock", response_model=ChoreResponse)
async def lock_chore(chore_id: str, request: LockRequest, current_user: User = Depends(require_parent)):
    """Lock or unlock a chore; locked chores are skipped by rotation"""
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)
    chore.is_locked = request.is_locked
    redis_service.save_chore(chore, now)
    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.patch("/{chore_id}/assign", response_model=ChoreResponse)
async def assign_chore(chore_id: str, request: AssignRequest, current_user: User = Depends(require_parent)):
    """Assign a chore to a household member, or unassign it with null"""
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)

    if not request.assigned_to:
        return await unassign_chore(chore_id, current_user)

    assignee = validate_assignee(chore.household_id, request.assigned_to)
    changed = chore.assigned_to != assignee.id
    chore.assigned_to = assignee.id
    redis_service.save_chore(chore, now)

    if changed:
        notify_assignee(assignee, chore)
    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.patch("/{chore_id}/unassign", response_model=ChoreResponse)
async def unassign_chore(chore_id: str, current_user: User = Depends(require_parent)):
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)

    chore.assigned_to = None
    chore.status = ChoreStatus.PENDING
    recurrence.clear_completion(chore)
    redis_service.save_chore(chore, now)
    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.patch("/{chore_id}/complete", response_model=ChoreResponse)
async def complete_chore(chore_id: str, current_user: User = Depends(get_current_user)):
    """Mark a pending chore completed and credit its points to the assignee.

    Status, rollover and the point credit are written in one transaction.
    """
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)
    if chore.status != ChoreStatus.PENDING:
        raise HTTPException(status_code=400, detail="Chore is already completed")
    if not chore.assigned_to:
        raise HTTPException(status_code=400, detail="Chore must be assigned before it can be completed")
    assignee_id = chore.assigned_to

    def write(pipe):
        current = redis_service.read_chore(pipe, chore_id, now)
        if current is None:
            raise HTTPException(status_code=404, detail="Chore not found")
        if current.status != ChoreStatus.PENDING:
            raise HTTPException(status_code=400, detail="Chore is already completed")
        if current.assigned_to != assignee_id:
            raise HTTPException(status_code=400, detail="Chore was reassigned, please reload")
        assignee = auth_service.load_user(pipe.get(user_key(assignee_id)))

        current.status = ChoreStatus.COMPLETED
        current.completed_at = now
        current.completed_by = assignee_id
        if current.chore_type == ChoreType.RECURRING:
            recurrence.mark_recurring_completed(current, now)

        pipe.multi()
        pipe.set(chore_key(current.id), redis_service.dump_chore(current, now))
        if assignee:
            assignee.points += current.points
            pipe.set(user_key(assignee.id), assignee.model_dump_json())
        return current, assignee

    chore, assignee = redis_service.transaction(write, chore_key(chore_id), user_key(assignee_id))
    logger.info("Chore %s completed; %d points to %s", chore.id, chore.points, assignee_id)

    creator = auth_service.get_user_by_id(chore.created_by)
    if creator and creator.email and creator.id != current_user.id:
        try:
            email_service.send_chore_completed(
                creator.email, creator.display_name,
                assignee.display_name if assignee else "Someone", chore.title
            )
        except EmailDeliveryError:
            logger.warning("Completion email for chore %s failed", chore.id, exc_info=True)

    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.patch("/{chore_id}/verify", response_model=ChoreResponse)
async def verify_chore(chore_id: str, current_user: User = Depends(require_parent)):
    """Accept a completion. Points were already credited at completion."""
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)
    if chore.status != ChoreStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Chore must be completed before verification")

    chore.status = ChoreStatus.VERIFIED
    redis_service.save_chore(chore, now)
    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.patch("/{chore_id}/undo", response_model=ChoreResponse)
async def undo_chore(chore_id: str, current_user: User = Depends(get_current_user)):
    """Reverse a completion and take back its points (never below zero)

    Points come back from whoever was credited, even if the chore has been
    reassigned or rotated since.
    """
    now = recurrence.utcnow()
    chore = get_visible_chore(chore_id, current_user, now)
    if chore.status == ChoreStatus.PENDING:
        raise HTTPException(status_code=400, detail="Chore is not completed")
    credited_id = chore.completed_by or chore.assigned_to
    watched = [chore_key(chore_id)] + ([user_key(credited_id)] if credited_id else [])

    def write(pipe):
        current = redis_service.read_chore(pipe, chore_id, now)
        if current is None:
            raise HTTPException(status_code=404, detail="Chore not found")
        if current.status == ChoreStatus.PENDING:
            raise HTTPException(status_code=400, detail="Chore is not completed")
        if (current.completed_by or current.assigned_to) != credited_id:
            raise HTTPException(status_code=400, detail="Chore was changed, please reload")
        credited = auth_service.load_user(pipe.get(user_key(credited_id))) if credited_id else None

        current.status = ChoreStatus.PENDING
        recurrence.clear_completion(current)

        pipe.multi()
        pipe.set(chore_key(current.id), redis_service.dump_chore(current, now))
        if credited:
            credited.points = max(0, credited.points - current.points)
            pipe.set(user_key(credited.id), credited.model_dump_json())
        return current

    chore = redis_service.transaction(write, *watched)
    logger.info("Completion of chore %s undone", chore.id)
    publish_chore("chore_updated", chore)
    return to_response(chore, now)

@router.post("/rotate", response_model=RotateResponse)
async def rotate_chores(current_user: User = Depends(require_parent)):
    """Move every unlocked, assigned chore to the next family member"""
    now = recurrence.utcnow()
    household = household_service.get_household_for(current_user)
    if not household:
        raise HTTPException(status_code=404, detail="Household not found")

    children = auth_service.get_users(household.children)
    members = family_order(household, children)
    if not members:
        raise HTTPException(status_code=400, detail="No family members to rotate chores between")

    chores = redis_service.get_household_chores(household.id, now)
    plan = plan_rotation(chores, members)
    rotated = [chore for chore in chores if chore.id in plan]
    for chore in rotated:
        chore.assigned_to = plan[chore.id]
    if rotated:
        redis_service.save_chores(rotated, now)

    logger.info("Rotated %d chores in household %s", len(rotated), household.id)
    redis_service.publish_update({
        "type": "chores_rotated",
        "household_id": household.id,
        "chore_ids": [chore.id for chore in rotated],
    })
    return RotateResponse(message="Chores rotated successfully", rotated=len(rotated))
