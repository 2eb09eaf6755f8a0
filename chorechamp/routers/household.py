import logging
from fastapi import APIRouter, HTTPException, Depends, status
from typing import List, Optional
from chorechamp.models.household import (
    AddChildrenRequest,
    Household,
    HouseholdNameRequest,
    HouseholdResponse,
    InviteRequest,
    InviteResponse,
    InviteStatus,
    InviteSummary,
    ParentRole,
)
from chorechamp.models.user import User, UserResponse
from chorechamp.dependencies.auth import get_current_user, require_parent
from chorechamp.services.auth_service import auth_service
from chorechamp.services.email_service import EmailDeliveryError, email_service
from chorechamp.services.household_service import (
    HouseholdConflictError,
    InviteEmailMismatchError,
    InviteNotFoundError,
    household_service,
)
from chorechamp.services.recurrence import utcnow
from chorechamp.services.redis_service import redis_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/household", tags=["household"])


def to_response(household: Household) -> HouseholdResponse:
    members = household_service.family_members(household)
    return HouseholdResponse(
        id=household.id,
        name=household.name,
        created_by=household.created_by,
        parents=household.parents,
        children=household.children,
        invites=[InviteSummary(**invite.model_dump(exclude={"token"})) for invite in household.invites],
        members=[auth_service.user_to_response(member) for member in members],
        created_at=household.created_at,
    )


def publish_household(household: Household) -> None:
    redis_service.publish_update({
        "type": "household_updated",
        "household_id": household.id,
    })


def _my_household(current_user: User) -> Household:
    household = household_service.get_household_for(current_user)
    if not household:
        raise HTTPException(status_code=404, detail="Household not found")
    return household


def _conflict(error: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


@router.post("", response_model=HouseholdResponse, status_code=status.HTTP_201_CREATED)
async def create_household(request: HouseholdNameRequest, current_user: User = Depends(require_parent)):
    """Create a household owned by the caller"""
    try:
        household = household_service.create_household(current_user, request.name, utcnow())
    except HouseholdConflictError as e:
        raise _conflict(e)
    return to_response(household)

@router.get("", response_model=HouseholdResponse)
async def get_household(household_id: Optional[str] = None, current_user: User = Depends(get_current_user)):
    """Get the caller's household"""
    household = household_service.get_household_for(current_user)
    if not household or (household_id and household.id != household_id):
        raise HTTPException(status_code=404, detail="Household not found")
    return to_response(household)

@router.put("", response_model=HouseholdResponse)
async def rename_household(request: HouseholdNameRequest, current_user: User = Depends(require_parent)):
    household = _my_household(current_user)
    if not household.is_active_parent(current_user.id):
        raise HTTPException(status_code=403, detail="Only household parents can update household details")

    household = household_service.rename(household, request.name)
    publish_household(household)
    return to_response(household)

@router.get("/available-children", response_model=List[UserResponse])
async def available_children(current_user: User = Depends(require_parent)):
    """The caller's children that are not in any household yet"""
    children = auth_service.get_children_of(current_user.id)
    return [auth_service.user_to_response(child) for child in children if not child.household_id]

@router.post("/invite", response_model=InviteResponse)
async def invite_parent(request: InviteRequest, current_user: User = Depends(require_parent)):
    """Invite a co-parent by email"""
    household = _my_household(current_user)
    if not household.is_active_parent(current_user.id):
        raise HTTPException(status_code=403, detail="Only household parents can send invitations")

    try:
        invite = household_service.create_invite(household, request.email, current_user, utcnow())
    except HouseholdConflictError as e:
        raise _conflict(e)
    logger.info("Invitation to household %s created for %s", household.id, invite.email)

    try:
        email_service.send_household_invitation(invite.email, invite.token, current_user.display_name)
    except EmailDeliveryError:
        logger.warning("Invitation email to %s failed", invite.email, exc_info=True)
        return InviteResponse(
            message="Invitation created but email failed to send",
            expires_at=invite.expires_at,
            invite_url=email_service.invite_url(invite.token),
        )

    return InviteResponse(message="Invitation sent successfully", expires_at=invite.expires_at)

@router.post("/join/{token}", response_model=HouseholdResponse)
async def join_household(token: str, current_user: User = Depends(require_parent)):
    """Accept an invitation and become a co-parent"""
    now = utcnow()
    household = household_service.find_by_invite_token(token)
    if not household:
        raise HTTPException(status_code=404, detail="Invalid or expired invitation")

    invite = next(i for i in household.invites if i.token == token)
    if invite.status == InviteStatus.PENDING and not invite.is_open(now):
        household_service.expire_invite(household, token, now)

    try:
        household = household_service.join(household.id, token, current_user, now)
    except InviteNotFoundError:
        raise HTTPException(status_code=404, detail="Invalid or expired invitation")
    except InviteEmailMismatchError:
        raise HTTPException(status_code=403, detail="This invitation was sent to a different email address")
    except HouseholdConflictError as e:
        raise _conflict(e)

    publish_household(household)
    return to_response(household)

@router.post("/add-children", response_model=HouseholdResponse)
async def add_children(request: AddChildrenRequest, current_user: User = Depends(require_parent)):
    """Move children into the caller's household"""
    household = _my_household(current_user)
    try:
        household = household_service.add_children(household.id, request.children_ids)
    except HouseholdConflictError as e:
        raise _conflict(e)

    publish_household(household)
    return to_response(household)

@router.delete("/children/{child_id}", response_model=HouseholdResponse)
async def remove_child(child_id: str, current_user: User = Depends(require_parent)):
    household = _my_household(current_user)
    if child_id not in household.children:
        raise HTTPException(status_code=404, detail="Child not found in household")

    household = household_service.remove_child(household, child_id)
    publish_household(household)
    return to_response(household)

@router.delete("/parents/{user_id}", response_model=HouseholdResponse)
async def remove_parent(user_id: str, current_user: User = Depends(require_parent)):
    """Remove a co-parent (owner only)"""
    household = _my_household(current_user)

    requester = household.find_parent(current_user.id)
    if not requester or requester.role != ParentRole.OWNER:
        raise HTTPException(status_code=403, detail="Only the household owner can remove parents")

    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Household owner cannot be removed")

    if not household.find_parent(user_id):
        raise HTTPException(status_code=404, detail="Parent not found in household")

    household = household_service.remove_parent(household, user_id)
    publish_household(household)
    return to_response(household)
