import logging
from fastapi import APIRouter, HTTPException, status, Depends
from chorechamp.models.user import (
    ChildRegistrationRequest,
    ChildUpdateRequest,
    ParentRegistrationRequest,
    ProfileUpdateRequest,
    TokenResponse,
    User,
    UserLoginRequest,
    UserResponse,
    UserRole,
)
from chorechamp.dependencies.auth import get_current_user, require_parent
from chorechamp.services.auth_service import DuplicateUserError, UserNotFoundError, auth_service
from chorechamp.services.email_service import EmailDeliveryError, email_service
from chorechamp.services.household_service import household_service
from chorechamp.services.redis_service import redis_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _duplicate(error: DuplicateUserError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"{error.field} already exists"
    )


def _owned_child(child_id: str, parent: User) -> User:
    child = auth_service.get_user_by_id(child_id)
    if not child or child.role != UserRole.CHILD or child.parent_id != parent.id:
        raise HTTPException(status_code=404, detail="Child not found")
    return child


@router.post("/register/parent", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register_parent(request: ParentRegistrationRequest):
    """Register a parent account"""
    try:
        user = auth_service.create_user(
            username=request.username,
            password=request.password,
            role=UserRole.PARENT,
            email=request.email,
            first_name=request.first_name,
            phone=request.phone,
        )
    except DuplicateUserError as e:
        raise _duplicate(e)

    return TokenResponse(
        access_token=auth_service.create_access_token(user.id),
        token_type="bearer",
        user=auth_service.user_to_response(user)
    )

@router.post("/register/child", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_child(request: ChildRegistrationRequest, current_user: User = Depends(require_parent)):
    """Create a child account owned by the calling parent"""
    try:
        child = auth_service.create_user(
            username=request.username,
            password=request.password,
            role=UserRole.CHILD,
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            phone=request.phone,
            parent_id=current_user.id,
            chore_rotation_order=request.chore_rotation_order,
        )
    except DuplicateUserError as e:
        raise _duplicate(e)

    if child.email:
        try:
            email_service.send_welcome(child.email, child.display_name)
        except EmailDeliveryError:
            logger.warning("Welcome email to %s failed", child.username, exc_info=True)

    return auth_service.user_to_response(child)

@router.post("/login", response_model=TokenResponse)
async def login(request: UserLoginRequest):
    """Login user"""
    user = auth_service.get_user_by_username(request.username)

    if not user or not auth_service.verify_password(request.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive user"
        )

    return TokenResponse(
        access_token=auth_service.create_access_token(user.id),
        token_type="bearer",
        user=auth_service.user_to_response(user)
    )

@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return auth_service.user_to_response(current_user)

@router.put("/profile", response_model=UserResponse)
async def update_profile(request: ProfileUpdateRequest, current_user: User = Depends(get_current_user)):
    """Update the caller's username, email, phone or password"""
    previous = current_user.model_copy()
    user = current_user.model_copy()

    if request.new_password:
        if not request.current_password:
            raise HTTPException(status_code=400, detail="Current password is required to change password")
        if not auth_service.verify_password(request.current_password, user.hashed_password):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
        user.hashed_password = auth_service.hash_password(request.new_password)

    if request.username and request.username.strip():
        user.username = request.username.strip()
    if request.email:
        user.email = request.email
    if request.phone:
        user.phone = request.phone

    try:
        user = auth_service.update_identity(user, previous)
    except DuplicateUserError as e:
        raise HTTPException(status_code=400, detail=f"This {e.field.lower()} is already in use")
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")

    return auth_service.user_to_response(user)

@router.patch("/child/{child_id}", response_model=UserResponse)
async def update_child(child_id: str, request: ChildUpdateRequest, current_user: User = Depends(require_parent)):
    """Edit a child account (parent who created it only)"""
    child = _owned_child(child_id, current_user)
    previous = child.model_copy()

    if request.username and request.username.strip():
        child.username = request.username.strip()
    if request.first_name is not None:
        child.first_name = request.first_name
    if request.last_name is not None:
        child.last_name = request.last_name
    if "email" in request.model_fields_set:
        child.email = request.email
    if "phone" in request.model_fields_set:
        child.phone = request.phone
    if request.chore_rotation_order is not None:
        child.chore_rotation_order = request.chore_rotation_order
    if request.password:
        child.hashed_password = auth_service.hash_password(request.password)

    try:
        child = auth_service.update_identity(child, previous)
    except DuplicateUserError as e:
        raise HTTPException(status_code=400, detail=f"This {e.field.lower()} is already in use")
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="Child not found")

    return auth_service.user_to_response(child)

@router.delete("/children/{child_id}")
async def delete_child(child_id: str, current_user: User = Depends(require_parent)):
    """Delete a child account, leaving its household and chores"""
    child = _owned_child(child_id, current_user)

    if child.household_id:
        household = household_service.get_household(child.household_id)
        if household and child.id in household.children:
            household_service.remove_child(household, child.id)
    unassigned = redis_service.unassign_user_chores(child.id)
    auth_service.delete_user(child)
    logger.info("Deleted child %s (%d chores unassigned)", child.username, unassigned)

    return {"message": "Child deleted successfully"}
