from fastapi import APIRouter, HTTPException, Depends
from typing import List
from chorechamp.models.user import User, UserResponse, UserRole
from chorechamp.dependencies.auth import get_current_user, require_parent
from chorechamp.services.auth_service import auth_service

router = APIRouter(prefix="/users", tags=["users"])

@router.get("/children", response_model=List[UserResponse])
async def get_children(current_user: User = Depends(require_parent)):
    """Children created by the calling parent"""
    return [auth_service.user_to_response(child) for child in auth_service.get_children_of(current_user.id)]

@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, current_user: User = Depends(get_current_user)):
    """Get yourself, or one of your children"""
    user = auth_service.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if user.id == current_user.id:
        return auth_service.user_to_response(user)

    if not current_user.is_parent:
        raise HTTPException(status_code=403, detail="Not authorized to view this user")

    if user.role != UserRole.CHILD or user.parent_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized to view this child")

    return auth_service.user_to_response(user)
