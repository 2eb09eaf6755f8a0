from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

from chorechamp.models.user import UserResponse

class ParentRole(str, Enum):
    OWNER = "owner"
    CO_PARENT = "co-parent"

class MembershipStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"

class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"

class HouseholdParent(BaseModel):
    user_id: str
    role: ParentRole = ParentRole.CO_PARENT
    status: MembershipStatus = MembershipStatus.ACTIVE

class Invite(BaseModel):
    email: EmailStr
    token: str
    role: ParentRole = ParentRole.CO_PARENT
    status: InviteStatus = InviteStatus.PENDING
    expires_at: datetime
    invited_by: Optional[str] = None

    def is_open(self, now: datetime) -> bool:
        return self.status == InviteStatus.PENDING and now < self.expires_at

class Household(BaseModel):
    id: str
    name: str
    created_by: str
    parents: List[HouseholdParent] = []
    children: List[str] = []
    invites: List[Invite] = []
    created_at: datetime

    def find_parent(self, user_id: str) -> Optional[HouseholdParent]:
        for parent in self.parents:
            if parent.user_id == user_id:
                return parent
        return None

    def is_active_parent(self, user_id: str) -> bool:
        parent = self.find_parent(user_id)
        return parent is not None and parent.status == MembershipStatus.ACTIVE

    def has_member(self, user_id: str) -> bool:
        return self.find_parent(user_id) is not None or user_id in self.children

class InviteSummary(BaseModel):
    """Invite as shown to members; the token is never echoed back."""
    email: EmailStr
    role: ParentRole
    status: InviteStatus
    expires_at: datetime
    invited_by: Optional[str] = None

class HouseholdResponse(BaseModel):
    id: str
    name: str
    created_by: str
    parents: List[HouseholdParent] = []
    children: List[str] = []
    invites: List[InviteSummary] = []
    members: List[UserResponse] = []
    created_at: datetime

class HouseholdNameRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Household name is required")
        return value

class InviteRequest(BaseModel):
    email: EmailStr

class InviteResponse(BaseModel):
    message: str
    expires_at: datetime
    invite_url: Optional[str] = None  # Only returned when the invitation email could not be sent

class AddChildrenRequest(BaseModel):
    children_ids: List[str] = Field(min_length=1)
