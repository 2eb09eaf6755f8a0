import re
from pydantic import AfterValidator, BaseModel, BeforeValidator, EmailStr, Field, field_validator
from typing import Annotated, List, Optional
from datetime import datetime
from enum import Enum

PHONE_PATTERN = re.compile(r"^\+?1?\d{9,15}$")


def _validate_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not PHONE_PATTERN.match(value):
        raise ValueError(f"{value} is not a valid phone number")
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Empty strings from forms are treated as "not provided"
PhoneNumber = Annotated[Optional[str], BeforeValidator(_blank_to_none), AfterValidator(_validate_phone)]
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]


class UserRole(str, Enum):
    PARENT = "parent"
    CHILD = "child"

class User(BaseModel):
    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    hashed_password: str
    role: UserRole
    parent_id: Optional[str] = None  # Parent who created the account (children only)
    household_id: Optional[str] = None
    points: int = Field(default=0, ge=0)
    chore_rotation_order: int = 0
    is_active: bool = True
    created_at: datetime

    @property
    def is_parent(self) -> bool:
        return self.role == UserRole.PARENT

    @property
    def display_name(self) -> str:
        return self.first_name or self.username

class UserResponse(BaseModel):
    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: UserRole
    parent_id: Optional[str] = None
    household_id: Optional[str] = None
    points: int = 0
    chore_rotation_order: int = 0
    is_active: bool
    created_at: datetime

class ParentRegistrationRequest(BaseModel):
    username: str
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: Optional[str] = None
    phone: PhoneNumber = None

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Username is required")
        return value

class ChildRegistrationRequest(BaseModel):
    username: str
    first_name: str
    password: str = Field(min_length=6)
    last_name: Optional[str] = None
    email: OptionalEmail = None
    phone: PhoneNumber = None
    chore_rotation_order: int = 0

    @field_validator("username", "first_name")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Field is required")
        return value

class ChildUpdateRequest(BaseModel):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: OptionalEmail = None
    phone: PhoneNumber = None
    password: Optional[str] = Field(default=None, min_length=6)
    chore_rotation_order: Optional[int] = None

class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = None
    email: OptionalEmail = None
    phone: PhoneNumber = None
    current_password: Optional[str] = None
    new_password: Optional[str] = Field(default=None, min_length=6)

class UserLoginRequest(BaseModel):
    username: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse
