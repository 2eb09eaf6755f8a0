from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

WEEKDAYS = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]

class ChoreStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    VERIFIED = "verified"

class ChoreType(str, Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"

class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


def _normalize_days(days: List[str]) -> List[str]:
    normalized = []
    for day in days:
        name = day.strip().lower()
        if name not in WEEKDAYS:
            raise ValueError(f"{day} is not a day of the week")
        if name not in normalized:
            normalized.append(name)
    return normalized


class Recurrence(BaseModel):
    frequency: Frequency
    days_of_week: List[str] = []
    last_completed: Optional[datetime] = None
    reset_at: Optional[datetime] = None  # When a completed occurrence returns to pending

    @field_validator("days_of_week")
    @classmethod
    def lowercase_days(cls, value: List[str]) -> List[str]:
        return _normalize_days(value)

class Chore(BaseModel):
    id: str
    title: str
    description: str = ""
    points: int = Field(ge=0)
    household_id: str
    assigned_to: Optional[str] = None
    created_by: str
    status: ChoreStatus = ChoreStatus.PENDING
    chore_type: ChoreType
    due_date: Optional[datetime] = None
    recurrence: Optional[Recurrence] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None  # User credited with the points
    next_due_date: Optional[datetime] = None
    is_locked: bool = False  # Locked chores keep their assignee during rotation
    created_at: datetime
    updated_at: datetime

class ChoreResponse(Chore):
    is_due: bool = False

class RecurrenceRequest(BaseModel):
    frequency: Frequency
    days_of_week: List[str] = []

    @field_validator("days_of_week")
    @classmethod
    def lowercase_days(cls, value: List[str]) -> List[str]:
        return _normalize_days(value)

    @model_validator(mode="after")
    def require_days_for_weekly(self):
        if self.frequency == Frequency.WEEKLY and not self.days_of_week:
            raise ValueError("Weekly chores must have at least one day selected")
        return self

class ChoreRequest(BaseModel):
    """Body of create and update; both carry the full chore definition."""
    title: str
    description: Optional[str] = ""
    points: int = Field(ge=0)
    chore_type: ChoreType
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    recurrence: Optional[RecurrenceRequest] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @model_validator(mode="after")
    def check_type_fields(self):
        if self.chore_type == ChoreType.ONE_TIME and self.due_date is None:
            raise ValueError("Due date is required for one-time chores")
        if self.chore_type == ChoreType.RECURRING and self.recurrence is None:
            raise ValueError("Recurrence is required for recurring chores")
        return self

class AssignRequest(BaseModel):
    assigned_to: Optional[str] = None

class LockRequest(BaseModel):
    is_locked: bool

class RotateResponse(BaseModel):
    message: str
    rotated: int
