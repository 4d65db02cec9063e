from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from .errors import InvalidFieldError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def field_values(fields) -> dict:
    """Plain dict from a request body model or a mapping."""
    if hasattr(fields, "model_dump"):
        return fields.model_dump(exclude_unset=True)
    return dict(fields)


class ParsedEnum(str, Enum):
    @classmethod
    def parse(cls, value):
        """Convert a stored or submitted string into a member, rejecting unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise InvalidFieldError(
                f"Unknown {cls.__name__} value {value!r}; expected one of: {allowed}"
            ) from None


class UserRole(ParsedEnum):
    admin = "admin"
    member = "member"


class TaskStatus(ParsedEnum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    approved = "approved"


class ClaimStatus(ParsedEnum):
    pending = "pending"
    approved = "approved"
    denied = "denied"


class NotificationType(ParsedEnum):
    task_assigned = "task_assigned"
    task_completed = "task_completed"
    task_approved = "task_approved"
    reward_claimed = "reward_claimed"
    general = "general"


class PointTransactionType(ParsedEnum):
    earn = "earn"
    spend = "spend"


class Family(SQLModel, table=True):
    # The id is also the code other members use to join.
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    admin_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class User(SQLModel, table=True):
    __table_args__ = (CheckConstraint("points >= 0", name="ck_user_points_non_negative"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    hashed_password: str
    family_id: Optional[str] = Field(default=None, foreign_key="family.id", index=True)
    role: UserRole = Field(default=UserRole.member)
    points: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class Task(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    family_id: str = Field(foreign_key="family.id", index=True)
    title: str
    description: Optional[str] = None
    points: int
    assigned_to: str = Field(foreign_key="user.id", index=True)
    created_by: str = Field(foreign_key="user.id")
    status: TaskStatus = Field(default=TaskStatus.pending, index=True)
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Reward(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    family_id: str = Field(foreign_key="family.id", index=True)
    title: str
    description: Optional[str] = None
    points_required: int
    created_by: str = Field(foreign_key="user.id")
    is_active: bool = Field(default=True)
    requires_approval: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class RewardClaim(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    reward_id: str = Field(foreign_key="reward.id", index=True)
    status: ClaimStatus = Field(default=ClaimStatus.pending, index=True)
    claimed_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


class Notification(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    title: str
    message: str
    type: NotificationType = Field(default=NotificationType.general)
    is_read: bool = Field(default=False)
    related_task_id: Optional[str] = None
    related_reward_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PointTransaction(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    amount: int
    transaction_type: PointTransactionType
    description: Optional[str] = None
    related_task_id: Optional[str] = None
    related_claim_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# Request bodies


class TaskCreate(SQLModel):
    title: str
    description: Optional[str] = None
    points: int
    assigned_to: str
    due_date: Optional[date] = None


class TaskStatusUpdate(SQLModel):
    status: str


class RewardCreate(SQLModel):
    title: str
    description: Optional[str] = None
    points_required: int
    requires_approval: bool = False


class RewardUpdate(SQLModel):
    title: Optional[str] = None
    description: Optional[str] = None
    points_required: Optional[int] = None
    requires_approval: Optional[bool] = None


class ClaimResolution(SQLModel):
    decision: str


class RegisterRequest(SQLModel):
    email: str
    password: str
    full_name: str


class LoginRequest(SQLModel):
    email: str
    password: str


class FamilyCreate(SQLModel):
    name: str


class FamilyJoin(SQLModel):
    family_id: str


# Responses


class UserOut(SQLModel):
    id: str
    email: str
    full_name: str
    family_id: Optional[str]
    role: UserRole
    points: int


__all__ = [
    "ClaimResolution",
    "ClaimStatus",
    "Family",
    "FamilyCreate",
    "FamilyJoin",
    "LoginRequest",
    "Notification",
    "NotificationType",
    "PointTransaction",
    "PointTransactionType",
    "RegisterRequest",
    "Reward",
    "RewardClaim",
    "RewardCreate",
    "RewardUpdate",
    "Task",
    "TaskCreate",
    "TaskStatus",
    "TaskStatusUpdate",
    "User",
    "UserOut",
    "UserRole",
]
