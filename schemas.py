"""
Database Schemas for FitTrack

Each Pydantic model in the first half represents a MongoDB collection. The
collection name is the lowercase of the class name. The second half holds
the request payloads accepted by the API.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# Types
Role = Literal['member', 'admin', 'trainer']
MembershipStatus = Literal['active', 'expired', 'frozen']
SessionStatus = Literal['scheduled', 'completed', 'cancelled']
BookingStatus = Literal['confirmed', 'cancelled', 'completed']
PaymentType = Literal['membership', 'session', 'plan']
PaymentStatus = Literal['pending', 'completed', 'failed', 'refunded']
Difficulty = Literal['Beginner', 'Intermediate', 'Advanced']
Category = Literal['strength', 'cardio', 'flexibility', 'mixed']


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC, the way the driver hands them back."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Exercise(BaseModel):
    name: str
    sets: int = Field(..., ge=1)
    reps: int = Field(..., ge=1)
    weight: float = Field(..., ge=0)
    notes: Optional[str] = None


class PlanExercise(BaseModel):
    name: str
    sets: int = Field(..., ge=1)
    reps: int = Field(..., ge=1)
    weight: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


def total_volume(exercises: List[Exercise]) -> float:
    return sum(ex.sets * ex.reps * ex.weight for ex in exercises)


# ---------- Collections ----------

class Users(BaseModel):
    name: str
    email: str
    password_hash: str
    role: Role = 'member'
    phone: Optional[str] = None


class Memberships(BaseModel):
    member_id: str
    plan_type: str
    status: MembershipStatus = 'active'
    start_date: datetime
    end_date: datetime
    price: float = Field(0, ge=0)

    @field_validator('start_date', 'end_date')
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)


class Sessions(BaseModel):
    trainer_id: str
    type: str
    date: datetime
    time: str
    duration: int = Field(..., ge=0)
    max_spots: int = Field(..., ge=1)
    booked_spots: int = Field(0, ge=0)
    status: SessionStatus = 'scheduled'
    booking_ids: List[str] = Field(default_factory=list)

    @field_validator('date')
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)


class Bookings(BaseModel):
    member_id: str
    session_id: str
    status: BookingStatus = 'confirmed'
    active_key: str


class Workouts(BaseModel):
    member_id: str
    date: datetime = Field(default_factory=datetime.utcnow)
    exercises: List[Exercise] = Field(..., min_length=1)
    duration: int = Field(..., ge=0)
    total_volume: float = 0
    calories_burned: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None

    @field_validator('date')
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)

    @model_validator(mode='after')
    def recompute_volume(self):
        # total_volume is derived; whatever the caller sent is replaced
        self.total_volume = total_volume(self.exercises)
        return self


class Progress(BaseModel):
    member_id: str
    date: datetime = Field(default_factory=datetime.utcnow)
    weight: Optional[float] = Field(None, ge=0)
    body_fat: Optional[float] = Field(None, ge=0, le=100)
    muscle: Optional[float] = Field(None, ge=0)
    chest: Optional[float] = Field(None, ge=0)
    waist: Optional[float] = Field(None, ge=0)
    arms: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None

    @field_validator('date')
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)


class CheckIns(BaseModel):
    member_id: str
    location: str
    check_in_time: datetime
    day: str  # ISO calendar date of check_in_time, part of the unique key


class Staff(BaseModel):
    user_id: str
    role: str
    specializations: List[str] = Field(default_factory=list)
    rating: float = Field(0, ge=0, le=5)
    active_clients: int = Field(0, ge=0)
    join_date: datetime = Field(default_factory=datetime.utcnow)
    availability: Dict[str, str] = Field(default_factory=dict)


class WorkoutPlans(BaseModel):
    name: str
    description: str
    duration: str
    difficulty: Difficulty
    category: Category
    exercises: List[PlanExercise] = Field(..., min_length=1)
    created_by: str
    assigned_to: List[str] = Field(default_factory=list)


class Payments(BaseModel):
    member_id: str
    amount: float = Field(..., ge=0)
    type: PaymentType
    status: PaymentStatus = 'pending'
    payment_date: datetime = Field(default_factory=datetime.utcnow)
    membership_id: Optional[str] = None

    @field_validator('payment_date')
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)


# ---------- Request payloads ----------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    role: Optional[Role] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class MemberCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: Optional[str] = Field(None, min_length=6)
    phone: Optional[str] = None
    plan_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    price: Optional[float] = Field(None, ge=0)


class MemberUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class SessionCreate(BaseModel):
    type: str
    date: datetime
    time: str
    duration: int = Field(..., ge=0)
    max_spots: int = Field(..., ge=1)
    status: Optional[SessionStatus] = None


class SessionUpdate(BaseModel):
    type: Optional[str] = None
    date: Optional[datetime] = None
    time: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)
    max_spots: Optional[int] = Field(None, ge=1)
    status: Optional[SessionStatus] = None


class BookRequest(BaseModel):
    session_id: str


class WorkoutCreate(BaseModel):
    date: Optional[datetime] = None
    exercises: List[Exercise] = Field(..., min_length=1)
    duration: int = Field(..., ge=0)
    calories_burned: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class WorkoutUpdate(BaseModel):
    date: Optional[datetime] = None
    exercises: Optional[List[Exercise]] = Field(None, min_length=1)
    duration: Optional[int] = Field(None, ge=0)
    calories_burned: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class ProgressCreate(BaseModel):
    date: Optional[datetime] = None
    weight: Optional[float] = Field(None, ge=0)
    body_fat: Optional[float] = Field(None, ge=0, le=100)
    muscle: Optional[float] = Field(None, ge=0)
    chest: Optional[float] = Field(None, ge=0)
    waist: Optional[float] = Field(None, ge=0)
    arms: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class CheckInCreate(BaseModel):
    location: Optional[str] = None


class StaffCreate(BaseModel):
    user_id: str
    role: str
    specializations: List[str] = Field(default_factory=list)
    availability: Dict[str, str] = Field(default_factory=dict)


class PlanCreate(BaseModel):
    name: str
    description: str
    duration: str
    difficulty: Difficulty
    category: Category
    exercises: List[PlanExercise] = Field(..., min_length=1)


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    category: Optional[Category] = None
    exercises: Optional[List[PlanExercise]] = None


class AssignRequest(BaseModel):
    member_id: str


class PaymentCreate(BaseModel):
    member_id: str
    amount: float = Field(..., ge=0)
    type: PaymentType
    status: PaymentStatus = 'completed'
    payment_date: Optional[datetime] = None
    membership_id: Optional[str] = None
