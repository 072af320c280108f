from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

from sqlmodel import Field, SQLModel


class Weekday(IntEnum):
    # Values match date.weekday()
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class HabitType(str, Enum):
    daily = "daily"
    long_term = "long-term"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"

    @property
    def weekday(self) -> Optional[Weekday]:
        """Target weekday for the per-weekday frequencies, None otherwise."""
        if self in (Frequency.daily, Frequency.weekly):
            return None
        return Weekday[self.name.upper()]


class Habit(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    type: HabitType = HabitType.daily
    frequency: Frequency = Frequency.daily
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class HabitCompletion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    habit_id: int = Field(foreign_key="habit.id", index=True)
    completed_date: datetime = Field(default_factory=datetime.now)
    created_at: datetime = Field(default_factory=datetime.now)


class Progress(SQLModel):
    """Derived statistics for one habit. Never persisted."""

    current_streak: int = 0
    longest_streak: int = 0
    last_completed_date: Optional[datetime] = None
    total_completions: int = 0
    completion_rate: float = 0.0
