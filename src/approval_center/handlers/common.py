from __future__ import annotations

from datetime import date, timedelta
from typing import Literal, Mapping, Protocol, TypeVar

from pydantic import BaseModel

from approval_center.core.approvals.schemas import Requester

EntityT = TypeVar("EntityT")

DayPeriod = Literal["full_day", "am", "pm"]


class EntityRepository(Protocol[EntityT]):
    async def load_many(self, ids: list[str]) -> Mapping[str, EntityT]: ...

    async def save(self, entity: EntityT) -> None: ...


class EmployeeUser(BaseModel):
    id: str
    name: str
    email: str
    image: str | None = None


class EmployeeRef(BaseModel):
    id: str
    user_id: str
    organization_id: str
    team_id: str | None = None
    user: EmployeeUser

    def as_requester(self) -> Requester:
        return Requester(
            id=self.id,
            user_id=self.user_id,
            name=self.user.name,
            email=self.user.email,
            image=self.user.image,
            team_id=self.team_id,
        )


def business_days_with_half_days(
    start: date,
    start_period: DayPeriod,
    end: date,
    end_period: DayPeriod,
    holidays: set[date] | None = None,
) -> float:
    """Weekdays between start and end inclusive; a half-day period counts 0.5."""
    skip = holidays or set()
    total = 0.0
    current = start
    while current <= end:
        if current.weekday() < 5 and current not in skip:
            weight = 1.0
            if current == start and start_period != "full_day":
                weight = 0.5
            elif current == end and end_period != "full_day":
                weight = 0.5
            total += weight
        current += timedelta(days=1)
    return total


def format_day_count(days: float) -> str:
    if days == 1:
        return "1 day"
    text = str(int(days)) if days == int(days) else f"{days:g}"
    return f"{text} days"


def format_date_range(start: date, end: date) -> str:
    if start == end:
        return start.strftime("%b %d, %Y")
    if start.year == end.year:
        return f"{start.strftime('%b %d')} - {end.strftime('%b %d, %Y')}"
    return f"{start.strftime('%b %d, %Y')} - {end.strftime('%b %d, %Y')}"


def format_duration(minutes: int | None) -> str:
    if minutes is None:
        return "In progress"
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"
