from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, List, Literal, Optional, TypeVar
from pydantic import (
    BaseModel,
    ConfigDict,
    field_validator,
    model_validator,
    conint,
    confloat,
    conlist,
    constr,
)
from pydantic.alias_generators import to_camel

from services.dates import inclusive_day_span

DATE_PATTERN = r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$"
TIME_PATTERN = r"^(?:[01][0-9]|2[0-3]):[0-5][0-9]$"

NonEmptyStr = constr(min_length=1)
DateStr = constr(pattern=DATE_PATTERN)
TimeStr = constr(pattern=TIME_PATTERN)

# -----------------------------
# Request side
# -----------------------------

class Traveler(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)
    name: Optional[str] = None
    role: Optional[str] = None
    age: Optional[conint(ge=0, le=130)] = None

class TripRequestContext(BaseModel):
    """What the caller knows about the trip. Lives for one generation call."""
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    title: str
    destination: str
    # Kept as text: prompt construction must not fail on a bad but present date.
    start_date: str
    end_date: str
    budget: Optional[confloat(ge=0)] = None
    tags: Optional[List[str]] = None
    travelers: Optional[List[Traveler]] = None
    notes: Optional[str] = None
    travel_style: Optional[str] = None

    @field_validator("title", "destination")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

class PromptMessage(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    role: Literal["system", "user", "assistant"]
    content: str

# -----------------------------
# Structured trip plan (provider output contract)
# -----------------------------

class _PlanModel(BaseModel):
    # Closed at every level; camelCase on the wire; numbers accepted for text fields
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        coerce_numbers_to_str=True,
    )

class ActivityBudget(_PlanModel):
    amount: confloat(ge=0)
    currency: NonEmptyStr
    description: Optional[str] = None

class TripActivity(_PlanModel):
    name: NonEmptyStr
    type: NonEmptyStr
    summary: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[TimeStr] = None
    end_time: Optional[TimeStr] = None
    tips: Optional[List[NonEmptyStr]] = None
    budget: Optional[ActivityBudget] = None

class DailyAccommodation(_PlanModel):
    name: NonEmptyStr
    address: Optional[str] = None
    check_in_time: Optional[TimeStr] = None
    check_out_time: Optional[TimeStr] = None
    budget: Optional[ActivityBudget] = None

class DailyPlan(_PlanModel):
    day: conint(ge=1)
    date: DateStr
    title: NonEmptyStr
    summary: NonEmptyStr
    activities: conlist(TripActivity, min_length=1)
    accommodations: Optional[DailyAccommodation] = None
    meals: Optional[List[TripActivity]] = None
    notes: Optional[List[NonEmptyStr]] = None

class TripOverview(_PlanModel):
    title: NonEmptyStr
    destination: NonEmptyStr
    start_date: DateStr
    end_date: DateStr
    total_days: conint(ge=1)
    summary: NonEmptyStr
    travel_style: Optional[str] = None

class BudgetBreakdownItem(_PlanModel):
    category: NonEmptyStr
    amount: confloat(ge=0)
    description: Optional[str] = None
    percentage: Optional[confloat(ge=0, le=100)] = None

class TripBudget(_PlanModel):
    currency: NonEmptyStr
    total: confloat(ge=0)
    breakdown: conlist(BudgetBreakdownItem, min_length=1)
    tips: Optional[List[NonEmptyStr]] = None

class StructuredTripPlan(_PlanModel):
    overview: TripOverview
    days: conlist(DailyPlan, min_length=1)
    budget: TripBudget
    suggestions: Optional[List[NonEmptyStr]] = None

    @model_validator(mode="after")
    def _total_days_consistent(self) -> "StructuredTripPlan":
        allowed = {len(self.days)}
        span = inclusive_day_span(self.overview.start_date, self.overview.end_date)
        if span is not None:
            allowed.add(span)
        if self.overview.total_days not in allowed:
            raise ValueError(
                f"overview.totalDays={self.overview.total_days} matches neither the day count "
                f"({len(self.days)}) nor the date span ({span})"
            )
        return self

# -----------------------------
# Generation results
# -----------------------------

class GenerationUsage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    request_id: Optional[str] = None

T = TypeVar("T")

@dataclass
class GenerationResult(Generic[T]):
    output: T
    raw: Any
    attempts: int
    usage: Optional[GenerationUsage] = None
