# services/prompt_builder.py
from __future__ import annotations

import math
from typing import List, Optional

from models import PromptMessage, Traveler, TripRequestContext
from services.dates import inclusive_day_span

SYSTEM_PROMPT = """You are a senior travel planner who turns a traveler's destination, budget, companions and interests into a structured, executable itinerary.

Always:
1. Write every human-readable value (titles, summaries, tips, notes) in Simplified Chinese.
2. Estimate costs at typical mainland-China price levels and express them in CNY unless told otherwise.
3. Give each day clear time slots, concrete places and activity descriptions, mixing busy and relaxed moments.
4. When information is missing, make a reasonable assumption and state it in the day notes or budget tips.
"""

MIN_ACTIVITIES_PER_DAY = 3
REQUIRED_BUDGET_CATEGORIES = ("住宿 (lodging)", "餐饮 (dining)", "交通 (transport)", "娱乐/门票 (entertainment/tickets)")


def duration_days(start_date: str, end_date: str) -> int:
    """Inclusive trip length; 1 when either date is unusable."""
    return inclusive_day_span(start_date, end_date) or 1


def _format_budget(budget: Optional[float]) -> str:
    if budget is None or not isinstance(budget, (int, float)) or math.isnan(budget):
        return "not provided"
    return f"{budget:.0f} CNY (may flex slightly)"


def _format_travelers(travelers: Optional[List[Traveler]]) -> str:
    if not travelers:
        return "2 adults, unspecified"
    items = []
    for i, t in enumerate(travelers, 1):
        label = t.name or f"Traveler {i}"
        if t.role:
            label += f" ({t.role})"
        if t.age is not None:
            label += f", age {t.age}"
        items.append(label)
    return "; ".join(items)


def _format_tags(tags: Optional[List[str]]) -> str:
    cleaned = [t.strip() for t in (tags or []) if t and t.strip()]
    if not cleaned:
        return "no tags provided"
    return ", ".join(cleaned)


def _user_prompt(ctx: TripRequestContext) -> str:
    days = duration_days(ctx.start_date, ctx.end_date)

    preferences = []
    if ctx.travel_style:
        preferences.append(f"travel style: {ctx.travel_style}")
    if ctx.notes:
        preferences.append(f"notes: {ctx.notes}")

    blocks = [
        "Generate a trip plan as JSON that strictly matches the provided JSON Schema.",
        "Request:",
        f"- title: {ctx.title}",
        f"- destination: {ctx.destination}",
        f"- dates: {ctx.start_date} to {ctx.end_date} ({days} days)",
        f"- reference budget: {_format_budget(ctx.budget)}",
        f"- travelers: {_format_travelers(ctx.travelers)}",
        f"- tags: {_format_tags(ctx.tags)}",
    ]
    if preferences:
        blocks.append(f"- additional preferences: {'; '.join(preferences)}")
    blocks += [
        "Output rules:",
        "1. Use exactly the field names defined in the schema and no other fields.",
        f"2. Every day has at least {MIN_ACTIVITIES_PER_DAY} activities, each with start/end time (HH:MM, 24h), location, summary and tips.",
        "3. Activity locations must be concrete, navigable places (venue, street or landmark), never just the city name.",
        f"4. The budget breakdown covers at least these categories: {', '.join(REQUIRED_BUDGET_CATEGORIES)}.",
        "5. If a cost cannot be estimated precisely, give a reasonable figure and state the assumption in the tips.",
        "6. Dates use YYYY-MM-DD; overview.totalDays equals the number of days.",
        "7. Output only the JSON object: no Markdown, no code fences, no explanations.",
    ]
    return "\n".join(blocks)


def build_prompt_messages(ctx: TripRequestContext) -> List[PromptMessage]:
    return [
        PromptMessage(role="system", content=SYSTEM_PROMPT),
        PromptMessage(role="user", content=_user_prompt(ctx)),
    ]
