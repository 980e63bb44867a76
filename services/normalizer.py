# services/normalizer.py
"""
Best-effort repair of trip-plan JSON returned by the model.

The input is treated as an untyped dict tree. Alternate key names, stringified
numbers, loose date/time formats and flat budget maps are coerced into the
shape of models.StructuredTripPlan. Placeholder content (days, activities,
overview text, budget) is only synthesized when fallbacks are enabled;
otherwise gaps are left for the schema validator to report.

Normalization never raises and is idempotent.
"""
from __future__ import annotations

import copy
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import TripRequestContext
from services.dates import inclusive_day_span, shift_date, today_iso

log = logging.getLogger("normalize")

Record = Dict[str, Any]

DEFAULT_CURRENCY = "CNY"

_MISSING = object()

BUDGET_CATEGORY_ALIASES = {
    "accommodation": "住宿",
    "lodging": "住宿",
    "hotel": "住宿",
    "stay": "住宿",
    "dining": "餐饮",
    "food": "餐饮",
    "meals": "餐饮",
    "restaurant": "餐饮",
    "transportation": "交通",
    "transport": "交通",
    "commute": "交通",
    "transit": "交通",
    "entertainment": "娱乐/门票",
    "tickets": "娱乐/门票",
    "attractions": "娱乐/门票",
    "activities": "娱乐/门票",
    "misc": "其他",
    "miscellaneous": "其他",
    "contingency": "备用",
    "shopping": "购物",
}
CANONICAL_CATEGORIES = frozenset(BUDGET_CATEGORY_ALIASES.values())

FALLBACK_BREAKDOWN_RATIOS = (
    ("住宿", 0.40),
    ("餐饮", 0.25),
    ("交通", 0.20),
    ("娱乐/门票", 0.15),
)

DAY_LIST_KEYS = ("dailyItinerary", "daily_itinerary", "itinerary", "dailyPlans", "daily_plans", "plan")
ACTIVITY_LIST_KEYS = ("items", "schedule", "plan", "events", "activityList", "dailyActivities")
MEAL_LIST_KEYS = ("food", "dining")
DAY_TITLE_KEYS = ("title", "name", "headline", "theme", "label", "titleText", "dayTitle")
DAY_SUMMARY_KEYS = ("summary", "description", "overview", "notes", "highlight", "focus")

START_DATE_KEYS = ("startDate", "start_date", "start", "from", "tripStart")
END_DATE_KEYS = ("endDate", "end_date", "end", "to", "tripEnd")
DATE_RANGE_KEYS = ("dateRange", "dates", "durationRange")

BUDGET_TOTAL_KEYS = (
    "total", "totalAmount", "total_amount", "totalEstimated", "total_estimated",
    "totalBudget", "total_cost", "totalCNY", "totalValue",
)
BUDGET_CURRENCY_KEYS = ("currency", "currencyCode", "currencySymbol", "unit", "money")
PLAN_CURRENCY_KEYS = ("currency", "currencyCode", "currencySymbol", "budgetCurrency")
PLAN_TOTAL_KEYS = ("totalEstimatedCostCNY", "budgetCNY", "totalBudget", "budgetAmount")
# Keys of a loose budget record that are never spending categories
BUDGET_META_KEYS = frozenset(
    BUDGET_TOTAL_KEYS + BUDGET_CURRENCY_KEYS
    + ("amount", "note", "notes", "tip", "tips", "remark", "breakdown", "flexible", "description")
)

_NUMBER_RE = re.compile(r"-?[0-9]+(?:\.[0-9]+)?")
_INT_PREFIX_RE = re.compile(r"\s*([+-]?[0-9]+)")
_DATE_RE = re.compile(r"^([0-9]{4})-([0-9]{1,2})-([0-9]{1,2})$")
_TIME_RE = re.compile(r"([0-9]{1,2})(?::([0-9]{1,2}))?")
_TIME_RANGE_SPLIT_RE = re.compile(r"[-~～至到]")
_LIST_SPLIT_RE = re.compile(r"[\n,;；、]+")

# ---------- scalar coercion ----------

def _coalesce(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None

def _get(rec: Record, *keys: str) -> Any:
    """First non-null value among keys (alias lookup)."""
    return _coalesce(*(rec.get(k) for k in keys))

def _norm_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        s = value.strip()
        return s or None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return str(int(value)) if value.is_integer() else repr(value)
    return None

def _first_str(rec: Record, keys: Iterable[str]) -> Optional[str]:
    for k in keys:
        s = _norm_str(rec.get(k))
        if s:
            return s
    return None

def _coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        m = _NUMBER_RE.search(value.replace(",", ""))
        if not m:
            return None
        text = m.group(0)
        return float(text) if "." in text else int(text)
    return None

def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        m = _INT_PREFIX_RE.match(value)
        return int(m.group(1)) if m else None
    return None

def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)

def _norm_date(value: Any) -> Optional[str]:
    """'2025/6/1', '2025.06.01' and '2025-6-1' all become '2025-06-01'."""
    if not isinstance(value, str) or not value.strip():
        return None
    m = _DATE_RE.match(re.sub(r"[/.]", "-", value.strip()))
    if not m:
        return None
    y, mo, d = (int(g) for g in m.groups())
    return f"{y:04d}-{mo:02d}-{d:02d}"

def _norm_time(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    m = _TIME_RE.search(value.strip())
    if not m:
        return None
    hour = int(_clamp(int(m.group(1)), 0, 23))
    minute = int(_clamp(int(m.group(2)), 0, 59)) if m.group(2) else 0
    return f"{hour:02d}:{minute:02d}"

def _norm_string_list(value: Any) -> Any:
    """List of non-empty strings; None stays None; anything else is _MISSING (leave as is)."""
    if value is None:
        return None
    if isinstance(value, list):
        return [s for s in (_norm_str(item) for item in value) if s]
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return []
        parts = [p.strip() for p in _LIST_SPLIT_RE.split(s) if p.strip()]
        return parts or [s]
    return _MISSING

def _set_string_list(rec: Record, key: str) -> None:
    value = _norm_string_list(rec.get(key, _MISSING))
    if value is not _MISSING:
        rec[key] = value

def _set_or_drop(rec: Record, key: str, value: Any) -> None:
    if value:
        rec[key] = value
    else:
        rec.pop(key, None)

def _find_first_list(values: Iterable[Any]) -> Optional[list]:
    for v in values:
        if isinstance(v, list) and v:
            return v
    return None

def _ctx(ctx: Optional[TripRequestContext], attr: str) -> Any:
    return getattr(ctx, attr, None) if ctx is not None else None

# ---------- plan-level lookups ----------

def _plan_date(plan: Record, which: str) -> Optional[str]:
    for key in (START_DATE_KEYS if which == "start" else END_DATE_KEYS):
        if isinstance(plan.get(key), str):
            return plan[key]
    for key in DATE_RANGE_KEYS:
        rng = plan.get(key)
        if isinstance(rng, dict) and isinstance(rng.get(which), str):
            return rng[which]
    return None

def _overview_start(overview: Optional[Record]) -> Optional[str]:
    if not overview:
        return None
    for key in ("startDate", "start_date"):
        if isinstance(overview.get(key), str):
            return overview[key]
    return None

def _plan_currency(plan: Optional[Record]) -> Optional[str]:
    if not plan:
        return None
    return _first_str(plan, PLAN_CURRENCY_KEYS)

def _currency_hint(plan: Record) -> Optional[str]:
    budget = plan.get("budget")
    if isinstance(budget, dict):
        cur = _first_str(budget, BUDGET_CURRENCY_KEYS)
        if cur:
            return cur
    return _plan_currency(plan)

def _has_day_records(value: Any) -> bool:
    return isinstance(value, list) and any(isinstance(v, dict) for v in value)

def _resolve_day_source(plan: Record) -> Any:
    days = plan.get("days")
    candidates = [days] + [plan.get(k) for k in DAY_LIST_KEYS]
    for value in candidates:
        if _has_day_records(value):
            return value
    if isinstance(days, list) and days:
        return days
    alt = _find_first_list(plan.get(k) for k in DAY_LIST_KEYS)
    return alt if alt is not None else days

def _prepare_day_entries(value: Any) -> Any:
    if not isinstance(value, list):
        return value
    prepared = []
    for entry in value:
        if not isinstance(entry, dict):
            prepared.append(entry)
            continue
        day = dict(entry)
        if not isinstance(day.get("activities"), list):
            source = _find_first_list(day.get(k) for k in ACTIVITY_LIST_KEYS)
            if source is not None:
                day["activities"] = source
        if not isinstance(day.get("meals"), list):
            source = _find_first_list(day.get(k) for k in MEAL_LIST_KEYS)
            if source is not None:
                day["meals"] = source
        prepared.append(day)
    return prepared

def _derive_overview_summary(candidate: Record) -> Optional[str]:
    destination = _norm_str(candidate.get("destination"))
    start = _norm_str(candidate.get("startDate"))
    end = _norm_str(candidate.get("endDate"))
    total = _coerce_int(candidate.get("totalDays"))
    if not (destination or start or end):
        return None
    label = destination or candidate.get("title") or "行程"
    if start and end:
        suffix = f"（{start} 至 {end}" + (f"，共 {total} 天" if total else "") + "）"
    elif total:
        suffix = f"（约 {total} 天）"
    else:
        suffix = ""
    return f"{label}{suffix}"

# ---------- days / activities ----------

def _resolve_day_title(day: Record, index: int, ctx: Optional[TripRequestContext]) -> str:
    title = _norm_str(_get(day, *DAY_TITLE_KEYS))
    if title:
        return title
    destination = _norm_str(_ctx(ctx, "destination"))
    date = _norm_str(day.get("date"))
    if date:
        return f"{destination} {date}" if destination else f"{date} 行程"
    if destination:
        return f"{destination} 第 {index + 1} 天"
    return f"第 {index + 1} 天"

def _resolve_day_summary(day: Record, index: int) -> str:
    summary = _norm_str(_get(day, *DAY_SUMMARY_KEYS))
    if summary:
        return summary
    names = [a["name"].strip() for a in day.get("activities") or [] if isinstance(a.get("name"), str) and a["name"].strip()][:3]
    if names:
        return f"重点活动：{' / '.join(names)}"
    date = _norm_str(day.get("date"))
    if date:
        return f"{date} 行程安排"
    return f"第 {index + 1} 天行程安排"

def _normalize_time_range(activity: Record) -> Tuple[Optional[str], Optional[str]]:
    start = _norm_time(_get(activity, "startTime", "start_time"))
    end = _norm_time(_get(activity, "endTime", "end_time"))
    if start or end:
        return start, end
    source = _first_str(activity, ("timeRange", "timerange", "time"))
    if not source:
        return None, None
    parts = [_norm_time(p) for p in _TIME_RANGE_SPLIT_RE.split(source)]
    return (parts[0] if parts else None), (parts[1] if len(parts) > 1 else None)

def _normalize_money(value: Record, currency: Optional[str]) -> Optional[Record]:
    amount = _coerce_number(_get(value, "amount", "total", "value"))
    if amount is None:
        return None
    money: Record = {
        "amount": amount,
        "currency": _norm_str(value.get("currency")) or _norm_str(currency) or DEFAULT_CURRENCY,
    }
    description = _norm_str(_get(value, "description", "desc", "note"))
    if description:
        money["description"] = description
    return money

def _normalize_embedded_budget(value: Any, currency: Optional[str]) -> Optional[Record]:
    if isinstance(value, dict):
        return _normalize_money(value, currency)
    amount = _coerce_number(value)
    if amount is None:
        return None
    return {"amount": amount, "currency": _norm_str(currency) or DEFAULT_CURRENCY}

def _derive_activity_budget(activity: Record, currency: Optional[str]) -> Optional[Record]:
    amount = _coerce_number(_get(activity, "cost", "price", "estimatedCost", "amount", "budgetAmount"))
    if amount is None:
        return None
    money: Record = {
        "amount": amount,
        "currency": _norm_str(_get(activity, "currency", "budgetCurrency")) or _norm_str(currency) or DEFAULT_CURRENCY,
    }
    description = _norm_str(_get(activity, "costNote", "priceNote", "budgetNote", "description", "summary"))
    if description:
        money["description"] = description
    return money

def _normalize_activity_list(value: Any, currency: Optional[str]) -> List[Record]:
    if not isinstance(value, list):
        return []
    out: List[Record] = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        activity = entry
        for key in ("name", "type", "summary", "location"):
            s = _norm_str(activity.get(key))
            if s:
                activity[key] = s

        start, end = _normalize_time_range(activity)
        _set_or_drop(activity, "startTime", start)
        _set_or_drop(activity, "endTime", end)

        _set_string_list(activity, "tips")

        raw_budget = activity.get("budget")
        budget = _normalize_embedded_budget(raw_budget, currency) if raw_budget is not None else None
        if budget is None:
            budget = _derive_activity_budget(activity, currency)
        _set_or_drop(activity, "budget", budget)

        if isinstance(activity.get("name"), str) and activity["name"].strip() \
                and isinstance(activity.get("type"), str) and activity["type"].strip():
            out.append(activity)
    return out

def _normalize_accommodation(value: Record, currency: Optional[str]) -> Optional[Record]:
    name = _norm_str(value.get("name"))
    if not name:
        return None
    value["name"] = name
    _set_or_drop(value, "address", _norm_str(value.get("address")))
    _set_or_drop(value, "checkInTime", _norm_time(_get(value, "checkInTime", "check_in_time")))
    _set_or_drop(value, "checkOutTime", _norm_time(_get(value, "checkOutTime", "check_out_time")))
    if value.get("budget") is not None:
        _set_or_drop(value, "budget", _normalize_embedded_budget(value["budget"], currency))
    return value

def _placeholder_activity(title: str, date: Optional[str]) -> Record:
    activity: Record = {
        "name": f"{title} 行程待完善",
        "type": "activity",
        "summary": "模型未返回有效活动，已生成占位条目，请稍后在详情页补充具体安排。",
        "startTime": "09:00",
        "endTime": "10:00",
    }
    if date:
        activity["location"] = f"{date} 待定地点"
    activity["tips"] = ["可在行程详情页手动编辑此项活动"]
    return activity

# ---------- budget ----------

def _map_budget_category(key: Any) -> Optional[str]:
    if not isinstance(key, str) or not key.strip():
        return None
    name = key.strip()
    alias = BUDGET_CATEGORY_ALIASES.get(name.lower())
    if alias:
        return alias
    return name if name in CANONICAL_CATEGORIES else None

def _breakdown_entry(category: str, value: Any) -> Optional[Record]:
    if isinstance(value, dict):
        amount = _coerce_number(_get(value, "amount", "total", "value", "estimated", "cost"))
        if amount is None:
            return None
        entry: Record = {"category": category, "amount": amount}
        description = _norm_str(_get(value, "description", "note", "details"))
        if description:
            entry["description"] = description
        percentage = _coerce_number(_get(value, "percentage", "percent", "ratio"))
        if percentage is not None:
            entry["percentage"] = _clamp(percentage, 0, 100)
        return entry
    amount = _coerce_number(value)
    if amount is None:
        return None
    return {"category": category, "amount": amount}

def _breakdown_from_mapping(record: Record, skip: frozenset = frozenset()) -> List[Record]:
    out: List[Record] = []
    for key, value in record.items():
        if key in skip:
            continue
        category = _map_budget_category(key)
        if not category:
            continue
        entry = _breakdown_entry(category, value)
        if entry:
            out.append(entry)
    return out

def _breakdown_from_list(items: list) -> List[Record]:
    out: List[Record] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        category = _norm_str(item.get("category"))
        amount = _coerce_number(item.get("amount"))
        if not category or amount is None:
            continue
        entry: Record = {"category": category, "amount": amount}
        description = _norm_str(item.get("description"))
        if description:
            entry["description"] = description
        percentage = _coerce_number(item.get("percentage"))
        if percentage is not None:
            entry["percentage"] = _clamp(percentage, 0, 100)
        out.append(entry)
    return out

def _fallback_breakdown(total: float) -> List[Record]:
    return [{"category": category, "amount": round(total * ratio, 2)} for category, ratio in FALLBACK_BREAKDOWN_RATIOS]

def _prepare_budget_record(record: Record) -> Record:
    prepared = dict(record)
    total = _coerce_number(_get(record, *BUDGET_TOTAL_KEYS))
    if total is not None:
        prepared["total"] = total
    currency = _norm_str(_get(record, *BUDGET_CURRENCY_KEYS)) or _plan_currency(record)
    if currency:
        prepared["currency"] = currency
    tips = _norm_string_list(_get(record, "tips", "note", "notes", "remark"))
    if tips and tips is not _MISSING:
        prepared["tips"] = tips
    if not prepared.get("breakdown"):
        derived = _breakdown_from_mapping(record, skip=BUDGET_META_KEYS)
        if derived:
            prepared["breakdown"] = derived
    return prepared

def _derive_budget_from_plan(plan: Record) -> Optional[Record]:
    total = _coalesce(*(_coerce_number(plan.get(k)) for k in PLAN_TOTAL_KEYS))
    if total is None and isinstance(plan.get("budget"), (int, float)):
        total = _coerce_number(plan["budget"])
    candidate: Record = {}
    if total is not None:
        candidate["total"] = total
    currency = _plan_currency(plan)
    if currency:
        candidate["currency"] = currency
    if plan.get("budgetBreakdown"):
        candidate["breakdown"] = plan["budgetBreakdown"]
    return candidate or None

# ---------- fallbacks ----------

def _fallback_summary(ctx: Optional[TripRequestContext]) -> str:
    if ctx is None:
        return "模型未返回行程概要，已生成默认占位文本。"
    destination = ctx.destination or "目的地"
    start = _norm_date(ctx.start_date) or "近期"
    end = _norm_date(ctx.end_date) or start
    duration = inclusive_day_span(start, end)
    span = f"，约 {duration} 天" if duration else ""
    style = f"，偏好 {ctx.travel_style}" if ctx.travel_style else ""
    return f"{destination} 行程概要（{start} 至 {end}{span}{style}）。"

def _fallback_overview(ctx: Optional[TripRequestContext]) -> Record:
    start = _norm_date(_ctx(ctx, "start_date")) or today_iso()
    end = _norm_date(_ctx(ctx, "end_date")) or start
    destination = _ctx(ctx, "destination")
    overview: Record = {
        "title": _ctx(ctx, "title") or f"{destination or '目的地'}旅行计划",
        "destination": destination or "待确认目的地",
        "startDate": start,
        "endDate": end,
        "totalDays": inclusive_day_span(start, end) or 1,
        "summary": _fallback_summary(ctx),
    }
    if _ctx(ctx, "travel_style"):
        overview["travelStyle"] = ctx.travel_style
    return overview

def _fallback_days(ctx: Optional[TripRequestContext], fallback_start: Optional[str]) -> List[Record]:
    start = _norm_date(_ctx(ctx, "start_date")) or fallback_start or today_iso()
    end = _norm_date(_ctx(ctx, "end_date")) or start
    total = inclusive_day_span(start, end) or 1
    destination = _ctx(ctx, "destination") or "行程目的地"
    days: List[Record] = []
    for i in range(total):
        date = shift_date(start, i) or start
        title = f"{destination} 第 {i + 1} 天"
        days.append({
            "day": i + 1,
            "date": date,
            "title": title,
            "summary": f"{destination} 行程占位，请在详情页补充具体安排。",
            "activities": [_placeholder_activity(title, date)],
        })
    return days


class TripPlanNormalizer:
    def __init__(self, fallbacks_enabled: bool = False) -> None:
        self.fallbacks_enabled = fallbacks_enabled

    def normalize(self, payload: Any, context: Optional[TripRequestContext] = None) -> Any:
        """Return a repaired copy of `payload`; non-dict input is returned unchanged."""
        if not isinstance(payload, dict):
            return payload
        try:
            return self._normalize_plan(copy.deepcopy(payload), context)
        except Exception:
            log.warning("Trip plan normalization failed; returning payload unchanged", exc_info=True)
            return payload

    def _normalize_plan(self, plan: Record, ctx: Optional[TripRequestContext]) -> Record:
        overview_source = self._resolve_overview_source(plan, ctx)
        fallback_start = _norm_date(_overview_start(overview_source)) or _norm_date(_plan_date(plan, "start"))
        currency = _currency_hint(plan)

        days = self._normalize_days(_prepare_day_entries(_resolve_day_source(plan)), fallback_start, ctx, currency)
        plan["days"] = days

        if overview_source is not None:
            plan["overview"] = self._normalize_overview(overview_source, days, ctx)
        else:
            plan.pop("overview", None)

        budget_source = self._resolve_budget_source(_coalesce(plan.get("budget"), _derive_budget_from_plan(plan)), ctx, plan)
        if budget_source is not None:
            plan["budget"] = self._normalize_budget(budget_source)
        else:
            plan.pop("budget", None)

        if "suggestions" in plan:
            _set_string_list(plan, "suggestions")

        log.debug("Trip plan normalized", extra={
            "days": len(days),
            "overview_present": "overview" in plan,
            "budget_present": "budget" in plan,
            "fallbacks": self.fallbacks_enabled,
        })
        return plan

    # --- overview ---

    def _resolve_overview_source(self, plan: Record, ctx: Optional[TripRequestContext]) -> Optional[Record]:
        existing = plan.get("overview")
        if isinstance(existing, dict) and existing:
            return existing

        # The request context only backs the overview when fallbacks are on
        c = ctx if self.fallbacks_enabled else None
        candidate: Record = {}

        title = _norm_str(_get(plan, "title", "tripTitle", "name")) or _norm_str(_ctx(c, "title"))
        if title:
            candidate["title"] = title
        destination = _norm_str(_get(plan, "destination", "city", "region", "country")) or _norm_str(_ctx(c, "destination"))
        if destination:
            candidate["destination"] = destination
        start = _norm_date(_plan_date(plan, "start")) or _norm_date(_ctx(c, "start_date"))
        if start:
            candidate["startDate"] = start
        end = _norm_date(_plan_date(plan, "end")) or _norm_date(_ctx(c, "end_date"))
        if end:
            candidate["endDate"] = end

        total = _coerce_int(_get(plan, "totalDays", "duration", "durationDays"))
        if total is None:
            day_list = _find_first_list((plan.get("days"), plan.get("dailyItinerary")))
            total = len(day_list) if day_list else None
        if total:
            candidate["totalDays"] = total

        prefs = plan.get("preferences")
        style = _norm_str(_get(plan, "travelStyle", "style")) or (
            _norm_str(_get(prefs, "travelStyle", "pace", "style")) if isinstance(prefs, dict) else None
        )
        if style:
            candidate["travelStyle"] = style

        summary = _first_str(plan, ("summary", "overviewSummary", "notes", "description")) or _norm_str(_ctx(c, "notes"))
        if not summary:
            summary = _derive_overview_summary(candidate)
        if summary:
            candidate["summary"] = summary
            return candidate

        if self.fallbacks_enabled:
            return _fallback_overview(ctx)
        return None

    def _normalize_overview(self, overview: Record, days: List[Record], ctx: Optional[TripRequestContext]) -> Record:
        start = _norm_date(_get(overview, "startDate", "start_date"))
        if start:
            overview["startDate"] = start
        end = _norm_date(_get(overview, "endDate", "end_date"))
        if end:
            overview["endDate"] = end

        total = _coerce_int(overview.get("totalDays"))
        if total:
            overview["totalDays"] = total
        else:
            derived = len(days) or inclusive_day_span(overview.get("startDate"), overview.get("endDate"))
            if derived:
                overview["totalDays"] = derived

        if self.fallbacks_enabled:
            if not overview.get("title"):
                overview["title"] = _ctx(ctx, "title") or "AI 旅行计划"
            if not overview.get("destination") and _ctx(ctx, "destination"):
                overview["destination"] = ctx.destination
            if not overview.get("summary"):
                overview["summary"] = _fallback_summary(ctx)
            if not overview.get("travelStyle") and _ctx(ctx, "travel_style"):
                overview["travelStyle"] = ctx.travel_style
        return overview

    # --- days ---

    def _normalize_days(
        self,
        value: Any,
        fallback_start: Optional[str],
        ctx: Optional[TripRequestContext],
        currency: Optional[str],
    ) -> List[Record]:
        if not isinstance(value, list):
            return _fallback_days(ctx, fallback_start) if self.fallbacks_enabled else []

        out: List[Record] = []
        for index, entry in enumerate(value):
            if not isinstance(entry, dict):
                continue
            day = entry
            number = _coerce_int(day.get("day"))
            day["day"] = number if number else index + 1

            date = _norm_date(day.get("date"))
            if date:
                day["date"] = date
            elif fallback_start:
                derived = shift_date(fallback_start, index)
                if derived:
                    day["date"] = derived

            _set_string_list(day, "notes")
            day["title"] = _resolve_day_title(day, index, ctx)

            day["activities"] = _normalize_activity_list(day.get("activities"), currency)
            if not day["activities"] and self.fallbacks_enabled:
                day["activities"] = [_placeholder_activity(day["title"], _norm_str(day.get("date")))]

            if "meals" in day:
                meals = _normalize_activity_list(day["meals"], currency)
                if meals:
                    day["meals"] = meals
                else:
                    del day["meals"]

            if isinstance(day.get("accommodations"), dict):
                _set_or_drop(day, "accommodations", _normalize_accommodation(day["accommodations"], currency))

            day["summary"] = _resolve_day_summary(day, index)
            out.append(day)

        if not out and self.fallbacks_enabled:
            return _fallback_days(ctx, fallback_start)
        return out

    # --- budget ---

    def _resolve_budget_source(self, value: Any, ctx: Optional[TripRequestContext], plan: Record) -> Optional[Record]:
        if isinstance(value, dict):
            return self._merge_budget_candidate(_prepare_budget_record(value), plan)

        amount = _coerce_number(value)
        if amount is not None:
            candidate: Record = {"total": amount}
            return self._merge_budget_candidate(candidate, plan)

        derived = _derive_budget_from_plan(plan)
        if derived:
            return self._merge_budget_candidate(derived, plan)

        if self.fallbacks_enabled:
            ctx_budget = _ctx(ctx, "budget")
            if isinstance(ctx_budget, (int, float)) and math.isfinite(ctx_budget):
                return {"total": ctx_budget, "currency": DEFAULT_CURRENCY}
            return {"currency": DEFAULT_CURRENCY, "total": 0}
        return None

    def _merge_budget_candidate(self, candidate: Record, plan: Record) -> Record:
        merged = dict(candidate)
        if not merged.get("currency"):
            currency = _plan_currency(plan)
            if currency:
                merged["currency"] = currency
            elif merged.get("total") is not None and self.fallbacks_enabled:
                merged["currency"] = DEFAULT_CURRENCY
        if "breakdown" not in merged and isinstance(plan.get("budgetBreakdown"), (list, dict)):
            merged["breakdown"] = plan["budgetBreakdown"]
        return merged

    def _normalize_budget(self, budget: Record) -> Record:
        out = dict(budget)
        currency = _norm_str(out.get("currency"))
        if currency:
            out["currency"] = currency
        elif self.fallbacks_enabled:
            out["currency"] = DEFAULT_CURRENCY
        else:
            out.pop("currency", None)

        total = _coerce_number(_coalesce(out.get("total"), out.get("amount")))
        if total is not None:
            out["total"] = total
        elif out.get("currency") and "total" not in out and self.fallbacks_enabled:
            out["total"] = 0

        breakdown = self._normalize_breakdown(out.get("breakdown"), _coerce_number(out.get("total")))
        if breakdown:
            out["breakdown"] = breakdown

        _set_string_list(out, "tips")
        return out

    def _normalize_breakdown(self, value: Any, total: Optional[float]) -> List[Record]:
        if isinstance(value, list):
            items = _breakdown_from_list(value)
            if items:
                return items
        if isinstance(value, dict):
            items = _breakdown_from_mapping(value)
            if items:
                return items
        if total is not None and self.fallbacks_enabled:
            return _fallback_breakdown(total)
        return []


def normalize_trip_plan(
    payload: Any,
    context: Optional[TripRequestContext] = None,
    *,
    fallbacks_enabled: bool = False,
) -> Any:
    return TripPlanNormalizer(fallbacks_enabled=fallbacks_enabled).normalize(payload, context)
