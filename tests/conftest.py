"""
Shared fixtures: a trip request, a schema-valid plan payload, provider
envelopes, and a GenerationClient wired to httpx.MockTransport.
"""
from __future__ import annotations

import copy
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from config import LLMConfig
from models import Traveler, TripRequestContext
from services.llm_client import GenerationClient


def build_plan(days: int = 3, start_day: int = 1) -> Dict[str, Any]:
    """A schema-valid camelCase plan for Kyoto starting 2025-09-<start_day>."""
    day_list = []
    for i in range(days):
        date = f"2025-09-{start_day + i:02d}"
        day_list.append({
            "day": i + 1,
            "date": date,
            "title": f"京都第 {i + 1} 天",
            "summary": "寺院与老街",
            "activities": [
                {
                    "name": "清水寺",
                    "type": "sightseeing",
                    "location": "京都市东山区清水1丁目294",
                    "startTime": "09:00",
                    "endTime": "11:00",
                    "tips": ["早到避开人流"],
                    "budget": {"amount": 25, "currency": "CNY"},
                },
                {
                    "name": "锦市场午餐",
                    "type": "dining",
                    "location": "锦市场",
                    "startTime": "12:00",
                    "endTime": "13:00",
                },
                {
                    "name": "鸭川散步",
                    "type": "leisure",
                    "location": "三条大桥",
                    "startTime": "17:00",
                    "endTime": "18:30",
                },
            ],
        })
    end_day = start_day + days - 1
    return {
        "overview": {
            "title": "京都秋季之旅",
            "destination": "Kyoto",
            "startDate": f"2025-09-{start_day:02d}",
            "endDate": f"2025-09-{end_day:02d}",
            "totalDays": days,
            "summary": "寺院、庭园与美食",
        },
        "days": day_list,
        "budget": {
            "currency": "CNY",
            "total": 6000,
            "breakdown": [
                {"category": "住宿", "amount": 2400},
                {"category": "餐饮", "amount": 1500},
                {"category": "交通", "amount": 1200},
                {"category": "娱乐/门票", "amount": 900},
            ],
        },
        "suggestions": ["提前购买 ICOCA 卡"],
    }


def dashscope_envelope(payload: Any, *, request_id: str = "req-123") -> Dict[str, Any]:
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return {
        "request_id": request_id,
        "output": {"text": text},
        "usage": {"input_tokens": 120, "output_tokens": 480, "total_tokens": 600},
    }


def compatible_envelope(payload: Any) -> Dict[str, Any]:
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 90, "completion_tokens": 300, "total_tokens": 390},
    }


class ProviderStub:
    """Replays queued responses and records every request it receives."""

    def __init__(self, responses: List[Any]) -> None:
        self._responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return httpx.Response(item.status_code, content=item.content, headers=item.headers)
        return httpx.Response(200, json=item)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = 0) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def trip_context() -> TripRequestContext:
    return TripRequestContext(
        title="京都秋季之旅",
        destination="Kyoto",
        start_date="2025-09-01",
        end_date="2025-09-03",
        budget=6000,
        tags=["culture", "food"],
        travelers=[Traveler(name="Mei", role="adult", age=34), Traveler(role="child", age=8)],
    )


@pytest.fixture
def valid_plan() -> Dict[str, Any]:
    return build_plan()


@pytest.fixture
def plan_factory() -> Callable[..., Dict[str, Any]]:
    return build_plan


@pytest.fixture
def make_client() -> Callable[..., GenerationClient]:
    def _make(handler: Callable, *, backoff_step: float = 0, **overrides: Any) -> GenerationClient:
        cfg = LLMConfig(**{"api_key": "test-key", **overrides})
        return GenerationClient(cfg, transport=httpx.MockTransport(handler), backoff_step=backoff_step)
    return _make


@pytest.fixture
def deep(valid_plan):
    """Fresh deep copy helper so tests can mutate plans freely."""
    return lambda: copy.deepcopy(valid_plan)
