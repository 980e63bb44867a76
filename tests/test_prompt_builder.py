"""
Tests for prompt message construction
"""
from models import Traveler, TripRequestContext
from services.prompt_builder import SYSTEM_PROMPT, build_prompt_messages, duration_days


def _ctx(**overrides):
    base = dict(title="Summer trip", destination="Hangzhou", start_date="2025-06-01", end_date="2025-06-05")
    base.update(overrides)
    return TripRequestContext(**base)


class TestPromptBuilder:

    def test_system_then_user(self):
        messages = build_prompt_messages(_ctx())
        assert [m.role for m in messages] == ["system", "user"]
        assert messages[0].content == SYSTEM_PROMPT

    def test_inclusive_duration(self):
        user = build_prompt_messages(_ctx())[1].content
        assert "2025-06-01 to 2025-06-05 (5 days)" in user
        assert "Hangzhou" in user

    def test_duration_defaults_to_one_day(self):
        assert duration_days("not-a-date", "2025-06-05") == 1
        assert duration_days("2025-06-05", "2025-06-01") == 1
        assert duration_days("2025-06-01", "2025-06-01") == 1

    def test_unparseable_dates_do_not_fail(self):
        user = build_prompt_messages(_ctx(start_date="soon", end_date="later"))[1].content
        assert "soon to later (1 days)" in user

    def test_missing_optional_fields_use_fallbacks(self):
        user = build_prompt_messages(_ctx())[1].content
        assert "reference budget: not provided" in user
        assert "travelers: 2 adults, unspecified" in user
        assert "tags: no tags provided" in user
        assert "additional preferences" not in user

    def test_optional_fields_rendered(self):
        ctx = _ctx(
            budget=3000,
            tags=["food", " ", "tea"],
            travelers=[Traveler(name="Lin", role="adult", age=30), Traveler(age=6)],
            travel_style="relaxed",
            notes="avoid early mornings",
        )
        user = build_prompt_messages(ctx)[1].content
        assert "3000 CNY" in user
        assert "Lin (adult), age 30; Traveler 2, age 6" in user
        assert "tags: food, tea" in user
        assert "travel style: relaxed; notes: avoid early mornings" in user

    def test_output_rules_present(self):
        user = build_prompt_messages(_ctx())[1].content
        assert "at least 3 activities" in user
        assert "住宿" in user and "娱乐/门票" in user
        assert "no code fences" in user
