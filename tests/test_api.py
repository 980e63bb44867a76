"""
Tests for the FastAPI edge: success payload and GenerationError mapping
"""
import httpx
import pytest
from fastapi.testclient import TestClient

import main
from config import LLMConfig, Settings
from errors import GenerationError
from services.llm_client import GenerationClient

from conftest import ProviderStub, dashscope_envelope

REQUEST_BODY = {
    "title": "京都秋季之旅",
    "destination": "Kyoto",
    "startDate": "2025-09-01",
    "endDate": "2025-09-03",
    "budget": 6000,
    "travelers": [{"name": "Mei", "role": "adult", "age": 34}],
}


@pytest.fixture
def api():
    client = TestClient(main.app)
    yield client
    main.app.dependency_overrides.clear()


def _use_provider(stub, **overrides):
    cfg = LLMConfig(**{"api_key": "test-key", **overrides})
    gen = GenerationClient(cfg, transport=httpx.MockTransport(stub), backoff_step=0)
    main.app.dependency_overrides[main.get_generation_client] = lambda: gen


class TestHealth:

    def test_health(self, api):
        resp = api.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["provider_mode"] in ("dashscope", "compatible")
        assert "llm_key_loaded" in body
        assert resp.headers.get("X-Request-Id")


class TestGenerate:

    def test_success(self, api, valid_plan):
        stub = ProviderStub([dashscope_envelope(valid_plan)])
        _use_provider(stub)

        resp = api.post("/itineraries/generate", json=REQUEST_BODY)

        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["attempts"] == 1
        assert body["plan"]["overview"]["totalDays"] == 3
        assert body["plan"]["days"][0]["activities"][0]["startTime"] == "09:00"
        assert body["usage"]["promptTokens"] == 120
        assert body["usage"]["requestId"] == "req-123"
        assert resp.headers.get("X-Request-Id")

        sent = stub.body()
        assert "Kyoto" in sent["input"]["messages"][1]["content"]

    def test_validation_failure_maps_to_502_with_details(self, api, valid_plan, monkeypatch):
        monkeypatch.setattr(main.settings, "APP_ENV", "development")
        valid_plan["days"] = []
        _use_provider(ProviderStub([dashscope_envelope(valid_plan)]))

        resp = api.post("/itineraries/generate", json=REQUEST_BODY)

        assert resp.status_code == 502
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "llm_validation"
        assert body["error"]["message"] == "Itinerary generation failed, please try again."
        assert "/days" in body["error"]["details"]

    def test_validation_details_hidden_in_production(self, api, valid_plan, monkeypatch):
        monkeypatch.setattr(main.settings, "APP_ENV", "production")
        valid_plan["days"] = []
        _use_provider(ProviderStub([dashscope_envelope(valid_plan)]))

        resp = api.post("/itineraries/generate", json=REQUEST_BODY)

        assert resp.status_code == 502
        assert "details" not in resp.json()["error"]

    def test_provider_body_never_returned(self, api):
        _use_provider(ProviderStub([httpx.Response(401, text="invalid api key sk-secret")]))

        resp = api.post("/itineraries/generate", json=REQUEST_BODY)

        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "llm_network"
        assert "sk-secret" not in resp.text

    def test_config_error_maps_to_500(self, api):
        def broken():
            raise GenerationError("config", "missing key", should_rollback=False)

        main.app.dependency_overrides[main.get_generation_client] = broken

        resp = api.post("/itineraries/generate", json=REQUEST_BODY)

        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "llm_config"
        assert "missing key" not in resp.text

    def test_invalid_request_body(self, api, valid_plan):
        _use_provider(ProviderStub([dashscope_envelope(valid_plan)]))
        body = dict(REQUEST_BODY)
        del body["destination"]
        resp = api.post("/itineraries/generate", json=body)
        assert resp.status_code == 422

    def test_unknown_request_field_rejected(self, api, valid_plan):
        _use_provider(ProviderStub([dashscope_envelope(valid_plan)]))
        resp = api.post("/itineraries/generate", json={**REQUEST_BODY, "hotelStars": 5})
        assert resp.status_code == 422


class TestCors:

    def test_preflight_uses_configured_policy(self, api):
        origin = main.settings.CORS_ALLOW_ORIGINS[0]
        resp = api.options(
            "/itineraries/generate",
            headers={
                "Origin": origin,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == origin
        assert resp.headers["access-control-max-age"] == str(main.settings.CORS_MAX_AGE)
        assert "access-control-allow-credentials" not in resp.headers

    def test_credentials_off_by_default(self, monkeypatch):
        monkeypatch.delenv("CORS_ALLOW_CREDENTIALS", raising=False)
        monkeypatch.delenv("cors_allow_credentials", raising=False)
        assert Settings(_env_file=None).CORS_ALLOW_CREDENTIALS is False
