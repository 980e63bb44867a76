# main.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from errors import GenerationError
from logging_config import setup_logging
from models import TripRequestContext
from request_context import get_request_id, new_request_id
from services.llm_client import GenerationClient, resolve_endpoint

# Initialize logging BEFORE creating the app
setup_logging(settings.log_level)
log = logging.getLogger("app")

app = FastAPI(
    title="AI Trip Planner",
    version="0.2.0",
    description="Structured trip-plan generation with schema validation, retries and normalization",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
    expose_headers=settings.CORS_EXPOSE_HEADERS,
    max_age=settings.CORS_MAX_AGE,
)

_STATUS_BY_KIND = {"config": 500, "cancelled": 499}


@app.middleware("http")
async def request_logging_mw(request: Request, call_next):
    rid = new_request_id()
    start = time.perf_counter()
    response: Response | None = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.perf_counter() - start) * 1000)
        if response is not None:
            response.headers["X-Request-Id"] = rid
        log.info(
            f"{request.method} {request.url.path} -> {getattr(response, 'status_code', '?')} in {dur_ms}ms",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": getattr(response, "status_code", None),
                "duration_ms": dur_ms,
            },
        )


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    status = _STATUS_BY_KIND.get(exc.kind, 502)
    log.warning("Generation failed", extra={
        "request_id": get_request_id(),
        "kind": exc.kind,
        "attempt": exc.attempt,
        "error": exc.message,
    })
    error: Dict[str, Any] = {"message": exc.user_message, "code": exc.code}
    # validator paths help debugging; provider bodies (network details) never leave the server
    if exc.kind == "validation" and exc.details and settings.APP_ENV != "production":
        error["details"] = exc.details
    return JSONResponse(status_code=status, content={"success": False, "error": error})


def get_generation_client() -> GenerationClient:
    return GenerationClient(settings.llm_config())


@app.on_event("startup")
async def on_startup():
    _, mode = resolve_endpoint(settings.LLM_API_BASE_URL, settings.LLM_PROVIDER)
    log.info("App starting", extra={
        "request_id": get_request_id(),
        "environment": settings.APP_ENV,
        "debug_mode": settings.DEBUG,
        "model": settings.LLM_MODEL,
        "provider_mode": mode,
        "normalization_fallbacks": settings.LLM_ENABLE_NORMALIZATION_FALLBACKS,
        "cors_origins_count": len(settings.CORS_ALLOW_ORIGINS),
    })


@app.get("/health")
def health():
    _, mode = resolve_endpoint(settings.LLM_API_BASE_URL, settings.LLM_PROVIDER)
    return {
        "status": "ok",
        "llm_key_loaded": bool(settings.LLM_API_KEY),
        "model": settings.LLM_MODEL,
        "provider_mode": mode,
    }


@app.post("/itineraries/generate")
async def generate_itinerary_endpoint(
    ctx: TripRequestContext,
    client: GenerationClient = Depends(get_generation_client),
):
    log.info("Itinerary generation request received", extra={
        "request_id": get_request_id(),
        "destination": ctx.destination,
        "start_date": ctx.start_date,
        "end_date": ctx.end_date,
        "travelers_count": len(ctx.travelers or []),
    })
    result = await client.generate_trip_plan(ctx)
    return {
        "plan": result.output.model_dump(mode="json", by_alias=True, exclude_none=True),
        "attempts": result.attempts,
        "usage": result.usage.model_dump(by_alias=True) if result.usage else None,
    }


# Production entry point
if __name__ == "__main__":
    import uvicorn

    log.info(f"Starting server on {settings.HOST}:{settings.PORT}")

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=1,
        access_log=True,
        log_level="info" if settings.APP_ENV == "production" else "debug",
    )
