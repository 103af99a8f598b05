from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from render_service.config import Settings, get_settings
from render_service.errors import InternalError, InvalidArgumentError, RenderError, UnauthorizedError
from render_service.models.api import (
    CacheClearRequest,
    CacheClearResponse,
    CacheStatusResponse,
    HealthResponse,
    RenderRequest,
    RenderResponse,
)
from render_service.services.render_service import RenderService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("render_service")

REQUEST_ID_HEADER = "X-Request-Id"

app = FastAPI(title="render-service")

_service: RenderService | None = None


def get_render_service(settings: Settings = Depends(get_settings)) -> RenderService:
    global _service
    if _service is None:
        _service = RenderService(settings=settings)
    return _service


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid4())


def require_admin(
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.admin_token and x_admin_token != settings.admin_token:
        raise UnauthorizedError("admin token required")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


def _error_response(request: Request, exc: RenderError) -> JSONResponse:
    request_id = get_request_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(request_id),
        headers={REQUEST_ID_HEADER: request_id},
    )


@app.exception_handler(RenderError)
async def render_error_handler(request: Request, exc: RenderError) -> JSONResponse:
    logger.warning(
        "request failed",
        extra={"request_id": get_request_id(request), "code": exc.code, "error": exc.message},
    )
    return _error_response(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(part) for part in first.get("loc", []) if part != "body")
        message = f"{loc}: {first.get('msg', 'invalid value')}" if loc else first.get("msg", "invalid value")
    else:
        message = "Request validation failed"
    details = [
        {"loc": [str(part) for part in err.get("loc", [])], "msg": err.get("msg")} for err in errors
    ]
    return _error_response(request, InvalidArgumentError(message, details=details))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", extra={"request_id": get_request_id(request)})
    return _error_response(request, InternalError())


@app.post("/render", response_model=RenderResponse)
def render(
    payload: RenderRequest,
    request: Request,
    x_user_plan: str | None = Header(default=None, alias="X-User-Plan"),
    service: RenderService = Depends(get_render_service),
) -> RenderResponse:
    outcome = service.render(payload, plan_hint=x_user_plan, request_id=get_request_id(request))
    return RenderResponse(**outcome.model_dump())


@app.get("/health", response_model=HealthResponse)
def health(
    settings: Settings = Depends(get_settings),
    service: RenderService = Depends(get_render_service),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        service=settings.app_name,
        engine=settings.render_engine,
        storage=service.output_storage.mode,
    )


@app.get("/cache-status", response_model=CacheStatusResponse)
def cache_status(service: RenderService = Depends(get_render_service)) -> CacheStatusResponse:
    return CacheStatusResponse(**service.cache_status())


@app.post("/cache-clear", response_model=CacheClearResponse, status_code=status.HTTP_200_OK)
def cache_clear(
    payload: CacheClearRequest,
    _: None = Depends(require_admin),
    service: RenderService = Depends(get_render_service),
) -> CacheClearResponse:
    return CacheClearResponse(deleted=service.clear_cache(payload.project_id, payload.manifest_hash))


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("render_service.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
