from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from storyverse.config import settings
from storyverse.errors import CoinError
from storyverse.logging_setup import configure_logging
from storyverse.routes.system import router as system_router
from storyverse.routes.coins import router as coins_router
from storyverse.routes.admin_coins import router as admin_coins_router
from storyverse.routes.admin_rewards import router as admin_rewards_router
from storyverse.routes.runs import router as runs_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API: branching stories, coin rewards and chapter unlocks",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router)
app.include_router(coins_router)
app.include_router(admin_coins_router)
app.include_router(admin_rewards_router)
app.include_router(runs_router)

@app.exception_handler(CoinError)
async def coin_error_handler(request: Request, exc: CoinError):
    log.info("coin_error", code=exc.code, status=exc.status_code, detail=exc.detail, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    try:
        response: Response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()
    response.headers["X-Request-ID"] = rid
    return response
