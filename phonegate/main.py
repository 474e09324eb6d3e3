import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from phonegate.api.routes import router, registry
from phonegate.api.admin_routes import router as admin_router
from phonegate.core.errors import (
    ChallengeError,
    InvalidSessionError,
    ValidationError,
    VerificationError,
)
from phonegate.observability.logging import log
from phonegate.settings import settings
from phonegate.store.redis_conn import close_async_redis


SWEEP_INTERVAL_SEC = 60


async def _sweep_idle_flows():
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SEC)
        try:
            await registry.sweep()
        except Exception as e:
            log(event="flow_sweep_failed", errorType=type(e).__name__, error=str(e)[:200])


@asynccontextmanager
async def lifespan(app: FastAPI):
    log(event="boot", otpProvider=settings.OTP_PROVIDER, failOpenMode=settings.FAIL_OPEN_MODE, env=settings.ENV)
    sweeper = asyncio.ensure_future(_sweep_idle_flows())
    try:
        yield
    finally:
        sweeper.cancel()
        await registry.shutdown()
        await close_async_redis()


app = FastAPI(title="Phone Verification Gate", lifespan=lifespan)

# Restricted in prod via env.
origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {"status": "ok"}


def _error_body(exc: VerificationError) -> dict:
    return {"error": exc.code, "message": exc.message}


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content=_error_body(exc))


@app.exception_handler(InvalidSessionError)
async def invalid_session_handler(request: Request, exc: InvalidSessionError):
    return JSONResponse(status_code=409, content=_error_body(exc))


@app.exception_handler(ChallengeError)
async def challenge_error_handler(request: Request, exc: ChallengeError):
    return JSONResponse(status_code=409, content=_error_body(exc))


@app.exception_handler(VerificationError)
async def verification_error_handler(request: Request, exc: VerificationError):
    log(event="unhandled_verification_error", errorType=type(exc).__name__, code=exc.code)
    return JSONResponse(status_code=400, content=_error_body(exc))
