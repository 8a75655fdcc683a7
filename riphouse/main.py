# riphouse/main.py
from __future__ import annotations

import asyncio
import importlib
import importlib.util
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from riphouse import database
from riphouse.config import project_rules as R
from riphouse.config.feature_flags import FEATURE_FLAGS
from riphouse.database import Base, engine
from riphouse.logic import lifecycle

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("riphouse")

APP_VERSION = "1.0.0"


# --------------------------------------------------
# 경매 상태 스윕 워커
# --------------------------------------------------
async def start_lifecycle_worker() -> None:
    """
    scheduled → active, active → ended 전이를 주기적으로 반영.
    읽기/입찰 경로에서도 sync_status 를 하므로 이 워커는 아무도 보지 않는 경매를 마감하는 용도.
    """

    async def worker():
        while True:
            try:
                db = database.SessionLocal()
                try:
                    moved = lifecycle.sweep_due_auctions(db)
                finally:
                    db.close()
                if moved:
                    logger.info("[LIFECYCLE] transitioned=%s", moved)
            except Exception:
                # 에러가 나도 워커는 계속
                logger.exception("[LIFECYCLE] sweep failed")
            await asyncio.sleep(R.LIFECYCLE_SWEEP_INTERVAL_SECONDS)

    asyncio.create_task(worker())


@asynccontextmanager
async def lifespan(app: FastAPI):
    R.set_test_now_utc(None)

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning("Base.metadata.create_all failed: %s: %s", e.__class__.__name__, e)

    if FEATURE_FLAGS.get("AUTO_LIFECYCLE_WORKER"):
        await start_lifecycle_worker()
    else:
        logger.info("lifecycle worker disabled by feature flag")

    yield

    R.set_test_now_utc(None)


app = FastAPI(title="RipHouse Auction API", version=APP_VERSION, lifespan=lifespan)


# --------------------------------------------------
# 예외 핸들러: 모든 에러는 {success:false, error, code}
# --------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        body = {"success": False, "error": detail["error"], "code": detail.get("code", f"HTTP_{exc.status_code}")}
    else:
        body = {"success": False, "error": str(detail), "code": f"HTTP_{exc.status_code}"}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exc_handler(request, exc: Exception):
    logger.exception("unhandled error at %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal error", "code": "INTERNAL_ERROR"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _include_router_safe(module_path: str, attr_candidates: tuple = ("router",), *, label: str):
    full_mod = f"riphouse.routers.{module_path}"
    try:
        if importlib.util.find_spec(full_mod) is None:
            logger.warning("Skip router [%s]: spec not found for '%s'", label, full_mod)
            return

        mod = importlib.import_module(full_mod)
        router_obj = None
        for name in attr_candidates:
            router_obj = getattr(mod, name, None)
            if router_obj is not None:
                break

        if router_obj is None:
            logger.warning("Skip router [%s]: none of attrs %s found in %s", label, attr_candidates, full_mod)
            return

        app.include_router(router_obj)
        logger.debug("Mounted router [%s] from %s", label, full_mod)

    except Exception as e:
        logger.warning("Skip router [%s]: %s: %s", label, e.__class__.__name__, e)


_include_router_safe("auth", label="auth")
_include_router_safe("shops", label="shops")
_include_router_safe("auctions", label="auctions")
_include_router_safe("riplimit", label="riplimit")
_include_router_safe("categories", label="categories")


@app.get("/")
def root():
    return {"message": "RipHouse Auction API is running"}


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/version")
def version():
    return {"app": "RipHouse Auction API", "version": APP_VERSION}
