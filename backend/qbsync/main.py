import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models  # noqa: F401
from .core import config
from .core.database import engine, Base
from .api.quickbooks.routes import router as quickbooks_router


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    root_logger.addHandler(handler)

    # httpx logs every request URL at INFO, including the query text
    logging.getLogger("httpx").setLevel(logging.WARNING)


_configure_logging()

app = FastAPI(title="QuickBooks Invoice Sync")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(quickbooks_router)


@app.get("/")
async def api_home():
    return JSONResponse(content={"message": "QuickBooks Invoice Sync - API Home"})


@app.get("/health")
async def health_check():
    return JSONResponse(content={"ok": True})


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("shutdown")
async def shutdown():
    await engine.dispose()
