import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.finance.router import router as finance_router
from app.core.config import settings
from app.db.schema_check import find_missing_optional_columns
from app.db.session import engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Warn early about databases that will be served in degraded mode
    await find_missing_optional_columns(engine)
    yield


def create_app() -> FastAPI:
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="Tuition Finance Ledger", lifespan=lifespan)

    # CORS: allow the admin frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(finance_router)

    return app


app = create_app()
