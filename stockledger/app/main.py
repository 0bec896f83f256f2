from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockledger.app.api.v1.router import router as v1_router
from stockledger.app.core.config import settings
from stockledger.app.core.logging_config import configure_logging
from stockledger.app.db.bootstrap import init_schema
from stockledger.app.db.session import engine
from stockledger.services.errors import LedgerError


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    if settings.auto_create_schema:
        init_schema(engine)
    yield


app = FastAPI(title="Stock Ledger", version="0.1.0", lifespan=lifespan)
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    # le type d'erreur métier devient le code HTTP
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "error": exc.kind})
