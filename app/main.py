"""
app/main.py — FastAPI app serving the charity dashboard.

Endpoints:
  GET    /health                 — Liveness check + donor cache status
  GET    /donors                 — Donor list (read-through cache)
  GET    /finances/summary       — Income / expense for one calendar month
  GET    /finances/history       — Income / expense per month
  GET    /{collection}           — All records of a collection
  POST   /{collection}           — Add a record
  PATCH  /{collection}/{key}     — Partially update a record
  DELETE /{collection}/{key}     — Remove a record
  DELETE /cache                  — Drop the donor cache

Writes always answer with a WriteResult body: {ok, error, message, key, record}.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import database
from app.config import settings
from app.dashboard import Dashboard, WriteResult
from app.errors import ErrorKind, FetchError
from app.prompts.ui_messages import error_message
from app.validation import Collection

logging.basicConfig(level=settings.log_level, format="%(levelname)s | %(name)s | %(message)s")
logger = logging.getLogger(__name__)

_dashboard: Optional[Dashboard] = None
_unsubscribe = None


# ── Lifespan (startup / shutdown) ───────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    global _dashboard, _unsubscribe
    logger.info("Starting up…")
    await database.create_pool()
    _dashboard = Dashboard(source=database)
    if database.is_db_available():
        try:
            await database.ensure_schema()
            _unsubscribe = await database.subscribe(
                Collection.DONORS.value, _dashboard.on_donors_changed, snapshot=False
            )
        except Exception as exc:
            logger.warning("Donor change subscription unavailable: %s", exc)
    yield
    logger.info("Shutting down…")
    try:
        if _unsubscribe is not None:
            await _unsubscribe()
    except Exception as exc:
        logger.warning("Could not unsubscribe from donor changes: %s", exc)
    finally:
        _unsubscribe = None
        await database.close_pool()


# ── App instance ─────────────────────────────────────────────────────────────

app = FastAPI(
    title="Charity Dashboard API",
    description="Inventory, donor and finance records for the charity dashboard",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],      # tighten for production
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_dashboard() -> Dashboard:
    if _dashboard is None:
        raise FetchError("the dashboard", "Dashboard is starting up.")
    return _dashboard


_STATUS_BY_ERROR: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.NOT_FOUND:        404,
    ErrorKind.FETCH_ERROR:      503,
    ErrorKind.UPDATE_ERROR:     503,
    ErrorKind.REMOVE_ERROR:     503,
}


def _write_response(result: WriteResult, success_status: int = 200) -> JSONResponse:
    status = success_status if result.ok else _STATUS_BY_ERROR[result.error]
    return JSONResponse(jsonable_encoder(result.to_dict()), status_code=status)


@app.exception_handler(FetchError)
async def fetch_error_handler(request: Request, exc: FetchError) -> JSONResponse:
    logger.error("Fetch failed for %s: %s", request.url.path, exc)
    return JSONResponse(
        {
            "ok": False,
            "error": ErrorKind.FETCH_ERROR.value,
            "message": error_message(ErrorKind.FETCH_ERROR, exc.path),
        },
        status_code=503,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid value')}"
        for err in exc.errors()
    ]
    logger.info("Rejected request to %s: %s", request.url.path, problems)
    return JSONResponse(
        {
            "ok": False,
            "error": ErrorKind.VALIDATION_ERROR.value,
            "message": error_message(ErrorKind.VALIDATION_ERROR, details="; ".join(problems)),
        },
        status_code=422,
    )


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health(dashboard: Dashboard = Depends(get_dashboard)):
    return {
        "status": "ok",
        "database": database.is_db_available(),
        "donor_cache": dashboard.cache_status(),
    }


@app.get("/donors", summary="Donor list (cached)")
async def list_donors(dashboard: Dashboard = Depends(get_dashboard)):
    return await dashboard.donors()


@app.get("/finances/summary", summary="Income and expense for one month")
async def finance_summary(
    reference: Optional[datetime] = Query(
        None, description="Any instant inside the month; defaults to now"
    ),
    dashboard: Dashboard = Depends(get_dashboard),
):
    summary = await dashboard.month_summary(reference)
    return jsonable_encoder(summary.to_dict())


@app.get("/finances/history", summary="Income and expense per month")
async def finance_history(dashboard: Dashboard = Depends(get_dashboard)):
    history = await dashboard.finance_history()
    return jsonable_encoder([s.to_dict() for s in history])


@app.delete("/cache", summary="Drop the donor cache")
async def clear_cache(dashboard: Dashboard = Depends(get_dashboard)):
    dashboard.clear_cache()
    return {"message": "Cache cleared."}


@app.get("/{collection}", summary="All records of a collection")
async def list_records(collection: Collection, dashboard: Dashboard = Depends(get_dashboard)):
    return await dashboard.records(collection)


@app.post("/{collection}", summary="Add a record")
async def add_record(
    collection: Collection,
    payload: dict[str, Any] = Body(...),
    dashboard: Dashboard = Depends(get_dashboard),
):
    result = await dashboard.add_record(collection, payload)
    return _write_response(result, success_status=201)


@app.patch("/{collection}/{key}", summary="Partially update a record")
async def update_record(
    collection: Collection,
    key: str,
    payload: dict[str, Any] = Body(...),
    dashboard: Dashboard = Depends(get_dashboard),
):
    result = await dashboard.update_record(collection, key, payload)
    return _write_response(result)


@app.delete("/{collection}/{key}", summary="Remove a record")
async def remove_record(
    collection: Collection,
    key: str,
    dashboard: Dashboard = Depends(get_dashboard),
):
    result = await dashboard.remove_record(collection, key)
    return _write_response(result)
