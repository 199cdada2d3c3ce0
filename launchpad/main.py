"""FastAPI app: документы проектов (разделы, загрузки, чистка старых форматов)."""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from launchpad.config import settings

# Логи приложения в stderr, видны в docker logs
_app_log = logging.getLogger("launchpad")
_app_log.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
if not _app_log.handlers:
    _h = logging.StreamHandler(sys.stderr)
    _h.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    _app_log.addHandler(_h)
_app_log.propagate = False

from launchpad.database import async_session_maker, init_db
from launchpad.routers import documents
from launchpad.services.document_store import init_document_store
from launchpad.services.errors import UnknownSection, log_failure


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
    except Exception as e:
        # документы пишутся в локальное хранилище, пока БД не поднимется
        log_failure("app", "init_db", e)
    app.state.document_store = init_document_store(settings, async_session_maker)
    _app_log.info("document store ready: fallback=%s", type(app.state.document_store.fallback).__name__)
    yield


app = FastAPI(
    title="Launchpad Documents",
    description="Project documents: sections, uploads, legacy cleanup",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(UnknownSection)
async def unknown_section_handler(request, exc: UnknownSection):
    return JSONResponse(status_code=404, content={"detail": str(exc), "section_key": exc.key})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc: Exception):
    _app_log.exception("unhandled error: path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


app.include_router(documents.router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "launchpad-documents"}
