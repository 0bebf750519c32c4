import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from intentmatch.api.admin import router as admin_router
from intentmatch.api.disputes import router as disputes_router
from intentmatch.api.routes import router as api_router
from intentmatch.config import settings
from intentmatch.db import init_db
from intentmatch.errors import EngineError, InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from intentmatch.jobs.runner import sweep_runner

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    NotFoundError: 404,
    InvalidStateError: 409,
    UnauthorizedError: 403,
    ValidationError: 422,
}


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.on_event("startup")
def on_startup():
    init_db()
    if settings.enable_scheduler:
        sweep_runner.start()


@app.on_event("shutdown")
def on_shutdown():
    if settings.enable_scheduler:
        sweep_runner.stop()


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(api_router, prefix="/api")
app.include_router(disputes_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
