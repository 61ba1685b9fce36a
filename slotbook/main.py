import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slotbook.core.config import settings
from slotbook.core.errors import BookingConflict, TransientFailure
from slotbook.core.log_config import setup_logging
from slotbook.api.v1.api import api_router

setup_logging(verbose=settings.ENV != "test")
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:8080", "http://localhost:8080",
    "http://127.0.0.1:5173", "http://localhost:5173",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingConflict)
def _booking_conflict(request: Request, exc: BookingConflict):
    # the reason code is what clients branch on
    return JSONResponse(status_code=409, content={"detail": exc.message, **exc.to_dict()})


@app.exception_handler(TransientFailure)
def _transient_failure(request: Request, exc: TransientFailure):
    logger.warning("transient failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc) or "Service temporarily unavailable"},
                        headers={"Retry-After": "2"})


app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
