"""
Klio API - FastAPI application.

Mounts the onboarding routes under /api. Errors are always rendered as
{"error": "..."} so the onboarding client can surface them verbatim.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from klio import __version__
from klio.config import settings
from klio.logging_setup import setup_logging
from onboarding.api import router as onboarding_router

logger = logging.getLogger(__name__)

app = FastAPI(title="Klio", version=__version__)


@app.on_event("startup")
async def startup_event():
    """Configure logging and report the environment."""
    setup_logging(settings.log_level)
    logger.info(f"Klio API {__version__} starting up ({settings.klio_env})")


# CORS middleware for the web frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug(f"Rejected payload on {request.url.path}: {exc.errors()}")
    if request.url.path.startswith("/api/user/") and request.method == "POST":
        message = "Invalid payload - selections must be an array"
    else:
        message = "Invalid payload"
    return JSONResponse(status_code=400, content={"error": message})


app.include_router(onboarding_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
