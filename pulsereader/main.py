import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pulsereader.cache import cache
from pulsereader.config import settings
from pulsereader.dependencies import close_ai_client
from pulsereader.exceptions import PulseReaderError
from pulsereader.logging_config import setup_logging
from pulsereader.middleware import TimingMiddleware
from pulsereader.routers import articles, metrics, profile, rss_sources, topics

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger.info("Starting PulseReader API (env=%s)", settings.APP_ENV)
    await cache.connect()  # App works without Redis
    if not settings.OPENROUTER_API_KEY:
        logger.warning("OPENROUTER_API_KEY not set; article analysis will be unavailable")
    yield
    # Shutdown
    await close_ai_client()
    await cache.disconnect()


app = FastAPI(
    title="PulseReader API",
    description="Personalized news aggregation with AI sentiment and topic analysis",
    version="1.0.0",
    lifespan=lifespan,
)


def _error_response(status_code: int, body: dict) -> JSONResponse:
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(PulseReaderError)
async def domain_exception_handler(request: Request, exc: PulseReaderError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return _error_response(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error_response(
        400, {"error": "Invalid request", "code": "VALIDATION_ERROR", "details": details}
    )


# Catch-all so internal errors never leak to clients.
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, {"error": "Internal server error", "code": "INTERNAL_ERROR"})


# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(articles.router)
app.include_router(topics.router)
app.include_router(rss_sources.router)
app.include_router(profile.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
