"""Main FastAPI application"""
import os
import time
import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from starlette.exceptions import HTTPException as StarletteHTTPException

from routes import router as api_router
from utils.errors import ExpenseError, error_body

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

load_dotenv() # Searches for .env in current dir and parents

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            # RichHandler renders time and level itself
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False
        },
    },
    "loggers": {
        "uvicorn": {
             "handlers": ["default"],
             "level": "INFO",
             "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": { # Root logger for our application
            "handlers": ["default"],
            "level": os.getenv("LOG_LEVEL", "INFO").upper(),
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "expenses_db")
COLLECTION_NAME = "expenses"
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
RATE_LIMIT = os.getenv("RATE_LIMIT", "") # e.g. "100/minute"; empty disables limiting
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

if not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! The server will refuse to start.")

# Application state to hold the database client and collection
app_state = {}

# --- Rate Limiter Setup ---
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[RATE_LIMIT] if RATE_LIMIT else [],
    enabled=bool(RATE_LIMIT),
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: connect to MongoDB, failing fast if it is unreachable
    if not MONGODB_URI:
        raise RuntimeError("MONGODB_URI is not set in the environment variables.")
    logger.info(f"Connecting to MongoDB database '{DB_NAME}'...")
    client = AsyncIOMotorClient(MONGODB_URI, tz_aware=True)
    try:
        await client.admin.command('ping')
    except Exception as e:
        logger.critical(f"MongoDB connection error: {e}")
        client.close()
        raise
    app_state["db_client"] = client
    app_state["db"] = client[DB_NAME]
    app_state["expenses_collection"] = app_state["db"].get_collection(COLLECTION_NAME)
    logger.info(f"MongoDB connected. Serving collection '{DB_NAME}.{COLLECTION_NAME}'.")

    yield # Application runs here

    # Shutdown: Close MongoDB connection
    logger.info("Closing MongoDB connection...")
    app_state.pop("db_client").close()
    app_state.clear()
    logger.info("MongoDB connection closed.")

app = FastAPI(
    title="Expenses API",
    description="API for recording personal financial transactions.",
    version="1.0.0",
    lifespan=lifespan
)

# --- Error Translation ---

@app.exception_handler(ExpenseError)
async def expense_error_handler(request: Request, exc: ExpenseError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content=error_body("Internal Server Error"))
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Malformed request on {request.method} {request.url.path}: {exc.errors()}")
    details = jsonable_encoder(exc.errors(), exclude={"ctx", "url"})
    return JSONResponse(status_code=400, content=error_body("request body must be a JSON object", details))

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)), headers=getattr(exc, "headers", None))

@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}: {exc.detail}")
    return JSONResponse(status_code=429, content=error_body(f"Rate limit exceeded: {exc.detail}"))

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=error_body("Internal Server Error"))

# --- Apply Rate Limiter State ---
app.state.limiter = limiter

# --- Add Middleware (Order Matters: last added runs first) ---
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Location"],
)

# Make app state accessible via middleware
@app.middleware("http")
async def add_app_config_to_request(request: Request, call_next):
    """Adds the database collection to the request state."""
    request.state.expenses_collection = app_state.get("expenses_collection")
    return await call_next(request)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.4f}s"
    )
    return response

app.include_router(api_router, tags=["expenses"])

@app.get("/health", include_in_schema=False)
async def health_check():
    return {"status": "healthy", "database": app_state.get("db_client") is not None}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=HOST,
        port=PORT,
    )
