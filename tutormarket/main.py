import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from tutormarket.logger import logger
from tutormarket.config import get_settings
from tutormarket.database.database import init_db
from tutormarket.errors import MarketplaceError, RemoteCallFailed, ValidationFailed
from tutormarket.realtime import change_feed

### ROUTERS
from tutormarket.routers.admin import router as admin_router
from tutormarket.routers.authentication import router as auth_router, limiter
from tutormarket.routers.availability import router as availability_router
from tutormarket.routers.bookings import router as bookings_router
from tutormarket.routers.chat import router as chat_router
from tutormarket.routers.navigation import router as navigation_router
from tutormarket.routers.parents import router as parents_router
from tutormarket.routers.payments import router as payments_router
from tutormarket.routers.progress import router as progress_router
from tutormarket.routers.realtime import router as realtime_router
from tutormarket.routers.resources import router as resources_router
from tutormarket.routers.reviews import router as reviews_router
from tutormarket.routers.tutor import router as tutor_router
from tutormarket.routers.user import router as user_router

USE_REDIS = get_settings().use_redis


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging all HTTP requests and responses.

    Logs request method, URL, response status, and timing information.
    Handles errors by logging exceptions.
    """
    async def dispatch(self, request: Request, call_next):
        # Log request
        start_time = datetime.now()
        logger.info(f"Request: {request.method} {request.url}")

        try:
            response = await call_next(request)
            # Log response
            duration = (datetime.now() - start_time).total_seconds()
            logger.info(f"Response: {response.status_code} - Duration: {duration:.3f}s")
            return response
        except Exception as e:
            # Log error
            logger.error(f"Error processing request: {str(e)}")
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application startup and shutdown.
    Creates the tables and, with Redis enabled, keeps the cache in step with committed changes.
    """
    logger.info("Server starting up...")
    init_db()
    cache_task = None
    if USE_REDIS:
        from tutormarket.database.redis import keep_cache_fresh
        change_feed.initialize_from_settings()
        cache_task = asyncio.create_task(keep_cache_fresh())
    yield
    if cache_task is not None:
        cache_task.cancel()
        try:
            await cache_task
        except asyncio.CancelledError:
            pass
    change_feed.reset()
    logger.info("Server shutting down...")


app = FastAPI(
    title=get_settings().app_name,
    version=get_settings().app_version,
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Add CORS middleware with environment configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
    max_age=3600
)

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    error = ValidationFailed("Request validation failed", details={"errors": jsonable_encoder(exc.errors())})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {str(exc)}")
    error = RemoteCallFailed("The database is unavailable, please try again")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

# Include routers
app.include_router(admin_router, tags=['admin'])
app.include_router(auth_router, tags=['authentication'])
app.include_router(availability_router, tags=['availability'])
app.include_router(bookings_router, tags=['bookings'])
app.include_router(chat_router, tags=['chat'])
app.include_router(navigation_router, tags=['navigation'])
app.include_router(parents_router, tags=['parents'])
app.include_router(payments_router, tags=['payments'])
app.include_router(progress_router, tags=['progress'])
app.include_router(realtime_router, tags=['realtime'])
app.include_router(resources_router, tags=['resources'])
app.include_router(reviews_router, tags=['reviews'])
app.include_router(tutor_router, tags=['tutors'])
app.include_router(user_router, tags=['users'])

@app.get("/")
def read_root():
    """
    Root endpoint returning API welcome message.

    Returns:
    - dict: Welcome message
    """
    return {"message": f"Welcome to the {get_settings().app_name} API"}

@app.get("/health")
def health():
    return {"status": "ok", "version": get_settings().app_version}

if __name__ == '__main__':
    import uvicorn
    uvicorn.run(app, host=get_settings().app_host, port=get_settings().app_port)
