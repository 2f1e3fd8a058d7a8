import os
import logfire

from dotenv import load_dotenv

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from contextlib import asynccontextmanager

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from models.users import User

from routers import auth

from security.config import AuthSettings
from security.errors import AuthError, ValidationFailed
from security.gate import AuthGate

from services.credential_store import CredentialStore
from services.sessions import SessionManager

from utils.logger import configure_logging, instrument_libraries


# Load environment variables first
load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Configure logfire BEFORE creating FastAPI app
configure_logging(os.getenv("LOGFIRE_WRITE_TOKEN"), ENVIRONMENT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logfire.info("Starting URL shortener auth service...")

    client = None
    if app.state.connect_database:
        client = AsyncIOMotorClient(
            os.getenv("DATABASE_CONNECTION_STRING", "mongodb://localhost:27017"), tz_aware=True
        )  # * Connect to MongoDB

        await init_beanie(
            database=client[os.getenv("DATABASE_NAME", "urlshortener")],
            document_models=[User],
        )
        logfire.info("Database initialized successfully")

    yield

    logfire.info("Shutting down URL shortener auth service...")
    if client is not None:
        client.close()
    logfire.info("Application shutdown complete")


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    content = {"success": False, "message": exc.message, "code": exc.code}
    if isinstance(exc, ValidationFailed) and exc.errors:
        content["errors"] = exc.errors

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return await auth_error_handler(request, ValidationFailed(errors=errors))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logfire.error(f"Unexpected error on {request.method} {request.url.path}: {str(exc)}")

    content = {"success": False, "message": "An unexpected error occurred"}
    if ENVIRONMENT == "development":
        content["error"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def create_app(
    settings: AuthSettings | None = None,
    store=None,
    clock=None,
) -> FastAPI:
    """Builds the application.

    Args:
        settings (AuthSettings | None, optional): Defaults to `AuthSettings.from_env()`.
        store (optional): Credential store. When omitted the MongoDB-backed store is used
            and the database is connected on startup.
        clock (optional): Callable returning the current aware UTC datetime.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or AuthSettings.from_env()

    app = FastAPI(
        title="URL Shortener Auth API",
        description="Registration, login and session-token management for the URL shortener.",
        lifespan=lifespan,
    )

    app.state.connect_database = store is None
    store = store or CredentialStore()

    app.state.settings = settings
    app.state.session_manager = SessionManager(settings, store, clock=clock)
    app.state.auth_gate = AuthGate(settings, store, issuer=app.state.session_manager.issuer)

    if os.getenv("LOGFIRE_WRITE_TOKEN"):
        instrument_libraries(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[os.getenv("CORS_ORIGIN", "http://localhost:5173")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(auth.router)

    @app.get("/api/health", tags=["Health"])
    async def health():
        return {"success": True, "status": "OK", "environment": ENVIRONMENT}

    return app


app = create_app()
