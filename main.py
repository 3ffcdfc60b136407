from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from contextlib import asynccontextmanager
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn
from app.chat.api.route import chat_router
from app.chat.repository.model_config_repository import ModelConfigRepository
from app.chat.repository.usage_log_repository import UsageLogRepository
from app.chat.service.proxy_service import ChatProxyService
from app.auth.service.auth_service import AuthService
from app.core.config import settings
from app.core.logger import get_logger, mask
from pkg.auth_token_client.client import TokenClient
from pkg.db_util.postgres_conn import PostgresConnection
from pkg.db_util.types import PostgresConfig
from pkg.supabase_rest.client import SupabaseRestClient
from dotenv import load_dotenv
import asyncio
import os
import sys

# Load .env so os.getenv picks up provider secrets named by ai_model_configs.api_secret_name
load_dotenv()

logger = get_logger("ai-chat-proxy")


def _missing_settings() -> list[str]:
    missing = []
    if not settings.has_database:
        missing.append("POSTGRES_HOST/POSTGRES_USER or DATABASE_URL")
    if not settings.SUPABASE_JWT_SECRET and not (settings.SUPABASE_URL and settings.SUPABASE_ANON_KEY):
        missing.append("SUPABASE_JWT_SECRET or SUPABASE_URL/SUPABASE_ANON_KEY")
    return missing


def _degrade(app: FastAPI, error_msg: str) -> None:
    app.state.proxy_service = None
    app.state.auth_service = None
    app.state.startup_complete = False
    app.state.startup_error = error_msg


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager - ensures startup completes before accepting requests"""
    logger.info("AI chat proxy starting up...")
    logger.info(f"Python: {sys.version}")
    logger.info(f"PORT from env: {os.getenv('PORT', 'NOT SET')}")

    logger.info("=== Environment Variables Check ===")
    logger.info(f"SUPABASE_URL: {settings.SUPABASE_URL or 'NOT SET'}")
    logger.info(f"SUPABASE_ANON_KEY: {mask(settings.SUPABASE_ANON_KEY)}")
    logger.info(f"SUPABASE_JWT_SECRET: {mask(settings.SUPABASE_JWT_SECRET)}")
    logger.info(f"POSTGRES_HOST: {settings.POSTGRES_HOST or 'NOT SET'}")
    logger.info(f"POSTGRES_PASSWORD: {mask(settings.POSTGRES_PASSWORD)}")
    logger.info("===================================")

    missing = _missing_settings()
    if missing:
        error_msg = f"Service credentials missing: {', '.join(missing)}"
        logger.error(error_msg)
        logger.error("Application will start in degraded mode")
        _degrade(app, error_msg)
        yield
        return

    postgres_conn = None
    rest_client = None
    try:
        postgres_config = PostgresConfig(
            host=settings.POSTGRES_HOST,
            port=settings.POSTGRES_PORT,
            username=settings.POSTGRES_USER,
            password=settings.POSTGRES_PASSWORD,
            database=settings.POSTGRES_DB,
            pool_timeout=30,
            dsn=settings.DATABASE_URL,
        )
        postgres_conn = PostgresConnection(postgres_config, logger)

        logger.info("Initializing database engine with retry logic...")
        try:
            await asyncio.wait_for(postgres_conn.get_engine(max_retries=5, initial_delay=2.0), timeout=60.0)
            logger.info("✓ Postgres engine initialized during startup.")
        except asyncio.TimeoutError:
            raise ConnectionError("Database connection timeout - check network/credentials")

        # Identity: local JWT verification when the secret is known, otherwise ask the identity service
        if settings.SUPABASE_JWT_SECRET:
            auth_service = AuthService(logger, token_client=TokenClient(settings.SUPABASE_JWT_SECRET))
        else:
            rest_client = SupabaseRestClient(logger, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
            auth_service = AuthService(logger, rest_client=rest_client)

        proxy_service = ChatProxyService(
            model_configs=ModelConfigRepository(postgres_conn),
            usage_logs=UsageLogRepository(postgres_conn),
            include_usage=settings.STREAM_INCLUDE_USAGE,
            forward_metadata=settings.FORWARD_REQUEST_METADATA,
            audit_pre_stream_failures=settings.AUDIT_PRE_STREAM_FAILURES,
        )

        app.state.postgres_conn = postgres_conn
        app.state.auth_service = auth_service
        app.state.proxy_service = proxy_service
        app.state.startup_complete = True
        app.state.startup_error = None
        logger.info("✓ Startup complete - application is ready!")

    except Exception as e:
        logger.error(f"✗ Startup failed: {e}", exc_info=True)
        logger.error("Application will start in degraded mode - check logs above")
        _degrade(app, str(e))

    yield

    logger.info("AI chat proxy shutting down...")
    if rest_client is not None:
        await rest_client.close()
    if postgres_conn is not None:
        await postgres_conn.close_engine()


app = FastAPI(
    title="AI Chat Proxy",
    description="Streaming chat-completion proxy with usage logging",
    version="1.0.0",
    lifespan=lifespan
)


# Startup Check Middleware - ensures no requests processed before startup completes
class StartupCheckMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Health checks and CORS preflight are answered during startup
        if request.method == "OPTIONS" or request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        startup_error = getattr(request.app.state, "startup_error", None)
        if startup_error:
            return JSONResponse(
                status_code=500,
                content={"status": False, "message": startup_error},
            )

        if not getattr(request.app.state, "startup_complete", False):
            return JSONResponse(
                status_code=503,
                content={"status": False, "message": "Service is starting up. Please retry in a few seconds."},
            )

        return await call_next(request)


# Allowed preflights get an empty 200 body
class PreflightCORSMiddleware(CORSMiddleware):
    def preflight_response(self, request_headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=200, headers=headers)


# Add middleware in correct order
app.add_middleware(StartupCheckMiddleware)
app.add_middleware(
    PreflightCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Convert HTTPException to standardized error format"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": False, "message": exc.detail},
        headers=exc.headers
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid request body: {exc.errors()}")
    return JSONResponse(status_code=400, content={"status": False, "message": "Invalid JSON"})


# Routers
app.include_router(chat_router)


@app.get("/health")
async def health():
    """Health check that shows service status"""
    startup_complete = getattr(app.state, "startup_complete", False)
    startup_error = getattr(app.state, "startup_error", None)

    if not startup_complete:
        return JSONResponse(
            status_code=200,
            content={
                "status": "starting" if startup_error is None else "degraded",
                "service": "ai-chat-proxy",
                "message": startup_error or "Application is still starting up...",
                "startup_complete": False
            }
        )

    checks = {
        "database": "✓ connected" if getattr(app.state, "postgres_conn", None) else "✗ not_initialized",
        "auth_service": "✓ ready" if getattr(app.state, "auth_service", None) else "✗ not_ready",
        "proxy_service": "✓ ready" if getattr(app.state, "proxy_service", None) else "✗ not_ready",
    }
    all_healthy = all(value.startswith("✓") for value in checks.values())
    return {
        "status": "ok" if all_healthy else "degraded",
        "service": "ai-chat-proxy",
        "checks": checks,
        "startup_complete": True
    }


@app.get("/")
async def root():
    """Root endpoint - simple check that app is running"""
    return {
        "service": "ai-chat-proxy",
        "version": "1.0.0",
        "status": "running",
        "health_check": "/health"
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
