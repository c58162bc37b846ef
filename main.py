"""Application factory.

Production wiring pulls secrets from Vault:

    uvicorn main:create_app_from_vault --factory
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.authentication import AuthenticationMiddleware

from api.base import success_response
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from api.users import create_users_router
from auth.api import create_auth_router
from auth.cleanup import CleanupScheduler
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.rate_limiter import RateLimiter
from auth.resolver import SessionResolver
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware, PlatformHeaderBackend
from auth.service import AuthService
from auth.session import SessionManager
from clients.email_client import EmailGatewayClient
from clients.firebase_client import FirebaseTokenVerifier
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)


def create_app(
    config: AuthConfig,
    postgres: PostgresClient,
    valkey: ValkeyClient,
    email_client: EmailGatewayClient,
    token_verifier: FirebaseTokenVerifier,
    run_cleanup: bool = True,
) -> FastAPI:
    """Wire services, middleware and routes around the given clients."""
    auth_db = AuthDatabase(postgres)
    session_manager = SessionManager(valkey, config)
    security_logger = SecurityLogger(postgres)
    auth_service = AuthService(
        config=config,
        auth_db=auth_db,
        session_manager=session_manager,
        rate_limiter=RateLimiter(valkey, config),
        email_client=email_client,
        security_logger=security_logger,
        token_verifier=token_verifier,
    )
    resolver = SessionResolver(auth_db, session_manager)
    scheduler = CleanupScheduler(
        auth_db,
        interval_hours=config.cleanup_interval_hours,
        security_logger=security_logger,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_cleanup:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.stop()
            email_client.close()
            valkey.close()
            postgres.close()

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    app.state.auth_config = config
    app.state.resolver = resolver
    app.state.cleanup_scheduler = scheduler

    register_error_handlers(app)

    # Last added runs first: request id, platform principal, then the gate
    app.add_middleware(AuthMiddleware, resolver=resolver, config=config)
    app.add_middleware(AuthenticationMiddleware, backend=PlatformHeaderBackend(config))
    app.add_middleware(RequestIDMiddleware)

    app.include_router(create_auth_router(auth_service, config), prefix="/api/auth")
    app.include_router(create_users_router(auth_service), prefix="/api/users")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"})

    return app


def create_app_from_vault() -> FastAPI:
    """Build the app with clients configured from Vault. Fails fast."""
    from clients.vault_client import (
        get_database_url,
        get_email_config,
        get_firebase_config,
        get_valkey_url,
    )

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = AuthConfig()
    return create_app(
        config=config,
        postgres=PostgresClient(get_database_url()),
        valkey=ValkeyClient(get_valkey_url()),
        email_client=EmailGatewayClient(**get_email_config(), app_name=config.app_name),
        token_verifier=FirebaseTokenVerifier(get_firebase_config()["project_id"]),
    )
