# SPDX-License-Identifier: Apache-2.0

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.sessions import SessionMiddleware

from .admin.context import AdminServices
from .admin.pool import AdminPool
from .admins import build_default_pool
from .config import Settings, settings as default_settings
from .db import ping_db
from .exceptions import ConfigurationError
from .metrics import metrics_endpoint
from .middleware import CorrelationIdMiddleware, HttpMetricsMiddleware
from .rate_limit import rate_limit_middleware
from .routes import auth as auth_routes
from .routes.admin import build_admin_router
from .schemas import HealthOut
from .security.acl import AdminObjectAclManipulator
from .security.csrf import CsrfTokenManager
from .security_gate import run_security_gate
from .services.exporter import Exporter
from .services.revisions import AuditManager
from .telemetry import log_json, setup_logging
from .templating import build_templates
from .translation import translator

VERSION = "0.1.0"

logger = setup_logging()


def build_admin_services(pool: AdminPool, cfg: Settings) -> AdminServices:
    csrf = CsrfTokenManager(cfg)
    return AdminServices(
        pool=pool,
        templates=build_templates(cfg.TEMPLATE_DIRS),
        csrf=csrf,
        exporter=Exporter(),
        audit_manager=AuditManager(),
        acl_manipulator=AdminObjectAclManipulator(csrf),
        translator=translator,
        settings=cfg,
    )


def create_app(pool: AdminPool | None = None, current_settings: Settings | None = None) -> FastAPI:
    cfg = current_settings or default_settings
    pool = pool if pool is not None else build_default_pool()

    app = FastAPI(title="CRUD Admin", version=VERSION)
    app.state.admin_services = build_admin_services(pool, cfg)

    @app.on_event("startup")
    async def validate_config_on_startup():
        """Fail fast if misconfigured."""
        logger.info("Validating configuration at startup...")
        try:
            run_security_gate(cfg)
        except RuntimeError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise RuntimeError(f"Invalid configuration: {e}") from e
        log_json(20, "admin_pool_ready", admins=pool.get_admin_codes())

    def _csp_directives() -> list[str]:
        allow_inline = cfg.ENVIRONMENT in {"development", "test"}
        script_directive = "script-src 'self'" + (" 'unsafe-inline'" if allow_inline else "")
        return [
            "default-src 'self'",
            script_directive,
            "style-src 'self' 'unsafe-inline'",
            "img-src 'self' data:",
            "frame-ancestors 'none'",
            "base-uri 'self'",
            "form-action 'self'",
        ]

    @app.middleware("http")
    async def _security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Content-Security-Policy", "; ".join(_csp_directives()))
        if request.url.scheme == "https":
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    app.middleware("http")(rate_limit_middleware)

    app.add_middleware(HttpMetricsMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=cfg.SECRET_KEY,
        session_cookie=cfg.SESSION_COOKIE_NAME,
        max_age=cfg.SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=cfg.SESSION_HTTPS_ONLY,
    )
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(ConfigurationError)
    async def _configuration_error_handler(request: Request, exc: ConfigurationError):
        log_json(40, "admin_configuration_error", path=request.url.path, method=request.method, error=str(exc))
        detail = str(exc) if cfg.DEBUG or cfg.ENVIRONMENT in {"development", "test"} else "Admin configuration error"
        resp = JSONResponse(status_code=500, content={"detail": detail})
        rid = getattr(request.state, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    @app.exception_handler(Exception)
    async def _global_exc_handler(request: Request, exc: Exception):
        # Log exception for debugging while returning generic error to client
        logger.exception(
            f"Unhandled exception on {request.method} {request.url.path}",
            exc_info=exc,
            extra={
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else "unknown",
            },
        )
        resp = JSONResponse(status_code=500, content={"detail": "Internal server error"})
        rid = getattr(request.state, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    app.include_router(auth_routes.build_router(cfg))
    app.include_router(build_admin_router(pool))

    @app.get(
        "/metrics",
        response_class=PlainTextResponse,
        responses={
            200: {"content": {"text/plain": {}}},
            403: {"description": "Forbidden"},
        },
    )
    async def metrics(request: Request):
        client_ip = request.client.host if request.client else "unknown"
        if not cfg.METRICS_ALLOW_ALL:
            # Restrict metrics endpoint to localhost by default; adjust for your infra as needed.
            if client_ip not in {"127.0.0.1", "::1"}:
                return JSONResponse(status_code=403, content={"error": "Forbidden"})
        return await metrics_endpoint()

    @app.get("/health", response_model=HealthOut, responses={503: {"model": HealthOut}})
    def health():
        db_ok = ping_db()
        body = HealthOut(status="ok" if db_ok else "degraded", database="ok" if db_ok else "unreachable", version=VERSION)
        return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())

    return app


app = create_app()
