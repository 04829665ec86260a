from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from .coordinator import HandoffCoordinator
from .core.riot_client import RiotLoginBroker
from .exchange_store import ExchangeStore
from .logger import setup_logging
from .rate_limit import RateLimiter, rate_limit_middleware
from .routers.auth_routes import router as auth_router
from .routers.health_routes import router as health_router
from .settings import Settings, settings as default_settings

log = logging.getLogger("auth_relay")

SECRET_QUERY_KEYS = frozenset({"code"})

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def redact_query(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    return urlencode([(k, "***" if k in SECRET_QUERY_KEYS and v else v) for k, v in pairs])


def create_app(
    settings: Optional[Settings] = None,
    *,
    broker=None,
    store: Optional[ExchangeStore] = None,
) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(title="Auth Relay Service")
    app.state.settings = settings

    if not settings.ALLOWED_ORIGINS:
        log.warning("ALLOWED_ORIGINS is empty; /auth/login will refuse every origin")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.exchange_store = store or ExchangeStore(
        ttl_seconds=settings.CODE_TTL_SECONDS,
        grace_seconds=settings.CODE_GRACE_SECONDS,
    )
    app.state.coordinator = HandoffCoordinator(
        store=app.state.exchange_store,
        broker=broker or RiotLoginBroker.from_settings(settings),
        allowed_origins=settings.ALLOWED_ORIGINS,
        code_ttl_seconds=settings.CODE_TTL_SECONDS,
        login_window_seconds=settings.LOGIN_WINDOW_SECONDS,
        bind_code_to_origin=settings.BIND_CODE_TO_ORIGIN,
    )
    app.state.rate_limiter = RateLimiter(
        max_calls=settings.RATE_LIMIT_MAX_CALLS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )

    app.middleware("http")(rate_limit_middleware)

    # ----------------------------
    # Request/Response logging middleware
    # ----------------------------
    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid

        start = time.time()
        path = request.url.path

        log.info(
            "REQ rid=%s method=%s path=%s query=%s client=%s",
            rid,
            request.method,
            path,
            redact_query(str(request.url.query)),
            request.client.host if request.client else None,
        )

        try:
            resp: Response = await call_next(request)
            dur_ms = int((time.time() - start) * 1000)
            log.info("RES rid=%s status=%s dur_ms=%s path=%s", rid, resp.status_code, dur_ms, path)
            for k, v in SECURITY_HEADERS.items():
                resp.headers.setdefault(k, v)
            resp.headers["x-request-id"] = rid
            return resp
        except Exception:
            dur_ms = int((time.time() - start) * 1000)
            log.exception("ERR rid=%s dur_ms=%s path=%s", rid, dur_ms, path)
            raise

    @app.on_event("startup")
    async def startup():
        log.info(
            "startup begin env=%s allowed_origins=%s code_ttl=%ss grace=%ss bind_origin=%s",
            settings.ENV,
            settings.ALLOWED_ORIGINS,
            settings.CODE_TTL_SECONDS,
            settings.CODE_GRACE_SECONDS,
            settings.BIND_CODE_TO_ORIGIN,
        )
        app.state.exchange_store.start_sweeper()
        log.info("startup complete")

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.exchange_store.stop_sweeper()

    app.include_router(health_router)
    app.include_router(auth_router)
    return app


setup_logging()
app = create_app()


def run() -> None:
    """Serve over HTTPS when cert/selfsigned.{key,crt} exist, plain HTTP otherwise."""
    settings = default_settings
    cert_dir = Path(settings.CERT_DIR)
    key_path = cert_dir / "selfsigned.key"
    crt_path = cert_dir / "selfsigned.crt"

    ssl_kwargs = {}
    if key_path.exists() and crt_path.exists():
        ssl_kwargs = {"ssl_keyfile": str(key_path), "ssl_certfile": str(crt_path)}
        log.info("serving https on port %s", settings.PORT)
    else:
        log.warning("serving plain http on port %s (use HTTPS for the extension in Chrome)", settings.PORT)

    uvicorn.run("auth_relay.main:app", host=settings.HOST, port=settings.PORT, **ssl_kwargs)


if __name__ == "__main__":
    run()
