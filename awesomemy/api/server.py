"""
HTTP API.

- /auth/*    OAuth2 login/logout (public)
- /public/*  catalogue listings (public)
- /client/*  per-user management (requires an authenticated session)

Sessions are loaded for every request by the session middleware and saved
(with a rotated cookie when needed) before the response is returned.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from awesomemy.auth.config import AuthConfig, load_auth_config
from awesomemy.auth.flow import AuthenticationFlow
from awesomemy.auth.gate import AuthorizationGate, attach_user, current_session, current_user
from awesomemy.auth.identity import IdentityResolver, UserRepository
from awesomemy.auth.providers import ProviderRegistry, build_registry
from awesomemy.auth.session import MemorySessionStore, PostgresSessionStore, SessionManager, SessionStore
from awesomemy.errors import AppError, InternalError, NotFound, ValidationFailed
from awesomemy.pagination import build_metadata, compute_window, parse_listing_filter
from awesomemy.resources import KINDS, ResourceKind, ResourceRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cfg: AuthConfig
    sessions: SessionManager
    flow: AuthenticationFlow
    gate: AuthorizationGate
    resources: ResourceRepository


def build_services(
    cfg: Optional[AuthConfig] = None,
    *,
    session_store: Optional[SessionStore] = None,
    users: Optional[UserRepository] = None,
    resources: Optional[ResourceRepository] = None,
    providers: Optional[ProviderRegistry] = None,
) -> Services:
    """Wire the auth core together. Anything not passed in is built from the environment."""
    cfg = cfg or load_auth_config()

    if users is None or resources is None or (session_store is None and cfg.session_store == "postgres"):
        from awesomemy.db.config import build_postgres_dsn, load_database_config

        dsn = build_postgres_dsn(load_database_config())
        if not dsn:
            raise RuntimeError("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
        if users is None:
            from awesomemy.db.users import PostgresUserRepository

            users = PostgresUserRepository(dsn)
        if resources is None:
            from awesomemy.db.resources import PostgresResourceRepository

            resources = PostgresResourceRepository(dsn)
        if session_store is None and cfg.session_store == "postgres":
            session_store = PostgresSessionStore(dsn)

    if session_store is None:
        logger.warning("Using in-process session store (SESSION_STORE=memory); sessions are not shared")
        session_store = MemorySessionStore()

    sessions = SessionManager(cfg, session_store)
    flow = AuthenticationFlow(
        sessions=sessions,
        providers=providers if providers is not None else build_registry(cfg),
        identities=IdentityResolver(users),
        frontend_base_url=cfg.frontend_base_url,
    )
    return Services(cfg=cfg, sessions=sessions, flow=flow, gate=AuthorizationGate(users), resources=resources)


def _requires_auth(path: str) -> bool:
    return path == "/client" or path.startswith("/client/")


def _error_response(e: AppError) -> JSONResponse:
    if e.status_code >= 500:
        logger.error("%s: %s", type(e).__name__, e.detail or e.message)
    else:
        logger.info("%s: %s", type(e).__name__, e.detail or e.message)
    # IMPORTANT: do not emit `WWW-Authenticate`; the front end renders its own login.
    return JSONResponse(status_code=e.status_code, content={"message": e.message})


def _services(request: Request) -> Services:
    return request.app.state.services


def _kind(name: str) -> ResourceKind:
    kind = KINDS.get(name)
    if kind is None:
        raise NotFound(f"unknown resource kind {name!r}")
    return kind


def _parse_uuid(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise NotFound(f"malformed resource uuid {raw!r}") from None


def _validate(kind: ResourceKind, payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return kind.model.model_validate(payload).model_dump()
    except ValidationError as e:
        raise ValidationFailed(f"{kind.name}: {e.error_count()} validation error(s)") from e


def _listing(
    svc: Services,
    kind: ResourceKind,
    *,
    page: Optional[str],
    limit: Optional[str],
    order_by: Optional[str],
    tags: Optional[str],
    keyword: Optional[str],
    owner_id: Optional[int] = None,
) -> Dict[str, Any]:
    window = compute_window(page, limit, svc.cfg.pagination_max_limit)
    flt = parse_listing_filter(order_by, tags, keyword)
    items, total = svc.resources.list(kind, window, flt, owner_id=owner_id)
    return {
        "items": [r.to_public() for r in items],
        "pagination": build_metadata(window.page, len(items), total, window.limit),
    }


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="awesome-my API")
    app.state.services = services or build_services()

    @app.exception_handler(AppError)
    async def _app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(ValidationFailed(f"{len(exc.errors())} request validation error(s)"))

    @app.on_event("startup")
    def _startup_maybe_migrate_db() -> None:
        """
        Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

        This should never prevent the server from starting; failures are logged.
        """
        try:
            from awesomemy.db.migrate import maybe_auto_migrate

            did_attempt, msg = maybe_auto_migrate()
            if did_attempt:
                logger.info("DB migrations: %s", msg)
        except Exception as e:
            logger.warning("DB migrations: startup auto-migrate failed: %s", str(e))

    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        """Load the session, enforce auth on /client, save + reissue the cookie."""
        start_time = time.time()
        svc = _services(request)
        path = request.url.path or ""
        try:
            session = await run_in_threadpool(svc.sessions.load, request.cookies.get(svc.sessions.cookie_name))
            request.state.session = session

            # Fail closed: every /client route requires an authenticated session.
            if request.method != "OPTIONS" and _requires_auth(path):
                user = await run_in_threadpool(svc.gate.authenticate, session)
                attach_user(request, user)

            response = await call_next(request)

            # Durably written before the response leaves: the next request must see the rotated token.
            if await run_in_threadpool(svc.sessions.save, session):
                response.set_cookie(**svc.sessions.cookie_kwargs(session))
        except AppError as e:
            return _error_response(e)
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, process_time, str(e))
            return _error_response(InternalError(f"{type(e).__name__}: {e}"))

        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
        return response

    # Added last so CORS wraps everything, including auth failures.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app.state.services.cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization"],
        max_age=7200,
    )

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    # ---- Authentication ----

    @app.get("/auth/oauth2/{provider}")
    def auth_oauth2_begin(request: Request, provider: str):
        """Rotate the session, bind a PKCE verifier to it and redirect to the provider."""
        svc = _services(request)
        url = svc.flow.begin_authorization(current_session(request), provider)
        resp = RedirectResponse(url=url, status_code=307)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    @app.get("/auth/oauth2/{provider}/callback")
    def auth_oauth2_callback(
        request: Request,
        provider: str,
        code: str = Query(""),
        state: str = Query(""),
    ):
        """Handle the provider callback; on success the session is logged in."""
        svc = _services(request)
        _user, redirect_to = svc.flow.complete_authorization(current_session(request), provider, code, state)
        resp = RedirectResponse(url=redirect_to, status_code=307)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    @app.post("/auth/logout")
    def auth_logout(request: Request) -> JSONResponse:
        _services(request).flow.logout(current_session(request))
        resp = JSONResponse(content={"ok": True})
        resp.headers["Cache-Control"] = "no-store"
        return resp

    # ---- Client (authenticated) ----

    @app.get("/client/account")
    def client_account(request: Request) -> Dict[str, Any]:
        return {"item": current_user(request).to_public()}

    @app.get("/client/{kind_name}")
    def client_list(
        request: Request,
        kind_name: str,
        page: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
        order_by: Optional[str] = Query(None, alias="orderBy"),
        tags: Optional[str] = Query(None),
        keyword: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        user = current_user(request)
        return _listing(
            _services(request),
            _kind(kind_name),
            page=page,
            limit=limit,
            order_by=order_by,
            tags=tags,
            keyword=keyword,
            owner_id=user.user_id,
        )

    @app.post("/client/{kind_name}")
    def client_create(request: Request, kind_name: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        user = current_user(request)
        kind = _kind(kind_name)
        attrs = _validate(kind, payload)
        created = _services(request).resources.insert(kind, user.user_id, attrs)
        logger.info("User %s created %s %s", user.uuid, kind.name, created.uuid)
        return {"item": created.to_public()}

    @app.get("/client/{kind_name}/{resource_uuid}")
    def client_get(request: Request, kind_name: str, resource_uuid: str) -> Dict[str, Any]:
        svc = _services(request)
        kind = _kind(kind_name)
        found = svc.resources.get(kind, _parse_uuid(resource_uuid))
        owned = svc.gate.authorize_ownership(current_user(request), found)
        return {"item": owned.to_public()}

    @app.put("/client/{kind_name}/{resource_uuid}")
    def client_update(
        request: Request, kind_name: str, resource_uuid: str, payload: Dict[str, Any] = Body(...)
    ) -> Dict[str, Any]:
        svc = _services(request)
        kind = _kind(kind_name)
        found = svc.resources.get(kind, _parse_uuid(resource_uuid))
        owned = svc.gate.authorize_ownership(current_user(request), found)
        attrs = _validate(kind, payload)
        return {"item": svc.resources.update(kind, owned.resource_id, attrs).to_public()}

    @app.delete("/client/{kind_name}/{resource_uuid}")
    def client_delete(request: Request, kind_name: str, resource_uuid: str) -> Dict[str, Any]:
        svc = _services(request)
        kind = _kind(kind_name)
        found = svc.resources.get(kind, _parse_uuid(resource_uuid))
        owned = svc.gate.authorize_ownership(current_user(request), found)
        svc.resources.delete(kind, owned.resource_id)
        return {"ok": True}

    # ---- Public catalogue ----

    @app.get("/public/{kind_name}")
    def public_list(
        request: Request,
        kind_name: str,
        page: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
        order_by: Optional[str] = Query(None, alias="orderBy"),
        tags: Optional[str] = Query(None),
        keyword: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        return _listing(
            _services(request),
            _kind(kind_name),
            page=page,
            limit=limit,
            order_by=order_by,
            tags=tags,
            keyword=keyword,
        )

    @app.get("/public/{kind_name}/{resource_uuid}")
    def public_get(request: Request, kind_name: str, resource_uuid: str) -> Dict[str, Any]:
        kind = _kind(kind_name)
        found = _services(request).resources.get(kind, _parse_uuid(resource_uuid))
        if found is None:
            raise NotFound()
        return {"item": found.to_public()}

    return app


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting API server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(create_app(), host=host, port=port, log_level=uvicorn_log_level)
