"""Entry point for the Cinema Guru FastAPI service."""

from __future__ import annotations
import logging
import secrets
import time
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .errors import CinemaGuruError, DataSourceError
from .guard import require_principal, require_title_id, resolve_principal, session_token
from .models import MAX_PAGE, FilterSpec, RelationKind
from .services.catalog import CatalogService
from .services.identity import GitHubIdentityClient, IdentityProviderError
from .services.relations import RelationService
from .services.sessions import SessionStore
from .utils import coerce_int

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

OAUTH_STATE_TTL_SECONDS = 600


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    github_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    catalog_service = CatalogService(
        database.session_factory,
        page_size=settings.page_size,
        exact_totals=settings.exact_totals,
    )
    if settings.catalog_seed_file:
        await catalog_service.load_seed_file(settings.catalog_seed_file)

    fastapi_app.state.database = database
    fastapi_app.state.catalog_service = catalog_service
    fastapi_app.state.relation_service = RelationService(
        database.session_factory,
        page_size=settings.page_size,
        exact_totals=settings.exact_totals,
    )
    fastapi_app.state.session_store = SessionStore(
        database.session_factory, ttl_seconds=settings.session_ttl_seconds
    )
    fastapi_app.state.identity_client = GitHubIdentityClient(
        settings, github_http_client
    )
    pruned = await fastapi_app.state.session_store.prune_expired()
    if pruned:
        logger.info("Pruned %s expired sessions", pruned)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Browse the movie catalog and keep favorites and watch-later lists",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    fastapi_app.state.oauth_states: dict[str, dict[str, Any]] = {}

    register_routes(fastapi_app)
    return fastapi_app


def _service(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{name.replace('_', ' ').capitalize()} not initialised")
    return service


def get_catalog_service(fastapi_app: FastAPI) -> CatalogService:
    return _service(fastapi_app, "catalog_service", CatalogService)


def get_relation_service(fastapi_app: FastAPI) -> RelationService:
    return _service(fastapi_app, "relation_service", RelationService)


def get_session_store(fastapi_app: FastAPI) -> SessionStore:
    return _service(fastapi_app, "session_store", SessionStore)


def get_identity_client(fastapi_app: FastAPI) -> GitHubIdentityClient:
    return _service(fastapi_app, "identity_client", GitHubIdentityClient)


def _http_error(exc: CinemaGuruError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def _parse_page_param(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    page = coerce_int(raw)
    if page is None:
        raise HTTPException(status_code=400, detail="page must be an integer")
    if page < 1:
        raise HTTPException(status_code=400, detail="page must be at least 1")
    if page > MAX_PAGE:
        raise HTTPException(status_code=400, detail=f"page must be at most {MAX_PAGE}")
    return page


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/titles")
    async def list_titles(request: Request) -> JSONResponse:
        catalog = get_catalog_service(fastapi_app)
        try:
            spec = FilterSpec.from_query(request.query_params)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc

        try:
            principal = await resolve_principal(
                request, get_session_store(fastapi_app), settings.session_cookie_name
            )
            page = await catalog.query(spec, principal=principal)
        except DataSourceError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(page.model_dump(mode="json", by_alias=True))

    @fastapi_app.get("/api/genres")
    async def list_genres() -> JSONResponse:
        catalog = get_catalog_service(fastapi_app)
        try:
            genres = await catalog.list_genres()
            min_year, max_year = await catalog.year_bounds()
        except DataSourceError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(
            {
                "items": genres or list(settings.genres),
                "featured": list(settings.genres),
                "minYear": min_year,
                "maxYear": max_year,
            }
        )

    @fastapi_app.get("/api/activities")
    async def list_activities(request: Request) -> JSONResponse:
        page_number = _parse_page_param(request.query_params.get("page")) or 1
        try:
            principal = await require_principal(
                request, get_session_store(fastapi_app), settings.session_cookie_name
            )
            page = await get_relation_service(fastapi_app).list_activities(
                principal, page=page_number
            )
        except CinemaGuruError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(page.model_dump(mode="json", by_alias=True))

    _register_relation_routes(
        fastapi_app,
        "/api/favorites",
        "favorite",
        added_message="Favorite Added",
        removed_message="Favorite Removed",
    )
    _register_relation_routes(
        fastapi_app,
        "/api/watch-later",
        "watch_later",
        added_message="Added to watch later",
        removed_message="Removed from watch later",
    )
    _register_auth_routes(fastapi_app)


def _register_relation_routes(
    fastapi_app: FastAPI,
    path: str,
    kind: RelationKind,
    *,
    added_message: str,
    removed_message: str,
) -> None:
    async def list_relation(request: Request) -> JSONResponse:
        page_number = _parse_page_param(request.query_params.get("page"))
        try:
            principal = await require_principal(
                request, get_session_store(fastapi_app), settings.session_cookie_name
            )
            page = await get_relation_service(fastapi_app).list_entries(
                principal, kind, page=page_number
            )
        except CinemaGuruError as exc:
            raise _http_error(exc) from exc
        logger.info("Fetched %s %s entries for %s", len(page.items), kind, principal.email)
        return JSONResponse(page.model_dump(mode="json", by_alias=True))

    async def add_relation(request: Request) -> dict[str, str]:
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        try:
            title_id = require_title_id(payload)
            principal = await require_principal(
                request, get_session_store(fastapi_app), settings.session_cookie_name
            )
            await get_relation_service(fastapi_app).add(principal, kind, title_id)
        except CinemaGuruError as exc:
            raise _http_error(exc) from exc
        return {"message": added_message}

    async def remove_relation(request: Request, title_id: str) -> dict[str, str]:
        try:
            principal = await require_principal(
                request, get_session_store(fastapi_app), settings.session_cookie_name
            )
            await get_relation_service(fastapi_app).remove(principal, kind, title_id)
        except CinemaGuruError as exc:
            raise _http_error(exc) from exc
        return {"message": removed_message}

    fastapi_app.add_api_route(path, list_relation, methods=["GET"])
    fastapi_app.add_api_route(path, add_relation, methods=["POST"])
    fastapi_app.add_api_route(f"{path}/{{title_id:path}}", remove_relation, methods=["DELETE"])


def _register_auth_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.post("/api/auth/login-url")
    async def login_url(request: Request) -> dict[str, str]:
        if not settings.github_login_enabled:
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "github_credentials_missing",
                    "description": (
                        "GitHub client ID and secret must be configured on the server "
                        "to enable sign in."
                    ),
                },
            )

        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        next_path = _safe_next_path(
            payload.get("next") if isinstance(payload, dict) else None
        )

        _prune_expired_states(fastapi_app)
        state = secrets.token_urlsafe(32)
        redirect_uri = _resolve_redirect_uri(request)
        fastapi_app.state.oauth_states[state] = {
            "redirect_uri": redirect_uri,
            "next": next_path,
            "expires_at": time.time() + OAUTH_STATE_TTL_SECONDS,
        }
        identity = get_identity_client(fastapi_app)
        return {"url": identity.authorize_url(state, redirect_uri)}

    @fastapi_app.get("/api/auth/callback", name="oauth_callback")
    async def oauth_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        _prune_expired_states(fastapi_app)
        if not state:
            return _auth_error(
                "missing_state", "State parameter was not returned by GitHub."
            )

        state_data = fastapi_app.state.oauth_states.pop(state, None)
        if not state_data or state_data.get("expires_at", 0) < time.time():
            return _auth_error(
                "state_expired", "The sign-in session has expired. Please try again."
            )
        if error:
            return _auth_error(
                error, error_description or "GitHub reported an error during sign in."
            )
        if not code:
            return _auth_error(
                "missing_code", "GitHub did not provide an authorisation code."
            )

        identity = get_identity_client(fastapi_app)
        try:
            access_token = await identity.exchange_code(code, state_data["redirect_uri"])
            principal = await identity.fetch_principal(access_token)
        except IdentityProviderError as exc:
            return _auth_error(exc.error, exc.description, status_code=exc.status_code)

        token = await get_session_store(fastapi_app).create(principal)
        logger.info("Signed in %s", principal.email)
        response = RedirectResponse(state_data.get("next") or "/", status_code=302)
        response.set_cookie(
            settings.session_cookie_name,
            token,
            max_age=settings.session_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.environment == "production",
        )
        return response

    @fastapi_app.get("/api/auth/session")
    async def current_session(request: Request) -> dict[str, str]:
        try:
            principal = await require_principal(
                request, get_session_store(fastapi_app), settings.session_cookie_name
            )
        except CinemaGuruError as exc:
            raise _http_error(exc) from exc
        return principal.model_dump()

    @fastapi_app.post("/api/auth/logout")
    async def logout(request: Request) -> JSONResponse:
        await get_session_store(fastapi_app).revoke(
            session_token(request, settings.session_cookie_name)
        )
        response = JSONResponse({"message": "Signed out"})
        response.delete_cookie(settings.session_cookie_name)
        return response


def _auth_error(
    error: str, description: str, *, status_code: int = 400
) -> JSONResponse:
    return JSONResponse(
        {"error": error, "description": description}, status_code=status_code
    )


def _safe_next_path(value: object) -> str:
    if not isinstance(value, str):
        return "/"
    candidate = value.strip()
    if not candidate.startswith("/") or candidate.startswith("//"):
        return "/"
    return candidate


def _prune_expired_states(fastapi_app: FastAPI) -> None:
    store = getattr(fastapi_app.state, "oauth_states", None)
    if store is None:
        store = fastapi_app.state.oauth_states = {}
    now = time.time()
    expired = [key for key, info in store.items() if info.get("expires_at", 0) <= now]
    for key in expired:
        store.pop(key, None)


def _resolve_redirect_uri(request: Request) -> str:
    if settings.auth_redirect_uri:
        return str(settings.auth_redirect_uri)

    base = _resolve_external_base(request)
    path = request.app.url_path_for("oauth_callback")
    return f"{base}{path}"


def _resolve_external_base(request: Request) -> str:
    headers = request.headers
    scheme = _first_forwarded_value(headers.get("x-forwarded-proto")) or request.url.scheme

    host = _first_forwarded_value(headers.get("x-forwarded-host"))
    if not host:
        host_header = headers.get("host")
        host = _first_forwarded_value(host_header) if host_header else None
    if not host:
        host = request.url.netloc

    port = _first_forwarded_value(headers.get("x-forwarded-port"))
    if port and ":" not in host:
        default_port = "443" if scheme == "https" else "80"
        if port != default_port:
            host = f"{host}:{port}"

    origin = f"{scheme}://{host}".rstrip("/")

    prefix = (
        _first_forwarded_value(headers.get("x-forwarded-prefix"))
        or request.scope.get("root_path")
        or ""
    )
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"
    prefix = prefix.rstrip("/")

    return f"{origin}{prefix}" if prefix else origin


def _first_forwarded_value(header_value: str | None) -> str | None:
    if not header_value:
        return None
    return header_value.split(",", 1)[0].strip()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
