"""Entry point for the FastAPI-powered discovery site."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from urllib.parse import urlencode, urlparse

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError
from starlette.middleware.sessions import SessionMiddleware

from .config import settings
from .database import Database
from .models import DiscoverFilters
from .services.auth import (
    AuthError,
    AuthService,
    PasswordChangeForm,
    ResetPasswordForm,
    SessionUser,
    SignupForm,
    field_errors,
)
from .services.discovery import DiscoveryService
from .services.library import (
    ActorRef,
    LibraryService,
    SavedMedia,
    Unauthorized,
)
from .services.omdb import OMDbClient
from .services.recommendations import RecommendationClient
from .services.tmdb import TMDBClient, TMDBError
from .web import (
    render_change_password,
    render_dashboard,
    render_error,
    render_forgot_password,
    render_home,
    render_login,
    render_movie,
    render_people,
    render_person,
    render_reset_password,
    render_signup,
    render_tv,
    render_watchlist,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_SECONDS = 600
SESSION_USER_KEY = "user_id"

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url).rstrip("/"),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    omdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.omdb_api_url).rstrip("/"),
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
    )
    groq_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.groq_api_url).rstrip("/"),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    oauth_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    library = LibraryService(database.session_factory)
    discovery = DiscoveryService(
        TMDBClient(settings, tmdb_http),
        RecommendationClient(settings, groq_http),
        OMDbClient(settings, omdb_http),
        library,
    )

    fastapi_app.state.database = database
    fastapi_app.state.library = library
    fastapi_app.state.discovery = discovery
    fastapi_app.state.auth = AuthService(settings, database.session_factory)
    fastapi_app.state.oauth_http = oauth_http

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie and TV discovery with mood-based recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="moviefinder_session",
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.environment == "production",
    )

    fastapi_app.state.google_oauth_states: dict[str, dict[str, Any]] = {}

    register_routes(fastapi_app)
    return fastapi_app


def get_discovery(request: Request) -> DiscoveryService:
    service = getattr(request.app.state, "discovery", None)
    if service is None:
        raise RuntimeError("Discovery service not initialised")
    return service


def get_library(request: Request) -> LibraryService:
    service = getattr(request.app.state, "library", None)
    if service is None:
        raise RuntimeError("Library service not initialised")
    return service


def get_auth(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth", None)
    if service is None:
        raise RuntimeError("Auth service not initialised")
    return service


def get_current_user_id(request: Request) -> str | None:
    user_id = request.session.get(SESSION_USER_KEY)
    return user_id if isinstance(user_id, str) and user_id else None


async def get_current_user(request: Request) -> SessionUser | None:
    user_id = get_current_user_id(request)
    if user_id is None:
        return None
    user = await get_auth(request).get_user(user_id)
    if user is None:
        # The account behind the cookie no longer exists.
        request.session.pop(SESSION_USER_KEY, None)
    return user


class SearchLogRequest(BaseModel):
    query: str


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/", response_class=HTMLResponse)
    async def home(
        request: Request,
        q: str = "",
        mood: str = "",
        mode: str = "mood",
    ) -> HTMLResponse:
        user = await get_current_user(request)
        if mode not in ("mood", "description"):
            mode = "mood"
        try:
            filters = DiscoverFilters.model_validate(dict(request.query_params))
        except ValidationError as exc:
            logger.info("Ignoring invalid discover filters: %s", exc.errors())
            filters = DiscoverFilters()
        view = await get_discovery(request).home(
            query=q,
            filters=filters,
            mood=mood,
            mode=mode,  # type: ignore[arg-type]
            user_id=user.id if user else None,
        )
        return HTMLResponse(
            render_home(
                settings, view, user=user, query=q, mood=mood, mode=mode, filters=filters
            )
        )

    @fastapi_app.get("/movie/{movie_id}", response_class=HTMLResponse)
    async def movie_detail(request: Request, movie_id: int) -> HTMLResponse:
        user = await get_current_user(request)
        discovery = get_discovery(request)
        try:
            view = await discovery.movie_page(movie_id, user_id=user.id if user else None)
        except TMDBError as exc:
            return _upstream_error_page(exc, user)
        reviews = await discovery.reviews(
            movie_id, title=view.details.title, release_date=view.details.release_date
        )
        return HTMLResponse(render_movie(settings, view, user=user, reviews=reviews))

    @fastapi_app.get("/tv/{tv_id}", response_class=HTMLResponse)
    async def tv_detail(request: Request, tv_id: int) -> HTMLResponse:
        user = await get_current_user(request)
        try:
            view = await get_discovery(request).tv_page(
                tv_id, user_id=user.id if user else None
            )
        except TMDBError as exc:
            return _upstream_error_page(exc, user)
        return HTMLResponse(render_tv(settings, view, user=user))

    @fastapi_app.get("/person/{person_id}", response_class=HTMLResponse)
    async def person_detail(
        request: Request,
        person_id: int,
        q: str = "",
        genre: str = "all",
        sort: str = "popularity_desc",
        page: int = 1,
    ) -> HTMLResponse:
        user = await get_current_user(request)
        try:
            view = await get_discovery(request).person_page(
                person_id,
                user_id=user.id if user else None,
                query=q,
                genre=genre,
                sort_by=sort,
                page=page,
            )
        except TMDBError as exc:
            return _upstream_error_page(exc, user)
        return HTMLResponse(render_person(settings, view, user=user))

    @fastapi_app.get("/people", response_class=HTMLResponse)
    async def people_search(request: Request, q: str = "") -> HTMLResponse:
        user = await get_current_user(request)
        people = await get_discovery(request).people(q)
        return HTMLResponse(render_people(settings, people, user=user, query=q))

    @fastapi_app.get("/watchlist", response_class=HTMLResponse)
    async def watchlist_page(
        request: Request,
        q: str = "",
        sort: str = "date_desc",
        genre: str = "all",
    ):
        user = await get_current_user(request)
        if user is None:
            return _login_redirect(request)
        library = get_library(request)
        items, genres = await asyncio.gather(
            library.list_watchlist(user.id, query=q, sort_by=sort, genre_id=genre),
            library.watchlist_genres(user.id),
        )
        return HTMLResponse(
            render_watchlist(
                settings,
                items,
                user=user,
                genres=genres,
                query=q,
                sort_by=sort,
                genre=genre,
            )
        )

    @fastapi_app.get("/dashboard", response_class=HTMLResponse)
    async def dashboard_page(request: Request):
        user = await get_current_user(request)
        if user is None:
            return _login_redirect(request)
        view = await get_discovery(request).dashboard(user.id)
        return HTMLResponse(render_dashboard(settings, view, user=user))

    @fastapi_app.get("/login", response_class=HTMLResponse)
    async def login_form(
        callback_url: str = Query(default="/", alias="callbackUrl"),
        reset: str | None = None,
    ) -> HTMLResponse:
        notice = "Password updated. Please sign in." if reset else None
        return HTMLResponse(
            render_login(settings, callback_url=_safe_callback(callback_url), notice=notice)
        )

    @fastapi_app.post("/login")
    async def login_submit(request: Request):
        form = await request.form()
        email = str(form.get("email", ""))
        callback_url = _safe_callback(str(form.get("callbackUrl", "/")))
        user = await get_auth(request).authenticate(email, str(form.get("password", "")))
        if user is None:
            return HTMLResponse(
                render_login(
                    settings,
                    callback_url=callback_url,
                    email=email,
                    error="Invalid credentials",
                ),
                status_code=401,
            )
        _sign_in(request, user)
        return RedirectResponse(callback_url, status_code=303)

    @fastapi_app.get("/signup", response_class=HTMLResponse)
    async def signup_form() -> HTMLResponse:
        return HTMLResponse(render_signup(settings))

    @fastapi_app.post("/signup")
    async def signup_submit(request: Request):
        form = await request.form()
        values = {key: str(form.get(key, "")) for key in ("name", "email", "password")}
        try:
            signup = SignupForm.model_validate(values)
            user = await get_auth(request).signup(signup)
        except ValidationError as exc:
            return _signup_error(values, field_errors(exc))
        except AuthError as exc:
            return _signup_error(values, exc.to_field_errors())
        _sign_in(request, user)
        return RedirectResponse("/", status_code=303)

    @fastapi_app.post("/logout")
    async def logout(request: Request):
        request.session.clear()
        return RedirectResponse("/", status_code=303)

    @fastapi_app.get("/forgot-password", response_class=HTMLResponse)
    async def forgot_password_form() -> HTMLResponse:
        return HTMLResponse(render_forgot_password(settings))

    @fastapi_app.post("/forgot-password", response_class=HTMLResponse)
    async def forgot_password_submit(request: Request) -> HTMLResponse:
        form = await request.form()
        await get_auth(request).request_password_reset(str(form.get("email", "")))
        return HTMLResponse(render_forgot_password(settings, submitted=True))

    @fastapi_app.get("/reset-password", response_class=HTMLResponse)
    async def reset_password_form(
        user_id: str = Query(default="", alias="userId"),
        token: str = "",
    ) -> HTMLResponse:
        return HTMLResponse(render_reset_password(settings, user_id=user_id, token=token))

    @fastapi_app.post("/reset-password")
    async def reset_password_submit(request: Request):
        form = await request.form()
        user_id = str(form.get("userId", ""))
        token = str(form.get("token", ""))
        try:
            reset = ResetPasswordForm(
                user_id=user_id,
                token=token,
                password=str(form.get("password", "")),
                confirm_password=str(form.get("confirmPassword", "")),
            )
            await get_auth(request).reset_password(reset)
        except ValidationError as exc:
            errors = field_errors(exc)
        except AuthError as exc:
            errors = exc.to_field_errors()
        else:
            return RedirectResponse("/login?reset=1", status_code=303)
        return HTMLResponse(
            render_reset_password(settings, user_id=user_id, token=token, errors=errors),
            status_code=400,
        )

    @fastapi_app.get("/change-password", response_class=HTMLResponse)
    async def change_password_form(request: Request):
        user = await get_current_user(request)
        if user is None:
            return _login_redirect(request)
        return HTMLResponse(render_change_password(settings, user=user))

    @fastapi_app.post("/change-password")
    async def change_password_submit(request: Request):
        user = await get_current_user(request)
        if user is None:
            return _login_redirect(request)
        form = await request.form()
        try:
            change = PasswordChangeForm(
                current_password=str(form.get("currentPassword", "")),
                new_password=str(form.get("newPassword", "")),
            )
            await get_auth(request).change_password(user.id, change)
        except ValidationError as exc:
            errors = field_errors(exc)
        except AuthError as exc:
            errors = exc.to_field_errors()
        else:
            refreshed = await get_auth(request).get_user(user.id) or user
            return HTMLResponse(
                render_change_password(settings, user=refreshed, success=True)
            )
        return HTMLResponse(
            render_change_password(settings, user=user, errors=errors), status_code=400
        )

    @fastapi_app.get("/auth/google/login")
    async def google_login(
        request: Request,
        callback_url: str = Query(default="/", alias="callbackUrl"),
    ):
        if not settings.google_login_available:
            raise HTTPException(
                status_code=503,
                detail="Google sign in is not configured on this server.",
            )

        _prune_expired_states(fastapi_app)
        state = secrets.token_urlsafe(32)
        redirect_uri = _resolve_google_redirect(request)
        fastapi_app.state.google_oauth_states[state] = {
            "callback_url": _safe_callback(callback_url),
            "redirect_uri": redirect_uri,
            "expires_at": time.time() + OAUTH_STATE_TTL_SECONDS,
        }
        query = urlencode(
            {
                "response_type": "code",
                "client_id": settings.google_client_id,
                "redirect_uri": redirect_uri,
                "scope": "openid email profile",
                "state": state,
                "prompt": "select_account",
            }
        )
        return RedirectResponse(f"{settings.google_authorize_url}?{query}", status_code=302)

    @fastapi_app.get("/auth/google/callback", name="google_oauth_callback")
    async def google_oauth_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ):
        _prune_expired_states(fastapi_app)

        if not state:
            return _oauth_error("State parameter was not returned by Google.")
        state_data = fastapi_app.state.google_oauth_states.pop(state, None)
        if not state_data or state_data.get("expires_at", 0) < time.time():
            return _oauth_error("The sign-in session has expired. Please try again.")
        if error:
            return _oauth_error(f"Google reported an error during sign in: {error}")
        if not code:
            return _oauth_error("Google did not provide an authorisation code.")

        client: httpx.AsyncClient = request.app.state.oauth_http
        try:
            token_response = await client.post(
                str(settings.google_token_url),
                data={
                    "code": code,
                    "client_id": settings.google_client_id,
                    "client_secret": settings.google_client_secret,
                    "redirect_uri": state_data["redirect_uri"],
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            token_data = _response_json(token_response)
            access_token = token_data.get("access_token")
            if token_response.status_code >= 400 or not isinstance(access_token, str):
                logger.warning(
                    "Google token exchange failed with %s: %s",
                    token_response.status_code,
                    token_data.get("error"),
                )
                return _oauth_error("Google rejected the authorisation request.")

            profile_response = await client.get(
                str(settings.google_userinfo_url),
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Unable to reach Google during sign in: %s", exc)
            return _oauth_error(
                "Unable to reach Google. Please try again shortly.", status_code=502
            )

        profile = _response_json(profile_response)
        email = profile.get("email")
        if profile_response.status_code >= 400 or not isinstance(email, str) or not email:
            return _oauth_error("Google did not share an email address.")

        try:
            user = await get_auth(request).upsert_oauth_user(
                email=email,
                name=profile.get("name") if isinstance(profile.get("name"), str) else None,
                image=profile.get("picture") if isinstance(profile.get("picture"), str) else None,
            )
        except ValueError:
            return _oauth_error("Google returned an invalid email address.")
        _sign_in(request, user)
        return RedirectResponse(state_data.get("callback_url") or "/", status_code=303)

    @fastapi_app.post("/api/watchlist/toggle")
    async def toggle_watchlist(request: Request, item: SavedMedia) -> dict[str, bool]:
        try:
            added = await get_library(request).toggle_watchlist(
                get_current_user_id(request), item
            )
        except Unauthorized as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return {"added": added}

    @fastapi_app.post("/api/watched/toggle")
    async def toggle_watched(request: Request, item: SavedMedia) -> dict[str, bool]:
        try:
            watched = await get_library(request).toggle_watched(
                get_current_user_id(request), item
            )
        except Unauthorized as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return {"watched": watched}

    @fastapi_app.post("/api/favorites/toggle")
    async def toggle_favorite(request: Request, actor: ActorRef) -> dict[str, bool]:
        try:
            is_favorite = await get_library(request).toggle_favorite_actor(
                get_current_user_id(request), actor
            )
        except Unauthorized as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return {"isFavorite": is_favorite}

    @fastapi_app.get("/api/watchlist/status/{media_id}")
    async def watchlist_status(request: Request, media_id: int) -> dict[str, bool]:
        status = await get_library(request).watchlist_status(
            get_current_user_id(request), media_id
        )
        return status.to_payload()

    @fastapi_app.post("/api/history/search")
    async def log_search(request: Request, payload: SearchLogRequest) -> JSONResponse:
        user_id = get_current_user_id(request)
        if user_id is None:
            return JSONResponse({"logged": False})
        await get_library(request).log_search(user_id, payload.query)
        return JSONResponse({"logged": bool(payload.query.strip())})


def _sign_in(request: Request, user: SessionUser) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id
    logger.info("User %s signed in", user.id)


def _safe_callback(url: str | None) -> str:
    """Only allow same-site relative paths as post-login destinations."""

    if not url or not url.startswith("/"):
        return "/"
    # Browsers treat backslashes as slashes and drop tabs and newlines.
    if any(ord(char) < 32 or ord(char) == 127 for char in url):
        return "/"
    normalised = url.replace("\\", "/")
    if normalised.startswith("//"):
        return "/"
    parsed = urlparse(normalised)
    if parsed.scheme or parsed.netloc:
        return "/"
    return url


def _login_redirect(request: Request) -> RedirectResponse:
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    query = urlencode({"callbackUrl": target})
    return RedirectResponse(f"/login?{query}", status_code=303)


def _signup_error(values: dict[str, str], errors: dict[str, list[str]]) -> HTMLResponse:
    safe_values = {key: value for key, value in values.items() if key != "password"}
    return HTMLResponse(
        render_signup(settings, values=safe_values, errors=errors), status_code=400
    )


def _oauth_error(message: str, *, status_code: int = 400) -> HTMLResponse:
    return HTMLResponse(
        render_login(settings, error=message), status_code=status_code
    )


def _upstream_error_page(exc: TMDBError, user: SessionUser | None) -> HTMLResponse:
    if exc.not_found:
        return HTMLResponse(
            render_error(settings, status_code=404, message="Not found", user=user),
            status_code=404,
        )
    logger.error("Catalog request failed: %s", exc)
    return HTMLResponse(
        render_error(
            settings,
            status_code=502,
            message="The movie catalog is unavailable right now.",
            user=user,
        ),
        status_code=502,
    )


def _prune_expired_states(fastapi_app: FastAPI) -> None:
    store = getattr(fastapi_app.state, "google_oauth_states", {})
    now = time.time()
    expired = [key for key, info in store.items() if info.get("expires_at", 0) <= now]
    for key in expired:
        store.pop(key, None)


def _resolve_google_redirect(request: Request) -> str:
    if settings.google_redirect_uri:
        return str(settings.google_redirect_uri)
    base = _resolve_external_base(request)
    path = request.app.url_path_for("google_oauth_callback")
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

    prefix = (
        _first_forwarded_value(headers.get("x-forwarded-prefix"))
        or request.scope.get("root_path")
        or ""
    )
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"
    return f"{scheme}://{host}{prefix.rstrip('/')}"


def _first_forwarded_value(header_value: str | None) -> str | None:
    if not header_value:
        return None
    return header_value.split(",", 1)[0].strip()


def _response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if isinstance(data, dict):
        return data
    return {}


app = create_app()
