"""HTML page rendering for the discovery site."""

from __future__ import annotations

import json
import re
from html import escape
from textwrap import dedent
from typing import Iterable, Mapping, Sequence
from urllib.parse import urlencode

from .browsing import BrowsePage, visible_pages
from .config import Settings
from .genres import BROWSE_SORT_OPTIONS, MOVIE_GENRES, WATCHLIST_SORT_OPTIONS, SortOption
from .models import CastMember, DiscoverFilters, Genre, MediaItem, Person, ReviewSummary
from .services.auth import SessionUser
from .services.discovery import DashboardView, HomeView, MovieView, PersonView, TVView
from .services.library import WatchlistStatus

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
POSTER_SIZE = "w500"
PROFILE_SIZE = "w185"

FieldErrors = Mapping[str, Sequence[str]]

PLACEHOLDER_PATTERN = re.compile(r"__(TITLE|APP_NAME|NAV_LINKS|CONTENT)__")


LAYOUT_TEMPLATE = dedent(
    """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>__TITLE__ · __APP_NAME__</title>
    <style>
        :root {
            color-scheme: dark;
            font-family: 'Inter', 'Segoe UI', system-ui, -apple-system, sans-serif;
            --surface: #141414;
            --surface-strong: #1f1f1f;
            --text-primary: #f5f5f5;
            --text-muted: #a6a6a6;
            --outline: #2b2b2b;
            --accent: #e50914;
            background: #000000;
            color: var(--text-primary);
        }
        * {
            box-sizing: border-box;
        }
        body {
            margin: 0;
            min-height: 100vh;
            background: #000000;
        }
        a {
            color: inherit;
            text-decoration: none;
        }
        nav {
            display: flex;
            align-items: center;
            justify-content: space-between;
            gap: 1rem;
            padding: 1rem 1.5rem;
            border-bottom: 1px solid var(--outline);
        }
        nav .brand {
            font-weight: 700;
            font-size: 1.25rem;
            color: var(--accent);
        }
        nav .links {
            display: flex;
            gap: 1rem;
            align-items: center;
            color: var(--text-muted);
        }
        main {
            max-width: 1200px;
            margin: 0 auto;
            padding: 2rem 1.5rem 4rem;
        }
        h1, h2 {
            margin: 0 0 1rem;
        }
        form.inline {
            display: flex;
            flex-wrap: wrap;
            gap: 0.5rem;
            margin-bottom: 1.5rem;
        }
        input, select, button {
            font: inherit;
            padding: 0.55rem 0.8rem;
            border-radius: 8px;
            border: 1px solid var(--outline);
            background: var(--surface);
            color: var(--text-primary);
        }
        button {
            cursor: pointer;
        }
        button.primary {
            background: var(--accent);
            border-color: var(--accent);
        }
        button[data-active="true"] {
            background: var(--surface-strong);
            border-color: var(--text-primary);
        }
        .grid {
            display: grid;
            grid-template-columns: repeat(auto-fill, minmax(170px, 1fr));
            gap: 1.25rem;
        }
        .card {
            background: var(--surface);
            border-radius: 12px;
            overflow: hidden;
            display: flex;
            flex-direction: column;
        }
        .card img {
            width: 100%;
            aspect-ratio: 2 / 3;
            object-fit: cover;
            background: var(--surface-strong);
        }
        .card .body {
            padding: 0.75rem;
            display: flex;
            flex-direction: column;
            gap: 0.35rem;
        }
        .card .meta, .muted {
            color: var(--text-muted);
            font-size: 0.85rem;
        }
        .card .reason {
            font-size: 0.8rem;
            font-style: italic;
        }
        .strip {
            display: flex;
            gap: 1rem;
            overflow-x: auto;
            padding-bottom: 0.5rem;
            margin-bottom: 2rem;
        }
        .strip .person {
            width: 120px;
            flex: none;
            text-align: center;
        }
        .strip .person img, .avatar {
            width: 100px;
            height: 100px;
            border-radius: 50%;
            object-fit: cover;
            background: var(--surface-strong);
        }
        .detail {
            display: grid;
            grid-template-columns: minmax(200px, 300px) 1fr;
            gap: 2rem;
            margin-bottom: 2rem;
        }
        .detail img.poster {
            width: 100%;
            border-radius: 12px;
        }
        .actions {
            display: flex;
            gap: 0.5rem;
            margin: 1rem 0;
        }
        .panel {
            background: var(--surface);
            border-radius: 12px;
            padding: 1.25rem;
            margin-bottom: 1.5rem;
        }
        .auth {
            max-width: 420px;
            margin: 3rem auto;
        }
        .auth form {
            display: flex;
            flex-direction: column;
            gap: 0.75rem;
        }
        .error {
            color: #ff6b6b;
            font-size: 0.85rem;
        }
        .notice {
            color: #8bd17c;
        }
        .pagination {
            display: flex;
            gap: 0.35rem;
            margin-top: 1.5rem;
            flex-wrap: wrap;
        }
        .pagination a, .pagination span {
            padding: 0.35rem 0.7rem;
            border-radius: 6px;
            border: 1px solid var(--outline);
        }
        .pagination .current {
            background: var(--accent);
            border-color: var(--accent);
        }
        @media (max-width: 720px) {
            .detail {
                grid-template-columns: 1fr;
            }
        }
    </style>
</head>
<body>
    <nav>
        <a class="brand" href="/">__APP_NAME__</a>
        <div class="links">__NAV_LINKS__</div>
    </nav>
    <main>
__CONTENT__
    </main>
    <script>
        (() => {
            const LABELS = {
                watchlist: ['+ Watchlist', '✓ In Watchlist'],
                watched: ['Mark Watched', '✓ Watched'],
                favorite: ['♡ Favorite', '♥ Favorite'],
            };
            const ENDPOINTS = {
                watchlist: '/api/watchlist/toggle',
                watched: '/api/watched/toggle',
                favorite: '/api/favorites/toggle',
            };
            const RESULT_KEYS = {
                watchlist: 'added',
                watched: 'watched',
                favorite: 'isFavorite',
            };

            function setState(button, active) {
                const kind = button.dataset.toggle;
                button.dataset.active = active ? 'true' : 'false';
                button.textContent = LABELS[kind][active ? 1 : 0];
            }

            function siblings(kind, id) {
                return document.querySelectorAll(
                    `button[data-toggle="${kind}"][data-id="${id}"]`
                );
            }

            function redirectToLogin() {
                const callbackUrl = window.location.pathname + window.location.search;
                window.location.href = `/login?callbackUrl=${encodeURIComponent(callbackUrl)}`;
            }

            async function toggle(button) {
                if (button.dataset.pending === 'true') {
                    return;
                }
                const kind = button.dataset.toggle;
                const id = button.dataset.id;
                const previous = button.dataset.active === 'true';
                siblings(kind, id).forEach((node) => setState(node, !previous));
                button.dataset.pending = 'true';
                try {
                    const response = await fetch(ENDPOINTS[kind], {
                        method: 'POST',
                        headers: { 'Content-Type': 'application/json' },
                        body: button.dataset.payload,
                    });
                    if (response.status === 401) {
                        siblings(kind, id).forEach((node) => setState(node, previous));
                        redirectToLogin();
                        return;
                    }
                    if (!response.ok) {
                        throw new Error(`Request failed with ${response.status}`);
                    }
                    const payload = await response.json();
                    const active = Boolean(payload[RESULT_KEYS[kind]]);
                    siblings(kind, id).forEach((node) => setState(node, active));
                    if (kind === 'watched' && active) {
                        siblings('watchlist', id).forEach((node) => setState(node, true));
                    }
                } catch (error) {
                    console.error(error);
                    siblings(kind, id).forEach((node) => setState(node, previous));
                } finally {
                    button.dataset.pending = 'false';
                }
            }

            document.querySelectorAll('button[data-toggle]').forEach((button) => {
                setState(button, button.dataset.active === 'true');
                button.addEventListener('click', (event) => {
                    event.preventDefault();
                    toggle(button);
                });
            });

            document.querySelectorAll('form[data-log-search]').forEach((form) => {
                form.addEventListener('submit', () => {
                    const field = form.querySelector('input[name="q"]');
                    const query = field ? field.value.trim() : '';
                    if (!query || !form.dataset.logSearch) {
                        return;
                    }
                    fetch('/api/history/search', {
                        method: 'POST',
                        headers: { 'Content-Type': 'application/json' },
                        body: JSON.stringify({ query }),
                        keepalive: true,
                    }).catch(() => {});
                });
            });
        })();
    </script>
</body>
</html>
    """
)


def image_url(path: str | None, size: str = POSTER_SIZE) -> str | None:
    """Return the CDN URL for a TMDB image path."""

    if not path:
        return None
    return f"{IMAGE_BASE_URL}/{size}{path}"


def render_page(
    settings: Settings,
    *,
    title: str,
    content: str,
    user: SessionUser | None = None,
) -> str:
    replacements = {
        "TITLE": escape(title),
        "APP_NAME": escape(settings.app_name),
        "NAV_LINKS": _nav_links(user),
        "CONTENT": content,
    }
    # Single pass so substituted values are never scanned for placeholders.
    return PLACEHOLDER_PATTERN.sub(lambda match: replacements[match.group(1)], LAYOUT_TEMPLATE)


def render_home(
    settings: Settings,
    view: HomeView,
    *,
    user: SessionUser | None,
    query: str = "",
    mood: str = "",
    mode: str = "mood",
    filters: DiscoverFilters | None = None,
) -> str:
    filters = filters or DiscoverFilters()
    mode_options = _options(
        [("mood", "By mood"), ("description", "By plot")], selected=mode
    )
    genre_options = _options(
        [("", "Any genre")] + [(str(genre.id), genre.name) for genre in MOVIE_GENRES],
        selected=filters.with_genres or "",
    )
    year_value = str(filters.primary_release_year or "")
    rating_value = f"{filters.vote_average_gte:g}" if filters.vote_average_gte is not None else ""

    sections = [
        f"""
        <form class="inline" method="get" action="/" data-log-search="{'1' if user else ''}">
            <input type="search" name="q" placeholder="Search movies, series and people" value="{escape(query)}" />
            <button class="primary" type="submit">Search</button>
        </form>
        <form class="inline" method="get" action="/">
            <input type="text" name="mood" placeholder="How are you feeling? Or describe a plot" value="{escape(mood)}" />
            <select name="mode">{mode_options}</select>
            <button type="submit">Recommend</button>
        </form>
        <form class="inline" method="get" action="/">
            <select name="with_genres">{genre_options}</select>
            <input type="number" name="primary_release_year" min="1870" max="2100" placeholder="Year" value="{escape(year_value)}" />
            <input type="number" name="vote_average.gte" min="0" max="10" step="0.5" placeholder="Min rating" value="{escape(rating_value)}" />
            <button type="submit">Filter</button>
        </form>
        """,
        f"<h1>{escape(view.title)}</h1>",
    ]
    if view.people:
        sections.append("<h2>People</h2>")
        sections.append(_people_strip(view.people))
    if view.movies:
        sections.append(_media_grid(view.movies, show_reason=view.is_ai))
    else:
        sections.append('<p class="muted">No results found.</p>')
    return render_page(settings, title="Discover", content="\n".join(sections), user=user)


def render_movie(
    settings: Settings,
    view: MovieView,
    *,
    user: SessionUser | None,
    reviews: ReviewSummary | None = None,
) -> str:
    details = view.details
    facts = [details.year]
    if details.runtime:
        facts.append(f"{details.runtime} min")
    if details.vote_average:
        facts.append(f"★ {details.vote_average:.1f}")
    trailer = ""
    if details.trailer_key:
        trailer = (
            f'<p><a href="https://www.youtube.com/watch?v={escape(details.trailer_key)}" '
            'target="_blank" rel="noopener">▶ Watch trailer</a></p>'
        )
    content = [
        _detail_header(
            title=details.title,
            poster_path=details.poster_path,
            tagline=details.tagline,
            facts=facts,
            genres=details.genres,
            overview=details.overview,
            actions=_media_actions(details, view.status),
            extra=trailer,
        ),
        _cast_section(details.cast),
        _reviews_section(reviews),
    ]
    return render_page(settings, title=details.title, content="\n".join(content), user=user)


def render_tv(settings: Settings, view: TVView, *, user: SessionUser | None) -> str:
    details = view.details
    facts = [details.year, f"{details.number_of_seasons} seasons"]
    if details.episode_runtime:
        facts.append(f"{details.episode_runtime} min episodes")
    if details.total_runtime:
        hours, minutes = divmod(details.total_runtime, 60)
        facts.append(f"{hours}h {minutes}m total")
    if details.vote_average:
        facts.append(f"★ {details.vote_average:.1f}")

    seasons = "".join(
        f"""
        <div class="card">
            {_image_tag(season.poster_path, season.name)}
            <div class="body">
                <strong>{escape(season.name)}</strong>
                <span class="meta">{season.episode_count} episodes · {escape((season.air_date or "")[:4])}</span>
            </div>
        </div>
        """
        for season in details.seasons
    )
    content = [
        _detail_header(
            title=details.title,
            poster_path=details.poster_path,
            tagline=details.tagline,
            facts=facts,
            genres=details.genres,
            overview=details.overview,
            actions=_media_actions(details, view.status),
        ),
        f'<h2>Seasons</h2><div class="grid">{seasons}</div>' if seasons else "",
        _cast_section(details.cast),
    ]
    if view.similar:
        content.append("<h2>Similar series</h2>")
        content.append(_media_grid(view.similar))
    return render_page(settings, title=details.title, content="\n".join(content), user=user)


def render_person(settings: Settings, view: PersonView, *, user: SessionUser | None) -> str:
    details = view.details
    facts = [part for part in (details.known_for_department, details.birthday, details.place_of_birth) if part]
    favorite = _toggle_button("favorite", details.id, details.toggle_payload(), view.is_favorite)
    credits = view.credits
    base_params = {
        "q": credits.query,
        "genre": credits.genre,
        "sort": credits.sort_by,
    }
    content = [
        _detail_header(
            title=details.name,
            poster_path=details.profile_path,
            tagline=None,
            facts=facts,
            genres=[],
            overview=details.biography or "",
            actions=favorite,
        ),
        "<h2>Known for</h2>",
        _browse_controls(
            action=f"/person/{details.id}",
            query=credits.query,
            genre=credits.genre,
            sort_by=credits.sort_by,
            genres=credits.available_genres,
            sort_options=BROWSE_SORT_OPTIONS,
        ),
        _browse_summary(credits),
        _media_grid(credits.items) if credits.items else '<p class="muted">No credits match.</p>',
        _pagination(f"/person/{details.id}", credits, base_params),
    ]
    return render_page(settings, title=details.name, content="\n".join(content), user=user)


def render_people(
    settings: Settings,
    people: Sequence[Person],
    *,
    user: SessionUser | None,
    query: str = "",
) -> str:
    content = [
        f"""
        <form class="inline" method="get" action="/people">
            <input type="search" name="q" placeholder="Search actors and crew" value="{escape(query)}" />
            <button class="primary" type="submit">Search</button>
        </form>
        """,
        f"<h1>{escape(f'People matching “{query}”' if query else 'Find people')}</h1>",
    ]
    if people:
        cards = "".join(_person_card(person) for person in people)
        content.append(f'<div class="grid">{cards}</div>')
    elif query:
        content.append('<p class="muted">No people found.</p>')
    return render_page(settings, title="People", content="\n".join(content), user=user)


def render_watchlist(
    settings: Settings,
    items: Sequence[MediaItem],
    *,
    user: SessionUser,
    genres: Sequence[Genre],
    query: str = "",
    sort_by: str = "date_desc",
    genre: str = "all",
) -> str:
    content = [
        "<h1>My Watchlist</h1>",
        _browse_controls(
            action="/watchlist",
            query=query,
            genre=genre,
            sort_by=sort_by,
            genres=genres,
            sort_options=WATCHLIST_SORT_OPTIONS,
        ),
        f'<p class="muted">{len(items)} titles</p>',
        _media_grid(items) if items else '<p class="muted">Your watchlist is empty.</p>',
    ]
    return render_page(settings, title="Watchlist", content="\n".join(content), user=user)


def render_dashboard(settings: Settings, view: DashboardView, *, user: SessionUser) -> str:
    searches = "".join(
        f'<li><a href="/?{urlencode({"q": entry.query})}">{escape(entry.query)}</a> '
        f'<span class="muted">{entry.date:%Y-%m-%d}</span></li>'
        for entry in view.recent_searches
    )
    viewed = "".join(
        f"""
        <a class="card" href="{escape(item.href)}">
            {_image_tag(item.poster_path, item.title, size=PROFILE_SIZE if item.item_type == "person" else POSTER_SIZE)}
            <div class="body"><strong>{escape(item.title)}</strong><span class="meta">{escape(item.item_type)}</span></div>
        </a>
        """
        for item in view.recently_viewed
    )
    password_link = "Change password" if user.has_password else "Set a password"
    content = [
        f"""
        <section class="panel">
            {_avatar(user)}
            <h1>{escape(user.name)}</h1>
            <p class="muted">{escape(user.email)}</p>
            <p><a href="/change-password">{password_link}</a></p>
        </section>
        """,
        "<h2>Recent searches</h2>",
        f"<ul>{searches}</ul>" if searches else '<p class="muted">No searches yet.</p>',
        "<h2>Recently viewed</h2>",
        f'<div class="grid">{viewed}</div>' if viewed else '<p class="muted">Nothing viewed yet.</p>',
        "<h2>Favorite actors</h2>",
        _people_strip(view.favorite_actors) if view.favorite_actors else '<p class="muted">No favorites yet.</p>',
        "<h2>Watchlist</h2>",
        _media_grid(view.watchlist) if view.watchlist else '<p class="muted">Your watchlist is empty.</p>',
    ]
    return render_page(settings, title="Dashboard", content="\n".join(content), user=user)


def render_login(
    settings: Settings,
    *,
    callback_url: str = "/",
    email: str = "",
    error: str | None = None,
    notice: str | None = None,
) -> str:
    google = ""
    if settings.google_login_available:
        google = (
            f'<p><a href="/auth/google/login?{urlencode({"callbackUrl": callback_url})}">'
            "<button type=\"button\">Continue with Google</button></a></p>"
        )
    content = f"""
    <section class="auth panel">
        <h1>Sign in</h1>
        {_message(notice, "notice")}
        {_message(error, "error")}
        <form method="post" action="/login">
            <input type="hidden" name="callbackUrl" value="{escape(callback_url)}" />
            <input type="email" name="email" placeholder="Email" value="{escape(email)}" required />
            <input type="password" name="password" placeholder="Password" required />
            <button class="primary" type="submit">Sign in</button>
        </form>
        {google}
        <p class="muted"><a href="/forgot-password">Forgot password?</a> · <a href="/signup">Create an account</a></p>
    </section>
    """
    return render_page(settings, title="Sign in", content=content)


def render_signup(
    settings: Settings,
    *,
    values: Mapping[str, str] | None = None,
    errors: FieldErrors | None = None,
) -> str:
    values = values or {}
    errors = errors or {}
    content = f"""
    <section class="auth panel">
        <h1>Create an account</h1>
        {_field_errors(errors, "form")}
        <form method="post" action="/signup">
            <input type="text" name="name" placeholder="Name" value="{escape(values.get("name", ""))}" required />
            {_field_errors(errors, "name")}
            <input type="email" name="email" placeholder="Email" value="{escape(values.get("email", ""))}" required />
            {_field_errors(errors, "email")}
            <input type="password" name="password" placeholder="Password (min 6 characters)" required />
            {_field_errors(errors, "password")}
            <button class="primary" type="submit">Sign up</button>
        </form>
        <p class="muted">Already registered? <a href="/login">Sign in</a></p>
    </section>
    """
    return render_page(settings, title="Sign up", content=content)


def render_forgot_password(settings: Settings, *, submitted: bool = False) -> str:
    if submitted:
        body = (
            '<p class="notice">If an account exists for that email, '
            "a reset link is on its way.</p>"
        )
    else:
        body = """
        <form method="post" action="/forgot-password">
            <input type="email" name="email" placeholder="Email" required />
            <button class="primary" type="submit">Send reset link</button>
        </form>
        """
    content = f"""
    <section class="auth panel">
        <h1>Forgot password</h1>
        {body}
        <p class="muted"><a href="/login">Back to sign in</a></p>
    </section>
    """
    return render_page(settings, title="Forgot password", content=content)


def render_reset_password(
    settings: Settings,
    *,
    user_id: str = "",
    token: str = "",
    errors: FieldErrors | None = None,
) -> str:
    errors = errors or {}
    if not user_id or not token:
        errors = {"form": ["Invalid reset link"], **errors}
    content = f"""
    <section class="auth panel">
        <h1>Reset password</h1>
        {_field_errors(errors, "form")}
        <form method="post" action="/reset-password">
            <input type="hidden" name="userId" value="{escape(user_id)}" />
            <input type="hidden" name="token" value="{escape(token)}" />
            <input type="password" name="password" placeholder="New password" required />
            {_field_errors(errors, "password")}
            <input type="password" name="confirmPassword" placeholder="Confirm password" required />
            {_field_errors(errors, "confirm_password")}
            <button class="primary" type="submit">Reset password</button>
        </form>
    </section>
    """
    return render_page(settings, title="Reset password", content=content)


def render_change_password(
    settings: Settings,
    *,
    user: SessionUser,
    errors: FieldErrors | None = None,
    success: bool = False,
) -> str:
    errors = errors or {}
    current = ""
    if user.has_password:
        current = f"""
            <input type="password" name="currentPassword" placeholder="Current password" required />
            {_field_errors(errors, "current_password")}
        """
    content = f"""
    <section class="auth panel">
        <h1>{"Change password" if user.has_password else "Set a password"}</h1>
        {_message("Password updated." if success else None, "notice")}
        {_field_errors(errors, "form")}
        <form method="post" action="/change-password">
            {current}
            <input type="password" name="newPassword" placeholder="New password" required />
            {_field_errors(errors, "new_password")}
            <button class="primary" type="submit">Save</button>
        </form>
        <p class="muted"><a href="/dashboard">Back to dashboard</a></p>
    </section>
    """
    return render_page(settings, title="Change password", content=content, user=user)


def render_error(
    settings: Settings, *, status_code: int, message: str, user: SessionUser | None = None
) -> str:
    content = f"""
    <section class="panel">
        <h1>{status_code}</h1>
        <p>{escape(message)}</p>
        <p><a href="/">Back to discover</a></p>
    </section>
    """
    return render_page(settings, title=str(status_code), content=content, user=user)


def _nav_links(user: SessionUser | None) -> str:
    links = ['<a href="/">Discover</a>', '<a href="/people">People</a>']
    if user is None:
        links.append('<a href="/login">Sign in</a>')
    else:
        links.extend(
            [
                '<a href="/watchlist">Watchlist</a>',
                f'<a href="/dashboard">{escape(user.name)}</a>',
                '<form method="post" action="/logout" style="margin:0">'
                '<button type="submit">Sign out</button></form>',
            ]
        )
    return "".join(links)


def _options(choices: Iterable[tuple[str, str]], *, selected: str) -> str:
    return "".join(
        f'<option value="{escape(value)}"{" selected" if value == selected else ""}>'
        f"{escape(label)}</option>"
        for value, label in choices
    )


def _image_tag(path: str | None, alt: str, *, size: str = POSTER_SIZE) -> str:
    url = image_url(path, size)
    if url is None:
        return f'<img alt="{escape(alt)}" />'
    return f'<img src="{escape(url)}" alt="{escape(alt)}" loading="lazy" />'


def _toggle_button(kind: str, item_id: int, payload: Mapping[str, object], active: bool) -> str:
    data = escape(json.dumps(payload), quote=True)
    return (
        f'<button type="button" data-toggle="{kind}" data-id="{item_id}" '
        f'data-active="{"true" if active else "false"}" data-payload="{data}"></button>'
    )


def _media_actions(item: MediaItem, status: WatchlistStatus) -> str:
    payload = item.toggle_payload()
    return _toggle_button("watchlist", item.id, payload, status.is_saved) + _toggle_button(
        "watched", item.id, payload, status.is_watched
    )


def _media_card(item: MediaItem, *, show_reason: bool = False) -> str:
    reason = ""
    if show_reason and item.recommendation is not None:
        reason = (
            f'<span class="reason">{escape(item.recommendation.reason)} '
            f"({item.recommendation.relevance_score:.0f}% match)</span>"
        )
    rating = f"★ {item.vote_average:.1f}" if item.vote_average else ""
    meta = " · ".join(part for part in (item.year, rating) if part)
    return f"""
        <div class="card">
            <a href="{escape(item.href)}">{_image_tag(item.poster_path, item.title)}</a>
            <div class="body">
                <a href="{escape(item.href)}"><strong>{escape(item.title)}</strong></a>
                <span class="meta">{escape(meta)}</span>
                {reason}
                {_toggle_button("watched", item.id, item.toggle_payload(), item.watched)}
            </div>
        </div>
    """


def _media_grid(items: Sequence[MediaItem], *, show_reason: bool = False) -> str:
    cards = "".join(_media_card(item, show_reason=show_reason) for item in items)
    return f'<div class="grid">{cards}</div>'


def _person_card(person: Person) -> str:
    return f"""
        <a class="card" href="/person/{person.id}">
            {_image_tag(person.profile_path, person.name, size=PROFILE_SIZE)}
            <div class="body">
                <strong>{escape(person.name)}</strong>
                <span class="meta">{escape(person.known_for_department or "")}</span>
            </div>
        </a>
    """


def _people_strip(people: Sequence[Person]) -> str:
    entries = "".join(
        f"""
        <a class="person" href="/person/{person.id}">
            {_image_tag(person.profile_path, person.name, size=PROFILE_SIZE)}
            <div>{escape(person.name)}</div>
        </a>
        """
        for person in people
    )
    return f'<div class="strip">{entries}</div>'


def _detail_header(
    *,
    title: str,
    poster_path: str | None,
    tagline: str | None,
    facts: Sequence[str],
    genres: Sequence[Genre],
    overview: str,
    actions: str,
    extra: str = "",
) -> str:
    genre_names = ", ".join(genre.name for genre in genres)
    poster = image_url(poster_path, POSTER_SIZE)
    poster_tag = f'<img class="poster" src="{escape(poster)}" alt="{escape(title)}" />' if poster else ""
    return f"""
    <section class="detail">
        <div>{poster_tag}</div>
        <div>
            <h1>{escape(title)}</h1>
            {f'<p class="muted"><em>{escape(tagline)}</em></p>' if tagline else ""}
            <p class="muted">{escape(" · ".join(fact for fact in facts if fact))}</p>
            {f'<p class="muted">{escape(genre_names)}</p>' if genre_names else ""}
            <div class="actions">{actions}</div>
            <p>{escape(overview)}</p>
            {extra}
        </div>
    </section>
    """


def _cast_section(cast: Sequence[CastMember]) -> str:
    if not cast:
        return ""
    entries = "".join(
        f"""
        <a class="person" href="/person/{member.id}">
            {_image_tag(member.profile_path, member.name, size=PROFILE_SIZE)}
            <div>{escape(member.name)}</div>
            <div class="muted">{escape(member.character or "")}</div>
        </a>
        """
        for member in cast
    )
    return f'<h2>Cast</h2><div class="strip">{entries}</div>'


def _reviews_section(summary: ReviewSummary | None) -> str:
    if summary is None:
        return ""
    parts = ["<h2>Reception</h2>"]
    if summary.verdict is not None:
        parts.append(
            f'<div class="panel"><strong>{escape(summary.verdict.verdict)}</strong>'
            f'<p class="muted">{escape(summary.verdict.reason)}</p></div>'
        )
    ratings = summary.ratings
    if ratings is not None:
        scores = [
            f"{label}: {escape(value)}"
            for label, value in (
                ("IMDb", ratings.imdb),
                ("Rotten Tomatoes", ratings.rotten_tomatoes),
                ("Metacritic", ratings.metacritic),
            )
            if value
        ]
        if scores:
            parts.append(f'<p>{" · ".join(scores)}</p>')
        if ratings.awards:
            parts.append(f'<p class="muted">{escape(ratings.awards)}</p>')
    for review in summary.reviews[:5]:
        rating = f" · ★ {review.rating:g}" if review.rating is not None else ""
        excerpt = review.content if len(review.content) <= 600 else review.content[:600] + "…"
        parts.append(
            f'<div class="panel"><strong>{escape(review.author)}</strong>'
            f'<span class="muted">{rating}</span><p>{escape(excerpt)}</p></div>'
        )
    return "\n".join(parts)


def _browse_controls(
    *,
    action: str,
    query: str,
    genre: str,
    sort_by: str,
    genres: Sequence[Genre],
    sort_options: Sequence[SortOption],
) -> str:
    genre_options = _options(
        [("all", "All genres")] + [(str(item.id), item.name) for item in genres],
        selected=genre,
    )
    sort_choices = _options(
        [(option.value, option.label) for option in sort_options], selected=sort_by
    )
    return f"""
    <form class="inline" method="get" action="{escape(action)}">
        <input type="search" name="q" placeholder="Filter by title" value="{escape(query)}" />
        <select name="genre">{genre_options}</select>
        <select name="sort">{sort_choices}</select>
        <button type="submit">Apply</button>
    </form>
    """


def _browse_summary(page: BrowsePage) -> str:
    if not page.total_items:
        return ""
    return (
        f'<p class="muted">Showing {page.first_index}-{page.last_index} '
        f"of {page.total_items}</p>"
    )


def _pagination(path: str, page: BrowsePage, params: Mapping[str, str]) -> str:
    if page.total_pages <= 1:
        return ""

    def _link(number: int, label: str) -> str:
        query = urlencode({**params, "page": number})
        return f'<a href="{escape(path)}?{escape(query)}">{escape(label)}</a>'

    links = []
    if page.has_previous:
        links.append(_link(page.page - 1, "‹ Prev"))
    for number in visible_pages(page.page, page.total_pages):
        if number == page.page:
            links.append(f'<span class="current">{number}</span>')
        else:
            links.append(_link(number, str(number)))
    if page.has_next:
        links.append(_link(page.page + 1, "Next ›"))
    return f'<nav class="pagination">{"".join(links)}</nav>'


def _avatar(user: SessionUser) -> str:
    if user.image:
        return f'<img class="avatar" src="{escape(user.image)}" alt="{escape(user.name)}" />'
    return f'<div class="avatar" style="display:grid;place-items:center;font-size:2rem">{escape(user.initial)}</div>'


def _message(text: str | None, css_class: str) -> str:
    if not text:
        return ""
    return f'<p class="{css_class}">{escape(text)}</p>'


def _field_errors(errors: FieldErrors, field: str) -> str:
    return "".join(f'<p class="error">{escape(message)}</p>' for message in errors.get(field, ()))
