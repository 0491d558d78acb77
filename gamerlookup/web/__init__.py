"""
HTTP surface of the lookup service (aiohttp.web).

Handlers stay thin: they parse the request, hand it to the orchestrator and map
``ResolutionFailure`` onto a status code. Nothing here ever echoes a credential.
"""
import datetime
from typing import Optional

from aiohttp import web

from gamerlookup.lib.db.queries import get_recent_snapshots
from gamerlookup.lib.db.schemes import PlatformEnum, ProfileSnapshot
from gamerlookup.logger import logger
from gamerlookup.resolver.cache import ResultCache
from gamerlookup.resolver.errors import ResolutionFailure
from gamerlookup.resolver.orchestrator import FallbackOrchestrator
from gamerlookup.resolver.structures import ProfileRequest
from gamerlookup.resolver.tokens import TokenLifecycleManager

ORCHESTRATOR_KEY = web.AppKey("orchestrator", FallbackOrchestrator)
CACHE_KEY = web.AppKey("cache", ResultCache)
TOKEN_KEY = web.AppKey("psn_token", TokenLifecycleManager)
HISTORY_ENABLED_KEY = web.AppKey("history_enabled", bool)

# clients written against the PlayStation naming used elsewhere
PLATFORM_ALIASES = {"psn": PlatformEnum.PSN.value, "ps": PlatformEnum.PSN.value, "steam": "steam", "xbox": "xbox"}

routes = web.RouteTableDef()


def _error(status: int, message: str, **extra) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


def _platform_value(raw: object) -> object:
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        return PLATFORM_ALIASES.get(lowered, lowered)
    return raw


async def _json_body(request: web.Request) -> Optional[dict]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@routes.post("/api/profile/lookup")
async def lookup_profile(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if body is None:
        return _error(400, "Request body must be a JSON object", sources_attempted=[], error_kinds=[])

    profile_request = ProfileRequest(
        platform=_platform_value(body.get("platform")),
        identifier=body.get("gamerTag") or body.get("identifier") or "",
    )
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        profile = await orchestrator.resolve(profile_request)
    except ResolutionFailure as e:
        logger.info("Lookup %s/%s failed with %s: %s",
                    profile_request["platform"], profile_request["identifier"], e.http_status, e.message)
        return web.json_response(e.to_response(), status=e.http_status)
    return web.json_response(profile)


@routes.get("/api/cache/stats")
async def cache_stats(request: web.Request) -> web.Response:
    return web.json_response(request.app[CACHE_KEY].stats())


@routes.get("/api/token/status")
async def token_status(request: web.Request) -> web.Response:
    return web.json_response(request.app[TOKEN_KEY].status())


@routes.put("/api/token")
async def update_token(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if body is None or not isinstance(body.get("token"), str) or not body["token"].strip():
        return _error(400, "A non-empty 'token' is required")

    expires_at = None
    if body.get("expiresAt"):
        try:
            expires_at = datetime.datetime.fromisoformat(body["expiresAt"])
        except (TypeError, ValueError):
            return _error(400, "'expiresAt' must be an ISO-8601 timestamp")
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=datetime.UTC)

    request.app[TOKEN_KEY].supply(body["token"], expires_at)
    return web.Response(status=204)


def _snapshot_to_dict(snapshot: ProfileSnapshot) -> dict:
    return {
        "platform": snapshot.platform.value,
        "identifier": snapshot.platform_id,
        "display_name": snapshot.display_name,
        "total_games": snapshot.total_games,
        "total_hours": snapshot.total_hours,
        "data_source": snapshot.data_source,
        "qualification_status": snapshot.qualification_status.value,
        "qualification_reason": snapshot.qualification_reason,
        "resolved_at": snapshot.resolved_at.isoformat(),
        "games": [
            {
                "name": game.name,
                "hours_played": game.hours_played,
                "last_played": game.last_played.isoformat() if game.last_played else None,
                "recent_hours_last_2_weeks": game.recent_hours,
            }
            for game in sorted(snapshot.games, key=lambda game: game.position)
        ],
    }


@routes.get("/api/profile/history")
async def profile_history(request: web.Request) -> web.Response:
    if not request.app[HISTORY_ENABLED_KEY]:
        return _error(404, "Lookup history is disabled")
    try:
        platform = PlatformEnum(_platform_value(request.query.get("platform", "")))
    except ValueError:
        return _error(400, "Unknown platform")
    gamer_tag = request.query.get("gamerTag", "").strip()
    if not gamer_tag:
        return _error(400, "gamerTag is required")
    try:
        limit = min(max(int(request.query.get("limit", "10")), 1), 50)
    except ValueError:
        return _error(400, "limit must be an integer")

    snapshots = await get_recent_snapshots(platform, gamer_tag, limit=limit)
    return web.json_response([_snapshot_to_dict(snapshot) for snapshot in snapshots])


def create_app(
        orchestrator: FallbackOrchestrator,
        cache: ResultCache,
        psn_token: TokenLifecycleManager,
        history_enabled: bool = False
) -> web.Application:
    app = web.Application()
    app[ORCHESTRATOR_KEY] = orchestrator
    app[CACHE_KEY] = cache
    app[TOKEN_KEY] = psn_token
    app[HISTORY_ENABLED_KEY] = history_enabled
    app.add_routes(routes)
    return app
