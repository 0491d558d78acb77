import datetime
from typing import Optional

from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from gamerlookup.lib.db.schemes import GameActivity, PlatformEnum, ProfileSnapshot
from gamerlookup.logger import logger
from gamerlookup.resolver.cache import make_cache_key
from gamerlookup.resolver.structures import CanonicalProfile


def _parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    return datetime.datetime.fromisoformat(value)


async def save_profile_snapshot(profile: CanonicalProfile, lookup_key: Optional[str] = None) -> ProfileSnapshot:
    """Persist one freshly resolved profile together with its ranked game list."""
    lookup_key = lookup_key or make_cache_key(profile["platform"], profile["identifier"])[1]
    async with in_transaction():
        snapshot = await ProfileSnapshot.create(
            platform=profile["platform"],
            lookup_key=lookup_key,
            platform_id=profile["identifier"],
            display_name=profile["display_name"],
            total_games=profile["total_games"],
            total_hours=profile["total_hours"],
            data_source=profile["data_source"],
            qualification_status=profile["qualification_status"],
            qualification_reason=profile["qualification_reason"],
            resolved_at=_parse_timestamp(profile["resolved_at"]) or datetime.datetime.now(datetime.UTC),
        )
        if profile["games"]:
            await GameActivity.bulk_create([
                GameActivity(
                    snapshot=snapshot,
                    position=position,
                    name=game["name"],
                    hours_played=game["hours_played"],
                    last_played=_parse_timestamp(game["last_played"]),
                    recent_hours=game["recent_hours_last_2_weeks"],
                )
                for position, game in enumerate(profile["games"])
            ])
    logger.debug("Stored snapshot %s for %s/%s", snapshot.id, profile["platform"].value, lookup_key)
    return snapshot


async def get_recent_snapshots(platform: PlatformEnum, identifier: str, limit: int = 10) -> list[ProfileSnapshot]:
    """Newest first; matches on the requested handle and on the platform-native id."""
    key = make_cache_key(platform, identifier)[1]
    return await ProfileSnapshot.filter(
        Q(lookup_key=key) | Q(platform_id=identifier.strip()), platform=platform
    ).prefetch_related("games").order_by("-resolved_at", "-id").limit(limit)
