"""
Vendor payload -> CanonicalProfile.

Each platform contributes one ``PlatformMapping`` row: how to read the profile fields and
the per-title fields out of its payload, with playtime expressed in whole minutes.
Everything else (zero-playtime filtering, recency ordering, top-N truncation, aggregates)
is shared so the policy cannot drift between platforms.
"""
import datetime
import re
from typing import Any, Callable, Iterable, NamedTuple, Optional

from gamerlookup.lib.db.schemes import PlatformEnum, QualificationStatusEnum
from gamerlookup.resolver.structures import (
    CanonicalProfile, GameEntry, PlayStationPayload, PsnTitle, RawPlatformPayload, SteamOwnedGame,
    TrophySummary, XboxTitle,
)

DEFAULT_TOP_N = 20

_EPOCH = datetime.datetime.fromtimestamp(0, datetime.UTC)
_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def minutes_to_hours(minutes: int | float) -> int:
    """Whole hours, rounding half up after dropping fractional minutes (2700 -> 45, 89 -> 1)."""
    return (int(minutes) + 30) // 60


def duration_to_minutes(duration: str) -> Optional[int]:
    match = _ISO_DURATION.match(duration.strip())
    if not match:
        return None
    parts = match.groupdict()
    return int(parts["days"] or 0) * 1440 + int(parts["hours"] or 0) * 60 + int(parts["minutes"] or 0)


def from_epoch(seconds: Optional[int]) -> Optional[datetime.datetime]:
    if not seconds:
        return None
    return datetime.datetime.fromtimestamp(seconds, datetime.UTC)


def from_iso(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed.astimezone(datetime.UTC)


def _to_iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class PlatformMapping(NamedTuple):
    identifier: Callable[[Any], str]
    display_name: Callable[[Any], str]
    avatar_url: Callable[[Any], Optional[str]]
    last_online: Callable[[Any], Optional[datetime.datetime]]
    trophy_summary: Callable[[Any], Optional[TrophySummary]]
    titles: Callable[[Any], Iterable[Any]]
    title_name: Callable[[Any], str]
    # None means the source does not expose playtime for the title
    title_minutes: Callable[[Any], Optional[int]]
    title_last_played: Callable[[Any], Optional[datetime.datetime]]
    title_recent_minutes: Callable[[Any], Optional[int]]


def _steam_recent_minutes(game: SteamOwnedGame) -> Optional[int]:
    return game.get("playtime_2weeks")


def _xbox_last_played(title: XboxTitle) -> Optional[datetime.datetime]:
    history = title.get("titleHistory")
    return from_iso(history["lastTimePlayed"]) if history else None


def _psn_minutes(title: PsnTitle) -> Optional[int]:
    duration = title.get("playDuration")
    return duration_to_minutes(duration) if duration else None


def _psn_trophies(payload: PlayStationPayload) -> Optional[TrophySummary]:
    summary = payload["trophy_summary"]
    if summary is None:
        return None
    earned = summary["earnedTrophies"]
    return TrophySummary(
        platinum=earned["platinum"],
        gold=earned["gold"],
        silver=earned["silver"],
        bronze=earned["bronze"],
        level=summary["trophyLevel"],
    )


STEAM_MAPPING = PlatformMapping(
    identifier=lambda p: p["player"]["steamid"],
    display_name=lambda p: p["player"]["personaname"],
    avatar_url=lambda p: p["player"].get("avatarfull"),
    last_online=lambda p: from_epoch(p["player"].get("lastlogoff")),
    trophy_summary=lambda p: None,
    titles=lambda p: p["games"],
    title_name=lambda g: g["name"],
    title_minutes=lambda g: g["playtime_forever"],
    title_last_played=lambda g: from_epoch(g.get("rtime_last_played")),
    title_recent_minutes=_steam_recent_minutes,
)

XBOX_MAPPING = PlatformMapping(
    identifier=lambda p: p["xuid"],
    display_name=lambda p: p["settings"].get("Gamertag") or p["xuid"],
    avatar_url=lambda p: p["settings"].get("GameDisplayPicRaw"),
    last_online=lambda p: from_iso(p["last_seen"]),
    trophy_summary=lambda p: None,
    titles=lambda p: p["titles"],
    title_name=lambda t: t["name"],
    title_minutes=lambda t: None,
    title_last_played=_xbox_last_played,
    title_recent_minutes=lambda t: None,
)

PLAYSTATION_MAPPING = PlatformMapping(
    identifier=lambda p: p["account_id"] or p["online_id"],
    display_name=lambda p: p["online_id"],
    avatar_url=lambda p: p["avatar_url"],
    last_online=lambda p: None,
    trophy_summary=_psn_trophies,
    titles=lambda p: p["titles"],
    title_name=lambda t: t["name"],
    title_minutes=_psn_minutes,
    title_last_played=lambda t: from_iso(t.get("lastPlayedDateTime")),
    title_recent_minutes=lambda t: None,
)

PLATFORM_MAPPINGS: dict[PlatformEnum, PlatformMapping] = {
    PlatformEnum.STEAM: STEAM_MAPPING,
    PlatformEnum.XBOX: XBOX_MAPPING,
    PlatformEnum.PSN: PLAYSTATION_MAPPING,
}


def _ranked_games(mapping: PlatformMapping, payload: RawPlatformPayload, top_n: int) -> list[GameEntry]:
    rows = []
    for title in mapping.titles(payload):
        minutes = mapping.title_minutes(title)
        if minutes is not None and minutes <= 0:
            continue
        recent = mapping.title_recent_minutes(title)
        rows.append((
            mapping.title_last_played(title),
            GameEntry(
                name=mapping.title_name(title),
                hours_played=minutes_to_hours(minutes) if minutes is not None else None,
                last_played=None,
                recent_hours_last_2_weeks=minutes_to_hours(recent) if recent is not None else None,
            )
        ))

    # stable sort; titles without a timestamp rank as epoch zero, i.e. last
    rows.sort(key=lambda row: row[0] or _EPOCH, reverse=True)

    games = []
    for last_played, entry in rows[:top_n]:
        entry["last_played"] = _to_iso(last_played)
        games.append(entry)
    return games


def normalize(
        platform: PlatformEnum,
        raw: RawPlatformPayload,
        *,
        top_n: int = DEFAULT_TOP_N,
        resolved_at: Optional[str] = None
) -> CanonicalProfile:
    if PlatformEnum(raw["platform"]) is not platform:
        raise ValueError(f"payload for {raw['platform']} cannot be normalized as {platform}")
    mapping = PLATFORM_MAPPINGS[platform]
    games = _ranked_games(mapping, raw, top_n)

    return CanonicalProfile(
        platform=platform,
        identifier=mapping.identifier(raw),
        display_name=mapping.display_name(raw),
        total_games=len(games),
        total_hours=sum(game["hours_played"] or 0 for game in games),
        games=games,
        last_online=_to_iso(mapping.last_online(raw)),
        avatar_url=mapping.avatar_url(raw),
        trophy_summary=mapping.trophy_summary(raw),
        data_source=raw["source_kind"].value,
        qualification_status=QualificationStatusEnum.PENDING,
        qualification_reason="",
        resolved_at=resolved_at,
    )
