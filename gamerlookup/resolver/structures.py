from enum import Enum
from typing import Literal, NotRequired, Optional, TypedDict, Union

from gamerlookup.lib.db.schemes import PlatformEnum, QualificationStatusEnum


class SourceKind(str, Enum):
    STEAM_API = "steam_api"
    OPENXBL_API = "openxbl_api"
    PSN_API = "psn_api"
    PSNPROFILES_SCRAPER = "psnprofiles_scraper"


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CREDENTIAL_INVALID = "credential_invalid"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    MALFORMED_REQUEST = "malformed_request"
    SCRAPE_BLOCKED = "scrape_blocked"
    TIMEOUT = "timeout"


class ProfileRequest(TypedDict):
    platform: PlatformEnum
    identifier: str


# Steam Web API (GetPlayerSummaries / GetOwnedGames), fields kept as the vendor names them

class SteamPlayer(TypedDict):
    steamid: str
    personaname: str
    avatarfull: NotRequired[str]
    lastlogoff: NotRequired[int]
    communityvisibilitystate: NotRequired[int]


class SteamOwnedGame(TypedDict):
    appid: int
    name: str
    playtime_forever: int  # minutes
    playtime_2weeks: NotRequired[int]  # minutes
    rtime_last_played: NotRequired[int]  # epoch seconds


class SteamPayload(TypedDict):
    platform: Literal[PlatformEnum.STEAM]
    source_kind: SourceKind
    player: SteamPlayer
    games: list[SteamOwnedGame]


# OpenXBL (account settings / titleHistory); Xbox Live never reports playtime here

class XboxTitleHistory(TypedDict):
    lastTimePlayed: str  # ISO8601


class XboxTitle(TypedDict):
    titleId: str
    name: str
    titleHistory: NotRequired[XboxTitleHistory]


class XboxPayload(TypedDict):
    platform: Literal[PlatformEnum.XBOX]
    source_kind: SourceKind
    xuid: str
    settings: dict[str, str]  # Gamertag, GameDisplayPicRaw, ...
    last_seen: Optional[str]
    titles: list[XboxTitle]


# PlayStation: the mobile API and the PSNProfiles scrape both fill this shape

class PsnEarnedTrophies(TypedDict):
    platinum: int
    gold: int
    silver: int
    bronze: int


class PsnTrophySummary(TypedDict):
    trophyLevel: int
    earnedTrophies: PsnEarnedTrophies


class PsnTitle(TypedDict):
    titleId: str
    name: str
    playDuration: NotRequired[str]  # ISO8601 duration, e.g. PT228H56M33S
    lastPlayedDateTime: NotRequired[str]  # ISO8601


class PlayStationPayload(TypedDict):
    platform: Literal[PlatformEnum.PSN]
    source_kind: SourceKind
    account_id: str
    online_id: str
    avatar_url: Optional[str]
    trophy_summary: Optional[PsnTrophySummary]
    titles: list[PsnTitle]


RawPlatformPayload = Union[SteamPayload, XboxPayload, PlayStationPayload]


class TrophySummary(TypedDict):
    platinum: int
    gold: int
    silver: int
    bronze: int
    level: int


class GameEntry(TypedDict):
    name: str
    hours_played: Optional[int]
    last_played: Optional[str]  # ISO8601
    recent_hours_last_2_weeks: Optional[int]


class CanonicalProfile(TypedDict):
    platform: PlatformEnum
    identifier: str
    display_name: str
    total_games: int
    total_hours: int
    games: list[GameEntry]
    last_online: Optional[str]
    avatar_url: Optional[str]
    trophy_summary: Optional[TrophySummary]
    data_source: str
    qualification_status: QualificationStatusEnum
    qualification_reason: str
    resolved_at: Optional[str]  # ISO8601


class Qualification(TypedDict):
    qualification_status: QualificationStatusEnum
    qualification_reason: str


class AttemptRecord(TypedDict):
    source_kind: SourceKind
    started_at: str  # ISO8601
    outcome: Literal["success", "failure"]
    error_kind: Optional[ErrorKind]


class CacheStats(TypedDict):
    hits: int
    misses: int
    size: int


class TokenStatus(TypedDict):
    exists: bool
    is_expired: bool
    last_updated: Optional[str]
    last_validated_at: Optional[str]
