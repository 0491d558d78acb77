import os
from dataclasses import dataclass, field

from gamerlookup.lib.db.schemes import PlatformEnum


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """
    Runtime configuration read from the environment (``.env`` is loaded by the launcher).
    """
    steam_api_key: str = ""
    openxbl_api_key: str = ""
    psn_npsso_token: str = ""

    cache_ttl: float = 1800.0
    cache_ttl_by_platform: dict[PlatformEnum, float] = field(default_factory=dict)
    cache_sweep_interval: float = 300.0

    attempt_timeout: float = 20.0
    resolution_deadline: float = 60.0
    transient_retries: int = 0
    top_games_limit: int = 20

    token_staleness: float = 900.0
    token_max_age_days: int = 30

    scraper_headless: bool = True
    db_url: str = "sqlite://data/gamer_lookup.db"
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> "Settings":
        ttl_by_platform = {}
        for platform in PlatformEnum:
            value = os.getenv(f"CACHE_TTL_{platform.name}")
            if value:
                ttl_by_platform[platform] = float(value)

        return cls(
            steam_api_key=os.getenv("STEAM_API_KEY") or os.getenv("STEAM_WEB_API_KEY", ""),
            openxbl_api_key=os.getenv("OPENXBL_API_KEY", ""),
            psn_npsso_token=os.getenv("PSN_NPSSO_TOKEN", ""),
            cache_ttl=_env_float("CACHE_TTL_SECONDS", 1800.0),
            cache_ttl_by_platform=ttl_by_platform,
            cache_sweep_interval=_env_float("CACHE_SWEEP_INTERVAL", 300.0),
            attempt_timeout=_env_float("ATTEMPT_TIMEOUT_SECONDS", 20.0),
            resolution_deadline=_env_float("RESOLUTION_DEADLINE_SECONDS", 60.0),
            transient_retries=_env_int("TRANSIENT_RETRIES", 0),
            top_games_limit=_env_int("TOP_GAMES_LIMIT", 20),
            token_staleness=_env_float("TOKEN_STALENESS_SECONDS", 900.0),
            token_max_age_days=_env_int("TOKEN_MAX_AGE_DAYS", 30),
            scraper_headless=_env_bool("SCRAPER_HEADLESS", True),
            db_url=os.getenv("DB_URL", "sqlite://data/gamer_lookup.db"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8080),
        )

    def ttl_for(self, platform: PlatformEnum) -> float:
        return self.cache_ttl_by_platform.get(platform, self.cache_ttl)
