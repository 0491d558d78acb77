import datetime
from typing import Optional

from aiohttp import web

from gamerlookup.lib.db import DatabaseManager
from gamerlookup.lib.db.queries import save_profile_snapshot
from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.lib.settings import Settings
from gamerlookup.logger import logger, register_secret
from gamerlookup.resolver.cache import ResultCache
from gamerlookup.resolver.events import LoggingEventSink
from gamerlookup.resolver.orchestrator import FallbackOrchestrator
from gamerlookup.resolver.tokens import TokenLifecycleManager
from gamerlookup.sources import SourceAdapter
from gamerlookup.sources.http_session import close_session
from gamerlookup.sources.playstation import PsnApiAdapter, validate_npsso
from gamerlookup.sources.psnprofiles import PsnProfilesScrapeAdapter
from gamerlookup.sources.steam import SteamApiAdapter
from gamerlookup.sources.xbox import OpenXblAdapter
from gamerlookup.web import create_app


def build_chains(settings: Settings, psn_token: TokenLifecycleManager) -> dict[PlatformEnum, list[SourceAdapter]]:
    """Fixed preference order per platform; the first adapter that succeeds wins."""
    return {
        PlatformEnum.PSN: [
            PsnApiAdapter(psn_token),
            PsnProfilesScrapeAdapter(headless=settings.scraper_headless,
                                     navigation_timeout=settings.attempt_timeout),
        ],
        PlatformEnum.STEAM: [SteamApiAdapter(settings.steam_api_key)],
        PlatformEnum.XBOX: [OpenXblAdapter(settings.openxbl_api_key)],
    }


class GamerLookupServer:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings.from_env()
        for secret in (self.settings.steam_api_key, self.settings.openxbl_api_key):
            register_secret(secret)
        self.version = None
        self.db: Optional[DatabaseManager] = None
        if self.settings.db_url:
            self.db = DatabaseManager(self.settings.db_url, generate_schemas=True)

        self.psn_token = TokenLifecycleManager(
            "PSN_NPSSO_TOKEN",
            validator=validate_npsso,
            staleness=self.settings.token_staleness,
            max_age=datetime.timedelta(days=self.settings.token_max_age_days),
        )
        if self.settings.psn_npsso_token:
            self.psn_token.supply(self.settings.psn_npsso_token)
        else:
            logger.warning("PSN_NPSSO_TOKEN not set; PlayStation lookups will go straight to PSNProfiles")
        if not self.settings.steam_api_key:
            logger.warning("STEAM_API_KEY not set; Steam lookups will fail")
        if not self.settings.openxbl_api_key:
            logger.warning("OPENXBL_API_KEY not set; Xbox lookups will fail")

        self.cache = ResultCache(default_ttl=self.settings.cache_ttl)
        self.orchestrator = FallbackOrchestrator(
            build_chains(self.settings, self.psn_token),
            self.cache,
            attempt_timeout=self.settings.attempt_timeout,
            deadline=self.settings.resolution_deadline,
            transient_retries=self.settings.transient_retries,
            top_n=self.settings.top_games_limit,
            ttl_for=self.settings.ttl_for,
            events=LoggingEventSink(),
            history=save_profile_snapshot if self.db else None,
        )

    def create_app(self) -> web.Application:
        app = create_app(self.orchestrator, self.cache, self.psn_token, history_enabled=self.db is not None)
        app.on_startup.append(self.on_startup)
        app.on_cleanup.append(self.on_cleanup)
        return app

    async def on_startup(self, app: web.Application) -> None:
        if self.db:
            await self.db.connect()
            logger.info("Connected to the database.")
        self.cache.start_sweeper(self.settings.cache_sweep_interval)
        logger.info("Gamer Lookup %s is ready on %s:%s", self.version, self.settings.host, self.settings.port)

    async def on_cleanup(self, app: web.Application) -> None:
        await self.cache.stop_sweeper()
        await close_session()
        if self.db:
            await self.db.close()
        logger.info("Gamer Lookup stopped.")

    def run(self, version: str):
        self.version = version
        logger.info("Starting Gamer Lookup version %s", self.version)
        web.run_app(self.create_app(), host=self.settings.host, port=self.settings.port, print=None)
