import asyncio
import atexit
import signal
from pathlib import Path
from typing import Any

from tortoise import Tortoise, connections, BaseDBAsyncClient

from gamerlookup.logger import logger

MODELS = {"models": ["gamerlookup.lib.db.schemes"]}


class DatabaseManager:
    _initialized = False

    def __init__(self, db_url: str, modules: dict | None = None, generate_schemas: bool = False,
                 install_signal_handlers: bool = False):
        self.db_url = db_url
        self.modules = modules or MODELS
        self.generate_schemas = generate_schemas

        atexit.register(self._sync_close)
        if install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                signal.signal(sig, lambda signum, frame: self._sync_close())

    async def connect(self) -> None:
        if not self._initialized:
            if self.db_url.startswith("sqlite://") and ":memory:" not in self.db_url:
                Path(self.db_url.removeprefix("sqlite://")).parent.mkdir(parents=True, exist_ok=True)
            await Tortoise.init(
                db_url=self.db_url,
                modules=self.modules
            )
            logger.debug("Database connection initialized with URL: %s", self.db_url)
            if self.generate_schemas:
                await Tortoise.generate_schemas(safe=True)
            DatabaseManager._initialized = True

    @staticmethod
    async def close() -> None:
        if DatabaseManager._initialized:
            await Tortoise.close_connections()
        DatabaseManager._initialized = False

    def _sync_close(self) -> None:
        if not DatabaseManager._initialized:
            return
        try:
            loop = asyncio.get_event_loop()
            if loop.is_running():
                asyncio.ensure_future(self.close())
            else:
                loop.run_until_complete(self.close())
        except RuntimeError:
            asyncio.run(self.close())

    @property
    def connection(self) -> BaseDBAsyncClient:
        return connections.get("default")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_value: Any, tb: Any) -> None:
        await self.close()
