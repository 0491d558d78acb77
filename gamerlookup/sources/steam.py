import re

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.errors import SourceError
from gamerlookup.resolver.structures import ErrorKind, SourceKind, SteamPayload
from gamerlookup.sources import SourceAdapter, get_json

STEAM_API_URL = "https://api.steampowered.com"
STEAM_ID_PATTERN = re.compile(r"^765\d{14}$")
PUBLIC_VISIBILITY = 3


class SteamApiAdapter(SourceAdapter):
    """Steam Web API: ResolveVanityURL, GetPlayerSummaries and GetOwnedGames."""

    source_kind = SourceKind.STEAM_API
    platform = PlatformEnum.STEAM

    def __init__(self, api_key: str, base_url: str = STEAM_API_URL):
        super().__init__()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _require_key(self) -> str:
        if not self.api_key:
            raise SourceError(ErrorKind.CREDENTIAL_INVALID, "Steam Web API key not configured")
        return self.api_key

    def accepts(self, identifier: str) -> bool:
        return bool(STEAM_ID_PATTERN.match(identifier))

    async def resolve_identifier(self, identifier: str) -> str:
        data = await get_json(
            f"{self.base_url}/ISteamUser/ResolveVanityURL/v0001/",
            "Steam ResolveVanityURL",
            params={"key": self._require_key(), "vanityurl": identifier},
        )
        response = data.get("response", {})
        if response.get("success") != 1 or not response.get("steamid"):
            raise SourceError(ErrorKind.NOT_FOUND, f"no Steam vanity URL named {identifier!r}")
        logger.debug("Resolved Steam vanity %s -> %s", identifier, response["steamid"])
        return response["steamid"]

    async def fetch(self, native_id: str) -> SteamPayload:
        key = self._require_key()
        summaries = await get_json(
            f"{self.base_url}/ISteamUser/GetPlayerSummaries/v0002/",
            "Steam GetPlayerSummaries",
            params={"key": key, "steamids": native_id},
        )
        players = summaries.get("response", {}).get("players", [])
        if not players:
            raise SourceError(ErrorKind.NOT_FOUND, f"no Steam player {native_id}")
        player = players[0]
        if player.get("communityvisibilitystate", PUBLIC_VISIBILITY) != PUBLIC_VISIBILITY:
            # a private profile hides its library; nothing real to return
            raise SourceError(ErrorKind.NOT_FOUND, f"Steam profile {native_id} is private")

        owned = await get_json(
            f"{self.base_url}/IPlayerService/GetOwnedGames/v0001/",
            "Steam GetOwnedGames",
            params={
                "key": key,
                "steamid": native_id,
                "include_appinfo": 1,
                "include_played_free_games": 1,
                "format": "json",
            },
        )
        games = owned.get("response", {}).get("games", [])

        return SteamPayload(
            platform=PlatformEnum.STEAM,
            source_kind=self.source_kind,
            player=player,
            games=games,
        )
