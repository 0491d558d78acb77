import re
from typing import Optional
from urllib.parse import quote

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.errors import SourceError
from gamerlookup.resolver.structures import ErrorKind, SourceKind, XboxPayload
from gamerlookup.sources import SourceAdapter, get_json

OPENXBL_API_URL = "https://xbl.io/api/v2"
XUID_PATTERN = re.compile(r"^\d{16}$")


class OpenXblAdapter(SourceAdapter):
    """
    Xbox Live through the OpenXBL proxy.

    Xbox Live publishes which titles were played and when, never for how long, so every
    title in the payload comes without playtime.
    """

    source_kind = SourceKind.OPENXBL_API
    platform = PlatformEnum.XBOX

    def __init__(self, api_key: str, base_url: str = OPENXBL_API_URL):
        super().__init__()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise SourceError(ErrorKind.CREDENTIAL_INVALID, "OpenXBL API key not configured")
        return {"X-Authorization": self.api_key, "Accept": "application/json"}

    def accepts(self, identifier: str) -> bool:
        return bool(XUID_PATTERN.match(identifier))

    async def resolve_identifier(self, identifier: str) -> str:
        data = await get_json(
            f"{self.base_url}/search/{quote(identifier)}",
            "OpenXBL search",
            headers=self._headers(),
        )
        people = data.get("people") or []
        for person in people:
            if person.get("gamertag", "").lower() == identifier.lower():
                return person["xuid"]
        raise SourceError(ErrorKind.NOT_FOUND, f"no Xbox gamertag {identifier!r}")

    async def fetch(self, native_id: str) -> XboxPayload:
        headers = self._headers()
        account = await get_json(f"{self.base_url}/account/{native_id}", "OpenXBL account", headers=headers)
        users = account.get("profileUsers") or []
        if not users:
            raise SourceError(ErrorKind.NOT_FOUND, f"no Xbox account {native_id}")
        settings = {item["id"]: item["value"] for item in users[0].get("settings", [])}

        history = await get_json(
            f"{self.base_url}/player/titleHistory/{native_id}",
            "OpenXBL titleHistory",
            headers=headers,
        )

        return XboxPayload(
            platform=PlatformEnum.XBOX,
            source_kind=self.source_kind,
            xuid=native_id,
            settings=settings,
            last_seen=await self._last_seen(native_id, headers),
            titles=history.get("titles", []),
        )

    async def _last_seen(self, xuid: str, headers: dict[str, str]) -> Optional[str]:
        try:
            presence = await get_json(f"{self.base_url}/{xuid}/presence", "OpenXBL presence", headers=headers)
        except SourceError as e:
            # presence is not part of every OpenXBL plan
            logger.debug("Presence unavailable for %s: %s", xuid, e)
            return None
        entries = presence if isinstance(presence, list) else [presence]
        for entry in entries:
            last_seen = (entry or {}).get("lastSeen") or {}
            if last_seen.get("timestamp"):
                return last_seen["timestamp"]
        return None
