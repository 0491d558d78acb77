"""
PlayStation Network mobile API, authenticated with an externally supplied NPSSO cookie.

The NPSSO is exchanged for an authorization code, then for a short-lived bearer token
which is reused until it expires. The NPSSO itself belongs to the token lifecycle manager;
this module only reads it.
"""
import datetime
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.errors import SourceError
from gamerlookup.resolver.structures import ErrorKind, PlayStationPayload, SourceKind
from gamerlookup.resolver.tokens import TokenLifecycleManager
from gamerlookup.sources import SourceAdapter, get_json, post_json, raise_for_status
from gamerlookup.sources.http_session import get_session

AUTH_URL = "https://ca.account.sony.com/api/authz/v3/oauth"
API_URL = "https://m.np.playstation.com/api"

ACCOUNT_ID_PATTERN = re.compile(r"^\d{16,20}$")
SCOPE = "psn:mobile.v2.core psn:clientapp"
USER_AGENT = "PlayStation App/24.0.0 (Android/13)"

APP_CLIENT_ID = "09515159-7237-4370-9b40-3806e67c0891"
APP_REDIRECT_URI = "com.scee.psxandroid.scecompcall://redirect"
APP_BASIC_AUTH = "MDk1MTUxNTktNzIzNy00MzcwLTliNDAtMzgwNmU2N2MwODkxOnVjUGprYTV0bnRCMktxc1A="

GAME_CATEGORIES = "ps4_game,ps5_native_game"
TITLES_PAGE_SIZE = 200

# 403 on data endpoints is Sony refusing access to a private profile, not a bad token
DATA_STATUS_KINDS = {403: ErrorKind.NOT_FOUND}
# a refused code grant means the NPSSO session is gone
TOKEN_STATUS_KINDS = {400: ErrorKind.CREDENTIAL_INVALID, 403: ErrorKind.CREDENTIAL_INVALID}


def _authorize_params() -> dict[str, str]:
    return {
        "access_type": "offline",
        "client_id": APP_CLIENT_ID,
        "redirect_uri": APP_REDIRECT_URI,
        "response_type": "code",
        "scope": SCOPE,
    }


async def _authorization_code(npsso: str, auth_url: str = AUTH_URL) -> Optional[str]:
    """Authorization code for ``npsso``, or None when Sony no longer honours the cookie."""
    session = get_session()
    async with session.get(
            f"{auth_url}/authorize",
            params=_authorize_params(),
            headers={"Cookie": f"npsso={npsso}", "User-Agent": USER_AGENT},
            allow_redirects=False
    ) as response:
        if response.status >= 500:
            response.raise_for_status()
        location = response.headers.get("Location", "")
        codes = parse_qs(urlparse(location).query).get("code")
        return codes[0] if codes else None


async def validate_npsso(npsso: str) -> bool:
    """
    Upstream validity check used by the token lifecycle manager.
    Transport failures and 5xx answers raise ``aiohttp.ClientError``; they say nothing about the token.
    """
    return await _authorization_code(npsso) is not None


class PsnApiAdapter(SourceAdapter):
    source_kind = SourceKind.PSN_API
    platform = PlatformEnum.PSN
    requires_credential = True

    def __init__(self, token_manager: TokenLifecycleManager, api_url: str = API_URL, auth_url: str = AUTH_URL):
        super().__init__(token_manager)
        self.api_url = api_url.rstrip("/")
        self.auth_url = auth_url.rstrip("/")
        self._access_token: Optional[str] = None
        self._access_expires_at: Optional[datetime.datetime] = None
        self._access_npsso: Optional[str] = None

    def accepts(self, identifier: str) -> bool:
        return bool(ACCOUNT_ID_PATTERN.match(identifier))

    async def _bearer(self) -> dict[str, str]:
        npsso = self.token_manager.reveal()
        if not npsso:
            raise SourceError(ErrorKind.CREDENTIAL_INVALID, "no NPSSO token supplied")

        now = datetime.datetime.now(datetime.UTC)
        if (self._access_token and self._access_npsso == npsso
                and self._access_expires_at and now < self._access_expires_at):
            return {"Authorization": f"Bearer {self._access_token}"}

        code = await _authorization_code(npsso, self.auth_url)
        if code is None:
            raise SourceError(ErrorKind.CREDENTIAL_INVALID, "NPSSO rejected by the authorize endpoint")

        session = get_session()
        async with session.post(
                f"{self.auth_url}/token",
                data={
                    "code": code,
                    "redirect_uri": APP_REDIRECT_URI,
                    "grant_type": "authorization_code",
                    "token_format": "jwt",
                },
                headers={"Authorization": f"Basic {APP_BASIC_AUTH}", "User-Agent": USER_AGENT}
        ) as response:
            raise_for_status(response, "PSN token exchange", TOKEN_STATUS_KINDS)
            data = await response.json(content_type=None)

        self._access_token = data["access_token"]
        self._access_npsso = npsso
        # renew a minute early
        self._access_expires_at = now + datetime.timedelta(seconds=int(data.get("expires_in", 3600)) - 60)
        logger.debug("PSN access token obtained")
        return {"Authorization": f"Bearer {self._access_token}"}

    async def resolve_identifier(self, identifier: str) -> str:
        data = await post_json(
            f"{self.api_url}/search/v1/universalSearch",
            "PSN universalSearch",
            json={"searchTerm": identifier, "domainRequests": [{"domain": "SocialAllAccounts"}]},
            headers=await self._bearer(),
            status_kinds=DATA_STATUS_KINDS,
        )
        for domain in data.get("domainResponses", []):
            for result in domain.get("results", []):
                metadata = result.get("socialMetadata", {})
                if metadata.get("onlineId", "").lower() == identifier.lower():
                    return metadata["accountId"]
        raise SourceError(ErrorKind.NOT_FOUND, f"no PSN online id {identifier!r}")

    async def fetch(self, native_id: str) -> PlayStationPayload:
        headers = await self._bearer()
        profile = await get_json(
            f"{self.api_url}/userProfile/v1/internal/users/{native_id}/profiles",
            "PSN profile",
            headers=headers,
            status_kinds=DATA_STATUS_KINDS,
        )
        trophies = await get_json(
            f"{self.api_url}/trophy/v1/users/{native_id}/trophySummary",
            "PSN trophySummary",
            headers=headers,
            status_kinds=DATA_STATUS_KINDS,
        )
        titles = await get_json(
            f"{self.api_url}/gamelist/v2/users/{native_id}/titles",
            "PSN gamelist",
            params={"categories": GAME_CATEGORIES, "limit": TITLES_PAGE_SIZE, "offset": 0},
            headers=headers,
            status_kinds=DATA_STATUS_KINDS,
        )

        avatars = profile.get("avatars") or []
        return PlayStationPayload(
            platform=PlatformEnum.PSN,
            source_kind=self.source_kind,
            account_id=native_id,
            online_id=profile.get("onlineId") or native_id,
            avatar_url=avatars[-1]["url"] if avatars else None,
            trophy_summary={
                "trophyLevel": int(trophies.get("trophyLevel", 0)),
                "earnedTrophies": trophies.get("earnedTrophies", {
                    "platinum": 0, "gold": 0, "silver": 0, "bronze": 0
                }),
            },
            titles=titles.get("titles", []),
        )

    async def acquire(self, identifier: str) -> PlayStationPayload:
        try:
            return await super().acquire(identifier)
        except SourceError as e:
            if e.kind is ErrorKind.CREDENTIAL_INVALID:
                self._access_token = None
            raise


