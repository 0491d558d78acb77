"""
Fallback PlayStation source: the public PSNProfiles page, rendered with a headless browser.

A browser is launched for each attempt and closed on every exit path, cancellation included.
PSNProfiles shows trophies and the game list but not playtime, so scraped titles carry none.
"""
import re
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.errors import SourceError, error_kind_for_status
from gamerlookup.resolver.structures import ErrorKind, PlayStationPayload, PsnTitle, SourceKind
from gamerlookup.sources import SourceAdapter

PSNPROFILES_URL = "https://psnprofiles.com"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_CAPTCHA_TEXT_HINTS = (
    "verify you are human",
    "checking your browser",
    "are you a robot",
    "unusual traffic",
    "attention required",
    "cf-challenge",
)
_CAPTCHA_URL_HINTS = ("/cdn-cgi/challenge", "/captcha")
_MISSING_PROFILE_HINTS = ("error-404", "page not found", "couldn't find that user")

_TITLE_ID = re.compile(r"/trophies/(\d+)-")
_DIGITS = re.compile(r"[^\d]")


def _number(text: Optional[str]) -> int:
    digits = _DIGITS.sub("", text or "")
    return int(digits) if digits else 0


def detect_block(url: str, html: str) -> Optional[ErrorKind]:
    """Classify a rendered page that is not a usable profile, or None when it is one."""
    lowered_url = url.lower()
    lowered = html.lower()
    if any(hint in lowered_url for hint in _CAPTCHA_URL_HINTS):
        return ErrorKind.SCRAPE_BLOCKED
    if any(hint in lowered for hint in _CAPTCHA_TEXT_HINTS):
        return ErrorKind.SCRAPE_BLOCKED
    if "captcha" in lowered and any(word in lowered for word in ("verify", "human", "robot", "security")):
        return ErrorKind.SCRAPE_BLOCKED
    if any(hint in lowered for hint in _MISSING_PROFILE_HINTS):
        return ErrorKind.NOT_FOUND
    return None


def parse_profile_page(html: str, online_id: str) -> PlayStationPayload:
    soup = BeautifulSoup(html, "html.parser")
    if soup.select_one("ul.profile-bar, div.trophy-count, #user-bar") is None:
        raise SourceError(ErrorKind.SCRAPE_BLOCKED, "PSNProfiles page has no profile markup")

    username = soup.select_one("span.username, #user-bar .username")
    avatar = soup.select_one("div.avatar img, #user-bar .avatar img")
    level = soup.select_one("li.icon-sprite.level, div.level-box span, .trophy-count .stat .typo-top")

    trophies = {}
    for grade in ("platinum", "gold", "silver", "bronze"):
        node = soup.select_one(f"li.{grade}, .trophy .{grade} span:last-child")
        trophies[grade] = _number(node.get_text() if node else None)

    titles: list[PsnTitle] = []
    for row in soup.select("table.zebra tr, #gamesTable tr"):
        link = row.select_one("a.title")
        if link is None:
            continue
        match = _TITLE_ID.search(link.get("href", ""))
        titles.append(PsnTitle(
            titleId=match.group(1) if match else link.get_text(strip=True),
            name=link.get_text(strip=True),
        ))

    return PlayStationPayload(
        platform=PlatformEnum.PSN,
        source_kind=SourceKind.PSNPROFILES_SCRAPER,
        account_id="",
        online_id=username.get_text(strip=True) if username else online_id,
        avatar_url=avatar.get("src") if avatar else None,
        trophy_summary={
            "trophyLevel": _number(level.get_text() if level else None),
            "earnedTrophies": trophies,
        },
        titles=titles,
    )


class PsnProfilesScrapeAdapter(SourceAdapter):
    source_kind = SourceKind.PSNPROFILES_SCRAPER
    platform = PlatformEnum.PSN

    def __init__(self, headless: bool = True, navigation_timeout: float = 30.0,
                 base_url: str = PSNPROFILES_URL):
        super().__init__()
        self.headless = headless
        self.navigation_timeout = navigation_timeout
        self.base_url = base_url.rstrip("/")

    async def _render(self, url: str) -> tuple[int, str, str]:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless)
            try:
                context = await browser.new_context(
                    user_agent=USER_AGENT,
                    viewport={"width": 1920, "height": 1080},
                    locale="en-US",
                )
                page = await context.new_page()
                page.set_default_timeout(self.navigation_timeout * 1000)
                response = await page.goto(url, wait_until="domcontentloaded")
                status = response.status if response else 0
                return status, page.url, await page.content()
            finally:
                await browser.close()

    async def fetch(self, native_id: str) -> PlayStationPayload:
        url = f"{self.base_url}/{quote(native_id)}"
        try:
            status, final_url, html = await self._render(url)
        except PlaywrightTimeoutError as e:
            raise SourceError(ErrorKind.TIMEOUT, "PSNProfiles navigation timed out") from e
        except PlaywrightError as e:
            raise SourceError(ErrorKind.UPSTREAM_UNAVAILABLE, f"browser error: {e.message}") from e

        logger.debug("PSNProfiles %s -> %s (%d bytes)", final_url, status, len(html))
        blocked = detect_block(final_url, html)
        if blocked is ErrorKind.SCRAPE_BLOCKED:
            raise SourceError(blocked, "PSNProfiles served a bot challenge")
        if status == 404 or blocked is ErrorKind.NOT_FOUND:
            raise SourceError(ErrorKind.NOT_FOUND, f"no PSNProfiles page for {native_id!r}")
        if status == 403:
            raise SourceError(ErrorKind.SCRAPE_BLOCKED, "PSNProfiles refused the browser")
        if status >= 400:
            raise SourceError(error_kind_for_status(status), f"PSNProfiles: HTTP {status}")
        return parse_profile_page(html, native_id)
