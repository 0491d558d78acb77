from enum import Enum
from typing import Callable, NamedTuple

from gamerlookup.lib.db.schemes import QualificationStatusEnum
from gamerlookup.resolver.structures import CanonicalProfile, Qualification, SourceKind


class SourceTier(str, Enum):
    OFFICIAL_API = "official_api"
    SCRAPED = "scraped"


SOURCE_TIERS: dict[SourceKind, SourceTier] = {
    SourceKind.STEAM_API: SourceTier.OFFICIAL_API,
    SourceKind.OPENXBL_API: SourceTier.OFFICIAL_API,
    SourceKind.PSN_API: SourceTier.OFFICIAL_API,
    SourceKind.PSNPROFILES_SCRAPER: SourceTier.SCRAPED,
}

SOURCE_LABELS: dict[SourceKind, str] = {
    SourceKind.STEAM_API: "Steam Web API",
    SourceKind.OPENXBL_API: "Xbox Live via OpenXBL",
    SourceKind.PSN_API: "PlayStation Network API",
    SourceKind.PSNPROFILES_SCRAPER: "PSNProfiles public profile",
}


# canonical fields a source never exposes, whatever the library holds
SOURCE_GAPS: dict[SourceKind, tuple[str, ...]] = {
    SourceKind.OPENXBL_API: ("hours_played",),
    SourceKind.PSNPROFILES_SCRAPER: ("hours_played",),
}


def missing_fields(source_kind: SourceKind, profile: CanonicalProfile) -> list[str]:
    """Canonical fields the source does not expose, or left undefined for a listed game."""
    missing = list(SOURCE_GAPS.get(source_kind, ()))
    if "hours_played" not in missing and any(game["hours_played"] is None for game in profile["games"]):
        missing.append("hours_played")
    return missing


class Rule(NamedTuple):
    applies: Callable[[SourceTier, list[str]], bool]
    status: QualificationStatusEnum
    reason: Callable[[str, list[str]], str]


# first matching rule wins
RULES: tuple[Rule, ...] = (
    Rule(
        applies=lambda tier, missing: tier is SourceTier.SCRAPED,
        status=QualificationStatusEnum.AUTHENTIC_SCRAPED,
        reason=lambda label, missing: (
            f"Real data scraped from {label}"
            + (f"; not exposed there: {', '.join(missing)}" if missing else "")
        ),
    ),
    Rule(
        applies=lambda tier, missing: bool(missing),
        status=QualificationStatusEnum.PARTIAL,
        reason=lambda label, missing: (
            f"{label} does not expose {', '.join(missing)}; "
            f"totals only count games with recorded playtime"
        ),
    ),
    Rule(
        applies=lambda tier, missing: True,
        status=QualificationStatusEnum.AUTHENTIC,
        reason=lambda label, missing: f"Real playtime data from {label}",
    ),
)


def classify(source_kind: SourceKind, profile: CanonicalProfile) -> Qualification:
    tier = SOURCE_TIERS[source_kind]
    label = SOURCE_LABELS[source_kind]
    missing = missing_fields(source_kind, profile)
    rule = next(rule for rule in RULES if rule.applies(tier, missing))
    return Qualification(
        qualification_status=rule.status,
        qualification_reason=rule.reason(label, missing),
    )
