"""Static lookup tables shared by every service: surfaces, topics, languages and reason codes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping


class CuratedStatus(str, Enum):
    RECOMMENDATION = "RECOMMENDATION"
    CORPUS = "CORPUS"


class CorpusItemSource(str, Enum):
    PROSPECT = "PROSPECT"
    MANUAL = "MANUAL"
    BACKFILL = "BACKFILL"
    ML = "ML"


class ActivitySource(str, Enum):
    MANUAL = "MANUAL"
    ML = "ML"


class CorpusLanguage(str, Enum):
    EN = "EN"
    DE = "DE"
    ES = "ES"
    FR = "FR"
    IT = "IT"


class Topic(str, Enum):
    BUSINESS = "BUSINESS"
    CAREER = "CAREER"
    CORONAVIRUS = "CORONAVIRUS"
    EDUCATION = "EDUCATION"
    ENTERTAINMENT = "ENTERTAINMENT"
    FOOD = "FOOD"
    GAMING = "GAMING"
    HEALTH_FITNESS = "HEALTH_FITNESS"
    HOME = "HOME"
    PARENTING = "PARENTING"
    PERSONAL_FINANCE = "PERSONAL_FINANCE"
    POLITICS = "POLITICS"
    SCIENCE = "SCIENCE"
    SELF_IMPROVEMENT = "SELF_IMPROVEMENT"
    SPORTS = "SPORTS"
    TECHNOLOGY = "TECHNOLOGY"
    TRAVEL = "TRAVEL"


class SectionStatus(str, Enum):
    DISABLED = "DISABLED"
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    EXPIRED = "EXPIRED"


REJECTION_REASONS = frozenset(
    {
        "PAYWALL",
        "POLITICAL_OPINION",
        "OFFENSIVE_MATERIAL",
        "TIME_SENSITIVE",
        "MISINFORMATION",
        "PUBLISHER_QUALITY",
        "PUBLISHER_REQUEST",
        "COMMERCIAL",
        "OTHER",
    }
)

SECTION_ITEM_REMOVAL_REASONS = frozenset(
    {
        "ARTICLE_QUALITY",
        "CONTROVERSIAL",
        "DATED",
        "HED_DEK_QUALITY",
        "IMAGE_QUALITY",
        "NO_IMAGE",
        "OFF_TOPIC",
        "ONE_SIDED",
        "PAYWALL",
        "PUBLISHER_QUALITY",
        "SET_DIVERSITY",
        "OTHER",
        "ML",
    }
)

IAB_CATEGORIES: dict[str, dict[str, str]] = {
    "IAB-3.0": {
        "1": "Automotive",
        "42": "Books and Literature",
        "52": "Business and Finance",
        "123": "Careers",
        "132": "Education",
        "150": "Attractions",
        "186": "Family and Relationships",
        "201": "Fine Art",
        "210": "Food & Drink",
        "223": "Healthy Living",
        "225": "Fitness and Exercise",
        "239": "Hobbies & Interests",
        "274": "Home & Garden",
        "286": "Medical Health",
        "324": "Movies",
        "338": "Music and Audio",
        "379": "News and Politics",
        "391": "Personal Finance",
        "422": "Pets",
        "432": "Pop Culture",
        "441": "Real Estate",
        "453": "Religion & Spirituality",
        "464": "Science",
        "473": "Shopping",
        "483": "Sports",
        "552": "Style & Fashion",
        "596": "Technology & Computing",
        "640": "Television",
        "653": "Travel",
        "680": "Video Gaming",
        "TIFQA5": "Outdoor Activities",
    },
}


@dataclass(frozen=True, slots=True)
class ScheduledSurface:
    guid: str
    name: str
    iana_timezone: str
    access_group: str


SCHEDULED_SURFACES: tuple[ScheduledSurface, ...] = (
    ScheduledSurface("NEW_TAB_EN_US", "New Tab (en-US)", "America/New_York", "new_tab_curator_enus"),
    ScheduledSurface("NEW_TAB_DE_DE", "New Tab (de-DE)", "Europe/Berlin", "new_tab_curator_dede"),
    ScheduledSurface("NEW_TAB_EN_GB", "New Tab (en-GB)", "Europe/London", "new_tab_curator_engb"),
    ScheduledSurface("NEW_TAB_FR_FR", "New Tab (fr-FR)", "Europe/Paris", "new_tab_curator_frfr"),
    ScheduledSurface("NEW_TAB_IT_IT", "New Tab (it-IT)", "Europe/Rome", "new_tab_curator_itit"),
    ScheduledSurface("NEW_TAB_ES_ES", "New Tab (es-ES)", "Europe/Madrid", "new_tab_curator_eses"),
    ScheduledSurface("NEW_TAB_EN_INTL", "New Tab (en-INTL)", "Asia/Kolkata", "new_tab_curator_enintl"),
    ScheduledSurface("POCKET_HITS_EN_US", "Pocket Hits (en-US)", "America/New_York", "pocket_hits_curator_enus"),
    ScheduledSurface("POCKET_HITS_DE_DE", "Pocket Hits (de-DE)", "Europe/Berlin", "pocket_hits_curator_dede"),
    ScheduledSurface("SANDBOX", "Sandbox", "America/New_York", "curator_sandbox"),
)


@dataclass(frozen=True, slots=True)
class Registry:
    """Read-only view over the static tables, built once per process."""

    surfaces: Mapping[str, ScheduledSurface]
    topics: frozenset[str] = field(default_factory=lambda: frozenset(topic.value for topic in Topic))
    languages: frozenset[str] = field(default_factory=lambda: frozenset(lang.value for lang in CorpusLanguage))
    rejection_reasons: frozenset[str] = REJECTION_REASONS
    section_item_removal_reasons: frozenset[str] = SECTION_ITEM_REMOVAL_REASONS
    iab_categories: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    def get_surface(self, guid: str) -> ScheduledSurface | None:
        return self.surfaces.get(guid)

    def is_valid_surface(self, guid: str) -> bool:
        return guid in self.surfaces


def build_registry(surfaces: tuple[ScheduledSurface, ...] = SCHEDULED_SURFACES) -> Registry:
    return Registry(
        surfaces=MappingProxyType({surface.guid: surface for surface in surfaces}),
        iab_categories=MappingProxyType(
            {taxonomy: MappingProxyType(dict(codes)) for taxonomy, codes in IAB_CATEGORIES.items()}
        ),
    )


@lru_cache
def get_registry() -> Registry:
    return build_registry()
