from __future__ import annotations
from dataclasses import dataclass

import pycountry

from playlist_sync.core.config import settings

CATEGORY_LABELS = {
    "inspiration": "Inspiration",
    "music": "Music",
    "comedy": "Comedy",
    "daily_life": "Daily Life",
    "talks": "Talks",
}

# ISO names that read badly in a playlist title
COUNTRY_NAME_OVERRIDES = {
    "PSE": "Palestine",
    "KOR": "South Korea",
    "PRK": "North Korea",
    "RUS": "Russia",
    "IRN": "Iran",
    "SYR": "Syria",
    "VNM": "Vietnam",
    "LAO": "Laos",
    "TZA": "Tanzania",
    "GBR": "United Kingdom",
    "USA": "United States",
}

PLAYLIST_URL = "https://www.youtube.com/playlist?list={playlist_id}"


@dataclass(frozen=True, order=True)
class GroupingKey:
    country_code: str
    category: str

    def __str__(self) -> str:
        return f"{self.country_code}-{self.category}"

    @property
    def lease_key(self) -> str:
        return f"{self.country_code}:{self.category}"


def _country(code: str):
    code = code.upper()
    if len(code) == 2:
        return pycountry.countries.get(alpha_2=code)
    return pycountry.countries.get(alpha_3=code)


def country_name(code: str) -> str:
    code = code.upper()
    if code in COUNTRY_NAME_OVERRIDES:
        return COUNTRY_NAME_OVERRIDES[code]
    c = _country(code)
    if c is None:
        return code
    return getattr(c, "common_name", None) or c.name


def country_flag(code: str) -> str:
    """Flag emoji from the alpha-2 code as two regional indicator symbols."""
    c = _country(code)
    if c is None:
        return "🏳️"
    return "".join(chr(0x1F1E6 + ord(ch) - ord("A")) for ch in c.alpha_2.upper())


def category_label(category: str) -> str:
    return CATEGORY_LABELS.get(category) or category.replace("_", " ").title()


def playlist_title(key: GroupingKey, product: str | None = None) -> str:
    product = product or settings.PRODUCT_NAME
    return f"{country_name(key.country_code)} {category_label(key.category)} {country_flag(key.country_code)} | {product}"


def playlist_description(key: GroupingKey, product: str | None = None, site_url: str | None = None) -> str:
    product = product or settings.PRODUCT_NAME
    site_url = site_url or settings.PRODUCT_URL
    return (
        f"Authentic {category_label(key.category).lower()} from {country_name(key.country_code)}, "
        f"curated by {product}. Discover more cultural content at {site_url}"
    )


def playlist_url(playlist_id: str) -> str:
    return PLAYLIST_URL.format(playlist_id=playlist_id)
