from __future__ import annotations

import re

_RADIUS_SUFFIX = re.compile(r"\s*\(\d+\s*miles?\)$", re.IGNORECASE)


def clean_service_area(value: str | None) -> str | None:
    """Reduce a stored service area to its first location without a radius.

    ``"Luton (20 miles) | Dunstable (10 miles)"`` becomes ``"Luton"``.
    """

    if not value:
        return None
    parts = value.split(" | ") if " | " in value else value.split(",")
    first = parts[0].strip() if parts else ""
    first = _RADIUS_SUFFIX.sub("", first).strip()
    return first or None


def build_search_queries(niche: str, area: str | None = None) -> list[str]:
    niche = " ".join(niche.split())
    if not area:
        return [niche, f"{niche} services", f"{niche} company"]
    return [
        f"{niche} {area}",
        f"{niche} services {area}",
        f"{niche} company {area}",
        f"best {niche} {area}",
        f"{niche} near {area}",
    ]
