"""
Selection catalogs.

Options shown on each onboarding step. The server's catalog tables are
authoritative; the static rows below are what the pages fall back to when
the catalog endpoint is unreachable or empty.
"""

from dataclasses import dataclass

from .selection import Category


@dataclass(frozen=True)
class CatalogItem:
    """One selectable option."""
    id: str
    label: str
    parent_id: str | None = None  # interest_id for subcategories


@dataclass(frozen=True)
class FromDatabase:
    """Catalog rows served by the API."""
    items: list[CatalogItem]


@dataclass(frozen=True)
class Fallback:
    """Static rows used because the API gave nothing usable."""
    items: list[CatalogItem]
    reason: str = ""


CatalogResult = FromDatabase | Fallback


INTEREST_OPTIONS = [
    CatalogItem("food-drink", "Food & Drink"),
    CatalogItem("beauty-wellness", "Beauty & Wellness"),
    CatalogItem("home-services", "Home & Services"),
    CatalogItem("outdoors-adventure", "Outdoors & Adventure"),
    CatalogItem("nightlife-entertainment", "Nightlife & Entertainment"),
    CatalogItem("arts-culture", "Arts & Culture"),
    CatalogItem("family-pets", "Family & Pets"),
    CatalogItem("shopping-lifestyle", "Shopping & Lifestyle"),
]

SUBCATEGORY_OPTIONS = [
    CatalogItem("casual-eats", "casual eats", "food-drink"),
    CatalogItem("sushi", "sushi", "food-drink"),
    CatalogItem("cafes", "cafés", "food-drink"),
    CatalogItem("fine-dining", "fine dining", "food-drink"),
    CatalogItem("street-food", "street food", "food-drink"),
    CatalogItem("vegan", "vegan", "food-drink"),
    CatalogItem("galleries", "galleries", "arts-culture"),
    CatalogItem("theatre", "theatre", "arts-culture"),
    CatalogItem("live-music", "live music", "arts-culture"),
    CatalogItem("book-fair", "book fair", "arts-culture"),
    CatalogItem("film-nights", "film nights", "arts-culture"),
    CatalogItem("festivals", "festivals", "arts-culture"),
]

DEAL_BREAKER_OPTIONS = [
    CatalogItem("trust", "Trust"),
    CatalogItem("punctuality", "Punctuality"),
    CatalogItem("friendliness", "Friendliness"),
    CatalogItem("pricing", "Pricing"),
]

# Sections shown when none of the requested interests has static subcategories
DEFAULT_SUBCATEGORY_SECTIONS = ["food-drink", "arts-culture"]

_OPTIONS = {
    Category.INTERESTS: INTEREST_OPTIONS,
    Category.SUBCATEGORIES: SUBCATEGORY_OPTIONS,
    Category.DEALBREAKERS: DEAL_BREAKER_OPTIONS,
}


def fallback_catalog(category: Category, parent_ids: list[str] | None = None) -> list[CatalogItem]:
    """
    Static options for a category.

    For subcategories, `parent_ids` restricts the sections; unknown parents
    fall back to the default sections.
    """
    options = _OPTIONS[category]
    if category != Category.SUBCATEGORIES:
        return list(options)

    known = {item.parent_id for item in options}
    sections = [p for p in parent_ids or [] if p in known] or DEFAULT_SUBCATEGORY_SECTIONS
    return [item for item in options if item.parent_id in sections]


def parse_catalog_rows(category: Category, rows: list[dict]) -> list[CatalogItem]:
    """Turn API rows into CatalogItems, skipping rows without an id."""
    items = []
    for row in rows:
        if not isinstance(row, dict) or not row.get("id"):
            continue
        label = row.get("label") or row.get("name") or row["id"]
        parent = row.get("interest_id") if category == Category.SUBCATEGORIES else row.get("category_id")
        items.append(CatalogItem(id=row["id"], label=label, parent_id=parent))
    return items
