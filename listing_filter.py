"""
Client-side listing filters: district, category and free-text search.

The three predicates AND-combine and each one is a no-op at its sentinel
value, so the default FilterCriteria passes every listing through in its
original order. Filtering always happens before distance ranking.
"""

from dataclasses import dataclass, replace
from typing import Iterable, List

from discovery_config import ALL_CATEGORIES, ALL_DISTRICTS
from models import Listing


@dataclass(frozen=True)
class FilterCriteria:
    district: str = ALL_DISTRICTS
    category: str = ALL_CATEGORIES
    query: str = ""

    @property
    def is_identity(self) -> bool:
        return (
            self.district == ALL_DISTRICTS
            and self.category == ALL_CATEGORIES
            and not self.query.strip()
        )

    def with_district(self, district: str) -> "FilterCriteria":
        return replace(self, district=district or ALL_DISTRICTS)

    def with_category(self, category: str) -> "FilterCriteria":
        return replace(self, category=category or ALL_CATEGORIES)

    def with_query(self, query: str) -> "FilterCriteria":
        return replace(self, query=query or "")


def matches_district(listing: Listing, district: str) -> bool:
    return district == ALL_DISTRICTS or listing.city == district


def matches_category(listing: Listing, category: str) -> bool:
    return category == ALL_CATEGORIES or category in listing.categories


def matches_query(listing: Listing, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return True
    fields = [listing.name, listing.city, listing.address, *listing.categories]
    return any(q in (f or "").lower() for f in fields)


def apply_filters(listings: Iterable[Listing], criteria: FilterCriteria) -> List[Listing]:
    """Return the listings passing every predicate, in input order."""
    return [
        l for l in listings
        if matches_district(l, criteria.district)
        and matches_category(l, criteria.category)
        and matches_query(l, criteria.query)
    ]
