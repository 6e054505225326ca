"""
browse.py — Paginated article lookups (category, score, search, source, nearby).

Each method returns (articles, total) where total counts every match, not
just the current page.
"""

from geonews.core.errors import InvalidInputError
from geonews.models.news import Article
from geonews.services.geo import validate_coordinates

MAX_PAGE_SIZE = 100


def _check_page(page: int, limit: int) -> None:
    if page < 1:
        raise InvalidInputError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


class BrowseService:
    def __init__(self, repository) -> None:
        self.repository = repository

    async def by_category(self, category: str, page: int = 1, limit: int = 5) -> tuple[list[Article], int]:
        _check_page(page, limit)
        return await self.repository.find_by_category(category.strip(), page, limit)

    async def by_score(self, min_score: float, page: int = 1, limit: int = 5) -> tuple[list[Article], int]:
        _check_page(page, limit)
        if not 0.0 <= min_score <= 1.0:
            raise InvalidInputError("min_score must be between 0 and 1")
        return await self.repository.find_by_min_score(min_score, page, limit)

    async def search(self, q: str, page: int = 1, limit: int = 5) -> tuple[list[Article], int]:
        _check_page(page, limit)
        return await self.repository.search_text(q.strip(), page, limit)

    async def by_source(self, source: str, page: int = 1, limit: int = 5) -> tuple[list[Article], int]:
        _check_page(page, limit)
        return await self.repository.find_by_source(source.strip(), page, limit)

    async def nearby(self, lat: float, lon: float, radius_km: float = 10,
                     page: int = 1, limit: int = 5) -> tuple[list[Article], int]:
        _check_page(page, limit)
        validate_coordinates(lat, lon)
        if radius_km <= 0:
            raise InvalidInputError("radius must be positive")
        return await self.repository.find_nearby(lat, lon, radius_km * 1000, page, limit)
