"""
errors.py — Typed failures raised by the service layer.

Services raise these; routes translate them into HTTPException so the
transport concerns (status codes, detail strings) stay in one place.
"""


class GeoNewsError(Exception):
    """Base class for every failure the core reports to its caller."""


class InvalidInputError(GeoNewsError):
    """Rejected synchronously; retrying the same input will not help."""


class InvalidCoordinatesError(InvalidInputError):
    def __init__(self, lat: float, lon: float) -> None:
        super().__init__(f"Invalid coordinates: lat={lat!r}, lon={lon!r}")
        self.lat = lat
        self.lon = lon


class UnknownArticleError(InvalidInputError):
    def __init__(self, article_id: str) -> None:
        super().__init__(f"Article {article_id!r} does not exist")
        self.article_id = article_id


class OracleError(GeoNewsError):
    """The language-understanding oracle failed or timed out."""


class DatabaseUnavailableError(GeoNewsError):
    """MongoDB is not connected (API running in degraded mode)."""
