"""Abstract base class for upstream job sources."""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from src.core.schemas import SearchPage


class SourceQuery(BaseModel):
    """Search terms forwarded to the upstream API."""

    keyword: str | None = None
    city: str | None = None
    min_salary: int | None = None
    max_salary: int | None = None


class JobSource(ABC):
    """Base class that every upstream job source must implement."""

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Provider tag stored on every job (e.g. 'adzuna')."""

    @abstractmethod
    async def fetch_page(
        self,
        page: int,
        results_per_page: int,
        query: SourceQuery | None = None,
    ) -> SearchPage:
        """Fetch one page of raw, un-normalized records."""
