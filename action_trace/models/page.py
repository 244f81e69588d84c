"""
Page Model
Pydantic model for one page of a paginated listing.

``next_cursor`` is an opaque token handed back to the source verbatim.
``per_page`` is the page size the source asked for, None when unknown.
"""
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: List[T] = []
    next_cursor: Optional[str] = None
    per_page: Optional[int] = None

    @property
    def is_last(self) -> bool:
        """True when no further page should be requested."""
        if not self.items or self.next_cursor is None:
            return True
        return self.per_page is not None and len(self.items) < self.per_page
