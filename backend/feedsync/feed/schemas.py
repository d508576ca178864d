"""Data models for the feed synchronization engine.

Attributes use camelCase to match the documents stored by the chat widget
(``authorId``, ``createdAt``), the same way the chat message models do.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class LoadState(str, Enum):
    """History loading state of a feed.

    Attributes:
        IDLE: No page request in flight; older history may be requested.
        LOADING: A page request is in flight.
        EXHAUSTED: The store reported an empty page. Terminal for the session.
    """
    IDLE = "idle"
    LOADING = "loading"
    EXHAUSTED = "exhausted"


class PageOutcome(str, Enum):
    """Result of a single ``request_older_page()`` call.

    Attributes:
        LOADED: A non-empty page was fetched and merged.
        EXHAUSTED: The store returned an empty page.
        SKIPPED: No fetch was issued (already loading, or exhausted).
        DISCARDED: The fetch completed after the feed was closed.
    """
    LOADED = "loaded"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"
    DISCARDED = "discarded"


class Item(BaseModel):
    """A single feed entry.

    Attributes:
        id: Opaque unique identifier assigned by the writer.
        authorId: Identifier of the creator.
        createdAt: Server timestamp in seconds since epoch. Sole ordering key.
        body: Sanitized text payload. Accepts ``message`` on input.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique item ID")
    authorId: str = Field(default="", description="ID of the author")
    createdAt: float = Field(
        ..., allow_inf_nan=False, description="Server timestamp in seconds since epoch"
    )
    body: str = Field(
        default="",
        validation_alias=AliasChoices("body", "message"),
        description="Sanitized message text",
    )

    @field_validator("createdAt", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value):
        # Document stores hand back datetimes for server timestamps
        if isinstance(value, datetime):
            return value.timestamp()
        return value

    @property
    def sort_key(self) -> Tuple[float, str]:
        """Ordering key; larger sorts newer."""
        return (self.createdAt, self.id)


class FeedView(BaseModel):
    """Read-only snapshot of a feed handed to observers and presentation."""
    model_config = ConfigDict(frozen=True)

    items: List[Item] = Field(default_factory=list, description="Timeline, newest first")
    cursor: Optional[Item] = Field(default=None, description="Oldest item paged so far")
    loadState: LoadState = Field(default=LoadState.IDLE)

    @property
    def ids(self) -> List[str]:
        return [item.id for item in self.items]


class HistoryPage(BaseModel):
    """Response body of the paginated history endpoint."""
    items: List[Item] = Field(default_factory=list, description="Items, newest first")
    hasMore: bool = Field(default=False, description="Whether older items exist")
