"""
Catalogue resources (projects, events).

Both kinds share one record shape and one repository interface; a
`ResourceKind` names the table, the editable columns and the request model.
Every row carries the owning `user_id`, which never leaves the server.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, Type
from urllib.parse import urlparse

from pydantic import AwareDatetime, BaseModel, Field, field_validator, model_validator

from awesomemy.pagination import ListingFilter, PageWindow


def _check_url(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip()
    if not v:
        return None
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an http(s) URL")
    return v


class _ResourceIn(BaseModel):
    name: str = Field(min_length=8, max_length=191)
    description: str = Field(min_length=8, max_length=512)
    tags: List[str] = Field(default_factory=list, max_length=6)
    website: Optional[str] = Field(default=None, max_length=191)

    @field_validator("tags")
    @classmethod
    def _tags_shape(cls, v: List[str]) -> List[str]:
        out = [t.strip() for t in v]
        for t in out:
            if not 4 <= len(t) <= 12:
                raise ValueError("each tag must be 4-12 characters")
        return out

    @field_validator("website")
    @classmethod
    def _website_url(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class ProjectIn(_ResourceIn):
    repository: Optional[str] = Field(default=None, max_length=191)

    @field_validator("repository")
    @classmethod
    def _repository_url(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class EventIn(_ResourceIn):
    starts_at: AwareDatetime
    ends_at: AwareDatetime

    @model_validator(mode="after")
    def _window_order(self) -> "EventIn":
        if self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        return self


@dataclass(frozen=True)
class ResourceKind:
    name: str  # URL segment: projects|events
    table: str
    id_column: str
    columns: Tuple[str, ...]  # editable columns, in insert order
    model: Type[_ResourceIn]


PROJECTS = ResourceKind(
    name="projects",
    table="projects",
    id_column="project_id",
    columns=("name", "description", "tags", "repository", "website"),
    model=ProjectIn,
)

EVENTS = ResourceKind(
    name="events",
    table="events",
    id_column="event_id",
    columns=("name", "description", "tags", "website", "starts_at", "ends_at"),
    model=EventIn,
)

KINDS: Dict[str, ResourceKind] = {k.name: k for k in (PROJECTS, EVENTS)}


@dataclass(frozen=True)
class Resource:
    kind: str
    resource_id: int
    uuid: uuid.UUID
    user_id: int
    created_at: datetime
    attrs: Dict[str, Any] = field(default_factory=dict)

    def to_public(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"uuid": str(self.uuid)}
        for k, v in self.attrs.items():
            out[k] = v.isoformat() if isinstance(v, datetime) else v
        out["created_at"] = self.created_at.isoformat()
        return out


class ResourceRepository(Protocol):
    """Storage failures raise DatabaseUnavailable."""

    def list(
        self, kind: ResourceKind, window: PageWindow, flt: ListingFilter, *, owner_id: Optional[int] = None
    ) -> Tuple[List[Resource], int]:
        """Return one page of rows plus the total matching count."""

    def get(self, kind: ResourceKind, resource_uuid: uuid.UUID) -> Optional[Resource]: ...

    def insert(self, kind: ResourceKind, owner_id: int, attrs: Dict[str, Any]) -> Resource: ...

    def update(self, kind: ResourceKind, resource_id: int, attrs: Dict[str, Any]) -> Resource: ...

    def delete(self, kind: ResourceKind, resource_id: int) -> None: ...
