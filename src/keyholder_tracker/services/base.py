"""Shared plumbing for the domain services."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import DomainConfig
from ..core.clock import Clock
from ..core.enums import Role
from ..core.errors import NotFoundError
from ..domain.models import Event, Relationship
from ..repositories.interfaces import RepositoryContainer


def new_id() -> str:
    return str(uuid.uuid4())


def audit_event(
    relationship_id: str,
    event_type: str,
    logged_by: Role,
    now: datetime,
    details: Optional[Dict[str, Any]] = None,
    is_private: bool = False,
    tags: Optional[List[str]] = None,
) -> Event:
    """Build an audit record to stage alongside the change it describes."""
    return Event(
        id=new_id(),
        relationship_id=relationship_id,
        type=event_type,
        timestamp=now,
        details=details or {},
        logged_by=logged_by,
        is_private=is_private,
        tags=tags or [],
        created_at=now,
    )


class BaseService:
    """Holds the collaborators every service needs."""

    def __init__(
        self,
        container: RepositoryContainer,
        clock: Clock,
        config: Optional[DomainConfig] = None,
    ):
        self.container = container
        self.clock = clock
        self.config = config or DomainConfig()

    async def _get_relationship(self, relationship_id: str) -> Relationship:
        relationship = await self.container.relationship.get_by_id(relationship_id)
        if relationship is None:
            raise NotFoundError("Relationship", relationship_id)
        return relationship
