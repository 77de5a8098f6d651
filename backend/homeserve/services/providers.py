# backend/homeserve/services/providers.py
"""
Provider directory: the only thing the booking core needs to know about a
provider is whether it exists and may take jobs.
"""

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from ..models import Providers

ASSIGNABLE_STATUSES = ("approved", "active")


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    status: str
    name: str | None = None

    @property
    def is_assignable(self) -> bool:
        return self.status in ASSIGNABLE_STATUSES


class ProviderDirectory(Protocol):
    def get_provider(self, provider_id: str) -> ProviderInfo | None: ...


class SqlProviderDirectory:
    """Reads the providers table through the request's session."""

    def __init__(self, db: Session):
        self.db = db

    def get_provider(self, provider_id: str) -> ProviderInfo | None:
        row = self.db.get(Providers, provider_id)
        if not row:
            return None
        return ProviderInfo(id=row.id, status=row.status, name=row.name)
