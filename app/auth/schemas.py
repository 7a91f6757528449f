from typing import Dict
from uuid import UUID

from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """Authenticated admin as seen by the ledger: used for permission checks and audit attribution."""

    id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]] = Field(default_factory=dict)

    def can(self, module: str, action: str) -> bool:
        return bool((self.permissions or {}).get(module, {}).get(action, False))
