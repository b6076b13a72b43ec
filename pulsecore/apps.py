"""
App Configuration Model

Read-only view of a client application's configuration as consumed by the
pipeline: who owns it and how aggressively its payloads are redacted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class AppOwners:
    """Ordered owner lists. The first PO is the default assignee."""
    po_emails: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class App:
    """A registered client application."""

    app_id: str
    name: str = ""
    owners: AppOwners = field(default_factory=AppOwners)
    redaction_profile: str = "standard"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "name": self.name,
            "owners": {"po_emails": list(self.owners.po_emails)},
            "redaction_profile": self.redaction_profile,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "App":
        owners = data.get("owners") or {}
        return cls(
            app_id=data["app_id"],
            name=data.get("name", ""),
            owners=AppOwners(po_emails=list(owners.get("po_emails") or [])),
            redaction_profile=data.get("redaction_profile", "standard"),
        )
