"""
Initial routing for new issues.

The first configured product owner of the app gets the issue. Routing is
only computed when an issue is created; attaching events never reassigns.
"""

import logging
from typing import Optional

from pulsecore.apps import App
from pulsecore.issues.models import IssueRouting

logger = logging.getLogger(__name__)


def compute_initial_routing(app: Optional[App]) -> Optional[IssueRouting]:
    """
    Pick the default assignee for a new issue.

    Returns:
        IssueRouting for the first PO email, or None when the app is unknown
        or its first PO entry is empty
    """
    if app is None:
        return None

    emails = app.owners.po_emails
    first = emails[0].strip() if emails and emails[0] else ""
    if not first:
        logger.debug(f"App {app.app_id} has no primary product owner; leaving issue unassigned")
        return None
    return IssueRouting(assigned_to=first)
