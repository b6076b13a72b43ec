"""
Pipeline Context

Everything the pipeline needs, built once at process start and passed by
reference into the Correlator.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from pulsecore.config import Settings
from pulsecore.issues.store import IssueStore, Store
from pulsecore.utils.time import utcnow

from .redaction import Redactor, load_profiles

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """
    Attributes:
        store: Persistence boundary
        redactor: Redactor with the configured profiles
        settings: Pipeline settings snapshot
        clock: Returns "now"; injectable for deterministic tests
    """

    store: Store
    redactor: Redactor = field(default_factory=Redactor)
    settings: Settings = field(default_factory=Settings)
    clock: Callable[[], datetime] = utcnow

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[Store] = None,
    ) -> "PipelineContext":
        """
        Build a context from settings, opening the SQLite store and loading
        any custom redaction profiles.
        """
        settings = settings or Settings.from_env()
        if store is None:
            store = IssueStore(settings.db_path, timeout=settings.db_timeout)

        if settings.redaction_profiles_file:
            redactor = Redactor(load_profiles(settings.redaction_profiles_file))
        else:
            redactor = Redactor()

        logger.info(
            f"Pipeline context ready (default profile={settings.redaction_profile}, "
            f"top_frames={settings.fingerprint_top_frames})"
        )
        return cls(store=store, redactor=redactor, settings=settings)
