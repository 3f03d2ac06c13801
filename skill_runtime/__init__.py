"""
Skill Runtime — Persistence Layer

I/O shell around the Skill Kernel: sqlite3 / PostgreSQL repositories,
pydantic input models, the mutation facade and its configuration.
"""

from .entity_repository import EntityRepository
from .change_log import ChangeLogRepository
from .inputs import INPUT_MODELS, parse_changes, parse_input
from .session import SkillSession
from .observability import SessionMetrics, collect_metrics
from .config import (
    Settings,
    configure_logging,
    load_settings,
    open_repositories,
    open_session,
)

__all__ = [
    "EntityRepository",
    "ChangeLogRepository",
    "INPUT_MODELS",
    "parse_changes",
    "parse_input",
    "SkillSession",
    "SessionMetrics",
    "collect_metrics",
    "Settings",
    "configure_logging",
    "load_settings",
    "open_repositories",
    "open_session",
]
