"""
Skill Kernel
Deterministic, in-memory store of the skill matrix: taxonomy, people,
assessments and role targets, with roll-up queries and a change ledger.
"""

from .domain_types import (
    Category, SubCategory, Skill, Employee, Role, RequiredSkill, Department,
    Assessment, AssessmentLog, QualificationPlan, QualificationMeasure, SavedView,
    ChangeHistoryEntry, SkillState, TransitionResult, ENTITY_TYPES,
    assessment_id, entity_from_dict, entity_to_dict,
)
from .errors import (
    SkillGridError,
    ValidationError,
    NotFoundError,
    PersistenceError,
    CycleError,
    AlreadyUndoneError,
)
from .events import (
    BaseEvent,
    CreateEntityEvent,
    UpdateEntityEvent,
    DeleteEntityEvent,
    SetAssessmentLevelEvent,
    SetTargetLevelEvent,
    RemoveEntityEvent,
    OverwriteEntityEvent,
    RestoreEntityEvent,
)
from .engine import SkillEngine
from .aggregation import EffectiveLevel, LevelKind, aggregate, effective_level
from .insights import SkillGap, PeriodBoundaries, calculate_historical_xp, get_period_boundaries
from .forecast import Forecast, generate_forecast
from .ledger import build_entry, plan_undo
from .hashing import canonical_serialize, canonical_hash, data_hash
from .snapshot import (
    SnapshotError,
    SerializationError,
    DeserializationError,
    InvariantViolationSnapshotError,
    encode_snapshot,
    decode_snapshot,
    restore_snapshot,
    export_snapshot_to_file,
    import_snapshot_from_file,
)
from .levels import LEVELS, get_level_by_value, get_next_level
from .constants import (
    NA_LEVEL,
    MODE_AVERAGE,
    MODE_MAXIMUM,
    MODE_FULFILLMENT,
    DEFAULT_HISTORY_LIMIT,
)

__all__ = [
    "Category",
    "SubCategory",
    "Skill",
    "Employee",
    "Role",
    "RequiredSkill",
    "Department",
    "Assessment",
    "AssessmentLog",
    "QualificationPlan",
    "QualificationMeasure",
    "SavedView",
    "ChangeHistoryEntry",
    "SkillState",
    "TransitionResult",
    "ENTITY_TYPES",
    "assessment_id",
    "entity_from_dict",
    "entity_to_dict",
    "SkillGridError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
    "CycleError",
    "AlreadyUndoneError",
    "BaseEvent",
    "CreateEntityEvent",
    "UpdateEntityEvent",
    "DeleteEntityEvent",
    "SetAssessmentLevelEvent",
    "SetTargetLevelEvent",
    "RemoveEntityEvent",
    "OverwriteEntityEvent",
    "RestoreEntityEvent",
    "SkillEngine",
    "EffectiveLevel",
    "LevelKind",
    "aggregate",
    "effective_level",
    "SkillGap",
    "PeriodBoundaries",
    "calculate_historical_xp",
    "get_period_boundaries",
    "Forecast",
    "generate_forecast",
    "build_entry",
    "plan_undo",
    "canonical_serialize",
    "canonical_hash",
    "data_hash",
    "SnapshotError",
    "SerializationError",
    "DeserializationError",
    "InvariantViolationSnapshotError",
    "encode_snapshot",
    "decode_snapshot",
    "restore_snapshot",
    "export_snapshot_to_file",
    "import_snapshot_from_file",
    "LEVELS",
    "get_level_by_value",
    "get_next_level",
    "NA_LEVEL",
    "MODE_AVERAGE",
    "MODE_MAXIMUM",
    "MODE_FULFILLMENT",
    "DEFAULT_HISTORY_LIMIT",
]
