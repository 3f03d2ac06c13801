"""
Skill Kernel — Constants

All magic numbers and fixed orderings live here as module-level values.
"""

# --- Level scale ---
NA_LEVEL: int = -1
MIN_LEVEL: int = 0
MAX_LEVEL: int = 100
LEVEL_STEP: int = 25

# Expert level; holders of it are offered as mentors.
MENTOR_LEVEL: int = 100

# Default threshold for "covered" in skill coverage statistics.
COVERAGE_THRESHOLD: int = 50

# --- Aggregation ---
MODE_AVERAGE: str = "average"
MODE_MAXIMUM: str = "maximum"
MODE_FULFILLMENT: str = "fulfillment"
AGGREGATION_MODES = (MODE_AVERAGE, MODE_MAXIMUM, MODE_FULFILLMENT)

# --- Taxonomy ---
# Mutating any of these bumps SkillState.structural_version.
STRUCTURAL_TYPES = frozenset({"category", "subcategory", "skill"})

# Collections carried in a delete entry's ``_cascade`` block, in the
# order they are re-inserted on undo (parents before children).
CASCADE_RESTORE_ORDER = (
    "subcategories",
    "skills",
    "assessments",
    "assessment_logs",
    "qualification_plans",
    "qualification_measures",
)
CASCADE_KEY: str = "_cascade"

# Entity types whose delete entries carry a cascade snapshot.
CASCADING_TYPES = frozenset({
    "category", "subcategory", "skill", "employee", "qualification_plan",
})

# --- Ledger ---
ACTION_CREATE: str = "create"
ACTION_UPDATE: str = "update"
ACTION_DELETE: str = "delete"
DEFAULT_HISTORY_LIMIT: int = 20

# Fingerprint of the data set: leading hex digits of a SHA-256.
DATA_HASH_LENGTH: int = 10

# --- Forecast ---
# Measure states still expected to raise a level.
OPEN_MEASURE_STATUSES = frozenset({"pending", "in_progress"})
DEFAULT_FORECAST_MONTHS: int = 6
