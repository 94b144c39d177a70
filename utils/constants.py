# utils/constants.py
# Leaderboard Scoring — Single source of truth for all magic numbers.
# No other file defines constants. Import from here only.

# ─────────────────────────────────────────────
# ACTIVITY TYPES
# ─────────────────────────────────────────────

ACTIVITY_QUIZ:          str = "quiz"
ACTIVITY_ASSIGNMENT:    str = "assignment"
ACTIVITY_EXAM:          str = "exam"
ACTIVITY_DISCUSSION:    str = "discussion"
ACTIVITY_PARTICIPATION: str = "participation"
ACTIVITY_ATTENDANCE:    str = "attendance"
ACTIVITY_ACHIEVEMENT:   str = "achievement"

# ─────────────────────────────────────────────
# BALANCED SCORING: per activity-type point table
# Keys = activity type strings above.
# max_time_spent is in minutes; None means time scaling is unused.
# ─────────────────────────────────────────────

ACTIVITY_TYPE_CONFIGS: dict[str, dict] = {
    ACTIVITY_QUIZ: {
        "base_points": 50, "weight": 1.0,
        "daily_max_points": 200, "weekly_max_points": 500,
        "scale_with_difficulty": True, "scale_with_performance": True,
        "scale_with_time_spent": False, "max_time_spent": None,
    },
    ACTIVITY_ASSIGNMENT: {
        "base_points": 75, "weight": 1.2,
        "daily_max_points": 300, "weekly_max_points": 900,
        "scale_with_difficulty": True, "scale_with_performance": True,
        "scale_with_time_spent": True, "max_time_spent": 120,
    },
    ACTIVITY_EXAM: {
        "base_points": 150, "weight": 1.5,
        "daily_max_points": 450, "weekly_max_points": 900,
        "scale_with_difficulty": True, "scale_with_performance": True,
        "scale_with_time_spent": False, "max_time_spent": None,
    },
    ACTIVITY_DISCUSSION: {
        "base_points": 20, "weight": 0.8,
        "daily_max_points": 80, "weekly_max_points": 300,
        "scale_with_difficulty": False, "scale_with_performance": False,
        "scale_with_time_spent": True, "max_time_spent": 30,
    },
    ACTIVITY_PARTICIPATION: {
        "base_points": 10, "weight": 0.5,
        "daily_max_points": 30, "weekly_max_points": 150,
        "scale_with_difficulty": False, "scale_with_performance": False,
        "scale_with_time_spent": False, "max_time_spent": None,
    },
    ACTIVITY_ATTENDANCE: {
        "base_points": 5, "weight": 1.0,
        "daily_max_points": 10, "weekly_max_points": 50,
        "scale_with_difficulty": False, "scale_with_performance": False,
        "scale_with_time_spent": False, "max_time_spent": None,
    },
    ACTIVITY_ACHIEVEMENT: {
        "base_points": 100, "weight": 1.0,
        "daily_max_points": 300, "weekly_max_points": 1000,
        "scale_with_difficulty": False, "scale_with_performance": False,
        "scale_with_time_spent": False, "max_time_spent": None,
    },
}

# Award for activity types missing from the table above
FALLBACK_BASE_POINTS: int = 10

# Difficulty label → multiplier
DIFFICULTY_MULTIPLIERS: dict[str, float] = {
    "easy":   0.8,
    "medium": 1.0,
    "hard":   1.3,
    "expert": 1.6,
}

# Performance bands: (min_score inclusive, max_score exclusive, multiplier).
# The top band also includes 100.
PERFORMANCE_BANDS: list[tuple[float, float, float]] = [
    (0.0,  50.0,  0.6),
    (50.0, 70.0,  0.7),
    (70.0, 80.0,  0.8),
    (80.0, 90.0,  0.9),
    (90.0, 100.0, 1.0),
]

TIME_MULTIPLIER_FLOOR: float = 0.5   # multiplier at zero time spent; 1.0 at or beyond max_time_spent
REPEAT_MULTIPLIER:     float = 0.5   # applied when the activity was already completed before
USAGE_RESET_HOURS:     int   = 24    # tracker cleared once this many hours pass since last reset

# ─────────────────────────────────────────────
# RATE LIMITER
# ─────────────────────────────────────────────

DEFAULT_RATE_LIMIT: dict = {
    "window_seconds":          3600,   # rolling window per student
    "max_points_per_window":   500,
    "cooldown_seconds":        0,      # per activity instance; 0 disables
    "max_points_per_instance": 100,
    "exempt":                  False,
}

# Per-activity overrides merged over DEFAULT_RATE_LIMIT
ACTIVITY_RATE_LIMITS: dict[str, dict] = {
    ACTIVITY_QUIZ:          {"cooldown_seconds": 300,  "max_points_per_instance": 100},
    ACTIVITY_ASSIGNMENT:    {"cooldown_seconds": 600,  "max_points_per_instance": 150},
    ACTIVITY_EXAM:          {"cooldown_seconds": 3600, "max_points_per_instance": 300,
                             "max_points_per_window": 600},
    ACTIVITY_DISCUSSION:    {"cooldown_seconds": 60,   "max_points_per_instance": 20,
                             "max_points_per_window": 100},
    ACTIVITY_PARTICIPATION: {"cooldown_seconds": 120,  "max_points_per_instance": 10,
                             "max_points_per_window": 50},
    ACTIVITY_ATTENDANCE:    {"cooldown_seconds": 3600, "max_points_per_instance": 10},
    ACTIVITY_ACHIEVEMENT:   {"exempt": True},
}

RATE_REASON_WINDOW:   str = "window_limit"
RATE_REASON_COOLDOWN: str = "cooldown"
RATE_REASON_INSTANCE: str = "instance_limit"

# ─────────────────────────────────────────────
# NORMALIZED SCORING
# ─────────────────────────────────────────────

NORMALIZATION_NEUTRAL_SCORE: float = 50.0   # "no information" midpoint on the 0–100 scale
Z_SCORE_CLIP:                float = 3.0    # z clipped to [-3, 3] before linear rescale
DIFFICULTY_RATING_CENTER:    float = 5.0    # rating 5 → adjustment 1.0
LATE_JOINER_MAX_BONUS:       float = 0.2
LATE_JOINER_DAYS_SCALE:      float = 120.0
ASSUMED_TERM_LENGTH_MONTHS:  int   = 4      # default term start = this many months before now
COMPLETION_RATE_PIVOT:       float = 0.8

METHOD_Z_SCORE:          str = "z-score"
METHOD_PERCENTILE:       str = "percentile"
METHOD_MIN_MAX:          str = "min-max"
METHOD_ADJUSTED_Z_SCORE: str = "adjusted-z-score"

# ─────────────────────────────────────────────
# ANOMALY DETECTION
# ─────────────────────────────────────────────

ANOMALY_MAX_POINTS_PER_EVENT:      int   = 100
ANOMALY_MAX_POINTS_PER_WINDOW:     int   = 500
ANOMALY_RATE_WINDOW_SECONDS:       int   = 3600
ANOMALY_OUTLIER_THRESHOLD:         float = 3.0    # z-score
ANOMALY_MIN_EVENTS_FOR_ANALYSIS:   int   = 10
ANOMALY_MAX_DAILY_INCREASE_PCT:    float = 200.0
ANOMALY_HISTORY_LIMIT:             int   = 100    # events kept per student, newest first

ANOMALY_REPEAT_PATTERN_COUNT:      int   = 5      # identical events in 24h → unusual_pattern
ANOMALY_REPEAT_PATTERN_HOURS:      int   = 24
ANOMALY_SCHOOL_HOURS_START:        int   = 7      # 07:00 local, inclusive
ANOMALY_SCHOOL_HOURS_END:          int   = 18     # 18:00 local, exclusive
ANOMALY_MIN_EVENT_GAP_SECONDS:     float = 5.0
ANOMALY_RECENT_EVENTS_FOR_GAP:     int   = 3
ANOMALY_MIN_LEADERBOARD_ENTRIES:   int   = 5
ANOMALY_LEADERBOARD_THRESHOLD_MUL: float = 1.5

ANOMALY_RATE_LIMIT:        str = "rate_limit"
ANOMALY_OUTLIER:           str = "outlier"
ANOMALY_UNUSUAL_PATTERN:   str = "unusual_pattern"
ANOMALY_SUSPICIOUS_TIMING: str = "suspicious_timing"

ACTION_FLAG:   str = "flag"
ACTION_REVIEW: str = "review"
ACTION_BLOCK:  str = "block"

# ─────────────────────────────────────────────
# STATE STORE NAMESPACES
# ─────────────────────────────────────────────

NS_SCORING_USAGE:  str = "scoring_usage"
NS_RATE_LIMIT:     str = "rate_limit"
NS_EVENT_HISTORY:  str = "event_history"

# ─────────────────────────────────────────────
# SERVER CONFIGURATION
# ─────────────────────────────────────────────

SERVER_HOST: str = "0.0.0.0"
SERVER_PORT: int = 8000
