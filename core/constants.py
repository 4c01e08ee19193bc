"""
Shared constants for the Latent Space match scoring pipeline.

This module contains the vocabularies, default weights and label tables used
across the feature extraction, scoring, ranking and analytics modules.
"""

# ============================================================================
# Profile vocabularies
# ============================================================================

ROLE_INTENTS = ("CEO", "CTO", "CPO", "CMO", "COO", "CFO", "Technical", "Business")

SENIORITY_LEVELS = ("student", "junior", "mid", "senior")

REMOTE_PREFERENCES = ("remote_first", "hybrid", "onsite_first")

# Declared numeric ranges (inclusive); used for validation and normalization
WEEKLY_HOURS_RANGE = (5, 80)
EQUITY_RANGE = (0.0, 100.0)
RISK_TOLERANCE_RANGE = (1, 10)
QUALITY_SCORE_RANGE = (1, 5)
FEEDBACK_RATING_RANGE = (1, 5)

# Who each role is looking for
ROLE_COMPLEMENT_MAP = {
    "CEO": ["CTO", "CPO", "CMO", "COO"],
    "CTO": ["CEO", "CPO", "Business"],
    "CPO": ["CEO", "CTO", "Technical"],
    "CMO": ["CEO", "CTO", "Business"],
    "COO": ["CEO", "CTO", "CPO"],
    "CFO": ["CEO", "CTO", "COO"],
    "Technical": ["Business", "CEO", "CPO"],
    "Business": ["Technical", "CTO", "CPO"],
}

# remote_first <-> onsite_first are the only incompatible pair
REMOTE_COMPATIBILITY = {
    ("remote_first", "remote_first"): 1.0,
    ("hybrid", "hybrid"): 1.0,
    ("onsite_first", "onsite_first"): 1.0,
    ("remote_first", "hybrid"): 0.5,
    ("hybrid", "onsite_first"): 0.5,
    ("remote_first", "onsite_first"): 0.0,
}

# Working-day window used for timezone overlap
WORKDAY_HOURS = 8


# ============================================================================
# Interactions and match lifecycle
# ============================================================================

INTERACTION_ACTIONS = ("view", "like", "skip", "connect", "meet")

# Pair-history adjustments applied on top of the neutral behavior score
BEHAVIOR_NEUTRAL_SCORE = 0.5
BEHAVIOR_ACTION_DELTAS = {
    "view": 0.0,
    "like": 0.1,
    "skip": -0.2,
    "connect": 0.2,
    "meet": 0.3,
}
BEHAVIOR_QUALITY_STEP = 0.1
BEHAVIOR_AFFINITY_WEIGHT = 0.25
POSITIVE_ACTIONS = {"like", "connect", "meet"}
NEGATIVE_ACTIONS = {"skip"}

MATCH_STAGES = ("recommended", "contacted", "meeting", "success", "dropped")
TERMINAL_STAGES = {"success", "dropped"}

# Allowed stage moves; "dropped" is reachable from every non-terminal stage
# and nothing leaves a terminal stage.
STAGE_TRANSITIONS = {
    "recommended": {"contacted", "dropped"},
    "contacted": {"meeting", "dropped"},
    "meeting": {"success", "dropped"},
    "success": set(),
    "dropped": set(),
}

# Interaction actions that advance an existing match
ACTION_TARGET_STAGE = {
    "connect": "contacted",
    "meet": "meeting",
}

DEFAULT_MATCH_EXPIRY_DAYS = 30


# ============================================================================
# Scoring defaults
# ============================================================================

DEFAULT_WEIGHT_VERSION = "v1"

HARD_FEATURES = (
    "role_complement",
    "timezone_overlap",
    "availability_fit",
    "remote_compat",
    "equity_alignment",
    "risk_alignment",
)

SEMANTIC_FEATURES = (
    "skills_overlap",
    "embedding_similarity",
    "industry_overlap",
    "tech_stack_overlap",
    "nice_to_have",
)

BEHAVIOR_FEATURES = ("behavior_history",)

FEATURE_COMPONENTS = {
    **{name: "hard" for name in HARD_FEATURES},
    **{name: "semantic" for name in SEMANTIC_FEATURES},
    **{name: "behavior" for name in BEHAVIOR_FEATURES},
}

DEFAULT_COMPONENT_WEIGHTS = {
    "hard": 0.30,
    "semantic": 0.55,
    "behavior": 0.15,
}

DEFAULT_FEATURE_WEIGHTS = {
    # hard component
    "role_complement": 0.20,
    "timezone_overlap": 0.20,
    "availability_fit": 0.20,
    "remote_compat": 0.15,
    "equity_alignment": 0.125,
    "risk_alignment": 0.125,
    # semantic component
    "skills_overlap": 0.50,
    "embedding_similarity": 0.20,
    "industry_overlap": 0.10,
    "tech_stack_overlap": 0.10,
    "nice_to_have": 0.10,
    # behavior component
    "behavior_history": 1.0,
}

DEFAULT_THRESHOLDS = {
    "min_score": 0.4,
    "disqualified_score": -1.0,
}

NEUTRAL_SEMANTIC_SCORE = 0.5
DEFAULT_MAX_REASONS = 5
DEFAULT_CANDIDATE_LIMIT = 20

# Risk-hint trigger levels
EQUITY_GAP_HINT = 5.0
WEEKLY_HOURS_GAP_HINT = 20
SALARY_GAP_RATIO_HINT = 0.5


# ============================================================================
# Analytics
# ============================================================================

TIME_RANGE_DAYS = {
    "week": 7,
    "month": 30,
    "quarter": 90,
}

SUCCESS_RATING_THRESHOLD = 4

# Fixed checklist for profile completeness; each field is an equal share
PROFILE_COMPLETENESS_FIELDS = (
    "role_intent",
    "seniority",
    "timezone",
    "weekly_hours",
    "location_city",
    "remote_pref",
    "skills",
    "industries",
    "tech_stack",
    "bio",
    "equity_expectation",
    "risk_tolerance",
)

LOW_COMPLETENESS_THRESHOLD = 70
HIGH_VIEW_COUNT = 20
LOW_LIKE_COUNT = 2
HIGH_LIKE_COUNT = 10
LOW_MATCH_COUNT = 2

# Positive factors searched for in well-rated feedback text
COMMON_MATCH_FACTORS = [
    "研究领域匹配",
    "技能互补",
    "地理位置",
    "创业阶段",
    "沟通顺畅",
    "经验丰富",
    "目标一致",
    "时间投入",
    "资源互补",
]
TOP_FACTOR_LIMIT = 5

# Algorithm health thresholds over the last 30 days of feedback
ALGORITHM_REVIEW_DAYS = 30
ALGORITHM_MIN_RATING = 3.5
ALGORITHM_MIN_MEET_RATE = 0.3
ALGORITHM_MIN_CONTINUE_RATE = 0.4

ALGORITHM_OUTCOMES = ("positive", "negative", "neutral")

BATCH_RUN_TYPES = ("daily", "event", "manual")


# ============================================================================
# Label Definitions (Chinese + English)
# ============================================================================

FEATURE_LABELS = {
    "role_complement": {"zh": "角色互补", "en": "Complementary roles"},
    "timezone_overlap": {"zh": "时区重叠", "en": "Timezone overlap"},
    "availability_fit": {"zh": "时间投入接近", "en": "Similar time commitment"},
    "remote_compat": {"zh": "工作方式兼容", "en": "Compatible work mode"},
    "equity_alignment": {"zh": "股权预期接近", "en": "Similar equity expectations"},
    "risk_alignment": {"zh": "风险偏好接近", "en": "Compatible risk tolerance"},
    "skills_overlap": {"zh": "技能重合", "en": "Shared skills"},
    "embedding_similarity": {"zh": "个人描述相似", "en": "Similar profile narrative"},
    "industry_overlap": {"zh": "行业方向一致", "en": "Shared industries"},
    "tech_stack_overlap": {"zh": "技术栈相同", "en": "Shared tech stack"},
    "nice_to_have": {"zh": "符合加分偏好", "en": "Matches your preferences"},
    "behavior_history": {"zh": "互动记录良好", "en": "Positive interaction history"},
}

RECOMMENDATION_MESSAGES = {
    "complete_profile": {
        "zh": "完善个人资料以获得更准确的匹配推荐",
        "en": "Complete more profile fields for better matches",
    },
    "loosen_filters": {
        "zh": "适当降低匹配标准，增加互动机会",
        "en": "Consider loosening your filters to get more interaction",
    },
    "improve_intro": {
        "zh": "优化个人简介和视频介绍以提高回应率",
        "en": "Improve your bio and intro video to raise your response rate",
    },
    "start_conversations": {
        "zh": "主动发起对话，使用破冰问答功能",
        "en": "Start conversations and try the ice-breaking questions",
    },
    "add_bio": {
        "zh": "添加个人简介，让他人了解你的愿景",
        "en": "Add a bio to help others understand your vision",
    },
    "add_skills": {
        "zh": "添加技能标签以改善匹配",
        "en": "Add your skills to improve matching",
    },
    "add_industries": {
        "zh": "选择你感兴趣的行业",
        "en": "Select industries you're interested in",
    },
}

ALGORITHM_ADJUSTMENTS = {
    "rating": (
        "Increase weight of complementary skills matching",
        "A/B test higher complementarity scoring vs field similarity",
    ),
    "meet_rate": (
        "Improve geographic proximity weighting",
        "Test stricter location-based filtering",
    ),
    "continue_rate": (
        "Enhance personality/interest compatibility detection",
        "Implement behavioral pattern matching",
    ),
}
