from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class UserRoleEnum(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"
    CORPORATE_ADMIN = "corporate_admin"


class FlagTypeEnum(str, Enum):
    BOOLEAN = "boolean"
    STRING = "string"
    NUMBER = "number"
    JSON = "json"


class RolloutStrategyEnum(str, Enum):
    PERCENTAGE = "percentage"
    WHITELIST = "whitelist"
    ALL = "all"


class EvaluationReasonEnum(str, Enum):
    # Ordered by priority; exactly one is recorded per evaluation.
    USER_OVERRIDE = "user_override"
    ORG_ROLLOUT = "org_rollout"
    ORG_ENABLED = "org_enabled"
    ORG_DISABLED = "org_disabled"
    DEFAULT = "default"
    UNKNOWN_FLAG = "unknown_flag"


def enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
