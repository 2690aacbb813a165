from .users import User
from .feature_flags import (
    FeatureFlag,
    FeatureFlagEvaluation,
    OrganizationFeatureFlag,
    UserFeatureFlagOverride,
)

__all__ = [
    "User",
    "FeatureFlag",
    "FeatureFlagEvaluation",
    "OrganizationFeatureFlag",
    "UserFeatureFlagOverride",
]
