"""
Domain models: Pydantic types for the build.

    from containerbuild.core.models import BuildConfig, BuildState, VerificationResult
"""

from containerbuild.core.models.build import AptSettings, BuildConfig, RetrySettings, UserInfo
from containerbuild.core.models.feature import FeatureResult, FeatureSummary
from containerbuild.core.models.state import BuildRecord, BuildState, FeatureRecord
from containerbuild.core.models.verification import VerificationResult, VerificationTier

__all__ = [
    "AptSettings",
    "BuildConfig",
    "BuildRecord",
    "BuildState",
    "FeatureRecord",
    "FeatureResult",
    "FeatureSummary",
    "RetrySettings",
    "UserInfo",
    "VerificationResult",
    "VerificationTier",
]
