"""
SQLModel table models.

Importing this package registers every table with ``SQLModel.metadata``.
"""

from nursery_auth.models.account import GuardianChildren, Guardians, Nurseries, Staff
from nursery_auth.models.otp_challenge import OtpChallenges
from nursery_auth.models.refresh_token import RefreshTokens
from nursery_auth.models.role_preference import RolePreferences

__all__ = [
    "GuardianChildren",
    "Guardians",
    "Nurseries",
    "OtpChallenges",
    "RefreshTokens",
    "RolePreferences",
    "Staff",
]
