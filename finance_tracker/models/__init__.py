"""
Data Models Package

This package contains all Pydantic models used in the Personal Finance Tracker.
All data flowing through the system must conform to these schemas.
"""

from finance_tracker.models.finance import (
    ASSET_FIELDS,
    HIGH_MEDIUM_RISK_FIELDS,
    LOW_RISK_FIELDS,
    MAX_ASSET_VALUE,
    ChartDataPoint,
    CombinedPortfolio,
    EntryDraft,
    FinancialEntry,
    HighMediumRiskAssets,
    LinkGrant,
    LowRiskAssets,
    Permission,
    Principal,
    PrincipalWithLinks,
    Profile,
    ProfileAnalytics,
    ProfileLink,
    ProfileWithPermission,
    RiskSlice,
    Role,
    TimePeriod,
    ValidationIssue,
    ValidationResult,
    utcnow,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Field groups
    "ASSET_FIELDS",
    "HIGH_MEDIUM_RISK_FIELDS",
    "LOW_RISK_FIELDS",
    "MAX_ASSET_VALUE",
    # Finance models
    "ChartDataPoint",
    "CombinedPortfolio",
    "EntryDraft",
    "FinancialEntry",
    "HighMediumRiskAssets",
    "LinkGrant",
    "LowRiskAssets",
    "Permission",
    "Principal",
    "PrincipalWithLinks",
    "Profile",
    "ProfileAnalytics",
    "ProfileLink",
    "ProfileWithPermission",
    "RiskSlice",
    "Role",
    "TimePeriod",
    "ValidationIssue",
    "ValidationResult",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
