"""
Core Data Models for Personal Finance Tracker

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep derived values (entry totals) out of callers' hands

DESIGN DECISION: Amounts are Decimal with at most 2 decimal places,
matching the DECIMAL(15, 2) columns the data originally lived in.
Aggregation converts to float at the edge; storage never does.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


MAX_ASSET_VALUE = Decimal("9999999999999.99")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Role(str, Enum):
    """
    Principal role.

    CRITICAL: Roles change only through an admin action.
    The first principal ever registered is the only automatic admin.
    """
    ADMIN = "admin"
    APPROVED = "approved"
    PENDING = "pending"    # Registered, awaiting admin review
    REJECTED = "rejected"


class Permission(str, Enum):
    """Permission carried by a profile link."""
    READ = "read"
    EDIT = "edit"


class TimePeriod(str, Enum):
    """Look-back windows offered by the analytics views."""
    DAYS_30 = "30days"
    MONTHS_3 = "3months"
    YEAR_1 = "1year"
    YEARS_3 = "3years"
    YEARS_5 = "5years"
    YEARS_10 = "10years"


# =============================================================================
# PRINCIPALS, PROFILES AND LINKS
# =============================================================================

class Principal(BaseModel):
    """
    An authenticated user.

    Created on first sign-in (the identity provider owns credentials;
    we only keep the role and approval trail).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        ...,
        description="Identity provider user id"
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
    )
    name: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    role: Role = Field(
        default=Role.PENDING,
        description="Authoritative role; never taken from the client"
    )
    approved_at: Optional[datetime] = None
    approved_by: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class Profile(BaseModel):
    """
    A financial entity (a person, a family...) whose entries are tracked.

    DESIGN DECISION: There is no owner column. Who may see or edit a
    profile is expressed only through ProfileLink rows, so a profile
    can outlive every link pointing at it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProfileLink(BaseModel):
    """The sole grant of non-admin access to a profile."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    profile_id: UUID
    permission: Permission
    created_at: datetime = Field(default_factory=utcnow)


class LinkGrant(BaseModel):
    """A requested link, as supplied by an admin during approval."""

    profile_id: UUID
    permission: Permission = Permission.READ


class ProfileWithPermission(BaseModel):
    """A profile as seen by one principal."""

    id: UUID
    name: str
    permission: Permission


class PrincipalWithLinks(BaseModel):
    """A principal and every link it holds (admin panel view)."""

    principal: Principal
    links: list[ProfileLink] = Field(default_factory=list)


# =============================================================================
# FINANCIAL ENTRIES
# =============================================================================

AssetAmount = Annotated[
    Decimal,
    Field(ge=0, le=MAX_ASSET_VALUE, decimal_places=2),
]


class HighMediumRiskAssets(BaseModel):
    """Growth assets: equity, real estate and equity-linked products."""

    direct_equity: AssetAmount = Decimal("0")
    esops: AssetAmount = Decimal("0")
    equity_pms: AssetAmount = Decimal("0")
    ulip: AssetAmount = Decimal("0")
    real_estate: AssetAmount = Decimal("0")
    real_estate_funds: AssetAmount = Decimal("0")
    private_equity: AssetAmount = Decimal("0")
    equity_mutual_funds: AssetAmount = Decimal("0")
    structured_products_equity: AssetAmount = Decimal("0")

    def total(self) -> Decimal:
        return sum(
            (getattr(self, name) for name in type(self).model_fields),
            Decimal("0"),
        )


class LowRiskAssets(BaseModel):
    """Capital-protected assets: deposits, debt funds, retirement schemes, gold."""

    bank_balance: AssetAmount = Decimal("0")
    debt_mutual_funds: AssetAmount = Decimal("0")
    endowment_plans: AssetAmount = Decimal("0")
    fixed_deposits: AssetAmount = Decimal("0")
    nps: AssetAmount = Decimal("0")
    epf: AssetAmount = Decimal("0")
    ppf: AssetAmount = Decimal("0")
    structured_products_debt: AssetAmount = Decimal("0")
    gold_etfs_funds: AssetAmount = Decimal("0")

    def total(self) -> Decimal:
        return sum(
            (getattr(self, name) for name in type(self).model_fields),
            Decimal("0"),
        )


HIGH_MEDIUM_RISK_FIELDS: tuple[str, ...] = tuple(HighMediumRiskAssets.model_fields)
LOW_RISK_FIELDS: tuple[str, ...] = tuple(LowRiskAssets.model_fields)
ASSET_FIELDS: tuple[str, ...] = HIGH_MEDIUM_RISK_FIELDS + LOW_RISK_FIELDS


class FinancialEntry(BaseModel):
    """
    A dated snapshot of one profile's asset composition.

    CRITICAL: The three totals are DERIVED. Whatever a caller passes for
    them is overwritten from the asset fields every time the model is
    validated, so they can never drift from the values they summarize.
    """

    id: UUID = Field(default_factory=uuid4)
    profile_id: UUID
    entry_date: date

    high_medium_risk: HighMediumRiskAssets = Field(default_factory=HighMediumRiskAssets)
    low_risk: LowRiskAssets = Field(default_factory=LowRiskAssets)

    total_high_medium_risk: Decimal = Decimal("0")
    total_low_risk: Decimal = Decimal("0")
    total_assets: Decimal = Decimal("0")

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[UUID] = None

    @model_validator(mode='after')
    def compute_totals(self) -> 'FinancialEntry':
        """Recompute derived totals from the asset fields."""
        self.total_high_medium_risk = self.high_medium_risk.total()
        self.total_low_risk = self.low_risk.total()
        self.total_assets = self.total_high_medium_risk + self.total_low_risk
        return self

    def asset_values(self) -> dict[str, Decimal]:
        """All 18 asset fields, flattened."""
        values = self.high_medium_risk.model_dump()
        values.update(self.low_risk.model_dump())
        return values


class EntryDraft(BaseModel):
    """
    Entry data as supplied by a caller.

    CRITICAL: This is UNTRUSTED input. Nothing here is typed beyond
    "something was sent" so that validation can report every offending
    field by name instead of failing on the first.

    Totals sent by the client are accepted and ignored.
    """
    model_config = ConfigDict(extra="ignore")

    entry_date: Optional[Any] = None
    high_medium_risk: dict[str, Any] = Field(default_factory=dict)
    low_risk: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue (e.g. 'low_risk.epf')"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'negative', 'precision', 'duplicate')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (presence, numbers, precision)
    Stage 2: Semantic validation (dates, duplicates)
    """

    validated_at: datetime = Field(default_factory=utcnow)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]


# =============================================================================
# ANALYTICS MODELS
# =============================================================================

class ChartDataPoint(BaseModel):
    """
    One point of the asset time series.

    For combined views each point is the sum over every profile that
    has an entry on that date.
    """

    date: date
    total_assets: float = 0.0
    high_medium_risk: float = 0.0
    low_risk: float = 0.0

    direct_equity: float = 0.0
    esops: float = 0.0
    equity_pms: float = 0.0
    ulip: float = 0.0
    real_estate: float = 0.0
    real_estate_funds: float = 0.0
    private_equity: float = 0.0
    equity_mutual_funds: float = 0.0
    structured_products_equity: float = 0.0

    bank_balance: float = 0.0
    debt_mutual_funds: float = 0.0
    endowment_plans: float = 0.0
    fixed_deposits: float = 0.0
    nps: float = 0.0
    epf: float = 0.0
    ppf: float = 0.0
    structured_products_debt: float = 0.0
    gold_etfs_funds: float = 0.0


class RiskSlice(BaseModel):
    """One side of the high/medium vs low risk split."""

    name: str
    value: float
    percentage: float


class CombinedPortfolio(BaseModel):
    """
    Aggregated view across several profiles.

    `period`, `profile_count` and `message` are filled in by the
    analytics flow; the pure aggregation leaves them at their defaults.
    """

    chart_data: list[ChartDataPoint] = Field(default_factory=list)
    risk_distribution: list[RiskSlice] = Field(default_factory=list)
    total_assets: float = 0.0

    period: Optional[TimePeriod] = None
    profile_count: int = Field(default=0, ge=0)
    message: Optional[str] = None


class ProfileAnalytics(BaseModel):
    """Analytics for a single profile over a period."""

    profile_id: UUID
    period: TimePeriod
    chart_data: list[ChartDataPoint] = Field(default_factory=list)
    risk_distribution: list[RiskSlice] = Field(default_factory=list)
    entry_count: int = Field(default=0, ge=0)
