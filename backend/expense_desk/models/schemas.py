"""Pydantic schemas for request and response models.

Pydantic models are used for validating and serialising data that
crosses the boundary of the API. This module defines both the domain
schema produced by receipt analysis (``ReceiptAnalysis``) and the API
facing schemas for creating, updating and returning resources such as
profiles, expenses, files and reference data.

Pydantic schemas are intentionally separate from the ORM models to
avoid coupling and to allow for different shapes of data being
exposed through the API compared with what is stored in the database.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from expense_desk.core.config import settings
from expense_desk.utils.sanitization import sanitize_string
from .enums import (
    AppRole,
    CategorySuggestion,
    ExpenseSource,
    ExpenseStatus,
    PaymentMethod,
    RecordStatus,
    UserStatus,
)

# bcrypt refuses passwords longer than this
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Receipt analysis output


class ReceiptAnalysis(BaseModel):
    """Structured fields extracted from a receipt by the AI model."""

    vendor: Optional[str] = None
    expense_date: Optional[str] = Field(default=None, description="Date in YYYY-MM-DD format")
    amount_gross: float = Field(description="Total amount including VAT")
    tax_vat: Optional[float] = Field(default=None, description="VAT amount (0 when not applicable)")
    amount_net: Optional[float] = Field(default=None, description="Amount before VAT")
    currency: Optional[str] = None
    category_suggestion: CategorySuggestion = CategorySuggestion.OTROS
    payment_method_guess: PaymentMethod = PaymentMethod.OTHER
    project_code_guess: Optional[str] = None
    notes: Optional[str] = None


class AnalysisResponse(BaseModel):
    success: bool
    data: Optional[ReceiptAnalysis] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth & profiles


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(min_length=1, max_length=200)

    @field_validator("password")
    def check_password_length(cls, v: str) -> str:
        if len(v) < settings.MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password should be at least {settings.MIN_PASSWORD_LENGTH} characters")
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password should be at most {MAX_PASSWORD_BYTES} bytes")
        return v

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return sanitize_string(v) if v is not None else v


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    profile: "ProfileRead"


class ProfileRead(BaseModel):
    id: int
    email: str
    name: str
    role: AppRole
    department: Optional[str] = None
    region: Optional[str] = None
    status: UserStatus
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class ProfileSelfUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    department: Optional[str] = None
    region: Optional[str] = None

    @field_validator("name", "department", "region", mode="before")
    def sanitize_fields(cls, v):
        return sanitize_string(v) if v is not None else v


class ProfileAdminUpdate(ProfileSelfUpdate):
    role: Optional[AppRole] = None
    status: Optional[UserStatus] = None


# ---------------------------------------------------------------------------
# Reference data


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    budget_monthly: Optional[float] = Field(default=None, ge=0)

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return sanitize_string(v) if v is not None else v


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    budget_monthly: Optional[float] = Field(default=None, ge=0)
    status: Optional[RecordStatus] = None

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return sanitize_string(v) if v is not None else v


class CategoryRead(BaseModel):
    id: int
    name: str
    budget_monthly: Optional[float] = None
    status: RecordStatus

    model_config = ConfigDict(from_attributes=True)


class ProjectCodeCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)

    @field_validator("code", mode="before")
    def normalise_code(cls, v):
        return sanitize_string(v).upper() if v is not None else v

    @field_validator("name", mode="before")
    def sanitize_name(cls, v):
        return sanitize_string(v) if v is not None else v


class ProjectCodeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    status: Optional[RecordStatus] = None


class ProjectCodeRead(BaseModel):
    id: int
    code: str
    name: str
    status: RecordStatus

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Files


class FileRead(BaseModel):
    id: int
    original_name: str
    mime_type: str
    size_bytes: int
    checksum_sha256: str
    uploaded_by: int
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


# ---------------------------------------------------------------------------
# Expenses


class ExpenseBase(BaseModel):
    vendor: str = Field(min_length=1, max_length=200)
    expense_date: dt.date
    amount_gross: float = Field(gt=0)
    tax_vat: Optional[float] = Field(default=None, ge=0)
    amount_net: Optional[float] = None
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    category_id: int
    project_code_id: Optional[int] = None
    payment_method: PaymentMethod
    notes: Optional[str] = None
    receipt_file_id: Optional[int] = None

    @field_validator("vendor", "notes", mode="before")
    def sanitize_fields(cls, v):
        return sanitize_string(v) if v is not None else v

    @field_validator("currency", mode="before")
    def upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ExpenseCreate(ExpenseBase):
    source: ExpenseSource = ExpenseSource.MANUAL


class ExpenseUpdate(BaseModel):
    vendor: Optional[str] = Field(default=None, min_length=1, max_length=200)
    expense_date: Optional[dt.date] = None
    amount_gross: Optional[float] = Field(default=None, gt=0)
    tax_vat: Optional[float] = Field(default=None, ge=0)
    amount_net: Optional[float] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    category_id: Optional[int] = None
    project_code_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None

    @field_validator("vendor", "notes", mode="before")
    def sanitize_fields(cls, v):
        return sanitize_string(v) if v is not None else v


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)

    @field_validator("reason", mode="before")
    def sanitize_reason(cls, v):
        return sanitize_string(v) if v is not None else v


class ExpenseRead(BaseModel):
    id: int
    employee_id: int
    category_id: int
    project_code_id: Optional[int] = None
    vendor: str
    expense_date: dt.date
    amount_net: float
    tax_vat: Optional[float] = None
    amount_gross: float
    currency: str
    payment_method: PaymentMethod
    status: ExpenseStatus
    approver_id: Optional[int] = None
    approved_at: Optional[dt.datetime] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    receipt_file_id: Optional[int] = None
    source: ExpenseSource
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class ExpenseListResponse(BaseModel):
    items: List[ExpenseRead]
    total: int
    limit: int
    offset: int


class ReceiptExpenseResponse(BaseModel):
    """Result of creating an expense straight from a receipt upload."""

    expense: ExpenseRead
    analysis: ReceiptAnalysis
    file: FileRead


# ---------------------------------------------------------------------------
# Audit log


class AuditLogRead(BaseModel):
    id: int
    actor_user_id: int
    action: str
    entity: str
    entity_id: int
    details: Optional[Dict[str, Any]] = Field(default=None, serialization_alias="metadata")
    ip_address: Optional[str] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Dashboards


class BudgetUsage(BaseModel):
    category: str
    budget_monthly: Optional[float] = None
    spent: float
    percentage: Optional[float] = None


class DashboardStats(BaseModel):
    total_expenses: float
    pending_expenses: float
    pending_count: int
    this_month_expenses: float
    daily_average: float
    top_category: str
    budget_usage: List[BudgetUsage] = Field(default_factory=list)


class MonthlyPoint(BaseModel):
    month: str
    amount: float
    count: int


class CategoryShare(BaseModel):
    category: str
    amount: float
    percentage: float


class RankedTotal(BaseModel):
    name: str
    amount: float
    count: int


class StatusShare(BaseModel):
    status: ExpenseStatus
    count: int
    percentage: float


class AnalyticsReport(BaseModel):
    total_expenses: int
    total_amount: float
    avg_expense_amount: float
    monthly_trend: List[MonthlyPoint]
    category_breakdown: List[CategoryShare]
    top_vendors: List[RankedTotal]
    employee_leaderboard: List[RankedTotal]
    status_distribution: List[StatusShare]


TokenResponse.model_rebuild()
