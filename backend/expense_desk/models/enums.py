"""Enumeration types used throughout the expense management API.

Enumerations make it easier to constrain the values that can be
stored in the database or passed through the API. They also
improve readability when dealing with domain concepts like roles,
approval states or payment methods.

When modifying these enums you should update any corresponding
database columns or Pydantic validators so that new values are
accepted where appropriate.
"""

from enum import Enum


class AppRole(str, Enum):
    """Role of a profile; controls row visibility and approvals."""

    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RecordStatus(str, Enum):
    """Status of reference data (categories and project codes)."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ExpenseStatus(str, Enum):
    """Approval states for an expense."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class ExpenseSource(str, Enum):
    """How the expense fields were captured."""

    MANUAL = "MANUAL"
    AI_EXTRACTED = "AI_EXTRACTED"


class CategorySuggestion(str, Enum):
    """Category names the receipt analysis model may suggest.

    They match the names of the seeded categories so a suggestion can be
    resolved to a ``Category`` row by name.
    """

    VIAJES = "Viajes"
    DIETAS = "Dietas"
    MATERIAL = "Material"
    SOFTWARE = "Software"
    TRANSPORTE = "Transporte"
    ALOJAMIENTO = "Alojamiento"
    OTROS = "Otros"


class AnalyticsPeriod(str, Enum):
    DAYS_30 = "30_days"
    MONTHS_3 = "3_months"
    MONTHS_6 = "6_months"
    MONTHS_12 = "12_months"
    YEAR_TO_DATE = "year_to_date"
