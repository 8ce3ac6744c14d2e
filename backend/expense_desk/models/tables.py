"""SQLAlchemy ORM models for the expense management API.

These models define the relational database schema used by the
application: profiles, reference data (categories and project codes),
uploaded files, expenses and the append-only audit log. Enumerated
fields are stored using SQLAlchemy's Enum type and money columns as
two-decimal numerics.

Two invariants are enforced at flush time by mapper event listeners:
an expense whose status was decided (APPROVED/REJECTED) never changes
status again, and audit log rows are never updated or deleted.

If you extend or modify these models call the ``init_db`` helper during
development to recreate the tables.
"""

from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    Text,
    JSON,
    event,
    inspect,
)
from sqlalchemy.orm import relationship

from expense_desk.core.database import Base
from .enums import AppRole, UserStatus, RecordStatus, ExpenseStatus, PaymentMethod, ExpenseSource

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


Money = Numeric(12, 2, asdecimal=False)


class ImmutableRecordError(RuntimeError):
    """Raised when a flush would modify a record that must not change."""

    def __init__(self, entity: str, entity_id, reason: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity} {entity_id}: {reason}")


class Profile(Base):
    """Authenticated user record controlling role-based visibility."""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(AppRole), nullable=False, default=AppRole.EMPLOYEE, index=True)
    department = Column(String, nullable=True)
    region = Column(String, nullable=True)
    status = Column(Enum(UserStatus), nullable=False, default=UserStatus.ACTIVE)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    expenses = relationship("Expense", back_populates="employee", foreign_keys="Expense.employee_id")
    files = relationship("File", back_populates="uploader")

    @property
    def is_admin(self) -> bool:
        return self.role == AppRole.ADMIN


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    budget_monthly = Column(Money, nullable=True)
    status = Column(Enum(RecordStatus), nullable=False, default=RecordStatus.ACTIVE)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    expenses = relationship("Expense", back_populates="category")


class ProjectCode(Base):
    __tablename__ = "project_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    status = Column(Enum(RecordStatus), nullable=False, default=RecordStatus.ACTIVE)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    expenses = relationship("Expense", back_populates="project_code")


class File(Base):
    """Stored receipt file (image or PDF)."""

    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)
    original_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    storage_key = Column(String, nullable=False)
    checksum_sha256 = Column(String, nullable=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    uploader = relationship("Profile", back_populates="files")


class Expense(Base):
    """A single reimbursable transaction with approval status."""

    __tablename__ = "expenses"
    __table_args__ = (
        Index("ix_expenses_employee_date", "employee_id", "expense_date"),
        Index("ix_expenses_status_date", "status", "expense_date"),
        Index("ix_expenses_category_date", "category_id", "expense_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    project_code_id = Column(Integer, ForeignKey("project_codes.id"), nullable=True)
    vendor = Column(String, nullable=False)
    expense_date = Column(Date, nullable=False)
    amount_net = Column(Money, nullable=False)
    tax_vat = Column(Money, nullable=True, default=0)
    amount_gross = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    status = Column(Enum(ExpenseStatus), nullable=False, default=ExpenseStatus.PENDING)
    approver_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    receipt_file_id = Column(Integer, ForeignKey("files.id"), nullable=True)
    source = Column(Enum(ExpenseSource), nullable=False, default=ExpenseSource.MANUAL)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    employee = relationship("Profile", back_populates="expenses", foreign_keys=[employee_id])
    approver = relationship("Profile", foreign_keys=[approver_id])
    category = relationship("Category", back_populates="expenses")
    project_code = relationship("ProjectCode", back_populates="expenses")
    receipt_file = relationship("File")


class AuditLog(Base):
    """Append-only record of who did what to which entity."""

    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_actor_created", "actor_user_id", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    action = Column(String, nullable=False)
    entity = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    actor = relationship("Profile")


# ---------------------------------------------------------------------------
# Flush-time invariants


@event.listens_for(Expense, "before_update")
def _check_expense_status_transition(mapper, connection, target: Expense) -> None:
    """Refuse any status change once an expense left PENDING."""
    history = inspect(target).attrs.status.history
    if not history.has_changes() or not history.deleted:
        return
    previous = history.deleted[0]
    if previous is not None and ExpenseStatus(previous) != ExpenseStatus.PENDING:
        logger.error("blocked status change expense=%s from=%s to=%s", target.id, previous, target.status)
        raise ImmutableRecordError("Expense", target.id, f"status is final ({ExpenseStatus(previous).value})")


@event.listens_for(AuditLog, "before_update")
def _check_audit_log_update(mapper, connection, target: AuditLog) -> None:
    logger.error("blocked audit log update id=%s", target.id)
    raise ImmutableRecordError("AuditLog", target.id, "audit log entries cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _check_audit_log_delete(mapper, connection, target: AuditLog) -> None:
    logger.error("blocked audit log delete id=%s", target.id)
    raise ImmutableRecordError("AuditLog", target.id, "audit log entries cannot be deleted")
