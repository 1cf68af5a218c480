from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Float,
    Boolean,
    ForeignKey,
    Index,
)


Base = declarative_base()

SLOT_ADMIN = "admin"
SLOT_MEMBER = "member"
SLOT_TYPES = (SLOT_ADMIN, SLOT_MEMBER)

# pending | paid  (failed | refunded reserved for later)
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
PAYMENT_STATUSES = (STATUS_PENDING, STATUS_PAID, "failed", "refunded")

ROLE_SUPER_ADMIN = "super_admin"
ROLE_COMPANY_ADMIN = "company_admin"


# ----------------------------
# ORM models
# ----------------------------
class Company(Base):
    __tablename__ = "companies"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    max_admins = Column(Integer, nullable=False, default=1)
    max_members = Column(Integer, nullable=False, default=10)
    created_at = Column(Float, nullable=False)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    # super_admin | company_admin | team_leader | company_member
    role = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)


class SlotPricing(Base):
    __tablename__ = "slot_pricing"
    id = Column(Integer, primary_key=True, autoincrement=True)
    slot_type = Column(String, nullable=False, unique=True)
    price_per_unit_minor = Column(BigInteger, nullable=False)  # paise/cents
    currency = Column(String, nullable=False, default="INR")
    updated_at = Column(Float, nullable=False)


class CompanyPayment(Base):
    __tablename__ = "company_payments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    slot_type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)  # paise/cents
    currency = Column(String, nullable=False, default="INR")

    status = Column(String, nullable=False, default=STATUS_PENDING)
    payment_method = Column(String, nullable=True)

    # gateway intent opened for this record, set right after creation
    gateway_intent_id = Column(String, nullable=True, unique=True)
    # set exactly once, together with status='paid'
    gateway_transaction_id = Column(String, nullable=True)
    receipt_number = Column(String, nullable=True, unique=True)

    notification_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_company_payments_company_created",
              "company_id", "created_at"),
        Index("idx_company_payments_status", "status"),
    )


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    event_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)
