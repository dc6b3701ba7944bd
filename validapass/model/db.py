from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    JSON,
    ForeignKey,
    Index,
)


Base = declarative_base()

# participants.category
CATEGORIES = ("Wolf Gold", "Wolf Black", "VIP Wolf", "Camarote")

# email_queue.status
Q_PENDING = "pending"
Q_SENDING = "sending"
Q_SENT = "sent"
Q_FAILED = "failed"


# ----------------------------
# ORM models
# ----------------------------
class Participant(Base):
    __tablename__ = "participants"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=True)  # digits only
    category = Column(String, nullable=False)
    # {"2025-09-24": true, ...}
    presencas = Column(JSON, nullable=False, default=dict)
    # sale that created it (webhook path only)
    transaction_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    participant_id = Column(
        String, ForeignKey("participants.id"), nullable=False, unique=True
    )
    qr_code = Column(String, nullable=False)
    is_validated = Column(Boolean, nullable=False, default=False)
    validated_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class Sale(Base):
    __tablename__ = "sales"
    transaction_id = Column(String, primary_key=True)
    origin = Column(String, nullable=False)
    user_email = Column(String, nullable=False)
    user_name = Column(String, nullable=True)
    user_phone = Column(String, nullable=True)
    offer_name = Column(String, nullable=True)
    product_name = Column(String, nullable=True)
    total_amount = Column(Integer, nullable=True)  # cents
    created_at = Column(Float, nullable=True)
    paid_at = Column(Float, nullable=True)


class WebhookSalesLog(Base):
    __tablename__ = "webhook_sales_logs"
    id = Column(String, primary_key=True)
    origin = Column(String, nullable=False)
    # success | duplicate | skipped | skipped_unpaid | error
    status = Column(String, nullable=False)
    raw_payload = Column(JSON, nullable=False)
    buyer_name = Column(String, nullable=True)
    buyer_email = Column(String, nullable=True)
    offer_id = Column(String, nullable=True)
    offer_name_v2 = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    product_name = Column(String, nullable=True)
    assigned_category = Column(String, nullable=True)
    participant_id = Column(String, nullable=True)
    amount_cents = Column(Integer, nullable=True)
    name_source = Column(String, nullable=True)
    phone_source = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    processed_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_webhook_logs_processed_at", "processed_at"),
    )


class WebhookRawEvent(Base):
    __tablename__ = "webhook_raw_events"
    id = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    type = Column(String, nullable=False)
    transaction_id = Column(String, nullable=True)
    payload = Column(JSON, nullable=False)
    received_at = Column(Float, nullable=False)


class EmailQueueEntry(Base):
    __tablename__ = "email_queue"
    id = Column(String, primary_key=True)
    participant_id = Column(
        String, ForeignKey("participants.id"), nullable=False
    )
    email = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    html_content = Column(Text, nullable=False)
    # pending | sending | sent | failed
    status = Column(String, nullable=False, default=Q_PENDING)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error_message = Column(Text, nullable=True)
    scheduled_at = Column(Float, nullable=False)
    sent_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_email_queue_status_scheduled", "status", "scheduled_at"),
    )
