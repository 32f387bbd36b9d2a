"""SQLAlchemy ORM models for cards, businesses, upload batches and ledger transactions"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# Amounts are stored as exact decimals and read back as float
Money = Numeric(12, 2, asdecimal=False)


class Card(Base):
    """Credit card registered to an owner"""

    __tablename__ = "cards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    last4_digits = Column(String(4), nullable=False, index=True)
    nickname = Column(Text, nullable=True)
    bank_or_company = Column(Text, nullable=True)
    file_format_handler = Column(String(20), nullable=True)  # max | visa-cal | isracard
    owner = Column(Text, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Business(Base):
    """Merchant, deduplicated by normalized name; merged businesses point at their target"""

    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    normalized_name = Column(Text, nullable=False, unique=True)
    display_name = Column(Text, nullable=False)
    merged_to_id = Column(Integer, ForeignKey("businesses.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class UploadBatch(Base):
    """One upload request holding one or more statement files"""

    __tablename__ = "upload_batches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")  # pending | processing | completed | failed
    total_transactions = Column(Integer, nullable=True)
    new_transactions = Column(Integer, nullable=True)
    updated_transactions = Column(Integer, nullable=True)
    duplicate_transactions = Column(Integer, nullable=True)
    total_amount_ils = Column(Money, nullable=True)
    error_message = Column(Text, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    processing_completed_at = Column(DateTime(timezone=True), nullable=True)

    files = relationship(
        "UploadedFile",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="UploadedFile.id",
    )


class UploadedFile(Base):
    """Statement file stored for a batch"""

    __tablename__ = "uploaded_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    upload_batch_id = Column(Integer, ForeignKey("upload_batches.id", ondelete="CASCADE"), nullable=False)
    card_id = Column(Integer, ForeignKey("cards.id"), nullable=True)
    filename = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # pending | processing | completed | failed
    transactions_found = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    validation_warning = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    batch = relationship("UploadBatch", back_populates="files")
    card = relationship("Card")


class ExchangeRate(Base):
    """Daily conversion rate to ILS"""

    __tablename__ = "exchange_rates"
    __table_args__ = (PrimaryKeyConstraint("date", "currency"),)

    date = Column(Date, nullable=False)
    currency = Column(String(3), nullable=False)
    rate_to_ils = Column(Numeric(10, 6, asdecimal=False), nullable=False)
    source = Column(String(10), nullable=False, default="api")  # api | manual
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Transaction(Base):
    """Ledger row: an observed charge, or a projected installment placeholder"""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_hash = Column(String(64), nullable=False, unique=True)
    transaction_type = Column(String(20), nullable=False, default="one_time")
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    card_id = Column(Integer, ForeignKey("cards.id"), nullable=False, index=True)
    deal_date = Column(Date, nullable=False)
    bank_charge_date = Column(Date, nullable=True)
    original_amount = Column(Money, nullable=False)
    original_currency = Column(String(3), nullable=False, default="ILS")
    exchange_rate_used = Column(Numeric(10, 6, asdecimal=False), nullable=True)
    charged_amount_ils = Column(Money, nullable=False)
    payment_type = Column(String(20), nullable=False)  # one_time | installments | subscription
    installment_group_id = Column(String(64), nullable=True, index=True)
    installment_base_group_id = Column(String(64), nullable=True, index=True)
    installment_index = Column(Integer, nullable=True)
    installment_total = Column(Integer, nullable=True)
    is_backfilled = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="completed")  # completed | projected | cancelled
    projected_charge_date = Column(Date, nullable=True)
    actual_charge_date = Column(Date, nullable=True)
    is_refund = Column(Boolean, nullable=False, default=False)
    is_subscription = Column(Boolean, nullable=False, default=False)
    bank_category = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    source_file = Column(Text, nullable=True)
    upload_batch_id = Column(Integer, ForeignKey("upload_batches.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    business = relationship("Business")
    card = relationship("Card")
