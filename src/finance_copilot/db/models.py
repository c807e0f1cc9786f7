from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from finance_copilot.db.database import Base


class TransactionRecord(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    description = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    category = Column(String, nullable=True)
    account = Column(String, nullable=True)
    transaction_type = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category"),
    )


class CategoryRuleRecord(Base):
    __tablename__ = "category_rules"

    id = Column(Integer, primary_key=True, index=True)
    pattern = Column(String, nullable=False, unique=True)
    category = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class VectorDocumentRecord(Base):
    __tablename__ = "vector_documents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    doc_type = Column(String, nullable=False)
    source_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    embedding = Column(LargeBinary, nullable=False)  # float32 little-endian
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "doc_type", "source_id", name="uq_vector_documents_key"),
        Index("ix_vector_documents_user_type", "user_id", "doc_type"),
    )
