from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, BigInteger, DateTime, Index, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
from .db import Base
from .utils import utc_now


class Document(Base):
    """One record of a logical collection (employees, shifts, swapRequests, activityLogs)."""

    __tablename__ = "documents"

    # insertion order, used as a stable tie-breaker when sorting
    seq: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(64))
    doc_id: Mapped[str] = mapped_column(String(64))
    data: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),
        Index("ix_documents_collection", "collection"),
        Index("ix_documents_data_gin", "data", postgresql_using="gin"),
    )


class DocumentChange(Base):
    """Append-only feed of committed writes, polled by every process with live views."""

    __tablename__ = "document_changes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(64))
    doc_id: Mapped[str] = mapped_column(String(64))
    op: Mapped[str] = mapped_column(String(16))
    # store instance that made the write; it already notified its own subscribers
    origin: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_document_changes_created_at", "created_at"),)
