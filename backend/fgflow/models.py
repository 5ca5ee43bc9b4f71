"""SQLAlchemy models for the ledger document table."""
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.sql import func

from .database import Base


class LedgerDocument(Base):
    """
    One JSON document per ledger path (e.g. ``dsreqs/-Nabc``).

    ``parent`` holds the path without its last segment so that a collection
    (``dsreqs``) can be listed with a single indexed lookup. ``version`` grows
    by one on every write and backs compare-and-set updates.
    """
    __tablename__ = "ledger_documents"

    path = Column(String(512), primary_key=True)
    parent = Column(String(512), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    data = Column(JSON, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_ledger_documents_parent_key", "parent", "key"),
    )
