"""
SQLAlchemy ORM models for the document store.

Every collection shares one table; a document is addressed by
(collection, doc_id) and its body is stored as JSON.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from .database import Base

class Document(Base):
    """
    A JSON document belonging to a named collection.

    Attributes:
        pk (int): Surrogate primary key
        collection (str): Collection name (e.g. "orders", "products")
        doc_id (str): Document id, unique within its collection
        data (dict): Document body, without the id
        version (int): Incremented on every write, exposed as the ETag
        created_at (datetime): Timestamp when the document was created
        updated_at (datetime): Timestamp of the last write
    """
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_collection_doc_id"),)

    pk = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String, nullable=False, index=True)
    doc_id = Column(String, nullable=False, index=True)
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        """Document body with its id, as served over HTTP."""
        return {**(self.data or {}), "id": self.doc_id}
