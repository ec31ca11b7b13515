"""
SQLAlchemy ORM model for the SQL document store.

All documents share one table; the JSON body holds the document and
parent holds its collection path for listing.
"""

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class StoredDocument(Base):
    """
    One document, addressed by its full path.
    """
    __tablename__ = 'documents'

    path = Column(String(512), primary_key=True, nullable=False)
    parent = Column(String(512), nullable=False, index=True)  # Collection path
    body = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<StoredDocument({self.path})>"
