"""SQLAlchemy database models for the Simplenote to Notion sync dead-letter log."""

from sqlalchemy import Column, String, Integer, Text, DateTime, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


class DeadLetter(Base):
    """Model for dead_letters table: sync actions dropped after exhausting retries."""
    __tablename__ = 'dead_letters'
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(String(255), nullable=False)
    notion_page_id = Column(String(255), nullable=True)
    error_type = Column(String(100), nullable=False)
    error_message = Column(Text, nullable=False)
    failed_at = Column(DateTime, nullable=False, server_default=func.now())
    
    __table_args__ = (
        Index('idx_dead_letters_note_id', 'note_id'),
    )
