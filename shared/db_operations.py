"""Database operations for the dead-letter log."""

from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from shared.db_models import Base, DeadLetter


class DeadLetterOperations:
    """Records sync actions that were dropped after exhausting retries."""
    
    def __init__(self, database_url: str):
        """Initialize database connection."""
        self.database_url = database_url
        self.engine = create_engine(self.database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )
    
    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)
    
    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()
    
    def add_dead_letter(
        self,
        note_id: str,
        error_type: str,
        error_message: str,
        notion_page_id: Optional[str] = None
    ) -> DeadLetter:
        """
        Record a dropped sync action.
        
        Args:
            note_id: The Simplenote note ID
            error_type: Class name of the final error
            error_message: Final error message
            notion_page_id: Mapped Notion page ID at the time of failure, if any
            
        Returns:
            The created DeadLetter record
        """
        with self.get_session() as session:
            record = DeadLetter(
                note_id=note_id,
                notion_page_id=notion_page_id,
                error_type=error_type,
                error_message=error_message,
                failed_at=datetime.now(timezone.utc)
            )
            session.add(record)
            session.commit()
            return record
    
    def get_dead_letters(
        self,
        note_id: Optional[str] = None,
        limit: int = 100
    ) -> List[DeadLetter]:
        """
        Get dead-letter records, newest first.
        
        Args:
            note_id: Optional note ID filter
            limit: Maximum number of records to return
            
        Returns:
            List of DeadLetter records
        """
        with self.get_session() as session:
            stmt = select(DeadLetter)
            if note_id:
                stmt = stmt.where(DeadLetter.note_id == note_id)
            stmt = stmt.order_by(DeadLetter.failed_at.desc(), DeadLetter.id.desc()).limit(limit)
            result = session.execute(stmt)
            return list(result.scalars().all())
    
    def delete_dead_letters(self, note_id: str) -> int:
        """
        Delete dead-letter records for a note, e.g. after it synced again.
        
        Args:
            note_id: The Simplenote note ID
            
        Returns:
            Number of records deleted
        """
        with self.get_session() as session:
            result = session.query(DeadLetter).filter(
                DeadLetter.note_id == note_id
            ).delete()
            session.commit()
            return result
