"""
Import run tracking models.

This module defines SQLAlchemy models for tracking roster import runs,
including their progress, terminal status, and result metadata.
"""

from enum import Enum
from sqlalchemy import (
    Column, Integer, String, TIMESTAMP, ForeignKey, Numeric, Text,
    CheckConstraint, Index, func, text
)
from sqlalchemy.orm import relationship

from backend.models.schema import Base, JSONType


class ImportStatus(str, Enum):
    """Externally visible import status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ImportRun(Base):
    """
    The progress record of one import run, keyed by import id.

    Created when a run is launched, mutated at each phase boundary and
    finalized as completed or failed.
    """

    __tablename__ = 'import_runs'
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='import_runs_status_check'
        ),
        CheckConstraint(
            'progress >= 0 AND progress <= 100',
            name='import_runs_progress_check'
        ),
        Index('idx_import_runs_status', 'status'),
        Index('idx_import_runs_created_at', 'created_at'),
        {'comment': 'Tracks roster import runs'}
    )

    import_id = Column(
        String(255),
        primary_key=True,
        nullable=False,
        comment='Import identifier (Celery task UUID for background runs)'
    )
    source = Column(
        String(512),
        nullable=True,
        comment='Input file name'
    )
    status = Column(
        String(20),
        nullable=False,
        server_default='pending'
    )
    phase = Column(
        String(50),
        nullable=True,
        comment='Current orchestrator phase'
    )
    progress = Column(
        Integer,
        nullable=False,
        server_default='0',
        comment='Progress percentage (0 to 100)'
    )
    message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    import_metadata = Column(
        'metadata',
        JSONType,
        nullable=True,
        comment='Per-sheet and per-phase counts on completion'
    )
    error_details = Column(JSONType, nullable=True)
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    started_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        onupdate=func.now(),
        nullable=False
    )

    history = relationship(
        'ImportProgress',
        back_populates='run',
        cascade='all, delete-orphan',
        order_by='ImportProgress.id'
    )

    def __repr__(self):
        return f"<ImportRun(import_id='{self.import_id}', status='{self.status}', progress={self.progress})>"

    def to_dict(self) -> dict:
        """Convert run to dictionary representation."""
        return {
            'import_id': self.import_id,
            'source': self.source,
            'status': self.status,
            'phase': self.phase,
            'progress': self.progress,
            'message': self.message,
            'metadata': self.import_metadata,
            'error_details': self.error_details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }

    def is_complete(self) -> bool:
        """Check if the run reached a terminal status."""
        return self.status in [ImportStatus.COMPLETED, ImportStatus.FAILED]


class ImportProgress(Base):
    """A single progress update of an import run."""

    __tablename__ = 'import_progress'
    __table_args__ = (
        Index('idx_import_progress_import_id', 'import_id'),
        {'comment': 'Progress history for import runs'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    import_id = Column(
        String(255),
        ForeignKey('import_runs.import_id', ondelete='CASCADE'),
        nullable=False
    )
    stage = Column(
        String(50),
        nullable=False,
        comment='Phase name (e.g., clearing, loading_stores)'
    )
    percent = Column(
        Numeric(5, 2),
        nullable=False
    )
    message = Column(Text, nullable=True)
    timestamp = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    run = relationship('ImportRun', back_populates='history')

    def __repr__(self):
        return f"<ImportProgress(import_id='{self.import_id}', stage='{self.stage}', percent={self.percent})>"
