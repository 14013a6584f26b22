"""
Job database model
Stores job information, payment and status
"""

from sqlalchemy import Column, String, Text, DateTime, Integer, JSON, Index
from sqlalchemy.dialects.postgresql import JSONB

from paywall.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (e.g. SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class JobRecord(Base):
    """
    Row for one paywalled job.

    The payment columns are written once, on insert. ``version`` is the
    optimistic concurrency token checked by every update.
    """
    __tablename__ = "jobs"

    # Primary key
    job_id = Column(String(14), primary_key=True)

    purchaser_id = Column(String(255), nullable=False)
    input_data = Column(JSONType, nullable=True)
    status = Column(String(20), nullable=False)

    # Payment (immutable once set)
    blockchain_identifier = Column(Text, nullable=True)  # can be very long
    pay_by_time = Column(String(64), nullable=True)
    submit_result_time = Column(String(64), nullable=True)
    unlock_time = Column(String(64), nullable=True)
    external_dispute_unlock_time = Column(String(64), nullable=True)
    input_hash = Column(String(64), nullable=True)

    # Results
    result = Column(JSONType, nullable=True)
    error = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Indexes
    __table_args__ = (
        Index('idx_jobs_status', 'status'),
        Index('idx_jobs_blockchain_id', 'blockchain_identifier'),
        Index('idx_jobs_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<JobRecord(job_id='{self.job_id}', status='{self.status}', version={self.version})>"
