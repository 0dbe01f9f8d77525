"""
Sync bookkeeping models

SyncCheckpoint records which scopes of a flow are known complete for a
campaign; SyncRunLog keeps an audit row per flow execution.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON, UniqueConstraint
from datetime import datetime

from gsc_sync.models.base import Base


class SyncCheckpoint(Base):
    """Completed scope of a sync flow for one campaign"""
    __tablename__ = "sync_checkpoints"
    __table_args__ = (
        UniqueConstraint("campaign_id", "flow", "scope", name="uq_sync_checkpoint_campaign_flow_scope"),
    )

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, index=True, nullable=False)
    flow = Column(String, index=True, nullable=False)  # daily_incremental, historical_backfill, initial_position, traffic
    scope = Column(String, nullable=False)  # e.g. 2025-07-01..2025-07-31

    # sha256 of the sorted keyword set the scope was verified against
    keywords_digest = Column(String, nullable=True)
    status = Column(String, default="complete", nullable=False)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SyncCheckpoint campaign={self.campaign_id} {self.flow} {self.scope}>"


class SyncRunLog(Base):
    """One execution of one sync flow"""
    __tablename__ = "sync_run_logs"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, index=True, nullable=False)
    flow = Column(String, index=True, nullable=False)  # daily_incremental, historical_backfill, initial_position, traffic
    status = Column(String, index=True, nullable=False)  # success, partial, failed, skipped, cancelled

    windows_processed = Column(Integer, default=0)
    windows_skipped = Column(Integer, default=0)
    windows_failed = Column(Integer, default=0)
    records_upserted = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    def __repr__(self):
        return f"<SyncRunLog campaign={self.campaign_id} {self.flow} {self.status}>"
