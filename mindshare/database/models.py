from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Text,
    ForeignKey, Float, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class Snapshot(Base):
    __tablename__ = 'mindshare_snapshots'

    # Autoincrement id doubles as write order for tie-breaking
    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_id = Column(String(36), nullable=False, unique=True)
    collection_date = Column(Date, nullable=False)
    window_period = Column(String(8), nullable=False)
    is_live = Column(Boolean, nullable=False)

    # Summary metrics
    total_participants = Column(Integer, nullable=False, default=0)
    total_activities = Column(Integer, nullable=False, default=0)
    top_impressions = Column(Integer, nullable=False, default=0)
    top_engagements = Column(Integer, nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    entries = relationship("SnapshotEntry", back_populates="snapshot", order_by="SnapshotEntry.rank")
    sync_logs = relationship("SyncLog", back_populates="snapshot")

    __table_args__ = (
        Index('idx_snapshots_date', 'collection_date'),
        Index('idx_snapshots_window', 'window_period', 'collection_date'),
    )

    def __repr__(self):
        return f"<Snapshot(id='{self.snapshot_id}', date={self.collection_date}, window='{self.window_period}')>"

class SnapshotEntry(Base):
    __tablename__ = 'mindshare_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_id = Column(String(36), ForeignKey('mindshare_snapshots.snapshot_id'), nullable=False)
    rank = Column(Integer, nullable=False)
    username = Column(String(100), nullable=False)
    mindshare = Column(Float, nullable=False)
    activity_count = Column(Integer, nullable=False)
    impressions = Column(Integer, nullable=False)
    engagements = Column(Integer, nullable=False)
    profile_url = Column(String(255))

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    snapshot = relationship("Snapshot", back_populates="entries")

    __table_args__ = (
        CheckConstraint('rank > 0', name='positive_rank_check'),
        CheckConstraint('mindshare >= 0 AND mindshare <= 1', name='mindshare_range_check'),
        UniqueConstraint('snapshot_id', 'rank', name='unique_rank_per_snapshot'),
        Index('idx_entries_snapshot', 'snapshot_id'),
        Index('idx_entries_rank', 'rank'),
    )

    def __repr__(self):
        return f"<SnapshotEntry(snapshot='{self.snapshot_id}', rank={self.rank}, username='{self.username}')>"

class SyncLog(Base):
    __tablename__ = 'mindshare_sync_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_id = Column(String(36), ForeignKey('mindshare_snapshots.snapshot_id'), nullable=False)
    sync_status = Column(String(20), nullable=False)
    items_synced = Column(Integer, default=0)
    error_message = Column(Text)
    sync_date = Column(DateTime, default=func.now())

    # Relationships
    snapshot = relationship("Snapshot", back_populates="sync_logs")

    def __repr__(self):
        return f"<SyncLog(snapshot='{self.snapshot_id}', status='{self.sync_status}')>"
