"""Analytics snapshot model."""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index

from app.database import Base


class AnalyticsPoint(Base):
    """Cumulative counters for one variant at one point in time."""

    __tablename__ = "analytics"

    id = Column(Integer, primary_key=True)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
    variant_id = Column(Integer, ForeignKey("variants.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime, nullable=False)

    # Totals to date, not per-interval deltas
    views = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)
    interactions = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_analytics_test_timestamp", "test_id", "timestamp"),
    )

    def __repr__(self):
        return f"<AnalyticsPoint variant={self.variant_id} views={self.views} conversions={self.conversions}>"
