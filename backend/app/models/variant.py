"""Variant model."""
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.database import Base


class VariantStatus(str, enum.Enum):
    """Variant status enum."""
    ACTIVE = "active"
    DISABLED = "disabled"
    WINNER = "winner"


class Variant(Base):
    """One video creative competing in a test."""

    __tablename__ = "variants"

    id = Column(Integer, primary_key=True)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # 0 = control
    name = Column(String(255), nullable=False)
    video_url = Column(Text, nullable=False)
    thumbnail_url = Column(Text, nullable=False)
    description = Column(Text)

    variant_status = Column(
        SQLEnum(VariantStatus, values_callable=lambda e: [m.value for m in e]),
        default=VariantStatus.ACTIVE,
        nullable=False
    )
    status_reason = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    test = relationship("ABTest", back_populates="variants")

    def __repr__(self):
        return f"<Variant {self.id} status={self.variant_status.value}>"
