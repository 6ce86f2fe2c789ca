"""Activity log model."""
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, JSON, Enum as SQLEnum
from datetime import datetime
import enum

from app.database import Base


class ActivityAction(str, enum.Enum):
    """Kinds of audited optimization actions."""
    DISABLED_VARIANT = "disabled_variant"
    PROMOTED_WINNER = "promoted_winner"
    EVALUATION = "evaluation"


class ActivityLogEntry(Base):
    """Append-only audit record of an autonomous or manual action."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id", ondelete="SET NULL"), nullable=True)
    action = Column(
        SQLEnum(ActivityAction, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    message = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, default=dict)  # decision inputs, e.g. {"uplift": 60.0}
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ActivityLogEntry {self.id} action={self.action.value}>"
