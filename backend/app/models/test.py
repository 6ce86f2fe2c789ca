"""A/B test model."""
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.database import Base


class TestStatus(str, enum.Enum):
    """Test lifecycle status."""
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    WINNER_APPLIED = "winner_applied"


class ABTest(Base):
    """Video A/B test configuration, including autonomous optimization thresholds."""

    __tablename__ = "tests"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    product_name = Column(String(255), nullable=False)
    target_population = Column(Integer, nullable=False)
    status = Column(
        SQLEnum(TestStatus, values_callable=lambda e: [m.value for m in e]),
        default=TestStatus.DRAFT,
        nullable=False
    )
    start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_time = Column(DateTime, nullable=False)

    # Autonomous optimization
    autonomous_optimization = Column(Boolean, default=False, nullable=False)
    min_sample_size = Column(Integer, default=100, nullable=False)  # views per variant
    kill_switch_threshold = Column(Float, default=30.0, nullable=False)  # % below average
    auto_win_threshold = Column(Float, default=50.0, nullable=False)  # % uplift vs control

    # Plain column (no FK) to avoid a tests <-> variants cycle
    winner_variant_id = Column(Integer, nullable=True)
    is_mock = Column(Boolean, default=False, nullable=False)  # demo data flag
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    variants = relationship(
        "Variant",
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="Variant.sequence"
    )

    @property
    def control(self):
        """The control variant: first by creation sequence."""
        return self.variants[0] if self.variants else None

    def __repr__(self):
        return f"<ABTest {self.id} status={self.status.value}>"
