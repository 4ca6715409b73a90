"""InstallStep: one row of a site's step ledger."""

import enum
from datetime import datetime

from sqlalchemy import (
    DateTime, Enum as SAEnum, ForeignKey, Integer, JSON, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from provisioner.database import Base


class StepType(str, enum.Enum):
    PRE_INSTALLATION = "PRE_INSTALLATION"
    CPANEL_ENTRY = "CPANEL_ENTRY"
    CLOUDFLARE_ENTRY = "CLOUDFLARE_ENTRY"
    DIRECTORY_SETUP = "DIRECTORY_SETUP"
    DB_CREATION = "DB_CREATION"


class StepStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# Creation order of the provisioning steps; the ledger is read back by id.
PROVISIONING_STEPS = (
    StepType.DB_CREATION,
    StepType.CPANEL_ENTRY,
    StepType.CLOUDFLARE_ENTRY,
    StepType.DIRECTORY_SETUP,
)


class InstallStep(Base):
    __tablename__ = "install_steps"
    __table_args__ = (
        UniqueConstraint("site_id", "step_type", name="uq_install_steps_site_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_type: Mapped[StepType] = mapped_column(SAEnum(StepType), nullable=False)
    status: Mapped[StepStatus] = mapped_column(
        SAEnum(StepStatus), default=StepStatus.PENDING, nullable=False
    )
    step_data: Mapped[dict | None] = mapped_column(JSON, default=None)
    error_msg: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    site = relationship("Site", back_populates="steps")
    runs = relationship(
        "StepRun",
        back_populates="step",
        cascade="all, delete-orphan",
        order_by="StepRun.attempt",
        lazy="selectin",
    )
