"""Site: one installation (or a draft of one) for a client.

A draft is a Site whose domain is still the ``UNNAMED`` sentinel (or
was supplied early) and which carries a PRE_INSTALLATION step holding
the wizard input.  Promotion turns it into a real installation with the
four provisioning steps.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from provisioner.database import Base

UNNAMED_DOMAIN = "UNNAMED"


class SiteStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("clients.id"))
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id"), nullable=False, index=True
    )
    # Not unique at the column level: every draft shares the sentinel.
    domain: Mapped[str | None] = mapped_column(String(255), index=True)
    status: Mapped[SiteStatus] = mapped_column(
        SAEnum(SiteStatus), default=SiteStatus.PENDING, nullable=False
    )
    installer_site_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    client = relationship("Client", lazy="selectin")
    project = relationship("Project", lazy="selectin")
    steps = relationship(
        "InstallStep",
        back_populates="site",
        cascade="all, delete-orphan",
        order_by="InstallStep.id",
        lazy="selectin",
    )
