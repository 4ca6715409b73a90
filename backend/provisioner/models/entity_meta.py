"""Generic key/value metadata attached to projects and sites.

Project rows hold provider settings (CPANEL_*, CLOUDFLARE_*, INSTALLER_*).
Site rows hold the admin credential blob written when an installation
completes.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from provisioner.database import Base

REL_PROJECT = "project"
REL_SITE = "site"


class EntityMeta(Base):
    __tablename__ = "entity_meta"
    __table_args__ = (
        UniqueConstraint("rel_id", "rel_type", "name", name="uq_entity_meta_rel_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rel_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    rel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
