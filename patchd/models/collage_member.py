import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from patchd.models.base import Base


class CollageMember(Base):
    __tablename__ = "collage_members"

    collage_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("collages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("collage_id", "user_id", name="uq_collage_members_pair"),
    )
