from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.db.types import UTCDateTime


class ActivationCode(Base):
    __tablename__ = "activation_codes"
    __table_args__ = (
        CheckConstraint(
            "(used AND bound_device IS NOT NULL AND activated_at IS NOT NULL)"
            " OR (NOT used AND bound_device IS NULL AND activated_at IS NULL)",
            name="ck_activation_codes_binding_consistent",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bound_device: Mapped[str | None] = mapped_column(Text)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


Index("uq_activation_codes_code", ActivationCode.code, unique=True)
Index("ix_activation_codes_used", ActivationCode.used)
Index("ix_activation_codes_bound_device", ActivationCode.bound_device)
Index("ix_activation_codes_created_at", ActivationCode.created_at)
