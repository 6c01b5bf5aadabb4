from datetime import datetime

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.db.types import UTCDateTime


class AdminSessionRevocation(Base):
    """Sessions of ``identity`` issued at or before ``revoked_at`` are invalid."""

    __tablename__ = "admin_session_revocations"

    identity: Mapped[str] = mapped_column(Text, primary_key=True)
    revoked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
