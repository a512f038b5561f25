from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from crawlsync.database import Base


class SyncSource(Base):
    """One configured source: its validated options and latest checkpoint."""

    __tablename__ = "sync_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True
    )  # reddit, hackernews, github, trustpilot, ios_appstore
    options: Mapped[dict] = mapped_column(JSON, nullable=False)
    checkpoint: Mapped[dict | None] = mapped_column(JSON)
    checkpoint_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
