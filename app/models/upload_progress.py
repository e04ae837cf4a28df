# app/models/upload_progress.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class UploadProgressRecord(Base):
    """One apply-run checkpoint, addressed by `upload_progress_<file hash>`."""
    __tablename__ = "upload_progress"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    file_hash: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    total_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # UploadProgress as JSON
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
