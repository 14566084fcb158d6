# lodging_images/db/models/media/image.py
from typing import Any, Dict
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
import uuid
from sqlalchemy import Column, DateTime, JSON

class ImageRecordRow(SQLModel, table=True):
    __tablename__ = "image_records"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    establishment_id: str = Field(index=True, max_length=100)
    original_filename: str = Field(max_length=255)
    mime_type: str = Field(max_length=50)
    file_size: int
    width: int
    height: int
    primary_url: str = Field(index=True, max_length=255)
    fallback_url: str = Field(index=True, max_length=255)
    primary_format: str = Field(default="webp", max_length=10)
    thumbnails: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    uploaded_by: str = Field(index=True, max_length=100)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
