# lodging_images/db/models/lodging/accommodation.py
from typing import List, Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
import uuid
from sqlalchemy import Column, DateTime, JSON

class Accommodation(SQLModel, table=True):
    __tablename__ = "accommodations"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    establishment_id: str = Field(foreign_key="establishments.id", index=True)
    name: str = Field(max_length=200)
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
