"""SQLModel database models for rawscan."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class ImageDatasetBase(SQLModel):
    rmr: str = Field(index=True)
    series_description: str
    path: str = Field(index=True)
    timestamp: datetime
    glob: Optional[str] = None
    rep_time: Optional[float] = None
    bold_reps: Optional[int] = None
    slices_per_volume: Optional[int] = None
    scanned_file: str
    visit_id: Optional[int] = Field(default=None, index=True)
    thumbnail: Optional[str] = None


class ImageDataset(ImageDatasetBase, table=True):
    __tablename__ = "image_datasets"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
