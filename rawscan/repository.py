"""Data Access Layer for rawscan.

Persists :class:`~rawscan.dataset.DatasetRecord` values through SQLModel. All
statements are parameterised; nothing here builds SQL text.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from sqlmodel import Session, col, select

from .dataset import DatasetRecord
from .models import ImageDataset


def _to_naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


class Repository:
    """Reads and writes ``image_datasets`` rows. Callers control commits."""

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    def _apply(self, row: ImageDataset, record: DatasetRecord) -> None:
        row.rmr = record.rmr
        row.series_description = record.series_description
        row.path = record.path
        row.timestamp = _to_naive_utc(record.timestamp)
        row.glob = record.glob
        row.rep_time = record.rep_time
        row.bold_reps = record.bold_reps
        row.slices_per_volume = record.slices_per_volume
        row.scanned_file = record.scanned_file
        if record.thumbnail is not None:
            row.thumbnail = record.thumbnail

    def insert_dataset(self, record: DatasetRecord) -> ImageDataset:
        now = datetime.now(timezone.utc)
        row = ImageDataset(
            rmr=record.rmr,
            series_description=record.series_description,
            path=record.path,
            timestamp=_to_naive_utc(record.timestamp),
            glob=record.glob,
            rep_time=record.rep_time,
            bold_reps=record.bold_reps,
            slices_per_volume=record.slices_per_volume,
            scanned_file=record.scanned_file,
            visit_id=record.visit_id,
            thumbnail=record.thumbnail,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        self.session.flush()
        self.session.refresh(row)
        return row

    def update_dataset(self, dataset_id: int, record: DatasetRecord) -> Optional[ImageDataset]:
        """Overwrite a row's scanned columns. ``visit_id`` and ``created_at`` are kept."""
        row = self.session.get(ImageDataset, dataset_id)
        if row is None:
            return None
        self._apply(row, record)
        row.updated_at = datetime.now(timezone.utc)
        self.session.add(row)
        self.session.flush()
        self.session.refresh(row)
        return row

    def find_dataset(self, rmr: str, path: str, timestamp: datetime) -> Optional[ImageDataset]:
        """Find the row for a dataset by rmr, directory and timestamp (to the second)."""
        start = _to_naive_utc(timestamp).replace(microsecond=0)
        statement = (
            select(ImageDataset)
            .where(ImageDataset.rmr == rmr)
            .where(ImageDataset.path == path)
            .where(ImageDataset.timestamp >= start)
            .where(ImageDataset.timestamp < start + timedelta(seconds=1))
        )
        return self.session.exec(statement).first()

    def save_dataset(self, record: DatasetRecord) -> Tuple[ImageDataset, bool]:
        """Insert or update ``record``. Returns ``(row, created)``."""
        existing = self.find_dataset(record.rmr, record.path, record.timestamp)
        if existing is not None:
            return self.update_dataset(existing.id, record), False
        return self.insert_dataset(record), True

    def get_dataset_by_id(self, dataset_id: int) -> Optional[ImageDataset]:
        return self.session.get(ImageDataset, dataset_id)

    def get_all_datasets(self) -> List[ImageDataset]:
        return self.session.exec(select(ImageDataset)).all()

    def get_datasets_under(self, base_path: Path) -> List[ImageDataset]:
        """Datasets whose directory is ``base_path`` or below it."""
        base = str(base_path).rstrip("/")
        statement = select(ImageDataset).where(
            (ImageDataset.path == base) | (col(ImageDataset.path).like(f"{base}/%"))
        )
        return self.session.exec(statement).all()
