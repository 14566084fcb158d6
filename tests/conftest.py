import base64
import io
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import pytest
from PIL import Image
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from lodging_images.database import create_db_and_tables
from lodging_images.application.ports.entity_repo import EntityRef
from lodging_images.application.ports.image_repo import ImageRecord
from lodging_images.application.services.resilience_service import DiskSpaceStatus
from lodging_images.exceptions import NotFoundError


def make_image_bytes(fmt: str = "JPEG", size=(400, 300), color=(200, 30, 30), mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, fmt)
    return buffer.getvalue()


def make_data_url(data: bytes, subtype: str = "jpeg") -> str:
    return f"data:image/{subtype};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG", (400, 300))


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG", (64, 48), color=(10, 20, 30, 128), mode="RGBA")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(bind=engine)
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


class FakeImageRepo:
    def __init__(self):
        self.rows: Dict[str, ImageRecord] = {}

    def create(self, record: ImageRecord) -> ImageRecord:
        self.rows[record.id] = record
        return record

    def get_by_id(self, image_id: str) -> Optional[ImageRecord]:
        return self.rows.get(image_id)

    def get_by_url(self, url: str) -> Optional[ImageRecord]:
        for r in self.rows.values():
            if url in (r.primary_url, r.fallback_url):
                return r
        return None

    def list_by_establishment(self, establishment_id: str) -> List[ImageRecord]:
        return [r for r in self.rows.values() if r.establishment_id == establishment_id]

    def list_by_uploader(self, uploaded_by: str) -> List[ImageRecord]:
        return [r for r in self.rows.values() if r.uploaded_by == uploaded_by]

    def update(self, image_id: str, changes) -> Optional[ImageRecord]:
        r = self.rows.get(image_id)
        if not r:
            return None
        for key, value in changes.items():
            if not hasattr(r, key) or key in ("id", "establishment_id", "created_at"):
                raise ValueError(f"Field {key} cannot be updated")
            setattr(r, key, value)
        return r

    def delete(self, image_id: str) -> bool:
        return self.rows.pop(image_id, None) is not None


class FakeEntityRepo:
    def __init__(self, entities: Optional[List[EntityRef]] = None):
        self.entities: Dict[tuple, EntityRef] = {}
        self.writes = 0
        for e in entities or []:
            self.add(e)

    def add(self, entity: EntityRef) -> EntityRef:
        self.entities[(entity.entity_type, entity.entity_id)] = entity
        return entity

    def get_entity(self, entity_type: str, entity_id: str) -> Optional[EntityRef]:
        e = self.entities.get((entity_type, entity_id))
        if not e:
            return None
        return EntityRef(e.entity_type, e.entity_id, e.establishment_id, list(e.images))

    def get_images(self, entity_type: str, entity_id: str) -> Optional[List[str]]:
        e = self.get_entity(entity_type, entity_id)
        return e.images if e else None

    def update_images(self, entity_type: str, entity_id: str, mutate: Callable[[List[str]], List[str]]) -> List[str]:
        e = self.entities.get((entity_type, entity_id))
        if not e:
            raise NotFoundError(f"{entity_type} {entity_id} not found")
        e.images = list(mutate(list(e.images)))
        self.writes += 1
        return list(e.images)

    def list_entities(self, entity_type: Optional[str] = None) -> List[EntityRef]:
        return [
            EntityRef(e.entity_type, e.entity_id, e.establishment_id, list(e.images))
            for e in self.entities.values()
            if entity_type is None or e.entity_type == entity_type
        ]


class FakeDiskGuard:
    """Always has room unless told otherwise."""

    def __init__(self, error=None, warning=None):
        self.error = error
        self.warning = warning
        self.requests: List[int] = []

    def ensure_capacity(self, required_bytes: int = 0):
        self.requests.append(required_bytes)
        if self.error:
            raise self.error
        return DiskSpaceStatus(has_space=True, warning=self.warning)


FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
