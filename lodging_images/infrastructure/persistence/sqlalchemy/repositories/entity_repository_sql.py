from datetime import datetime, timezone
from typing import Callable, List, Optional
from sqlmodel import Session, select

from .....db.models.lodging.establishment import Establishment
from .....db.models.lodging.accommodation import Accommodation
from .....application.ports.entity_repo import (
    ACCOMMODATION,
    ESTABLISHMENT,
    EntityImagesRepository,
    EntityRef,
)
from .....exceptions import InvalidInputError, NotFoundError

_MODELS = {
    ESTABLISHMENT: Establishment,
    ACCOMMODATION: Accommodation,
}


class SqlEntityImagesRepository(EntityImagesRepository):
    def __init__(self, session: Session):
        self.session = session

    def _model(self, entity_type: str):
        model = _MODELS.get(entity_type)
        if model is None:
            raise InvalidInputError(f"Unknown entity type: {entity_type}")
        return model

    def _to_ref(self, entity_type: str, row) -> EntityRef:
        establishment_id = row.id if entity_type == ESTABLISHMENT else row.establishment_id
        return EntityRef(
            entity_type=entity_type,
            entity_id=row.id,
            establishment_id=establishment_id,
            images=list(row.images or []),
        )

    def _load(self, entity_type: str, entity_id: str, for_update: bool = False):
        model = self._model(entity_type)
        statement = select(model).where(model.id == entity_id)
        if for_update:
            # no-op on SQLite, row lock elsewhere
            statement = statement.with_for_update()
        return self.session.exec(statement).first()

    def get_entity(self, entity_type: str, entity_id: str) -> Optional[EntityRef]:
        # always read what is committed, not what the identity map remembers
        self.session.expire_all()
        row = self._load(entity_type, entity_id)
        return self._to_ref(entity_type, row) if row else None

    def get_images(self, entity_type: str, entity_id: str) -> Optional[List[str]]:
        entity = self.get_entity(entity_type, entity_id)
        return entity.images if entity else None

    def update_images(self, entity_type: str, entity_id: str, mutate: Callable[[List[str]], List[str]]) -> List[str]:
        try:
            self.session.expire_all()
            row = self._load(entity_type, entity_id, for_update=True)
            if not row:
                raise NotFoundError(f"{entity_type.capitalize()} {entity_id} not found")
            # assign a new list so the JSON column is flagged dirty
            row.images = list(mutate(list(row.images or [])))
            row.updated_at = datetime.now(timezone.utc)
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(row)
        return list(row.images or [])

    def list_entities(self, entity_type: Optional[str] = None) -> List[EntityRef]:
        self.session.expire_all()
        types = [entity_type] if entity_type else list(_MODELS)
        refs = []
        for t in types:
            model = self._model(t)
            rows = self.session.exec(select(model).order_by(model.created_at, model.id)).all()
            refs.extend(self._to_ref(t, r) for r in rows)
        return refs
