from dataclasses import dataclass, field
from typing import Callable, List, Optional

ESTABLISHMENT = "establishment"
ACCOMMODATION = "accommodation"
ENTITY_TYPES = (ESTABLISHMENT, ACCOMMODATION)


@dataclass
class EntityRef:
    entity_type: str
    entity_id: str
    establishment_id: str
    images: List[str] = field(default_factory=list)


class EntityImagesRepository:
    """Reference arrays owned by establishments and accommodations."""

    def get_entity(self, entity_type: str, entity_id: str) -> Optional[EntityRef]:
        ...

    def get_images(self, entity_type: str, entity_id: str) -> Optional[List[str]]:
        ...

    def update_images(self, entity_type: str, entity_id: str, mutate: Callable[[List[str]], List[str]]) -> List[str]:
        """Atomic read-modify-write of one entity's images. Raises NotFoundError for a missing entity."""
        ...

    def list_entities(self, entity_type: Optional[str] = None) -> List[EntityRef]:
        ...
