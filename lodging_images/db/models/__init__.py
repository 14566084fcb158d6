# Models package (re-export feature modules for stable imports)
from .lodging.establishment import Establishment
from .lodging.accommodation import Accommodation
from .media.image import ImageRecordRow

__all__ = [
    "Establishment",
    "Accommodation",
    "ImageRecordRow",
]
