import logging
from typing import Dict, List, Optional
from .models import ReferenceItem
from .storage import DocumentStore

logger = logging.getLogger(__name__)

CATEGORIES = ("topics", "situations", "emotionalGoals", "exclusions")


def collection_for(category: str) -> str:
    if category not in CATEGORIES:
        raise ValueError(f"Unknown reference data category: {category}")
    return f"reference_{category}"


class ReferenceDataService:
    """Lookups of enumerated keys (topics, situations, goals, exclusions) in the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get_item(self, category: str, key: str) -> Optional[ReferenceItem]:
        collection = collection_for(category)
        try:
            data = self.store.get(collection, key)
        except ValueError:
            # Not a storable key, so it cannot exist
            logger.warning(f"Rejected malformed {category} key: {key!r}")
            return None
        if data is None:
            return None
        return ReferenceItem.model_validate({**data, "key": key})

    def get_situation(self, key: str) -> Optional[ReferenceItem]:
        return self.get_item("situations", key)

    def list_active(self, category: str) -> List[ReferenceItem]:
        items = []
        for doc in self.store.list(collection_for(category)):
            item = ReferenceItem.model_validate({**doc, "key": doc["id"]})
            if item.active:
                items.append(item)
        return sorted(items, key=lambda i: (i.order, i.key))

    def list_situations_by_topic(self, topic_key: str) -> List[ReferenceItem]:
        return [s for s in self.list_active("situations") if s.topic_key == topic_key]

    def load_all(self) -> Dict[str, List[ReferenceItem]]:
        return {category: self.list_active(category) for category in CATEGORIES}
