import logging
from .seed import KNOWLEDGE_COLLECTIONS
from .storage import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_STRUCTURE = "Use standard therapeutic story structure."


class KnowledgeService:
    """Keyed lookup of the fixed writing knowledge for a topic and age group."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def _content(self, section: str, key: str, fallback: str = "") -> str:
        doc = self.store.get(KNOWLEDGE_COLLECTIONS[section], key)
        if not doc:
            return fallback
        return doc.get("content") or fallback

    def build_context(self, topic_key: str, age_group: str) -> str:
        guidelines = self._content("guidelines", f"{topic_key}__{age_group}")
        age_language = self._content("ageLanguage", age_group)
        structure = self._content("structures", topic_key, DEFAULT_STRUCTURE)
        avoid = self._content("avoid", topic_key)
        if not guidelines:
            logger.info(f"No therapeutic guidelines for {topic_key}/{age_group}")

        return (
            "==== THERAPEUTIC GUIDELINES ====\n"
            f"{guidelines}\n\n"
            "==== AGE LANGUAGE RULES ====\n"
            f"{age_language}\n\n"
            "==== STORY STRUCTURE ====\n"
            f"{structure}\n\n"
            "==== WORDS/PHRASES TO AVOID ====\n"
            f"{avoid}\n"
        )
