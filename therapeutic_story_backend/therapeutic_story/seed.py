import os
import sys
import logging
import yaml
from .reference_data import CATEGORIES, collection_for
from .rules import RULES_COLLECTION, SETTINGS_COLLECTION, RULES_SETTINGS_DOC
from .storage import DocumentStore, now_iso

logger = logging.getLogger(__name__)

SEED_DIR = os.path.join(os.path.dirname(__file__), "seed_data")

KNOWLEDGE_COLLECTIONS = {
    "guidelines": "knowledge_guidelines",
    "ageLanguage": "knowledge_age_language",
    "structures": "knowledge_structures",
    "avoid": "knowledge_avoid",
}


def load_yaml(name: str) -> dict:
    with open(os.path.join(SEED_DIR, name), "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def seed_reference_data(store: DocumentStore) -> int:
    data = load_yaml("reference_data.yaml")
    count = 0
    with store.transaction() as txn:
        for category in CATEGORIES:
            for key, item in (data.get(category) or {}).items():
                txn.set(collection_for(category), key, item)
                count += 1
    logger.info(f"Seeded {count} reference data items")
    return count


def seed_clinical_rules(store: DocumentStore, filename: str = "clinical_rules_v1.yaml", make_default: bool = True) -> str:
    bundle = load_yaml(filename)
    version = bundle["version"]
    with store.transaction() as txn:
        txn.set(RULES_COLLECTION, version, {**bundle, "updatedAt": now_iso()})
        if make_default:
            txn.set(SETTINGS_COLLECTION, RULES_SETTINGS_DOC, {"defaultVersion": version})
    logger.info(f"Seeded clinical rules {version}{' (default)' if make_default else ''}")
    return version


def seed_knowledge(store: DocumentStore) -> int:
    data = load_yaml("knowledge.yaml")
    count = 0
    with store.transaction() as txn:
        for section, collection in KNOWLEDGE_COLLECTIONS.items():
            for key, content in (data.get(section) or {}).items():
                txn.set(collection, key, {"content": content.strip()})
                count += 1
    logger.info(f"Seeded {count} knowledge documents")
    return count


def seed_all(store: DocumentStore):
    seed_reference_data(store)
    seed_clinical_rules(store)
    seed_knowledge(store)


if __name__ == "__main__":
    from .settings import DATA_DIR
    data_dir = sys.argv[1] if len(sys.argv) > 1 else DATA_DIR
    seed_all(DocumentStore(data_dir))
    print(f"Seeded document store at {os.path.abspath(data_dir)}")
