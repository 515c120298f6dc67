import logging
from typing import Optional
from .errors import ConcurrentModificationError
from .models import GenerationContract
from .storage import DocumentStore, Transaction, now_iso

logger = logging.getLogger(__name__)

CONTRACTS_COLLECTION = "generation_contracts"


class ContractStore:
    """Generation contracts keyed by brief id. One contract per brief."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, brief_id: str) -> Optional[GenerationContract]:
        data = self.store.get(CONTRACTS_COLLECTION, brief_id)
        if data is None:
            return None
        return GenerationContract.model_validate(data)

    def save(self, contract: GenerationContract, expected_revision: Optional[int] = None) -> GenerationContract:
        """
        Overwrite the contract for contract.brief_id.

        createdAt is kept from the stored record and revision is bumped, in
        one read-modify-write under the store lock. With expected_revision the
        write only happens if the stored revision still matches (0 means no
        contract yet); otherwise the last writer wins.
        """
        brief_id = contract.brief_id
        with self.store.transaction() as txn:
            current = txn.get(CONTRACTS_COLLECTION, brief_id)
            actual = current.get("revision", 0) if current else 0
            if expected_revision is not None and expected_revision != actual:
                raise ConcurrentModificationError(brief_id, expected_revision, actual)

            now = now_iso()
            saved = contract.model_copy(update={
                "created_at": (current or {}).get("createdAt") or now,
                "updated_at": now,
                "revision": actual + 1,
            })
            txn.set(CONTRACTS_COLLECTION, brief_id, saved.model_dump(mode="json", by_alias=True))
        logger.info(f"Saved contract for brief {brief_id} (status={saved.status}, revision={saved.revision})")
        return saved

    def delete(self, brief_id: str, txn: Optional[Transaction] = None):
        if txn is not None:
            txn.delete(CONTRACTS_COLLECTION, brief_id)
        else:
            self.store.delete(CONTRACTS_COLLECTION, brief_id)
