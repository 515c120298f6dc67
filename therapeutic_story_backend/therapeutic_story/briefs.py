import logging
from typing import Any, Dict, List, Optional, Tuple
from .compiler import BRIEFS_COLLECTION, ContractCompiler
from .contract_store import ContractStore
from .errors import BriefNotFoundError
from .models import GenerationContract
from .storage import DocumentStore, now_iso

logger = logging.getLogger(__name__)

_SERVER_FIELDS = ("id", "createdAt", "updatedAt")


class BriefService:
    """
    Story briefs as the specialist submitted them. Briefs are stored raw so a
    recompile always re-runs validation; every create or override compiles
    the brief's contract straight away.
    """

    def __init__(self, store: DocumentStore, compiler: ContractCompiler, contract_store: ContractStore):
        self.store = store
        self.compiler = compiler
        self.contract_store = contract_store

    def create_brief(self, raw: Dict[str, Any], specialist_id: str) -> Tuple[Dict[str, Any], GenerationContract]:
        now = now_iso()
        doc = {k: v for k, v in raw.items() if k not in _SERVER_FIELDS}
        doc.update({"createdBy": specialist_id, "createdAt": now, "updatedAt": now})
        brief_id = self.store.add(BRIEFS_COLLECTION, doc)
        logger.info(f"Created story brief {brief_id} for specialist {specialist_id}")
        contract = self.compiler.build_generation_contract(brief_id, doc)
        return {"id": brief_id, **doc}, contract

    def get_brief(self, brief_id: str) -> Dict[str, Any]:
        doc = self.store.get(BRIEFS_COLLECTION, brief_id)
        if doc is None:
            raise BriefNotFoundError(brief_id)
        return {"id": brief_id, **doc}

    def list_briefs(self, created_by: Optional[str] = None) -> List[Dict[str, Any]]:
        briefs = self.store.list(BRIEFS_COLLECTION)
        if created_by:
            briefs = [b for b in briefs if b.get("createdBy") == created_by]
        # Newest first
        return sorted(briefs, key=lambda b: b.get("createdAt") or "", reverse=True)

    def delete_brief(self, brief_id: str):
        with self.store.transaction() as txn:
            if txn.get(BRIEFS_COLLECTION, brief_id) is None:
                raise BriefNotFoundError(brief_id)
            txn.delete(BRIEFS_COLLECTION, brief_id)
            self.contract_store.delete(brief_id, txn=txn)
        logger.info(f"Deleted story brief {brief_id} and its contract")

    def apply_override(self, brief_id: str, coping_tool_id: str, reason: Optional[str] = None) -> GenerationContract:
        with self.store.transaction() as txn:
            doc = txn.get(BRIEFS_COLLECTION, brief_id)
            if doc is None:
                raise BriefNotFoundError(brief_id)
            overrides = dict(doc.get("overrides") or {})
            overrides["copingToolId"] = coping_tool_id
            if reason:
                overrides["reason"] = reason
            doc = txn.update(BRIEFS_COLLECTION, brief_id, {"overrides": overrides, "updatedAt": now_iso()})
        logger.info(f"Applied coping tool override {coping_tool_id} to brief {brief_id}")
        return self.compiler.build_generation_contract(brief_id, doc)
