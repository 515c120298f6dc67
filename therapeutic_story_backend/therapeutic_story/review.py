"""
Specialist review of generated drafts.

Every state change that touches more than one document (accepting a
suggestion, approving a draft into a template) runs inside a single store
transaction, so a concurrent edit can never be half-applied.
"""
import logging
from typing import List, Optional, Tuple
from .compiler import BRIEFS_COLLECTION
from .contract_store import CONTRACTS_COLLECTION, ContractStore
from .draft_parser import parse_suggestion_output
from .drafts import DRAFTS_COLLECTION
from .errors import ConcurrentModificationError, ConflictError, InvalidRequestError, NotFoundError
from .llm import LLMClient
from .models import CreateSuggestionInput, DraftPage, DraftSuggestion, StoryDraft, StoryTemplate, TemplatePage
from .prompts import build_suggestion_prompt
from .storage import DocumentStore, Transaction, now_iso
from .validator import normalize_key
from . import settings

logger = logging.getLogger(__name__)

SUGGESTIONS_COLLECTION = "draft_suggestions"
TEMPLATES_COLLECTION = "story_templates"

EDITABLE_STATUSES = ("generated", "editing")


def _load_draft(txn: Transaction, draft_id: str) -> StoryDraft:
    data = txn.get(DRAFTS_COLLECTION, draft_id)
    if data is None:
        raise NotFoundError("Story draft", draft_id)
    return StoryDraft.model_validate({**data, "id": draft_id})


def _require_editable(draft: StoryDraft, action: str):
    if draft.status not in EDITABLE_STATUSES:
        raise ConflictError(f'Cannot {action}: draft status is "{draft.status}", expected "generated" or "editing"')


def _check_revision(draft: StoryDraft, expected_revision: Optional[int]):
    if expected_revision is not None and expected_revision != draft.revision_count:
        raise ConcurrentModificationError(draft.id, expected_revision, draft.revision_count)


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude={"id"})


class ReviewService:
    def __init__(self, store: DocumentStore, contract_store: ContractStore, llm: LLMClient, store_raw_output: bool = None):
        self.store = store
        self.contract_store = contract_store
        self.llm = llm
        self.store_raw_output = settings.STORE_RAW_MODEL_OUTPUT if store_raw_output is None else store_raw_output

    def update_pages(self, draft_id: str, pages: List[DraftPage], expected_revision: Optional[int] = None) -> StoryDraft:
        if not pages:
            raise InvalidRequestError("A draft needs at least one page")
        with self.store.transaction() as txn:
            draft = _load_draft(txn, draft_id)
            _require_editable(draft, "edit pages")
            _check_revision(draft, expected_revision)
            draft = draft.model_copy(update={
                "pages": sorted(pages, key=lambda p: p.page_number),
                "revision_count": draft.revision_count + 1,
                "status": "editing",
                "updated_at": now_iso(),
            })
            txn.set(DRAFTS_COLLECTION, draft_id, _dump(draft))
        logger.info(f"Updated pages of draft {draft_id} (revision {draft.revision_count})")
        return draft

    def create_suggestion(self, draft_id: str, specialist_id: str, request: CreateSuggestionInput) -> DraftSuggestion:
        data = self.store.get(DRAFTS_COLLECTION, draft_id)
        if data is None:
            raise NotFoundError("Story draft", draft_id)
        draft = StoryDraft.model_validate({**data, "id": draft_id})
        _require_editable(draft, "suggest edits")

        if request.scope == "page":
            if request.page_number is None:
                raise InvalidRequestError("pageNumber is required for page suggestions")
            if not any(p.page_number == request.page_number for p in draft.pages):
                raise NotFoundError("Page", str(request.page_number))
        if not request.instruction.strip() or not request.original_text.strip():
            raise InvalidRequestError("instruction and originalText must not be empty")

        contract = self.contract_store.get(draft.brief_id)
        if contract is None:
            raise NotFoundError("Generation contract", draft.brief_id)

        prompt = build_suggestion_prompt(
            contract,
            request.original_text,
            request.instruction,
            draft.generation_config.language,
            request.page_number,
        )
        raw = self.llm.generate_text(prompt, json_mode=True)
        parsed = parse_suggestion_output(raw)

        now = now_iso()
        suggestion = DraftSuggestion(
            draft_id=draft_id,
            brief_id=draft.brief_id,
            page_number=request.page_number,
            scope=request.scope,
            instruction=request.instruction.strip(),
            original_text=request.original_text,
            suggested_text=parsed["suggested_text"],
            rationale=parsed["rationale"],
            created_by=specialist_id,
            model_info=self.llm.model_info,
            raw_model_output=raw if self.store_raw_output else None,
            created_at=now,
            updated_at=now,
        )
        suggestion.id = self.store.add(SUGGESTIONS_COLLECTION, _dump(suggestion))
        logger.info(f"Created suggestion {suggestion.id} for draft {draft_id}")
        return suggestion

    def list_suggestions(self, draft_id: str, status: Optional[str] = None) -> List[DraftSuggestion]:
        out = []
        for doc in self.store.list(SUGGESTIONS_COLLECTION):
            if doc.get("draftId") != draft_id:
                continue
            if status and doc.get("status") != status:
                continue
            out.append(DraftSuggestion.model_validate(doc))
        return sorted(out, key=lambda s: s.created_at or "", reverse=True)

    def _load_suggestion(self, txn: Transaction, draft_id: str, suggestion_id: str) -> DraftSuggestion:
        data = txn.get(SUGGESTIONS_COLLECTION, suggestion_id)
        if data is None:
            raise NotFoundError("Suggestion", suggestion_id)
        suggestion = DraftSuggestion.model_validate({**data, "id": suggestion_id})
        if suggestion.draft_id != draft_id:
            raise ConflictError("Suggestion does not belong to this draft")
        if suggestion.status != "proposed":
            raise ConflictError(f'Suggestion status is "{suggestion.status}", expected "proposed"')
        return suggestion

    def accept_suggestion(self, draft_id: str, suggestion_id: str) -> Tuple[StoryDraft, DraftSuggestion]:
        with self.store.transaction() as txn:
            suggestion = self._load_suggestion(txn, draft_id, suggestion_id)
            if suggestion.scope == "selection":
                raise InvalidRequestError("Accepting suggestions with scope 'selection' is not yet supported")

            draft = _load_draft(txn, draft_id)
            _require_editable(draft, "accept suggestion")
            index = next((i for i, p in enumerate(draft.pages) if p.page_number == suggestion.page_number), None)
            if index is None:
                raise NotFoundError("Page", str(suggestion.page_number))

            pages = list(draft.pages)
            pages[index] = pages[index].model_copy(update={"text": suggestion.suggested_text})
            now = now_iso()
            draft = draft.model_copy(update={
                "pages": pages,
                "revision_count": draft.revision_count + 1,
                "status": "editing",
                "updated_at": now,
            })
            suggestion = suggestion.model_copy(update={"status": "accepted", "accepted_at": now, "updated_at": now})
            txn.set(DRAFTS_COLLECTION, draft_id, _dump(draft))
            txn.set(SUGGESTIONS_COLLECTION, suggestion_id, _dump(suggestion))
        logger.info(f"Accepted suggestion {suggestion_id} on draft {draft_id} (revision {draft.revision_count})")
        return draft, suggestion

    def reject_suggestion(self, draft_id: str, suggestion_id: str) -> DraftSuggestion:
        with self.store.transaction() as txn:
            suggestion = self._load_suggestion(txn, draft_id, suggestion_id)
            now = now_iso()
            suggestion = suggestion.model_copy(update={"status": "rejected", "rejected_at": now, "updated_at": now})
            txn.set(SUGGESTIONS_COLLECTION, suggestion_id, _dump(suggestion))
        logger.info(f"Rejected suggestion {suggestion_id} on draft {draft_id}")
        return suggestion

    def approve_draft(self, draft_id: str, specialist_id: str, expected_revision: Optional[int] = None) -> StoryTemplate:
        with self.store.transaction() as txn:
            draft = _load_draft(txn, draft_id)
            _require_editable(draft, "approve")
            _check_revision(draft, expected_revision)
            if not draft.title or not draft.pages:
                raise ConflictError("Cannot approve a draft without a title and pages")

            contract = txn.get(CONTRACTS_COLLECTION, draft.brief_id) or {}
            topic_key = contract.get("topic") or ""
            if not topic_key:
                brief = txn.get(BRIEFS_COLLECTION, draft.brief_id) or {}
                focus = brief.get("therapeuticFocus") or {}
                topic_key = normalize_key(focus.get("primaryTopic")) or ""

            now = now_iso()
            template = StoryTemplate(
                draft_id=draft_id,
                brief_id=draft.brief_id,
                title=draft.title,
                topic_key=topic_key,
                target_age_group=draft.generation_config.target_age_group,
                pages=[
                    TemplatePage(
                        page_number=p.page_number,
                        text_template=p.text,
                        image_prompt_template=p.image_prompt,
                        emotional_tone=p.emotional_tone,
                    )
                    for p in draft.pages
                ],
                approved_by=specialist_id,
                approved_at=now,
                revision_count=draft.revision_count,
            )
            template.id = txn.add(TEMPLATES_COLLECTION, _dump(template))
            draft = draft.model_copy(update={
                "status": "approved",
                "template_id": template.id,
                "approved_by": specialist_id,
                "approved_at": now,
                "updated_at": now,
            })
            txn.set(DRAFTS_COLLECTION, draft_id, _dump(draft))
        logger.info(f"Approved draft {draft_id} as template {template.id}")
        return template
