import logging
from .compiler import BRIEFS_COLLECTION, ContractCompiler
from .errors import BriefNotFoundError, LLMError, NotFoundError
from .knowledge import KnowledgeService
from .llm import LLMClient
from .models import DraftError, GenerateDraftInput, GenerationConfig, StoryDraft
from .orchestrator import build_graph, run_draft_pipeline
from .storage import DocumentStore, now_iso
from . import settings

logger = logging.getLogger(__name__)

DRAFTS_COLLECTION = "story_drafts"


def _dump(draft: StoryDraft) -> dict:
    return draft.model_dump(mode="json", by_alias=True, exclude={"id"})


class DraftService:
    def __init__(self, store: DocumentStore, compiler: ContractCompiler, knowledge: KnowledgeService, llm: LLMClient, store_raw_output: bool = None):
        self.store = store
        self.graph = build_graph(compiler, knowledge, llm)
        self.store_raw_output = settings.STORE_RAW_MODEL_OUTPUT if store_raw_output is None else store_raw_output

    def get_draft(self, draft_id: str) -> StoryDraft:
        data = self.store.get(DRAFTS_COLLECTION, draft_id)
        if data is None:
            raise NotFoundError("Story draft", draft_id)
        return StoryDraft.model_validate({**data, "id": draft_id})

    def _save(self, draft: StoryDraft, **changes) -> StoryDraft:
        draft = draft.model_copy(update={**changes, "updated_at": now_iso()})
        self.store.set(DRAFTS_COLLECTION, draft.id, _dump(draft))
        return draft

    async def generate_draft(self, brief_id: str, specialist_id: str, request: GenerateDraftInput) -> StoryDraft:
        raw_brief = self.store.get(BRIEFS_COLLECTION, brief_id)
        if raw_brief is None:
            raise BriefNotFoundError(brief_id)

        child_profile = raw_brief.get("childProfile") if isinstance(raw_brief.get("childProfile"), dict) else {}
        now = now_iso()
        draft = StoryDraft(
            brief_id=brief_id,
            created_by=specialist_id,
            status="generating",
            generation_config=GenerationConfig(
                language=request.language,
                target_age_group=str(child_profile.get("ageGroup") or ""),
                length=request.length,
                tone=request.tone,
                emphasis=request.emphasis,
            ),
            created_at=now,
            updated_at=now,
        )
        draft.id = self.store.add(DRAFTS_COLLECTION, _dump(draft))
        logger.info(f"Generating draft {draft.id} for brief {brief_id}")

        try:
            result = await run_draft_pipeline(self.graph, brief_id, raw_brief, request.language, request.emphasis)
        except LLMError as e:
            logger.error(f"Draft {draft.id} generation failed: {str(e)}")
            return self._save(draft, status="failed", error=DraftError(message=str(e), reason="llm_error"))
        except Exception as e:
            self._save(draft, status="failed", error=DraftError(message=str(e), reason="internal_error"))
            raise

        contract = result.contract
        if contract.status != "ok":
            codes = ", ".join(issue.code for issue in contract.errors)
            return self._save(
                draft,
                status="failed",
                error=DraftError(message=f"Story brief failed validation: {codes}", reason="failed_validation"),
            )

        snapshots = {
            "rules_version_used": contract.rules_version_used,
            "prompt_snapshot": result.prompt,
            "knowledge_snapshot": result.knowledge_context,
            "raw_model_output": result.raw_output if self.store_raw_output else None,
        }
        if result.draft is None:
            return self._save(
                draft,
                status="failed",
                error=DraftError(message=result.parse_error or "Draft output could not be parsed", reason="parse_error"),
                **snapshots,
            )

        draft = self._save(draft, status="generated", title=result.draft.title, pages=result.draft.pages, **snapshots)
        logger.info(f"Draft {draft.id} generated with {len(draft.pages)} pages")
        return draft
