import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Ensure .env is loaded before anything reads configuration
from . import settings
from .auth import get_specialist_id
from .briefs import BriefService
from .compiler import ContractCompiler
from .contract_store import ContractStore
from .drafts import DraftService
from .errors import ConflictError, DataIntegrityError, DraftParseError, InvalidRequestError, LLMError, NotFoundError
from .knowledge import KnowledgeService
from .llm import LLMClient
from .models import (
    ApproveDraftInput, ChildInfo, CreateSuggestionInput, GenerateDraftInput, OverrideInput, UpdatePagesInput,
)
from .reference_data import ReferenceDataService
from .review import ReviewService
from .rules import ClinicalRulesLoader
from .storage import DocumentStore
from .templates import get_approved_template, personalize_template
from .validator import validate_story_brief_input

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _out(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


class Services:
    """Everything the routes need, wired around one document store."""

    def __init__(self, store: DocumentStore, llm: LLMClient, rules_cache_ttl_s: float = 300.0):
        self.store = store
        self.reference_data = ReferenceDataService(store)
        self.rules_loader = ClinicalRulesLoader(store, cache_ttl_s=rules_cache_ttl_s)
        self.contracts = ContractStore(store)
        self.compiler = ContractCompiler(self.reference_data, self.rules_loader, self.contracts)
        self.briefs = BriefService(store, self.compiler, self.contracts)
        self.knowledge = KnowledgeService(store)
        self.drafts = DraftService(store, self.compiler, self.knowledge, llm)
        self.review = ReviewService(store, self.contracts, llm)


def get_services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter()


@router.get("/health")
def health():
    keys_ok = settings.has_openai_key()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}


# --- Reference data ---

@router.get("/api/reference-data")
def reference_data(svc: Services = Depends(get_services)):
    return {category: [_out(item) for item in items] for category, items in svc.reference_data.load_all().items()}


@router.get("/api/reference-data/situations")
def situations(topic: str, svc: Services = Depends(get_services)):
    return [_out(item) for item in svc.reference_data.list_situations_by_topic(topic.strip().lower())]


# --- Story briefs ---

@router.post("/api/story-briefs", status_code=201)
def create_brief(
    raw: Dict[str, Any] = Body(...),
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    brief, contract = svc.briefs.create_brief(raw, specialist_id)
    return {"brief": brief, "contract": _out(contract)}


@router.get("/api/story-briefs")
def list_briefs(
    mine: bool = False,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    return svc.briefs.list_briefs(created_by=specialist_id if mine else None)


@router.get("/api/story-briefs/{brief_id}")
def get_brief(brief_id: str, specialist_id: str = Depends(get_specialist_id), svc: Services = Depends(get_services)):
    return svc.briefs.get_brief(brief_id)


@router.delete("/api/story-briefs/{brief_id}")
def delete_brief(brief_id: str, specialist_id: str = Depends(get_specialist_id), svc: Services = Depends(get_services)):
    svc.briefs.delete_brief(brief_id)
    return {"ok": True, "deleted": brief_id}


# --- Generation contracts ---

@router.post("/api/contracts/preview")
def preview_contract(
    raw: Dict[str, Any] = Body(...),
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    result = validate_story_brief_input({**raw, "createdBy": raw.get("createdBy") or specialist_id}, svc.reference_data)
    return _out(result)


@router.post("/api/contracts/{brief_id}/compile")
def compile_contract(
    brief_id: str,
    expected_revision: Optional[int] = None,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    contract = svc.compiler.build_generation_contract_from_brief_id(brief_id, expected_revision=expected_revision)
    return _out(contract)


@router.get("/api/contracts/{brief_id}")
def get_contract(brief_id: str, specialist_id: str = Depends(get_specialist_id), svc: Services = Depends(get_services)):
    contract = svc.contracts.get(brief_id)
    if contract is None:
        raise HTTPException(404, "contract not found")
    return _out(contract)


@router.post("/api/contracts/{brief_id}/override")
def apply_override(
    brief_id: str,
    body: OverrideInput,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    contract = svc.briefs.apply_override(brief_id, body.coping_tool_id, body.reason)
    return _out(contract)


# --- Drafts ---

@router.post("/api/story-briefs/{brief_id}/drafts", status_code=201)
async def generate_draft(
    brief_id: str,
    body: Optional[GenerateDraftInput] = None,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    draft = await svc.drafts.generate_draft(brief_id, specialist_id, body or GenerateDraftInput())
    return _out(draft)


@router.get("/api/story-drafts/{draft_id}")
def get_draft(draft_id: str, specialist_id: str = Depends(get_specialist_id), svc: Services = Depends(get_services)):
    return _out(svc.drafts.get_draft(draft_id))


@router.put("/api/story-drafts/{draft_id}/pages")
def update_pages(
    draft_id: str,
    body: UpdatePagesInput,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    return _out(svc.review.update_pages(draft_id, body.pages, body.expected_revision))


@router.post("/api/story-drafts/{draft_id}/approve")
def approve_draft(
    draft_id: str,
    body: Optional[ApproveDraftInput] = None,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    template = svc.review.approve_draft(draft_id, specialist_id, body.expected_revision if body else None)
    return _out(template)


# --- Suggestions ---

@router.post("/api/story-drafts/{draft_id}/suggestions", status_code=201)
def create_suggestion(
    draft_id: str,
    body: CreateSuggestionInput,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    return _out(svc.review.create_suggestion(draft_id, specialist_id, body))


@router.get("/api/story-drafts/{draft_id}/suggestions")
def list_suggestions(
    draft_id: str,
    status: Optional[str] = None,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    return [_out(s) for s in svc.review.list_suggestions(draft_id, status)]


@router.post("/api/story-drafts/{draft_id}/suggestions/{suggestion_id}/accept")
def accept_suggestion(
    draft_id: str,
    suggestion_id: str,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    draft, suggestion = svc.review.accept_suggestion(draft_id, suggestion_id)
    return {
        "draftId": draft_id,
        "title": draft.title,
        "status": draft.status,
        "revisionCount": draft.revision_count,
        "updatedAt": draft.updated_at,
        "suggestion": _out(suggestion),
    }


@router.post("/api/story-drafts/{draft_id}/suggestions/{suggestion_id}/reject")
def reject_suggestion(
    draft_id: str,
    suggestion_id: str,
    specialist_id: str = Depends(get_specialist_id),
    svc: Services = Depends(get_services),
):
    return _out(svc.review.reject_suggestion(draft_id, suggestion_id))


# --- Templates ---

@router.get("/api/templates/{template_id}")
def get_template(template_id: str, svc: Services = Depends(get_services)):
    return _out(get_approved_template(svc.store, template_id))


@router.post("/api/templates/{template_id}/personalize")
def personalize(template_id: str, child: ChildInfo, svc: Services = Depends(get_services)):
    if not child.name.strip():
        raise HTTPException(400, "child name is required")
    template = get_approved_template(svc.store, template_id)
    return _out(personalize_template(template, child))


def _register_error_handlers(app: FastAPI):
    def handler(status_code: int):
        async def handle(request: Request, exc: Exception):
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
        return handle

    async def handle_data_integrity(request: Request, exc: DataIntegrityError):
        logger.error(f"Data integrity error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": exc.message, "code": exc.code})

    app.add_exception_handler(NotFoundError, handler(404))
    app.add_exception_handler(ConflictError, handler(409))
    app.add_exception_handler(InvalidRequestError, handler(400))
    app.add_exception_handler(LLMError, handler(502))
    app.add_exception_handler(DraftParseError, handler(502))
    app.add_exception_handler(DataIntegrityError, handle_data_integrity)


def create_app(data_dir: str = None, llm: LLMClient = None, auth_tokens: dict = None) -> FastAPI:
    app = FastAPI(title="Therapeutic Story Backend")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    store = DocumentStore(data_dir or settings.DATA_DIR)
    app.state.services = Services(store, llm or LLMClient(), settings.RULES_CACHE_TTL_S)
    app.state.auth_tokens = settings.AUTH_TOKENS if auth_tokens is None else auth_tokens
    _register_error_handlers(app)
    app.include_router(router)
    logger.info(f"Therapeutic story backend ready (data dir {store.data_dir})")
    return app


app = create_app()
