import asyncio
import threading

import pytest

from conftest import FakeLLM, story_json
from therapeutic_story.draft_parser import parse_draft_output, parse_suggestion_output
from therapeutic_story.drafts import DraftService
from therapeutic_story.errors import BriefNotFoundError, DraftParseError, LLMError
from therapeutic_story.knowledge import KnowledgeService
from therapeutic_story.models import GenerateDraftInput
from therapeutic_story.prompts import build_story_draft_prompt


def make_service(store, compiler, llm, store_raw_output=False):
    return DraftService(store, compiler, KnowledgeService(store), llm, store_raw_output=store_raw_output)


def test_parse_strips_code_fences():
    draft = parse_draft_output("```json\n" + story_json(4) + "\n```")
    assert draft.title == "Layla's Brave Morning"
    assert [p.page_number for p in draft.pages] == [1, 2, 3, 4]


def test_parse_drops_bad_pages_and_requires_three():
    raw = '{"title": "T", "pages": [' \
          '{"pageNumber": 1, "text": "a", "imagePrompt": "x"},' \
          '{"pageNumber": 2, "text": "", "imagePrompt": "x"},' \
          '{"pageNumber": 3, "text": "c", "imagePrompt": "x"},' \
          '{"pageNumber": 4, "text": "d", "imagePrompt": "x"},' \
          '{"pageNumber": 9, "text": "e", "imagePrompt": "x"}]}'
    draft = parse_draft_output(raw)
    assert [p.page_number for p in draft.pages] == [1, 3, 4]

    with pytest.raises(DraftParseError):
        parse_draft_output('{"title": "T", "pages": [{"pageNumber": 1, "text": "a", "imagePrompt": "x"}]}')
    with pytest.raises(DraftParseError):
        parse_draft_output("not json at all")


def test_parse_suggestion():
    assert parse_suggestion_output('{"suggestedText": " Calmer text. ", "rationale": "Softer."}') == {
        "suggested_text": "Calmer text.",
        "rationale": "Softer.",
    }
    with pytest.raises(DraftParseError):
        parse_suggestion_output('{"suggestedText": ""}')


def test_prompt_is_built_from_contract(compiler, brief):
    contract = compiler.build_generation_contract("brief-1", brief)
    prompt = build_story_draft_prompt(contract, "KNOWLEDGE", "en", emphasis="morning routine")
    assert "English" in prompt
    assert "- gentle_exposure_steps" in prompt
    assert "- hospital_realism" in prompt
    assert "6-10 pages" in prompt
    assert "Specialist emphasis: morning routine" in prompt
    assert "{{child_name}}" in prompt


def test_generate_draft_success(store, compiler, brief):
    store.set("story_briefs", "b1", brief)
    llm = FakeLLM(story_json(6))
    service = make_service(store, compiler, llm, store_raw_output=True)

    draft = asyncio.run(service.generate_draft("b1", "specialist-1", GenerateDraftInput(language="en")))
    assert draft.status == "generated"
    assert len(draft.pages) == 6
    assert draft.rules_version_used == "v1"
    assert "THERAPEUTIC GUIDELINES" in draft.knowledge_snapshot
    assert "Acknowledge that the fear feels real" in draft.knowledge_snapshot
    assert draft.prompt_snapshot == llm.prompts[0]
    assert draft.raw_model_output is not None
    assert draft.generation_config.target_age_group == "6_9"

    stored = service.get_draft(draft.id)
    assert stored.status == "generated"
    assert stored.title == draft.title


def test_invalid_brief_ends_pipeline_without_llm_call(store, compiler, brief):
    brief["therapeuticIntent"]["emotionalGoals"] = []
    store.set("story_briefs", "b1", brief)
    llm = FakeLLM()
    draft = asyncio.run(make_service(store, compiler, llm).generate_draft("b1", "s1", GenerateDraftInput()))
    assert draft.status == "failed"
    assert draft.error.reason == "failed_validation"
    assert "GOALS_CARDINALITY" in draft.error.message
    assert llm.prompts == []


def test_unparseable_output_marks_draft_failed(store, compiler, brief):
    store.set("story_briefs", "b1", brief)
    service = make_service(store, compiler, FakeLLM('{"title": "T", "pages": []}'))
    draft = asyncio.run(service.generate_draft("b1", "s1", GenerateDraftInput()))
    assert draft.status == "failed"
    assert draft.error.reason == "parse_error"
    assert draft.raw_model_output is None
    assert draft.prompt_snapshot


def test_llm_failure_marks_draft_failed(store, compiler, brief):
    store.set("story_briefs", "b1", brief)
    service = make_service(store, compiler, FakeLLM(LLMError("OpenAI quota exceeded")))
    draft = asyncio.run(service.generate_draft("b1", "s1", GenerateDraftInput()))
    assert draft.status == "failed"
    assert draft.error.message == "OpenAI quota exceeded"
    assert service.get_draft(draft.id).status == "failed"


def test_unknown_brief(store, compiler):
    service = make_service(store, compiler, FakeLLM())
    with pytest.raises(BriefNotFoundError):
        asyncio.run(service.generate_draft("missing", "s1", GenerateDraftInput()))


def test_model_call_runs_off_the_event_loop_thread(store, compiler, brief):
    class ThreadRecordingLLM(FakeLLM):
        def generate_text(self, prompt, *, json_mode=False):
            self.thread_id = threading.get_ident()
            return super().generate_text(prompt, json_mode=json_mode)

    store.set("story_briefs", "b1", brief)
    llm = ThreadRecordingLLM(story_json(4))
    draft = asyncio.run(make_service(store, compiler, llm).generate_draft("b1", "s1", GenerateDraftInput()))
    assert draft.status == "generated"
    assert llm.thread_id != threading.get_ident()
