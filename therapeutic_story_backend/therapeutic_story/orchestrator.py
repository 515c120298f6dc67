import asyncio
import logging
from typing import Any, Dict, Optional
from pydantic import BaseModel
from langgraph.graph import StateGraph, END
from .compiler import ContractCompiler
from .draft_parser import parse_draft_output
from .errors import DraftParseError
from .knowledge import KnowledgeService
from .llm import LLMClient
from .models import GenerationContract, ParsedDraft
from .prompts import build_story_draft_prompt

logger = logging.getLogger(__name__)


class DraftPipelineState(BaseModel):
    brief_id: str
    raw_brief: Dict[str, Any]
    language: str = "ar"
    emphasis: Optional[str] = None
    contract: Optional[GenerationContract] = None
    knowledge_context: str = ""
    prompt: str = ""
    raw_output: str = ""
    draft: Optional[ParsedDraft] = None
    parse_error: Optional[str] = None


def build_graph(compiler: ContractCompiler, knowledge: KnowledgeService, llm: LLMClient):
    """contract -> prompt -> generate -> parse. A failed-validation contract ends the run after contract."""

    async def node_contract(state: DraftPipelineState) -> dict:
        contract = compiler.build_generation_contract(state.brief_id, state.raw_brief)
        if contract.status != "ok":
            logger.info(f"Brief {state.brief_id} failed validation, skipping generation")
        return {"contract": contract}

    async def node_prompt(state: DraftPipelineState) -> dict:
        contract = state.contract
        context = knowledge.build_context(contract.topic, contract.age_group)
        prompt = build_story_draft_prompt(contract, context, state.language, state.emphasis)
        logger.info(f"Built draft prompt for brief {state.brief_id} ({len(prompt)} chars)")
        return {"knowledge_context": context, "prompt": prompt}

    async def node_generate(state: DraftPipelineState) -> dict:
        # The OpenAI client is synchronous
        raw = await asyncio.to_thread(llm.generate_text, state.prompt, json_mode=True)
        return {"raw_output": raw}

    async def node_parse(state: DraftPipelineState) -> dict:
        try:
            draft = parse_draft_output(state.raw_output)
        except DraftParseError as e:
            logger.warning(f"Draft output for brief {state.brief_id} could not be parsed: {e}")
            return {"parse_error": str(e)}
        logger.info(f"Parsed draft for brief {state.brief_id} with {len(draft.pages)} pages")
        return {"draft": draft}

    def after_contract(state: DraftPipelineState) -> str:
        return "prompt" if state.contract is not None and state.contract.status == "ok" else END

    g = StateGraph(DraftPipelineState)
    g.add_node("contract", node_contract)
    g.add_node("prompt", node_prompt)
    g.add_node("generate", node_generate)
    g.add_node("parse", node_parse)
    g.set_entry_point("contract")
    g.add_conditional_edges("contract", after_contract, {"prompt": "prompt", END: END})
    g.add_edge("prompt", "generate")
    g.add_edge("generate", "parse")
    g.add_edge("parse", END)
    return g.compile()


async def run_draft_pipeline(graph, brief_id: str, raw_brief: Dict[str, Any], language: str = "ar", emphasis: Optional[str] = None) -> DraftPipelineState:
    state = DraftPipelineState(brief_id=brief_id, raw_brief=raw_brief, language=language, emphasis=emphasis)
    try:
        logger.info(f"Starting draft pipeline for brief {brief_id}")
        final_state = await graph.ainvoke(state)
    except Exception as e:
        logger.error(f"Draft pipeline failed for brief {brief_id}: {str(e)}")
        raise

    # LangGraph returns a dict-like of channel values
    if hasattr(final_state, "get"):
        return DraftPipelineState(
            brief_id=brief_id,
            raw_brief=raw_brief,
            language=language,
            emphasis=emphasis,
            contract=final_state.get("contract"),
            knowledge_context=final_state.get("knowledge_context", ""),
            prompt=final_state.get("prompt", ""),
            raw_output=final_state.get("raw_output", ""),
            draft=final_state.get("draft"),
            parse_error=final_state.get("parse_error"),
        )
    return final_state
