from typing import Iterable, Optional
from .models import GenerationContract

LANGUAGE_NAMES = {
    "ar": "Arabic (Modern Standard Arabic)",
    "he": "Hebrew",
    "en": "English",
}

SYSTEM_PROMPT = """You are a professional therapeutic children's story writer working for child specialists.
Stories are drafts for specialist review and are never shown to a child without approval.
- The main character is a human child, addressed through the {{child_name}} placeholder.
- No monsters, no threatening fantasy, no shaming, lecturing or pressure.
- Follow every rule in the generation contract exactly.
Output ONLY valid JSON matching the requested format."""


DRAFT_SCHEMA = r"""{
  "title": "<short title>",
  "pages": [
    {
      "pageNumber": <int, starting at 1>,
      "text": "<story text using {{child_name}}, {{pronoun_subject}}, {{pronoun_object}}, {{pronoun_possessive}}>",
      "imagePrompt": "<scene description for illustration, English allowed>",
      "emotionalTone": "<optional: calm, worried, hopeful, proud ...>"
    }
  ]
}"""


DRAFT_PROMPT_TEMPLATE = """Write the story ENTIRELY in {language_name}. Do not mix languages in the title or text.

==== THERAPEUTIC KNOWLEDGE ====
{knowledge_context}

==== GENERATION CONTRACT ====
Topic: {topic}
Situation: {situation}
Age group: {age_group}
Emotional sensitivity: {emotional_sensitivity}
Caregiver presence: {caregiver_presence}
{key_message_line}
{emphasis_line}
Length: {min_scenes}-{max_scenes} pages, at most {max_words} words in total.
Sentences: at most {max_sentence_words} words each. Dialogue: {dialogue_policy}. Abstract concepts: {abstract_concepts}.
Emotional tone: {emotional_tone}. Language complexity: {language_complexity}.
{tone_adjustment_line}
Required elements (all must appear):
{required_elements}

Coping tools (use only these):
{coping_tools}

Must avoid (never include):
{must_avoid}

Ending: {ending_style}. {safe_closure_line}
Ending must include:
{ending_must_include}
{success_moment_line}

==== OUTPUT FORMAT ====
{schema}

Return ONLY the JSON object. No markdown, no explanations."""


SUGGESTION_PROMPT_TEMPLATE = """You are a professional therapeutic children's story editor.
You suggest improvements to story drafts for specialists, keeping therapeutic safety and intent.

==== NON-NEGOTIABLE RULES ====
Must avoid: {must_avoid}
Required elements: {required_elements}
If the instruction conflicts with these rules, follow the rules and explain the conflict in the rationale.

==== STORY CONTEXT ====
Topic: {topic}
Situation: {situation}
Age group: {age_group}
{page_line}

==== EDIT REQUEST ====
ORIGINAL TEXT:
{original_text}

SPECIALIST INSTRUCTION:
{instruction}

==== OUTPUT FORMAT ====
{{
  "suggestedText": "<the improved text>",
  "rationale": "<1-2 sentences explaining the change>"
}}

Constraints:
- Language: {language_name}
- Preserve {{{{child_name}}}} and pronoun placeholders exactly as they appear
- Keep a similar length to the original
- No moralizing, threats, shaming or direct advice
Return ONLY the JSON object."""


def _bullets(items: Iterable[str], empty: str = "- none") -> str:
    lines = [f"- {item}" for item in items]
    return "\n".join(lines) if lines else empty


def build_story_draft_prompt(contract: GenerationContract, knowledge_context: str, language: str = "ar", emphasis: Optional[str] = None) -> str:
    ending = contract.ending_contract
    style = contract.style_rules
    return DRAFT_PROMPT_TEMPLATE.format(
        language_name=LANGUAGE_NAMES.get(language, language),
        knowledge_context=knowledge_context.strip(),
        topic=contract.topic,
        situation=contract.situation,
        age_group=contract.age_group,
        emotional_sensitivity=contract.emotional_sensitivity,
        caregiver_presence=contract.caregiver_presence,
        key_message_line=f"Key message: {contract.key_message}" if contract.key_message else "",
        emphasis_line=f"Specialist emphasis: {emphasis}" if emphasis else "",
        min_scenes=contract.length_budget.min_scenes,
        max_scenes=contract.length_budget.max_scenes,
        max_words=contract.length_budget.max_words,
        max_sentence_words=style.max_sentence_words,
        dialogue_policy=style.dialogue_policy,
        abstract_concepts=style.abstract_concepts,
        emotional_tone=style.emotional_tone,
        language_complexity=style.language_complexity,
        tone_adjustment_line=f"Tone adjustment: {style.tone_adjustment}" if style.tone_adjustment else "",
        required_elements=_bullets(contract.required_elements),
        coping_tools=_bullets(contract.allowed_coping_tools, "- none (do not introduce a coping tool)"),
        must_avoid=_bullets(contract.must_avoid),
        ending_style=ending.style,
        safe_closure_line="The story must close in a safe, settled moment." if ending.requires_safe_closure else "",
        ending_must_include=_bullets(ending.must_include),
        success_moment_line="Show a clear moment of success for the child." if ending.requires_success_moment else "",
        schema=DRAFT_SCHEMA,
    )


def build_suggestion_prompt(
    contract: GenerationContract,
    original_text: str,
    instruction: str,
    language: str = "ar",
    page_number: Optional[int] = None,
) -> str:
    return SUGGESTION_PROMPT_TEMPLATE.format(
        must_avoid=", ".join(contract.must_avoid) or "nothing beyond general safety",
        required_elements=", ".join(contract.required_elements) or "none",
        topic=contract.topic,
        situation=contract.situation,
        age_group=contract.age_group,
        page_line=f"Page number: {page_number}" if page_number is not None else "",
        original_text=original_text,
        instruction=instruction,
        language_name=LANGUAGE_NAMES.get(language, language),
    )
