"""
Contract compilation.

Turns a raw brief into the GenerationContract that every prompt is built
from: validate, load one clinical rules bundle, merge the rules that apply to
the brief, persist. A brief that fails validation still produces a
(failed_validation) contract so the attempt is auditable. Rules that are
missing for keys which passed validation mean reference data and clinical
rules have drifted apart; that raises DataIntegrityError and nothing is
persisted.
"""
import logging
from typing import Any, Dict, Hashable, Iterable, List, Optional, TypeVar
from .contract_store import ContractStore
from .errors import BriefNotFoundError, DataIntegrityError
from .models import (
    ClinicalRulesBundle, EndingContract, GenerationContract, Issue, LengthBudget,
    StoryBrief, StyleRules,
)
from .rules import ClinicalRulesLoader
from .validator import validate_story_brief_input

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)

BRIEFS_COLLECTION = "story_briefs"


def dedupe(items: Iterable[T]) -> List[T]:
    """Drop repeated items, keeping the first occurrence of each in place."""
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _rule(rules: Dict[str, Any], key: str, code: str, what: str, version: str):
    rule = rules.get(key)
    if rule is None:
        raise DataIntegrityError(code, f'{what} "{key}" has no entry in clinical rules {version}')
    return rule


class ContractCompiler:
    def __init__(self, reference_data, rules_loader: ClinicalRulesLoader, contract_store: ContractStore):
        self.reference_data = reference_data
        self.rules_loader = rules_loader
        self.contract_store = contract_store

    def build_generation_contract(self, brief_id: str, raw_brief: Dict[str, Any], expected_revision: Optional[int] = None) -> GenerationContract:
        logger.info(f"Compiling generation contract for brief {brief_id}")
        result = validate_story_brief_input(raw_brief, self.reference_data)
        if not result.is_valid:
            contract = GenerationContract(
                brief_id=brief_id,
                status="failed_validation",
                errors=result.errors,
                warnings=result.warnings,
            )
            return self.contract_store.save(contract, expected_revision=expected_revision)

        brief = result.normalized_brief
        bundle = self.rules_loader.load(brief.rules_version)
        contract = self._compile(brief_id, brief, bundle, list(result.warnings))
        return self.contract_store.save(contract, expected_revision=expected_revision)

    def build_generation_contract_from_brief_id(self, brief_id: str, expected_revision: Optional[int] = None) -> GenerationContract:
        raw_brief = self.contract_store.store.get(BRIEFS_COLLECTION, brief_id)
        if raw_brief is None:
            raise BriefNotFoundError(brief_id)
        return self.build_generation_contract(brief_id, raw_brief, expected_revision=expected_revision)

    def _compile(self, brief_id: str, brief: StoryBrief, bundle: ClinicalRulesBundle, warnings: List[Issue]) -> GenerationContract:
        version = bundle.version
        age_group = brief.child_profile.age_group
        sensitivity = brief.child_profile.emotional_sensitivity
        ending_style = brief.story_preferences.ending_style
        goals = dedupe(brief.therapeutic_intent.emotional_goals)

        age_rule = _rule(bundle.age_rules, age_group, "NO_AGE_RULE", "Age group", version)
        goal_mappings = [_rule(bundle.goal_mappings, g, "NO_GOAL_MAPPING", "Emotional goal", version) for g in goals]
        ending_rule = _rule(bundle.ending_rules, ending_style, "NO_ENDING_RULE", "Ending style", version)
        sensitivity_rule = _rule(bundle.sensitivity_rules, sensitivity, "NO_SENSITIVITY_RULE", "Sensitivity level", version)
        exclusion_rules = [
            _rule(bundle.exclusions, e, "NO_EXCLUSION_RULE", "Exclusion", version)
            for e in brief.safety_constraints.exclusions
        ]

        required_elements = dedupe(
            list(age_rule.mandatory_elements) + [el for m in goal_mappings for el in m.required_elements]
        )

        recommended = dedupe(tool for m in goal_mappings for tool in m.recommended_coping_tools)
        allowed_tools = []
        for tool_id in recommended:
            tool = bundle.coping_tools.get(tool_id)
            if tool is None:
                warnings.append(Issue(code="UNKNOWN_COPING_TOOL", message=f'Coping tool "{tool_id}" is not defined in clinical rules {version}'))
            elif age_group in tool.age_applicability:
                allowed_tools.append(tool_id)
        if recommended and not allowed_tools:
            warnings.append(Issue(code="NO_COPING_TOOL_AVAILABLE", message=f'No recommended coping tool applies to age group "{age_group}"'))

        override_used = False
        override_details = None
        override_id = brief.overrides.coping_tool_id if brief.overrides else None
        if override_id:
            tool = bundle.coping_tools.get(override_id)
            if tool is not None and age_group in tool.age_applicability:
                override_used = True
                allowed_tools = [override_id]
                override_details = {"copingToolId": override_id, "reason": "user_override"}
            else:
                warnings.append(Issue(
                    code="INVALID_OVERRIDE_COPING_TOOL",
                    message=f'Override coping tool "{override_id}" is unknown or not allowed for age group "{age_group}"; override ignored',
                ))

        must_avoid = dedupe(
            list(ending_rule.forbidden_patterns)
            + list(sensitivity_rule.extra_must_avoid)
            + [phrase for rule in exclusion_rules for phrase in rule.must_avoid_phrases_or_themes]
        )

        contract = GenerationContract(
            brief_id=brief_id,
            rules_version_used=version,
            status="ok",
            warnings=warnings,
            topic=brief.therapeutic_focus.primary_topic,
            situation=brief.therapeutic_focus.specific_situation,
            age_group=age_group,
            emotional_sensitivity=sensitivity,
            caregiver_presence=brief.story_preferences.caregiver_presence,
            key_message=brief.therapeutic_intent.key_message,
            length_budget=LengthBudget(
                min_scenes=age_rule.min_scenes,
                max_scenes=age_rule.max_scenes,
                max_words=age_rule.max_words,
            ),
            style_rules=StyleRules(
                max_sentence_words=age_rule.max_sentence_words,
                dialogue_policy=age_rule.dialogue_policy,
                abstract_concepts=age_rule.abstract_concepts,
                emotional_tone=brief.language_tone.emotional_tone,
                language_complexity=brief.language_tone.complexity,
                tone_adjustment=sensitivity_rule.tone_adjustment,
            ),
            required_elements=required_elements,
            allowed_coping_tools=allowed_tools,
            must_avoid=must_avoid,
            ending_contract=EndingContract(
                style=ending_style,
                requires_safe_closure=ending_rule.requires_safe_closure,
                must_include=list(ending_rule.must_include),
                requires_success_moment=ending_rule.requires_success_moment,
            ),
            override_used=override_used,
            override_details=override_details,
        )
        logger.info(
            f"Compiled contract for brief {brief_id} with rules {version}: "
            f"{len(required_elements)} required elements, {len(allowed_tools)} coping tools, {len(must_avoid)} must-avoid items"
        )
        return contract
