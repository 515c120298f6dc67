from types import MappingProxyType
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, get_args

AgeGroup = Literal["0_3", "3_6", "6_9", "9_12"]
EmotionalSensitivity = Literal["low", "medium", "high"]
Complexity = Literal["very_simple", "simple", "moderate"]
EmotionalTone = Literal["very_gentle", "calm", "encouraging"]
CaregiverPresence = Literal["included", "self_guided"]
EndingStyle = Literal["calm_resolution", "open_ended", "empowering"]

AGE_GROUPS = get_args(AgeGroup)
EMOTIONAL_SENSITIVITIES = get_args(EmotionalSensitivity)
COMPLEXITIES = get_args(Complexity)
EMOTIONAL_TONES = get_args(EmotionalTone)
CAREGIVER_PRESENCES = get_args(CaregiverPresence)
ENDING_STYLES = get_args(EndingStyle)


class CamelModel(BaseModel):
    # Documents are stored and served with camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --- Story brief ---

class TherapeuticFocus(CamelModel):
    primary_topic: str
    specific_situation: str

class ChildProfile(CamelModel):
    age_group: AgeGroup
    emotional_sensitivity: EmotionalSensitivity

class TherapeuticIntent(CamelModel):
    emotional_goals: List[str]
    key_message: Optional[str] = None

class LanguageTone(CamelModel):
    complexity: Complexity
    emotional_tone: EmotionalTone

class SafetyConstraints(CamelModel):
    exclusions: List[str] = Field(default_factory=list)

class StoryPreferences(CamelModel):
    caregiver_presence: CaregiverPresence
    ending_style: EndingStyle

class BriefOverrides(CamelModel):
    coping_tool_id: Optional[str] = None

class StoryBrief(CamelModel):
    """A brief that passed validation. Every enum field is closed."""
    created_by: str
    therapeutic_focus: TherapeuticFocus
    child_profile: ChildProfile
    therapeutic_intent: TherapeuticIntent
    language_tone: LanguageTone
    safety_constraints: SafetyConstraints
    story_preferences: StoryPreferences
    rules_version: Optional[str] = None
    overrides: Optional[BriefOverrides] = None


class Issue(CamelModel):
    code: str
    message: str
    field: Optional[str] = None

class ValidationResult(CamelModel):
    is_valid: bool
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)
    normalized_brief: Optional[StoryBrief] = None


# --- Reference data ---

class ReferenceItem(CamelModel):
    key: str
    label_en: str = Field("", alias="label_en")
    label_ar: str = Field("", alias="label_ar")
    label_he: str = Field("", alias="label_he")
    active: bool = False
    order: int = 0
    caution: bool = False
    topic_key: Optional[str] = None


# --- Clinical rules ---

class AgeRule(FrozenCamelModel):
    min_scenes: int
    max_scenes: int
    max_words: int
    recommended_devices: Tuple[str, ...] = ()
    mandatory_elements: Tuple[str, ...] = ()
    max_sentence_words: int = 0
    dialogue_policy: Literal["none", "minimal", "allowed"] = "allowed"
    abstract_concepts: Literal["no", "limited", "yes"] = "limited"

class GoalMapping(FrozenCamelModel):
    required_elements: Tuple[str, ...] = ()
    recommended_coping_tools: Tuple[str, ...] = ()

class CopingTool(FrozenCamelModel):
    description: str = ""
    display_name: Optional[str] = None
    age_applicability: Tuple[str, ...] = ()
    repetition_required: int = 0

class EndingRule(FrozenCamelModel):
    requires_safe_closure: bool = False
    forbidden_patterns: Tuple[str, ...] = ()
    must_include: Tuple[str, ...] = ()
    requires_success_moment: bool = False

class SensitivityRule(FrozenCamelModel):
    extra_must_avoid: Tuple[str, ...] = ()
    tone_adjustment: str = ""

class ExclusionRule(FrozenCamelModel):
    must_avoid_phrases_or_themes: Tuple[str, ...] = ()

class ClinicalRulesBundle(FrozenCamelModel):
    version: str
    status: str = "active"
    age_rules: Mapping[str, AgeRule]
    goal_mappings: Mapping[str, GoalMapping]
    coping_tools: Mapping[str, CopingTool]
    ending_rules: Mapping[str, EndingRule]
    sensitivity_rules: Mapping[str, SensitivityRule]
    exclusions: Mapping[str, ExclusionRule]

    # Cached bundles are shared between requests
    @field_validator("age_rules", "goal_mappings", "coping_tools", "ending_rules", "sensitivity_rules", "exclusions")
    @classmethod
    def read_only_maps(cls, value):
        return MappingProxyType(dict(value))


# --- Generation contract ---

class LengthBudget(CamelModel):
    min_scenes: int = 0
    max_scenes: int = 0
    max_words: int = 0

class StyleRules(CamelModel):
    max_sentence_words: int = 0
    dialogue_policy: str = "none"
    abstract_concepts: str = "no"
    emotional_tone: str = ""
    language_complexity: str = ""
    tone_adjustment: str = ""

class EndingContract(CamelModel):
    style: str = ""
    requires_safe_closure: bool = False
    must_include: List[str] = Field(default_factory=list)
    requires_success_moment: bool = False

class GenerationContract(CamelModel):
    brief_id: str
    rules_version_used: str = ""
    status: Literal["ok", "failed_validation"]
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)
    topic: str = ""
    situation: str = ""
    age_group: str = ""
    emotional_sensitivity: str = ""
    caregiver_presence: str = ""
    key_message: Optional[str] = None
    length_budget: LengthBudget = Field(default_factory=LengthBudget)
    style_rules: StyleRules = Field(default_factory=StyleRules)
    required_elements: List[str] = Field(default_factory=list)
    allowed_coping_tools: List[str] = Field(default_factory=list)
    must_avoid: List[str] = Field(default_factory=list)
    ending_contract: EndingContract = Field(default_factory=EndingContract)
    override_used: bool = False
    override_details: Optional[Dict[str, Any]] = None
    revision: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# --- Drafts, suggestions, templates ---

DraftStatus = Literal["generating", "generated", "failed", "editing", "approved"]
SuggestionStatus = Literal["proposed", "accepted", "rejected"]
SuggestionScope = Literal["page", "selection"]

class DraftPage(CamelModel):
    page_number: int
    text: str
    image_prompt: str
    emotional_tone: Optional[str] = None

class ParsedDraft(CamelModel):
    title: str
    pages: List[DraftPage]

class GenerationConfig(CamelModel):
    language: Literal["ar", "he", "en"] = "ar"
    target_age_group: str = ""
    length: Literal["short", "medium", "long"] = "medium"
    tone: str = "calm"
    emphasis: Optional[str] = None

class GenerateDraftInput(CamelModel):
    language: Literal["ar", "he", "en"] = "ar"
    length: Literal["short", "medium", "long"] = "medium"
    tone: str = "calm"
    emphasis: Optional[str] = None

class DraftError(CamelModel):
    message: str
    reason: Optional[str] = None

class StoryDraft(CamelModel):
    id: Optional[str] = None
    brief_id: str
    created_by: str
    status: DraftStatus = "generating"
    version: int = 1
    revision_count: int = 0
    generation_config: GenerationConfig = Field(default_factory=GenerationConfig)
    title: Optional[str] = None
    pages: List[DraftPage] = Field(default_factory=list)
    rules_version_used: Optional[str] = None
    prompt_snapshot: Optional[str] = None
    knowledge_snapshot: Optional[str] = None
    error: Optional[DraftError] = None
    raw_model_output: Optional[str] = None
    template_id: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

class CreateSuggestionInput(CamelModel):
    scope: SuggestionScope
    page_number: Optional[int] = None
    original_text: str
    instruction: str

class DraftSuggestion(CamelModel):
    id: Optional[str] = None
    draft_id: str
    brief_id: str
    page_number: Optional[int] = None
    scope: SuggestionScope
    instruction: str
    original_text: str
    suggested_text: str
    rationale: Optional[str] = None
    created_by: str
    status: SuggestionStatus = "proposed"
    model_info: Optional[Dict[str, Any]] = None
    raw_model_output: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    accepted_at: Optional[str] = None
    rejected_at: Optional[str] = None

class TemplatePage(CamelModel):
    page_number: int
    text_template: str
    image_prompt_template: str = ""
    emotional_tone: Optional[str] = None

class StoryTemplate(CamelModel):
    id: Optional[str] = None
    draft_id: str
    brief_id: str
    title: str
    topic_key: str = ""
    target_age_group: str = ""
    pages: List[TemplatePage] = Field(default_factory=list)
    approved_by: str
    approved_at: str
    revision_count: int = 0
    is_active: bool = True

class ChildInfo(CamelModel):
    name: str
    gender: Literal["male", "female", "other"] = "other"

class PersonalizedPage(CamelModel):
    page_number: int
    text: str
    image_prompt: str = ""
    emotional_tone: Optional[str] = None

class PersonalizedStory(CamelModel):
    template_id: Optional[str] = None
    title: str
    topic_key: str
    target_age_group: str
    pages: List[PersonalizedPage]


# --- Request bodies ---

class OverrideInput(CamelModel):
    coping_tool_id: str
    reason: Optional[str] = None

class UpdatePagesInput(CamelModel):
    pages: List[DraftPage]
    expected_revision: Optional[int] = None

class ApproveDraftInput(CamelModel):
    expected_revision: Optional[int] = None
