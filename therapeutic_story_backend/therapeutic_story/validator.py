"""
Brief validation.

validate_story_brief_input() takes the raw specialist submission (a dict with
camelCase keys, straight off the request body) and checks every field in one
pass, so the specialist sees all problems at once. Problems are reported as
Issue values and never raised. The only lookups go through the injected
reference data accessor, which needs a single method:

    get_item(category, key) -> item with .active, .caution, .topic_key, or None

Exceptions raised by the accessor are not caught here.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from .models import (
    Issue, StoryBrief, ValidationResult,
    AGE_GROUPS, EMOTIONAL_SENSITIVITIES, COMPLEXITIES, EMOTIONAL_TONES,
    CAREGIVER_PRESENCES, ENDING_STYLES,
)

logger = logging.getLogger(__name__)

MAX_KEY_MESSAGE_LENGTH = 200
MIN_GOALS = 1
MAX_GOALS = 3

REQUIRED_GROUPS = (
    "therapeuticFocus", "childProfile", "therapeuticIntent", "languageTone", "safetyConstraints", "storyPreferences",
)

ENUM_FIELDS: Tuple[Tuple[str, str, tuple], ...] = (
    ("childProfile", "ageGroup", AGE_GROUPS),
    ("childProfile", "emotionalSensitivity", EMOTIONAL_SENSITIVITIES),
    ("languageTone", "complexity", COMPLEXITIES),
    ("languageTone", "emotionalTone", EMOTIONAL_TONES),
    ("storyPreferences", "caregiverPresence", CAREGIVER_PRESENCES),
    ("storyPreferences", "endingStyle", ENDING_STYLES),
)


def normalize_key(value: Any) -> Optional[str]:
    """Reference keys compare trimmed and lower-cased. Non-strings have no key."""
    if not isinstance(value, str):
        return None
    return value.strip().lower()


class _Collector:
    def __init__(self):
        self.errors: List[Issue] = []
        self.warnings: List[Issue] = []

    def error(self, code: str, message: str, field: Optional[str] = None):
        self.errors.append(Issue(code=code, message=message, field=field))

    def warning(self, code: str, message: str, field: Optional[str] = None):
        self.warnings.append(Issue(code=code, message=message, field=field))

    def missing(self, path: str):
        self.error(f"MISSING_FIELD:{path}", f"{path} is required", path)


def _group(raw: Dict[str, Any], name: str, out: _Collector) -> Optional[Dict[str, Any]]:
    value = raw.get(name)
    if isinstance(value, dict):
        return value
    if value is None:
        out.missing(name)
    else:
        out.error(f"INVALID_TYPE:{name}", f"{name} must be an object", name)
    return None


def _check_reference(category: str, path: str, value: Any, reference_data, out: _Collector, label: str):
    """Look up one reference key. Returns (normalized key, item or None)."""
    key = normalize_key(value)
    if key is None:
        out.error(f"INVALID_TYPE:{path}", f"{path} must be a string", path)
        return None, None
    if not key:
        out.missing(path)
        return None, None
    item = reference_data.get_item(category, key)
    if item is None or not item.active:
        out.error(f"UNKNOWN_OR_INACTIVE:{path}:{key}", f'Unknown or inactive {label} "{key}"', path)
    elif item.caution:
        out.warning(f"REFERENCE_CAUTION:{path}:{key}", f'{label.capitalize()} "{key}" is flagged for caution; review the story carefully', path)
    return key, item


def _check_focus(focus: Dict[str, Any], reference_data, out: _Collector) -> Tuple[Optional[str], Optional[str]]:
    topic_key = situation_key = None
    situation = None

    if focus.get("primaryTopic") is None:
        out.missing("therapeuticFocus.primaryTopic")
    else:
        topic_key, _ = _check_reference("topics", "therapeuticFocus.primaryTopic", focus["primaryTopic"], reference_data, out, "topic")

    if focus.get("specificSituation") is None:
        out.missing("therapeuticFocus.specificSituation")
    else:
        situation_key, situation = _check_reference("situations", "therapeuticFocus.specificSituation", focus["specificSituation"], reference_data, out, "situation")

    # Inactive situations still carry their parent topic
    if situation is not None and topic_key and situation.topic_key != topic_key:
        out.error(
            "TOPIC_SITUATION_MISMATCH",
            f'Situation "{situation_key}" belongs to topic "{situation.topic_key}", not "{topic_key}"',
            "therapeuticFocus.specificSituation",
        )
    return topic_key, situation_key


def _check_intent(intent: Dict[str, Any], reference_data, out: _Collector) -> Tuple[List[str], Optional[str]]:
    goals: List[str] = []
    path = "therapeuticIntent.emotionalGoals"
    raw_goals = intent.get("emotionalGoals")
    if raw_goals is None:
        out.missing(path)
    elif not isinstance(raw_goals, list):
        out.error(f"INVALID_TYPE:{path}", f"{path} must be a list", path)
    else:
        if not MIN_GOALS <= len(raw_goals) <= MAX_GOALS:
            out.error("GOALS_CARDINALITY", f"Select between {MIN_GOALS} and {MAX_GOALS} emotional goals (got {len(raw_goals)})", path)
        for raw_goal in raw_goals:
            key, _ = _check_reference("emotionalGoals", path, raw_goal, reference_data, out, "emotional goal")
            if key is not None:
                goals.append(key)

    key_message = intent.get("keyMessage")
    if key_message is not None:
        if not isinstance(key_message, str):
            out.error("INVALID_TYPE:therapeuticIntent.keyMessage", "therapeuticIntent.keyMessage must be text", "therapeuticIntent.keyMessage")
            key_message = None
        else:
            key_message = key_message.strip()
            if len(key_message) > MAX_KEY_MESSAGE_LENGTH:
                out.error(
                    "KEY_MESSAGE_TOO_LONG",
                    f"Key message must be at most {MAX_KEY_MESSAGE_LENGTH} characters (got {len(key_message)})",
                    "therapeuticIntent.keyMessage",
                )
            key_message = key_message or None
    return goals, key_message


def _check_exclusions(constraints: Dict[str, Any], reference_data, out: _Collector) -> List[str]:
    path = "safetyConstraints.exclusions"
    raw_exclusions = constraints.get("exclusions")
    if raw_exclusions is None:
        return []
    if not isinstance(raw_exclusions, list):
        out.error(f"INVALID_TYPE:{path}", f"{path} must be a list", path)
        return []
    exclusions = []
    for raw_exclusion in raw_exclusions:
        key, _ = _check_reference("exclusions", path, raw_exclusion, reference_data, out, "exclusion")
        if key is not None:
            exclusions.append(key)
    return exclusions


def _check_enum(group: Dict[str, Any], group_name: str, field: str, allowed: tuple, out: _Collector) -> Optional[str]:
    path = f"{group_name}.{field}"
    value = group.get(field)
    value = value.strip() if isinstance(value, str) else value
    if value is None or value == "":
        out.missing(path)
        return None
    if value not in allowed:
        out.error(f"INVALID_ENUM:{path}", f"{path} must be one of {', '.join(allowed)} (got {value!r})", path)
        return None
    return value


def _check_optional_text(raw: Dict[str, Any], path: str, out: _Collector) -> Optional[str]:
    value = raw.get(path)
    if value is None:
        return None
    if not isinstance(value, str):
        out.error(f"INVALID_TYPE:{path}", f"{path} must be a string", path)
        return None
    return value.strip() or None


def validate_story_brief_input(raw: Any, reference_data) -> ValidationResult:
    out = _Collector()
    if not isinstance(raw, dict):
        out.error("INVALID_TYPE:brief", "The story brief must be a JSON object")
        return ValidationResult(is_valid=False, errors=out.errors)

    created_by = raw.get("createdBy")
    if isinstance(created_by, str):
        created_by = created_by.strip()
    if not created_by:
        out.missing("createdBy")
    elif not isinstance(created_by, str):
        out.error("INVALID_TYPE:createdBy", "createdBy must be a string", "createdBy")

    groups = {name: _group(raw, name, out) for name in REQUIRED_GROUPS}

    topic_key = situation_key = key_message = None
    goals: List[str] = []
    exclusions: List[str] = []
    if groups["therapeuticFocus"] is not None:
        topic_key, situation_key = _check_focus(groups["therapeuticFocus"], reference_data, out)
    if groups["therapeuticIntent"] is not None:
        goals, key_message = _check_intent(groups["therapeuticIntent"], reference_data, out)
    if groups["safetyConstraints"] is not None:
        exclusions = _check_exclusions(groups["safetyConstraints"], reference_data, out)

    enums: Dict[str, Optional[str]] = {}
    for group_name, field, allowed in ENUM_FIELDS:
        if groups[group_name] is not None:
            enums[field] = _check_enum(groups[group_name], group_name, field, allowed, out)
        else:
            enums[field] = None

    rules_version = _check_optional_text(raw, "rulesVersion", out)
    coping_tool_id = None
    overrides = raw.get("overrides")
    if overrides is not None:
        if not isinstance(overrides, dict):
            out.error("INVALID_TYPE:overrides", "overrides must be an object", "overrides")
        elif overrides.get("copingToolId") is not None:
            coping_tool_id = normalize_key(overrides["copingToolId"])
            if coping_tool_id is None:
                out.error("INVALID_TYPE:overrides.copingToolId", "overrides.copingToolId must be a string", "overrides.copingToolId")

    if enums["ageGroup"] == "0_3" and enums["caregiverPresence"] == "self_guided":
        out.warning(
            "AGE_SELF_GUIDED_WARNING",
            "Self-guided stories are not recommended for ages 0-3; consider including a caregiver",
            "storyPreferences.caregiverPresence",
        )

    if out.errors:
        logger.info(f"Brief validation failed with {len(out.errors)} error(s): {[e.code for e in out.errors]}")
        return ValidationResult(is_valid=False, errors=out.errors, warnings=out.warnings)

    brief = StoryBrief(
        created_by=created_by,
        therapeutic_focus={"primary_topic": topic_key, "specific_situation": situation_key},
        child_profile={"age_group": enums["ageGroup"], "emotional_sensitivity": enums["emotionalSensitivity"]},
        therapeutic_intent={"emotional_goals": goals, "key_message": key_message},
        language_tone={"complexity": enums["complexity"], "emotional_tone": enums["emotionalTone"]},
        safety_constraints={"exclusions": exclusions},
        story_preferences={"caregiver_presence": enums["caregiverPresence"], "ending_style": enums["endingStyle"]},
        rules_version=rules_version,
        overrides={"coping_tool_id": coping_tool_id} if coping_tool_id else None,
    )
    return ValidationResult(is_valid=True, warnings=out.warnings, normalized_brief=brief)
