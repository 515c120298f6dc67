import pytest

from therapeutic_story.compiler import dedupe
from therapeutic_story.errors import BriefNotFoundError, ConcurrentModificationError, DataIntegrityError


def test_dedupe_keeps_first_occurrence():
    assert dedupe(["a", "b", "a", "c", "b"]) == ["a", "b", "c"]
    assert dedupe(("x", "x")) == ["x"]
    assert dedupe(iter([])) == []


def test_school_fear_brief_compiles(compiler, brief):
    contract = compiler.build_generation_contract("brief-1", brief)
    assert contract.status == "ok"
    assert contract.rules_version_used == "v1"
    assert contract.errors == []
    assert (contract.length_budget.min_scenes, contract.length_budget.max_scenes, contract.length_budget.max_words) == (6, 10, 700)
    assert contract.required_elements == [
        "helper_character", "turning_point",
        "emotion_labeling", "reassurance_loop", "gentle_exposure_steps",
        "predictable_routine", "caregiver_reassurance",
    ]
    assert contract.allowed_coping_tools == ["balloon_breathing", "safe_object", "coping_phrase"]
    assert contract.must_avoid == ["cliffhanger", "sudden_surprise", "needles", "blood", "hospital_realism"]
    assert contract.ending_contract.style == "calm_resolution"
    assert contract.ending_contract.requires_safe_closure is True
    assert contract.ending_contract.must_include == ["emotional_closure", "calm_state"]
    assert contract.style_rules.max_sentence_words == 14
    assert contract.key_message == "You are brave and can face your fears"


def test_recompile_is_idempotent_and_keeps_created_at(compiler, contract_store, brief):
    first = compiler.build_generation_contract("brief-1", brief)
    second = compiler.build_generation_contract("brief-1", brief)
    for field in ("required_elements", "allowed_coping_tools", "must_avoid", "length_budget"):
        assert getattr(first, field) == getattr(second, field)
    assert second.created_at == first.created_at
    assert second.revision == first.revision + 1
    assert contract_store.get("brief-1").revision == second.revision


def test_duplicate_goals_are_deduplicated(compiler, brief):
    brief["therapeuticIntent"]["emotionalGoals"] = ["reduce_fear", "reduce_fear", "normalize_emotions"]
    contract = compiler.build_generation_contract("brief-dup", brief)
    assert contract.status == "ok"
    assert contract.required_elements.count("emotion_labeling") == 1
    assert contract.allowed_coping_tools == ["balloon_breathing", "safe_object", "coping_phrase", "name_the_feeling"]


def test_coping_tools_filtered_by_age(compiler, brief):
    brief["childProfile"]["ageGroup"] = "9_12"
    brief["therapeuticIntent"]["emotionalGoals"] = ["emotional_regulation"]
    contract = compiler.build_generation_contract("brief-age", brief)
    assert contract.allowed_coping_tools == ["counting"]


def test_filtering_everything_out_warns(compiler, store, brief):
    rules = store.get("clinical_rules", "v1")
    rules["goalMappings"]["build_trust"]["recommendedCopingTools"] = ["safe_object", "ghost_tool"]
    store.set("clinical_rules", "v1", rules)
    brief["childProfile"]["ageGroup"] = "9_12"
    brief["therapeuticIntent"]["emotionalGoals"] = ["build_trust"]
    contract = compiler.build_generation_contract("brief-none", brief)
    assert contract.status == "ok"
    assert contract.allowed_coping_tools == []
    assert [w.code for w in contract.warnings] == ["UNKNOWN_COPING_TOOL", "NO_COPING_TOOL_AVAILABLE"]


def test_coping_tool_override(compiler, brief):
    brief["overrides"] = {"copingToolId": "counting"}
    contract = compiler.build_generation_contract("brief-ov", brief)
    assert contract.override_used
    assert contract.allowed_coping_tools == ["counting"]
    assert contract.override_details == {"copingToolId": "counting", "reason": "user_override"}

    brief["childProfile"]["ageGroup"] = "0_3"
    contract = compiler.build_generation_contract("brief-ov", brief)
    assert not contract.override_used
    assert "INVALID_OVERRIDE_COPING_TOOL" in [w.code for w in contract.warnings]


def test_sensitivity_and_ending_feed_must_avoid(compiler, brief):
    brief["childProfile"]["emotionalSensitivity"] = "high"
    brief["storyPreferences"]["endingStyle"] = "empowering"
    brief["safetyConstraints"]["exclusions"] = ["authority_figures", "medical_imagery"]
    contract = compiler.build_generation_contract("brief-avoid", brief)
    assert contract.must_avoid == [
        "helplessness", "suspense", "sudden_surprise", "emotional_spikes",
        "police_threat", "punitive_authority", "needles", "blood", "hospital_realism",
    ]
    assert contract.ending_contract.requires_success_moment


def test_invalid_brief_gives_persisted_failed_contract(compiler, contract_store, brief):
    brief["therapeuticFocus"]["specificSituation"] = "doctor_visit"
    contract = compiler.build_generation_contract("brief-bad", brief)
    assert contract.status == "failed_validation"
    assert "TOPIC_SITUATION_MISMATCH" in [e.code for e in contract.errors]
    assert contract.required_elements == []
    assert contract.length_budget.max_words == 0
    assert contract.rules_version_used == ""
    assert contract_store.get("brief-bad").status == "failed_validation"


def test_missing_age_rule_is_data_integrity_error(compiler, contract_store, store, brief):
    rules = store.get("clinical_rules", "v1")
    del rules["ageRules"]["6_9"]
    store.set("clinical_rules", "v1", rules)
    with pytest.raises(DataIntegrityError) as exc:
        compiler.build_generation_contract("brief-skew", brief)
    assert exc.value.code == "NO_AGE_RULE"
    assert contract_store.get("brief-skew") is None


@pytest.mark.parametrize("rule_map, key, code", [
    ("goalMappings", "build_trust", "NO_GOAL_MAPPING"),
    ("endingRules", "calm_resolution", "NO_ENDING_RULE"),
    ("sensitivityRules", "medium", "NO_SENSITIVITY_RULE"),
    ("exclusions", "medical_imagery", "NO_EXCLUSION_RULE"),
])
def test_missing_rule_entries(compiler, store, brief, rule_map, key, code):
    rules = store.get("clinical_rules", "v1")
    del rules[rule_map][key]
    store.set("clinical_rules", "v1", rules)
    with pytest.raises(DataIntegrityError) as exc:
        compiler.build_generation_contract("brief-skew", brief)
    assert exc.value.code == code


def test_pinned_rules_version(compiler, store, brief):
    rules = store.get("clinical_rules", "v1")
    rules["ageRules"]["6_9"]["maxWords"] = 600
    store.set("clinical_rules", "v2", rules)
    brief["rulesVersion"] = "v2"
    contract = compiler.build_generation_contract("brief-pin", brief)
    assert contract.rules_version_used == "v2"
    assert contract.length_budget.max_words == 600


def test_compile_from_stored_brief(compiler, store, brief):
    store.set("story_briefs", "stored-1", brief)
    assert compiler.build_generation_contract_from_brief_id("stored-1").status == "ok"
    with pytest.raises(BriefNotFoundError):
        compiler.build_generation_contract_from_brief_id("missing")


def test_compare_and_swap(compiler, brief):
    first = compiler.build_generation_contract("brief-cas", brief, expected_revision=0)
    assert first.revision == 1
    with pytest.raises(ConcurrentModificationError):
        compiler.build_generation_contract("brief-cas", brief, expected_revision=0)
    assert compiler.build_generation_contract("brief-cas", brief, expected_revision=1).revision == 2
