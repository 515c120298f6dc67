import pytest

from therapeutic_story.errors import DataIntegrityError, RulesVersionNotFoundError
from therapeutic_story.rules import ClinicalRulesLoader
from therapeutic_story.storage import DocumentStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_loads_default_version(rules_loader):
    bundle = rules_loader.load()
    assert bundle.version == "v1"
    assert bundle.age_rules["6_9"].max_words == 700
    assert bundle.ending_rules["empowering"].requires_success_moment


def test_unknown_version(rules_loader):
    with pytest.raises(RulesVersionNotFoundError) as exc:
        rules_loader.load("v99")
    assert exc.value.code == "RULES_VERSION_NOT_FOUND"


def test_missing_default_version(tmp_path):
    loader = ClinicalRulesLoader(DocumentStore(str(tmp_path / "empty")))
    with pytest.raises(DataIntegrityError) as exc:
        loader.load()
    assert exc.value.code == "RULES_DEFAULT_VERSION_MISSING"


def test_incomplete_bundle_rejected(store):
    bundle = store.get("clinical_rules", "v1")
    bundle["goalMappings"] = {}
    store.set("clinical_rules", "v2", bundle)
    with pytest.raises(DataIntegrityError) as exc:
        ClinicalRulesLoader(store).load("v2")
    assert exc.value.code == "RULES_BUNDLE_INCOMPLETE"


def test_cache_shares_bundle_until_ttl(store):
    clock = FakeClock()
    loader = ClinicalRulesLoader(store, cache_ttl_s=60, clock=clock)
    first = loader.load("v1")
    assert loader.load("v1") is first

    doc = store.get("clinical_rules", "v1")
    doc["ageRules"]["6_9"]["maxWords"] = 650
    store.set("clinical_rules", "v1", doc)
    assert loader.load("v1").age_rules["6_9"].max_words == 700

    clock.now += 61
    assert loader.load("v1").age_rules["6_9"].max_words == 650


def test_invalidate_forces_reload(store):
    loader = ClinicalRulesLoader(store)
    first = loader.load("v1")
    loader.invalidate("v1")
    assert loader.load("v1") is not first


def test_bundles_are_frozen(rules_loader):
    bundle = rules_loader.load()
    with pytest.raises(Exception):
        bundle.version = "v2"


def test_bundle_contents_are_read_only(rules_loader):
    bundle = rules_loader.load()
    assert isinstance(bundle.age_rules["6_9"].mandatory_elements, tuple)
    assert isinstance(bundle.coping_tools["safe_object"].age_applicability, tuple)
    with pytest.raises(TypeError):
        bundle.age_rules["6_9"] = bundle.age_rules["3_6"]
    with pytest.raises(TypeError):
        del bundle.goal_mappings["build_trust"]
