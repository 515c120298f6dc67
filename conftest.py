import copy
import json
from pathlib import Path

import pytest

from therapeutic_story.compiler import ContractCompiler
from therapeutic_story.contract_store import ContractStore
from therapeutic_story.reference_data import ReferenceDataService
from therapeutic_story.rules import ClinicalRulesLoader
from therapeutic_story.seed import seed_all
from therapeutic_story.storage import DocumentStore


VALID_BRIEF = {
    "createdBy": "specialist-1",
    "therapeuticFocus": {"primaryTopic": "fear_anxiety", "specificSituation": "fear_of_school"},
    "childProfile": {"ageGroup": "6_9", "emotionalSensitivity": "medium"},
    "therapeuticIntent": {
        "emotionalGoals": ["reduce_fear", "build_trust"],
        "keyMessage": "You are brave and can face your fears",
    },
    "languageTone": {"complexity": "simple", "emotionalTone": "calm"},
    "safetyConstraints": {"exclusions": ["medical_imagery"]},
    "storyPreferences": {"caregiverPresence": "included", "endingStyle": "calm_resolution"},
}


def story_json(pages: int = 6, title: str = "Layla's Brave Morning") -> str:
    return json.dumps({
        "title": title,
        "pages": [
            {
                "pageNumber": n,
                "text": f"Page {n}: {{{{child_name}}}} takes a slow breath and {{{{pronoun_subject}}}} feels calmer.",
                "imagePrompt": f"soft watercolor, child at school gate, scene {n}",
                "emotionalTone": "calm",
            }
            for n in range(1, pages + 1)
        ],
    })


class FakeLLM:
    """Stands in for LLMClient: replays canned outputs and records prompts."""

    def __init__(self, *outputs):
        self.outputs = list(outputs) or [story_json()]
        self.prompts = []

    @property
    def model_info(self):
        return {"provider": "fake", "model": "fake-model", "temperature": 0.0}

    def generate_text(self, prompt, *, json_mode=False):
        self.prompts.append(prompt)
        out = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(out, Exception):
            raise out
        return out


@pytest.fixture
def brief():
    return copy.deepcopy(VALID_BRIEF)


@pytest.fixture
def store(tmp_path: Path) -> DocumentStore:
    s = DocumentStore(str(tmp_path / "data"))
    seed_all(s)
    return s


@pytest.fixture
def reference_data(store) -> ReferenceDataService:
    return ReferenceDataService(store)


@pytest.fixture
def rules_loader(store) -> ClinicalRulesLoader:
    return ClinicalRulesLoader(store, cache_ttl_s=300)


@pytest.fixture
def contract_store(store) -> ContractStore:
    return ContractStore(store)


@pytest.fixture
def compiler(reference_data, rules_loader, contract_store) -> ContractCompiler:
    return ContractCompiler(reference_data, rules_loader, contract_store)
