import pytest

from therapeutic_story.errors import ConflictError, NotFoundError
from therapeutic_story.models import ChildInfo, StoryTemplate, TemplatePage
from therapeutic_story.templates import fill_placeholders, get_approved_template, personalize_template


def make_template(**overrides):
    data = {
        "id": "t1",
        "draftId": "d1",
        "briefId": "b1",
        "title": "{{child_name}} and the New Classroom",
        "topicKey": "fear_anxiety ",
        "targetAgeGroup": "6_9",
        "pages": [
            {"pageNumber": 1, "textTemplate": "{{child_name}} waves at {{pronoun_possessive}} dad.", "imagePromptTemplate": "child at a gate"},
            {"pageNumber": 2, "textTemplate": "The class helper smiles at {{pronoun_object}}.", "imagePromptTemplate": "{{child_name}} in class"},
        ],
        "approvedBy": "specialist-1",
        "approvedAt": "2024-01-01T00:00:00+00:00",
    }
    data.update(overrides)
    return StoryTemplate.model_validate(data)


@pytest.mark.parametrize("gender, expected", [
    ("male", "Sami waves at his dad."),
    ("female", "Sami waves at her dad."),
    ("other", "Sami waves at their dad."),
])
def test_pronouns_follow_gender(gender, expected):
    story = personalize_template(make_template(), ChildInfo(name="Sami", gender=gender))
    assert story.pages[0].text == expected


def test_personalize_fills_title_and_image_prompts():
    story = personalize_template(make_template(), ChildInfo(name="Noor"))
    assert story.title == "Noor and the New Classroom"
    assert story.pages[1].text == "The class helper smiles at them."
    assert story.pages[1].image_prompt == "Noor in class"
    assert story.topic_key == "fear_anxiety"


def test_fill_placeholders_leaves_plain_text():
    assert fill_placeholders("  No placeholders here. ", ChildInfo(name="Noor")) == "No placeholders here."


def test_only_active_templates_are_served(store):
    store.set("story_templates", "t1", make_template(isActive=False).model_dump(mode="json", by_alias=True, exclude={"id"}))
    with pytest.raises(ConflictError):
        get_approved_template(store, "t1")
    with pytest.raises(NotFoundError):
        get_approved_template(store, "missing")
