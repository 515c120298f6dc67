import logging
from .errors import ConflictError, NotFoundError
from .models import ChildInfo, PersonalizedPage, PersonalizedStory, StoryTemplate
from .review import TEMPLATES_COLLECTION
from .storage import DocumentStore

logger = logging.getLogger(__name__)

PRONOUNS = {
    "male": {"subject": "he", "object": "him", "possessive": "his"},
    "female": {"subject": "she", "object": "her", "possessive": "her"},
    "other": {"subject": "they", "object": "them", "possessive": "their"},
}


def get_approved_template(store: DocumentStore, template_id: str) -> StoryTemplate:
    data = store.get(TEMPLATES_COLLECTION, template_id)
    if data is None:
        raise NotFoundError("Story template", template_id)
    template = StoryTemplate.model_validate({**data, "id": template_id})
    if not template.is_active:
        raise ConflictError(f"Story template {template_id} is not active")
    return template


def fill_placeholders(text: str, child: ChildInfo) -> str:
    pronouns = PRONOUNS.get(child.gender, PRONOUNS["other"])
    return (
        text.replace("{{child_name}}", child.name.strip())
        .replace("{{pronoun_subject}}", pronouns["subject"])
        .replace("{{pronoun_object}}", pronouns["object"])
        .replace("{{pronoun_possessive}}", pronouns["possessive"])
        .strip()
    )


def personalize_template(template: StoryTemplate, child: ChildInfo) -> PersonalizedStory:
    pages = [
        PersonalizedPage(
            page_number=page.page_number,
            text=fill_placeholders(page.text_template, child),
            image_prompt=fill_placeholders(page.image_prompt_template, child),
            emotional_tone=page.emotional_tone,
        )
        for page in template.pages
    ]
    logger.info(f"Personalized template {template.id} ({len(pages)} pages)")
    return PersonalizedStory(
        template_id=template.id,
        title=fill_placeholders(template.title, child),
        topic_key=template.topic_key.strip(),
        target_age_group=template.target_age_group.strip(),
        pages=pages,
    )
