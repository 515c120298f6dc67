"""
Exception types shared across the backend.

Validation problems with a brief are never raised; they travel as
structured issues on the ValidationResult / GenerationContract. The
exceptions below cover everything that is not the specialist's fault.
"""
from typing import Optional


class DataIntegrityError(RuntimeError):
    """Reference data and clinical rules disagree, or a rules bundle is broken."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{message} ({code})")
        self.code = code
        self.message = message


class RulesVersionNotFoundError(DataIntegrityError):
    def __init__(self, version: str):
        super().__init__("RULES_VERSION_NOT_FOUND", f'Clinical rules version "{version}" not found')
        self.version = version


class NotFoundError(LookupError):
    def __init__(self, kind: str, doc_id: str):
        super().__init__(f'{kind} "{doc_id}" not found')
        self.kind = kind
        self.doc_id = doc_id


class BriefNotFoundError(NotFoundError):
    def __init__(self, brief_id: str):
        super().__init__("Story brief", brief_id)


class ConflictError(RuntimeError):
    """The requested transition is not allowed from the document's current state."""


class ConcurrentModificationError(ConflictError):
    def __init__(self, doc_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(f"Document {doc_id} was modified concurrently: expected revision {expected}, found {actual}")
        self.expected = expected
        self.actual = actual


class LLMError(RuntimeError):
    pass


class DraftParseError(ValueError):
    pass


class InvalidRequestError(ValueError):
    """The request is well-formed JSON but asks for something unsupported or inconsistent."""


class InvalidDocumentIdError(InvalidRequestError):
    def __init__(self, doc_id: str):
        super().__init__(f"Invalid document id: {doc_id!r}")
        self.doc_id = doc_id
