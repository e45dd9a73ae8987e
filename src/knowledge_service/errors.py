"""Error taxonomy for the knowledge service.

``ValidationError`` and ``NotFoundError`` surface to callers with a specific
reason. ``DependencyFailure`` is raised by gateway adapters and always caught
by the engine, which falls back to a degraded behaviour. ``ConfigurationError``
is fatal only for the single item that triggered it.
"""


class KnowledgeServiceError(Exception):
    """Base class for all knowledge service errors."""


class ValidationError(KnowledgeServiceError):
    """Input rejected before commit."""


class PastDateError(ValidationError):
    """A non-recurring item cannot resolve to a trigger time in the past."""

    def __init__(self, message: str = "non-recurring reminder cannot be scheduled in the past"):
        super().__init__(message)


class NotFoundError(KnowledgeServiceError):
    """Target item is missing or not owned by the caller."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} '{item_id}' not found")


class DependencyFailure(KnowledgeServiceError):
    """An external collaborator (embedding, oracle, notification) failed."""

    def __init__(self, dependency: str, detail: str):
        self.dependency = dependency
        self.detail = detail
        super().__init__(f"{dependency} failed: {detail}")


class ConfigurationError(KnowledgeServiceError):
    """Unsupported configuration, e.g. an unknown recurrence type."""
