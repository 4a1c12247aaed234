"""Error types raised by the auto-fill pipeline."""


class AutofillError(RuntimeError):
    """Base class for service errors."""


class MalformedDocument(AutofillError):
    """The byte stream is not a parseable PDF form document."""


class ExtractionFailed(AutofillError):
    """The upstream data-extraction call failed."""


class TemplateNotFound(AutofillError):
    """No stored template exists for the requested id."""

    def __init__(self, template_id: str):
        super().__init__(f"Template '{template_id}' not found")
        self.template_id = template_id


class GenerationFailed(AutofillError):
    """A generation run could not produce every requested document."""

    def __init__(self, template_name: str, reason: str):
        super().__init__(f"Could not generate '{template_name}': {reason}")
        self.template_name = template_name
        self.reason = reason
