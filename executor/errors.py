from typing import List, Optional


class AutomationError(Exception):
    """Base class for engine errors."""


class AutomationNotFoundError(AutomationError):
    def __init__(self, automation_id: str):
        super().__init__(f"Automation {automation_id} not found.")
        self.automation_id = automation_id


class EnrollmentNotFoundError(AutomationError):
    def __init__(self, enrollment_id: str):
        super().__init__(f"Enrollment {enrollment_id} not found.")
        self.enrollment_id = enrollment_id


class InvalidStateTransition(AutomationError):
    pass


class ConfigurationError(AutomationError):
    """
    A problem with the automation definition discovered while running one
    enrollment (dangling reference, hop budget exhausted). Never retried.
    """


class GraphValidationError(AutomationError):
    def __init__(self, errors: List[str]):
        super().__init__("Invalid action graph: " + "; ".join(errors))
        self.errors = errors


class ActionError(AutomationError):
    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.detail = detail or {}


class TransientActionError(ActionError):
    """Timeout or collaborator-reported transient failure; retried with backoff."""


class PermanentActionError(ActionError):
    """Collaborator-reported validation error; escalated immediately."""


class WebhookSignatureError(AutomationError):
    pass


class StaleEnrollmentError(AutomationError):
    """The enrollment changed since it was read (optimistic version check failed)."""
