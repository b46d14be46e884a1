"""Error taxonomy for the agent core.

Every error carries a stable ``code`` so the HTTP layer and event
consumers can branch on it without parsing messages.
"""


class AgentError(Exception):
    """Base class for all agent errors."""

    code = "AgentError"

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, str | None]:
        return {"code": self.code, "message": self.message, "details": self.details}


class GeneratorUnavailableError(AgentError):
    """Raised when the text generator has no credentials configured."""

    code = "GeneratorUnavailable"


class GeneratorCallError(AgentError):
    """Raised when a text generation request fails or returns garbage."""

    code = "GeneratorCallFailed"


class AnalysisFailedError(AgentError):
    """Raised when an instruction cannot be turned into a requirement analysis."""

    code = "AnalysisFailed"


class PlanStepFailedError(AgentError):
    """Raised by a step handler to fail the current work plan step."""

    code = "PlanStepFailed"

    def __init__(self, step_id: str, message: str, details: str | None = None):
        self.step_id = step_id
        super().__init__(message, details)


class ArtifactNotFoundError(AgentError):
    """Raised when modifying or deleting an artifact that does not exist."""

    code = "ArtifactNotFound"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Artifact does not exist: {path}")


class PathTraversalError(AgentError):
    """Raised when a path resolves outside the artifact root."""

    code = "PathTraversalRejected"

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Path rejected: {path} ({reason})", reason)


class NoTemplateForKindError(AgentError):
    """Raised in strict mode when no template matches a game kind."""

    code = "NoTemplateForKind"

    def __init__(self, game_kind: str):
        self.game_kind = game_kind
        super().__init__(f"No template available for game kind: {game_kind}")


class InvalidControlTransitionError(AgentError):
    """A control call that is not valid in the current status.

    Never raised by the controller; used to render the warning it logs.
    """

    code = "InvalidControlTransition"

    def __init__(self, action: str, status: str):
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} while agent is {status}")
