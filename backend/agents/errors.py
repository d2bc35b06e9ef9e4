"""Error taxonomy for agent and workflow operations.

Every error carries an ``AgentErrorType`` so that a host UI can render a
user-facing message and troubleshooting hints without inspecting the
exception class.
"""

from enum import StrEnum


class AgentErrorType(StrEnum):
    """All agent error categories."""

    CREATION_FAILED = "CREATION_FAILED"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    MESSAGE_PROCESSING_FAILED = "MESSAGE_PROCESSING_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    AGENT_UNRESPONSIVE = "AGENT_UNRESPONSIVE"
    WORKFLOW_MISCONFIGURED = "WORKFLOW_MISCONFIGURED"
    WORKFLOW_BUSY = "WORKFLOW_BUSY"


AGENT_ERROR_MESSAGES: dict[AgentErrorType, str] = {
    AgentErrorType.CREATION_FAILED: (
        "Failed to create agent. Please try creating a new conversation "
        "or restart the extension."
    ),
    AgentErrorType.INITIALIZATION_FAILED: (
        "Failed to initialize agent. Please check your settings and ensure "
        "your API keys are configured correctly."
    ),
    AgentErrorType.MESSAGE_PROCESSING_FAILED: (
        "Failed to process message. The agent encountered an error while "
        "processing your request."
    ),
    AgentErrorType.NETWORK_ERROR: (
        "Network error occurred while communicating with the AI provider. "
        "Please check your internet connection and try again."
    ),
    AgentErrorType.AGENT_UNRESPONSIVE: (
        "The agent has become unresponsive. You can abort the current "
        "operation and restart the agent."
    ),
    AgentErrorType.WORKFLOW_MISCONFIGURED: (
        "The workflow references an agent that is not part of its roster."
    ),
    AgentErrorType.WORKFLOW_BUSY: (
        "A workflow is already running. Please wait or abort it first."
    ),
}

AGENT_ERROR_TROUBLESHOOTING: dict[AgentErrorType, list[str]] = {
    AgentErrorType.CREATION_FAILED: [
        "Check that your API keys are configured in settings",
        "Verify that the selected AI provider is available",
        "Try restarting the extension",
    ],
    AgentErrorType.INITIALIZATION_FAILED: [
        "Verify your API keys in Settings",
        "Check that you have selected a valid AI provider",
        "Try switching to a different AI provider",
    ],
    AgentErrorType.MESSAGE_PROCESSING_FAILED: [
        "Try sending the message again",
        "Verify that your API quota has not been exceeded",
    ],
    AgentErrorType.NETWORK_ERROR: [
        "Check your internet connection",
        "Retry once the provider is reachable",
    ],
}


class AgentError(Exception):
    """Base class for all agent and workflow errors.

    Attributes:
        error_type: Category of the failure. Subclasses set a default; a raiser can
            narrow it, e.g. a task failure caused by an unreachable provider.
        conversation_id: Conversation the failure belongs to, if any.
        agent_id: Workflow agent the failure belongs to, if any.
    """

    error_type: AgentErrorType = AgentErrorType.MESSAGE_PROCESSING_FAILED

    def __init__(
        self,
        message: str,
        *,
        conversation_id: str | None = None,
        agent_id: str | None = None,
        error_type: AgentErrorType | None = None,
    ) -> None:
        super().__init__(message)
        if error_type is not None:
            self.error_type = error_type
        self.conversation_id = conversation_id
        self.agent_id = agent_id

    @property
    def user_message(self) -> str:
        """User-facing description of the error category."""
        return AGENT_ERROR_MESSAGES.get(self.error_type, str(self))

    @property
    def troubleshooting(self) -> list[str]:
        """Troubleshooting hints for the error category (possibly empty)."""
        return list(AGENT_ERROR_TROUBLESHOOTING.get(self.error_type, []))


class AgentConstructionError(AgentError):
    """Agent creation failed (e.g. missing credentials)."""

    error_type = AgentErrorType.CREATION_FAILED


class TaskExecutionError(AgentError):
    """An agent task failed while producing its response."""

    error_type = AgentErrorType.MESSAGE_PROCESSING_FAILED


class AgentAbortedError(AgentError):
    """An in-flight agent call was aborted."""

    error_type = AgentErrorType.AGENT_UNRESPONSIVE


class MisconfiguredWorkflowError(AgentError):
    """A workflow step references an agent id missing from the roster."""

    error_type = AgentErrorType.WORKFLOW_MISCONFIGURED


class WorkflowAlreadyRunningError(AgentError):
    """``execute_workflow`` was called while another run is in flight."""

    error_type = AgentErrorType.WORKFLOW_BUSY
