"""
Error taxonomy for the workflow engine.

Node-level failures are converted into failed Task/Execution records by the
executor. PersistenceError is the exception that always propagates: once the
ledger cannot be written the run cannot be trusted to resume.
"""


class AgentFlowError(Exception):
    """Base class for all engine errors."""


class GraphStructureError(AgentFlowError):
    """The workflow graph cannot be executed (e.g. no trigger node)."""


class ModelInvocationError(AgentFlowError):
    """The language model raised or returned unusable output."""

    def __init__(self, message: str, attempts: int = 1, raw_response: str | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.raw_response = raw_response


class DecisionParseError(ModelInvocationError):
    """A condition node could not obtain a valid {decision, reasoning} object."""


class InputValidationError(AgentFlowError):
    """Supplied human input was rejected; the pending request stays open."""

    def __init__(self, message: str, node_id: str = "", field: str | None = None):
        super().__init__(message)
        self.node_id = node_id
        self.field = field


class PersistenceError(AgentFlowError):
    """A write to durable storage failed."""


class InvalidTransitionError(AgentFlowError):
    """A status change that the Execution/Task state machine does not allow."""


class ExecutionNotFoundError(AgentFlowError, KeyError):
    """No execution is known under the given id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class NoPendingInputError(AgentFlowError):
    """Input was provided for an execution that is not awaiting any."""


class WorkflowNotFoundError(AgentFlowError, KeyError):
    """No workflow is stored under the given id."""

    def __str__(self) -> str:
        return Exception.__str__(self)
