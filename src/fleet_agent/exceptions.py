"""Exceptions raised by the instance agent."""


class AgentError(Exception):
    """Base class for agent errors."""


class InvalidStateError(AgentError, ValueError):
    """Lifecycle value outside the set of known states."""


class AlreadyListeningError(AgentError):
    """Command listener started while a previous one is still bound."""


class FatalWorkerError(AgentError):
    """Unexpected fault in the bundle worker.

    Raised out of the worker task so that the supervisor can observe it and
    restart the worker.
    """

    def __init__(self, message: str, audit_id=None):
        super().__init__(message)
        self.audit_id = audit_id
