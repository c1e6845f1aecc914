"""Exceptions raised by the evaluation pipeline."""


class BatchEvalError(Exception):
    """Base class for pipeline errors."""


class EvaluatorConfigError(BatchEvalError):
    """The evaluator cannot be used (no credential or model configured).

    The only fatal condition: raised before any item is processed.
    """


class EvaluatorError(BatchEvalError):
    """The scoring call failed."""


class EvaluatorOutputError(EvaluatorError):
    """The evaluator replied, but the reply is not a usable score."""


class SessionInProgressError(BatchEvalError):
    """start_session was called while this orchestrator was already running."""
