from __future__ import annotations


class SessionError(RuntimeError):
    """Fatal session condition. Propagates to the top-level runner."""


class LoginError(SessionError):
    pass


class FailureThresholdExceeded(SessionError):
    pass


class EvaluationError(SessionError):
    pass


class OracleError(RuntimeError):
    pass


class TransientOracleError(OracleError):
    pass


class AnswerRejected(OracleError):
    pass


class ApplyError(RuntimeError):
    pass
