"""Domain errors for sfpromoter."""


class PipelineError(RuntimeError):
    """Raised when the pipeline cannot continue safely."""


class ConfigurationError(PipelineError):
    """Raised for invalid run parameters, before any external call."""


class QualityGateError(PipelineError):
    """Raised when a quality gate (e.g. coverage) is not met."""


class ApprovalError(PipelineError):
    """Raised when the approval gate does not grant promotion."""


class ApprovalTimeoutError(ApprovalError):
    pass


class ApprovalRejectedError(ApprovalError):
    pass
