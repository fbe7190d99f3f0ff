"""Error taxonomy shared by the job pipeline, integrations and API.

Every error carries an HTTP-style status code and a stable error code so the
API layer can render it directly, and a ``retryable`` flag the job queue
consults before scheduling another attempt.
"""


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    retryable = False

    def __init__(self, message: str, status_code: int = 500, error_code: str = "pipeline_error"):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class AuthError(PipelineError):
    """Missing or expired provider credential. Never retried by the pipeline."""

    def __init__(self, message: str = "User not found or not authenticated"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="auth_error"
        )


class TransportError(PipelineError):
    """Provider or model unreachable, rate limited, or answering with an error."""

    retryable = True

    def __init__(self, message: str, status_code: int = 503, error_code: str = "transport_error"):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code
        )


class DataShapeError(PipelineError):
    """Model output missing or malformed. Callers recover with defaults."""

    def __init__(self, message: str = "Malformed structured response"):
        super().__init__(
            message=message,
            status_code=422,
            error_code="data_shape_error"
        )


class RecordNotFoundError(PipelineError):
    """A referenced user or email does not exist in the record store."""

    def __init__(self, message: str = "Record not found"):
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found"
        )


class InvalidJobPayloadError(PipelineError):
    """A queued payload failed schema validation."""

    def __init__(self, message: str = "Invalid job payload"):
        super().__init__(
            message=message,
            status_code=400,
            error_code="invalid_job_payload"
        )
