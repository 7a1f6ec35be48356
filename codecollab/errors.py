"""
Error taxonomy shared by the service and the client session.
"""


class CodecollabError(Exception):
    """Base class for all codecollab errors."""

    status_code = 500


class ValidationError(CodecollabError):
    """A required field is missing or an identifier is malformed."""

    status_code = 400


class NotFoundError(CodecollabError):
    status_code = 404


class MembershipError(CodecollabError):
    """The caller is not a member of the project it tries to mutate."""

    status_code = 403


class DuplicateProjectError(CodecollabError):
    status_code = 409


class AIServiceError(CodecollabError):
    """The AI provider could not be reached or returned an error."""

    status_code = 503


class ProjectStoreError(CodecollabError):
    """A call from the client session to the project store failed."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ProjectStoreError):
    """The project store rejected our credentials (HTTP 401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)
