class QuizMakerError(Exception):
    """Base class for errors raised while taking or recording a quiz."""

    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(QuizMakerError):
    status_code = 404
    default_message = "Not found"


class InvalidInput(QuizMakerError):
    status_code = 400
    default_message = "Invalid input"


class Unauthorized(QuizMakerError):
    status_code = 403
    default_message = "Unauthorized"


class PersistenceFailure(QuizMakerError):
    # The message shown to callers stays generic, the cause is logged where it is raised
    status_code = 500
    default_message = "Failed to store quiz results"
