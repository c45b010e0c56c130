from typing import Optional


class SurveyError(Exception):
    """Base for every failure reported back to API callers.

    Args:
        message (str): Stable, user-facing description of the violated rule.
        question_id (int|None): Offending question, when the rule is per-question.
    """
    kind = "Error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, question_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.question_id = question_id

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message, "error": self.kind}
        if self.question_id is not None:
            body["question_id"] = self.question_id
        return body


class NotFound(SurveyError):
    kind = "NotFound"
    status_code = 404


class Forbidden(SurveyError):
    kind = "Forbidden"
    status_code = 403


class DuplicateSubmission(Forbidden):
    status_code = 409

    def __init__(self, message: str = "You have already submitted a response to this survey"):
        super().__init__(message)


class InvalidInput(SurveyError):
    kind = "InvalidInput"
    status_code = 400


class Unauthorized(SurveyError):
    kind = "Unauthorized"
    status_code = 401


class StorageFailure(SurveyError):
    kind = "StorageFailure"
    status_code = 500
    retryable = True

    def __init__(self, message: str = "Failed to submit response"):
        super().__init__(message)
