"""SubmitSurveyResponse: gate checks, validation, atomic persist.

Gates run in a fixed order and the first failure stops the submission:
survey exists → survey is active → respondent has not responded yet →
answers payload is a list → every answer validates → response is written.
"""
import logging
from typing import Any, Optional

from errors import NotFound, Forbidden, DuplicateSubmission, SurveyError
from validation import validate_answers

logger = logging.getLogger(__name__)

RECEIVED = "received_request"
SURVEY_CHECKED = "survey_checked"
VALIDATED = "validated"
PERSISTED = "persisted"
REJECTED = "rejected"


def submit_response(store, survey_id: int, respondent_id: Optional[int], answers: Any):
    """Validate and persist one survey response.

    Args:
        store: Accessor exposing get_survey, list_questions, has_responded
            and write_response (see store.SurveyStore).
        survey_id (int): Target survey.
        respondent_id (int|None): Authenticated user, or None for anonymous.
        answers: Raw answers payload from the request body.

    Returns:
        The persisted response row, with its answers.

    Raises:
        SurveyError: NotFound, Forbidden, InvalidInput or StorageFailure.
    """
    state = RECEIVED
    log_ctx = {"survey_id": survey_id, "respondent_id": respondent_id}
    try:
        survey = store.get_survey(survey_id)
        if survey is None:
            raise NotFound("Survey not found")
        if not survey.is_active:
            raise Forbidden("This survey is not currently accepting responses")
        if respondent_id is not None and store.has_responded(survey_id, respondent_id):
            raise DuplicateSubmission()
        state = SURVEY_CHECKED
        logger.debug("Submission %s", state, extra=log_ctx)

        validated = validate_answers(store.list_questions(survey_id), answers)
        state = VALIDATED
        logger.debug("Submission %s with %d answers", state, len(validated), extra=log_ctx)

        response = store.write_response(survey_id, respondent_id, validated)
    except SurveyError as exc:
        logger.info("Submission %s after %s: %s (%s)", REJECTED, state, exc.message, exc.kind,
                    extra={**log_ctx, "error_kind": exc.kind})
        raise

    logger.info("Submission %s as response %s", PERSISTED, response.id, extra=log_ctx)
    return response
