# schemas.py
from pydantic import BaseModel, Field, StrictInt, StrictStr, StrictBool, StrictFloat, model_validator
from typing import Any, List, Optional, Literal, Union

QuestionType = Literal["text", "single_choice", "multiple_choice", "rating", "boolean"]

def _check_options(qtype: Optional[str], options: Optional[List[str]]) -> None:
    if qtype in ("single_choice", "multiple_choice") and (not options or len(options) < 2):
        raise ValueError("Choice questions require at least 2 options")

class SurveyCreate(BaseModel):
    title: str
    description: Optional[str] = None
    is_active: bool = True

class SurveyUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class QuestionCreate(BaseModel):
    text: str
    type: QuestionType = "text"
    options: Optional[List[str]] = None
    is_required: bool = False
    order_index: Optional[int] = None   # None → appended after the last question

    @model_validator(mode="after")
    def _choices_need_options(self):
        _check_options(self.type, self.options)
        return self

class QuestionUpdate(BaseModel):
    text: Optional[str] = None
    type: Optional[QuestionType] = None
    options: Optional[List[str]] = None
    is_required: Optional[bool] = None
    order_index: Optional[int] = None

class QuestionOrder(BaseModel):
    question_id: StrictInt
    order_index: StrictInt

class ReorderQuestions(BaseModel):
    questions: List[QuestionOrder] = Field(..., min_length=1)

class AnswerIn(BaseModel):
    question_id: StrictInt
    answer_text: Optional[Union[StrictBool, StrictInt, StrictFloat, StrictStr]] = None

class SubmitResponse(BaseModel):
    # kept loose: survey/respondent gates run before the answers shape is checked
    answers: Any = None

class TokenRequest(BaseModel):
    user_id: int = Field(..., gt=0)
