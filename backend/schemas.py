# schemas.py
from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional, Literal

QuestionType = Literal["OPEN_ENDED", "SHORT_ANSWER", "FILE_UPLOAD"]
Status = Literal["NOT_STARTED", "IN_PROGRESS", "COMPLETED"]

class QuestionCreate(BaseModel):
    question_text: str
    question_type: QuestionType = "OPEN_ENDED"
    is_required: bool = True

class QuestionnaireCreate(BaseModel):
    title: str = ""
    client_name: str = ""
    questions: List[QuestionCreate] = []

class QuestionnaireUpdate(BaseModel):
    title: Optional[str] = None
    client_name: Optional[str] = None
    status: Optional[Status] = None
    questions: Optional[List[QuestionCreate]] = None   # replaces the whole question set

class QuestionOut(BaseModel):
    id: int
    questionnaire_id: int
    question_text: str
    question_type: str
    is_required: bool
    display_order: int
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class ResponseOut(BaseModel):
    id: int
    questionnaire_id: int
    question_id: int
    response_text: Optional[str] = None
    file_url: Optional[str] = None
    file_urls: List[str] = []      # resolved, never the raw JSON text
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class QuestionnaireOut(BaseModel):
    id: int
    session_token: str
    title: str
    client_name: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class SaveResponse(BaseModel):
    question_id: int
    response_text: Optional[str] = None
    file_urls: Optional[list] = None     # validated by attachments.validate_file_urls
    file_url: Optional[str] = None       # legacy clients send a single URL

