import logging
from typing import Optional
from fastapi import FastAPI, Depends, UploadFile, File, Form, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

import intake
from attachments import resolve_urls, describe
from config import ORIGINS
from csv_import import parse_questions, TEMPLATE
from db import Base, engine, get_db
from errors import AppError, NotFound, Conflict, ValidationError
from exports import to_csv, to_markdown, content_disposition
from logging_setup import configure_logging
from models import Questionnaire, Question, Response as ResponseRow, COMPLETED
from schemas import (
    QuestionnaireCreate, QuestionnaireUpdate, QuestionnaireOut, QuestionOut, ResponseOut, SaveResponse,
)
from security import verify_admin
from storage import ObjectStore, get_store, get_optional_store, upload_attachment, remove_objects

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Intake Questionnaire API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)


# ------------------------
# Error envelope: {"error": {"message": ...}}
# ------------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": {"message": str(exc.detail)}})

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": {"message": message, "details": errors}})

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": {"message": "Database error"}})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": {"message": "An unexpected error occurred"}})


# ------------------------
# Serializers
# ------------------------
def _questionnaire_out(q: Questionnaire) -> dict:
    return QuestionnaireOut.model_validate(q).model_dump()

def _questions_out(q: Questionnaire) -> list[dict]:
    return [QuestionOut.model_validate(x).model_dump() for x in q.questions]

def _response_out(r: ResponseRow) -> dict:
    return ResponseOut(
        id=r.id,
        questionnaire_id=r.questionnaire_id,
        question_id=r.question_id,
        response_text=r.response_text,
        file_url=r.file_url,
        file_urls=resolve_urls(r),
        created_at=r.created_at,
        updated_at=r.updated_at,
    ).model_dump()

def _responses_in_order(db: Session, questionnaire_id: int) -> list[ResponseRow]:
    return db.execute(
        select(ResponseRow)
        .join(Question, Question.id == ResponseRow.question_id)
        .where(ResponseRow.questionnaire_id == questionnaire_id)
        .order_by(Question.display_order)
    ).scalars().all()

def _get_questionnaire(db: Session, questionnaire_id: int) -> Questionnaire:
    q = db.get(Questionnaire, questionnaire_id)
    if not q:
        raise NotFound("Questionnaire not found")
    return q


@app.get("/health")
def health():
    """Basic readiness probe.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}

# ------------------------
# Admin: questionnaires
# ------------------------
@app.get("/questionnaires", dependencies=[Depends(verify_admin)])
def list_questionnaires(db: Session = Depends(get_db)):
    """List all questionnaires, newest first, with questions and response counts.

    Args:
        db (Session): DB session.

    Returns:
        dict: {"data": [{...questionnaire, questions[], response_count}]}
    """
    rows = db.execute(
        select(Questionnaire).order_by(Questionnaire.created_at.desc(), Questionnaire.id.desc())
    ).scalars().all()
    counts = dict(db.execute(
        select(ResponseRow.questionnaire_id, func.count()).group_by(ResponseRow.questionnaire_id)
    ).all())
    out = []
    for q in rows:
        item = _questionnaire_out(q)
        item["questions"] = _questions_out(q)
        item["response_count"] = counts.get(q.id, 0)
        out.append(item)
    return {"data": out}

@app.post("/questionnaires", status_code=201, dependencies=[Depends(verify_admin)])
def create_questionnaire(payload: QuestionnaireCreate, db: Session = Depends(get_db)):
    """Create a questionnaire together with its questions.

    Args:
        payload (QuestionnaireCreate): title, client_name (both required), questions[].
        db (Session): DB session.

    Returns:
        dict: {"data": {...questionnaire, questions[]}}

    Raises:
        ValidationError: 400 if title/client name or any question text is blank.
    """
    q = intake.create_questionnaire(db, payload.title, payload.client_name, payload.questions)
    out = _questionnaire_out(q)
    out["questions"] = _questions_out(q)
    return {"data": out}

@app.get("/questionnaires/csv-template", dependencies=[Depends(verify_admin)])
def csv_template():
    """Download a starter CSV for question import."""
    return Response(content=TEMPLATE.encode("utf-8"), media_type="text/csv",
                    headers={"Content-Disposition": "attachment; filename=questionnaire_template.csv"})

@app.post("/questionnaires/import-csv", dependencies=[Depends(verify_admin)])
async def import_csv(file: UploadFile = File(...)):
    """Parse a question CSV into question payloads (nothing is saved).

    Args:
        file (UploadFile): CSV with a ``question_text`` header.

    Returns:
        dict: {"data": {"questions": [...], "count": int}}

    Raises:
        ValidationError: 400 for any CSV format/limit problem.
    """
    raw = await file.read()
    questions = parse_questions(file.filename or "", raw)
    return {"data": {"questions": questions, "count": len(questions)}}

@app.get("/questionnaires/{questionnaire_id}", dependencies=[Depends(verify_admin)])
def get_questionnaire(questionnaire_id: int, db: Session = Depends(get_db)):
    """Questionnaire detail with ordered questions and stored responses.

    Raises:
        NotFound: 404 if questionnaire not found.
    """
    q = _get_questionnaire(db, questionnaire_id)
    out = _questionnaire_out(q)
    out["questions"] = _questions_out(q)
    out["responses"] = [_response_out(r) for r in _responses_in_order(db, q.id)]
    return {"data": out}

@app.patch("/questionnaires/{questionnaire_id}", dependencies=[Depends(verify_admin)])
def update_questionnaire(questionnaire_id: int, payload: QuestionnaireUpdate, db: Session = Depends(get_db)):
    """Update title/client name, move status forward, or replace the question set.

    Replacing questions drops every stored response of the old questions.

    Args:
        questionnaire_id (int): Questionnaire PK.
        payload (QuestionnaireUpdate): Any of title, client_name, status, questions.
        db (Session): DB session.

    Returns:
        dict: {"data": {...questionnaire, questions[]}}

    Raises:
        NotFound: 404 if questionnaire not found.
        ValidationError: 400 for blank title/client name/question text.
        Conflict: 409 for backward status moves or editing questions after completion.
    """
    q = _get_questionnaire(db, questionnaire_id)
    if payload.title is not None:
        if not payload.title.strip():
            raise ValidationError("Title cannot be empty")
        q.title = payload.title.strip()
    if payload.client_name is not None:
        if not payload.client_name.strip():
            raise ValidationError("Client name cannot be empty")
        q.client_name = payload.client_name.strip()
    if payload.questions is not None:
        intake.replace_questions(db, q, payload.questions)
    if payload.status is not None:
        intake.change_status(q, payload.status)
    db.commit()
    db.refresh(q)
    logger.info("Updated questionnaire %s", q.id)
    out = _questionnaire_out(q)
    out["questions"] = _questions_out(q)
    return {"data": out}

@app.delete("/questionnaires/{questionnaire_id}", dependencies=[Depends(verify_admin)])
def delete_questionnaire(questionnaire_id: int, db: Session = Depends(get_db),
                         store: Optional[ObjectStore] = Depends(get_optional_store)):
    """Hard-delete a questionnaire (questions/responses via FKs) and its uploads.

    Stored objects are removed after the commit; storage failures are logged only.

    Raises:
        NotFound: 404 if questionnaire not found.
    """
    q = _get_questionnaire(db, questionnaire_id)
    urls = [u for r in q.responses for u in resolve_urls(r)]
    db.delete(q)
    db.commit()
    logger.info("Deleted questionnaire %s", questionnaire_id)
    if store is not None and urls:
        remove_objects(store, urls)
    return {"data": {"success": True}}

# ------------------------
# Admin: review/export responses
# ------------------------
@app.get("/questionnaires/{questionnaire_id}/responses", dependencies=[Depends(verify_admin)])
def review_responses(questionnaire_id: int, db: Session = Depends(get_db)):
    """Every question in order, paired with its response and named attachments.

    Returns:
        dict: {"data": {"questionnaire": {...}, "items": [{question, response, attachments}]}}
    """
    q = _get_questionnaire(db, questionnaire_id)
    by_question = {r.question_id: r for r in q.responses}
    items = []
    for question in q.questions:
        r = by_question.get(question.id)
        items.append({
            "question": QuestionOut.model_validate(question).model_dump(),
            "response": _response_out(r) if r else None,
            "attachments": describe(r),
        })
    return {"data": {"questionnaire": _questionnaire_out(q), "items": items}}

@app.get("/questionnaires/{questionnaire_id}/export.csv", dependencies=[Depends(verify_admin)])
def export_csv(questionnaire_id: int, db: Session = Depends(get_db)):
    """Export responses as CSV, one row per question in display order."""
    q = _get_questionnaire(db, questionnaire_id)
    return Response(content=to_csv(q), media_type="text/csv",
                    headers={"Content-Disposition": content_disposition(q, "csv")})

@app.get("/questionnaires/{questionnaire_id}/export.md", dependencies=[Depends(verify_admin)])
def export_markdown(questionnaire_id: int, db: Session = Depends(get_db)):
    """Export responses as a Markdown document."""
    q = _get_questionnaire(db, questionnaire_id)
    return Response(content=to_markdown(q).encode("utf-8"), media_type="text/markdown",
                    headers={"Content-Disposition": content_disposition(q, "md")})


# ------------------------
# Public: intake by session token
# ------------------------
@app.get("/intake/{session_token}")
def load_intake(session_token: str, db: Session = Depends(get_db)):
    """Resolve a session token to questionnaire, questions, responses and progress.

    Raises:
        NotFound: 404 if the token is unknown.
    """
    q = intake.get_by_token(db, session_token)
    out = _questionnaire_out(q)
    out["questions"] = _questions_out(q)
    out["responses"] = [_response_out(r) for r in _responses_in_order(db, q.id)]
    out["progress"] = intake.progress(db, q)
    return {"data": out}

@app.get("/intake/{session_token}/responses")
def list_responses(session_token: str, db: Session = Depends(get_db)):
    """List stored responses in question order."""
    q = intake.get_by_token(db, session_token)
    return {"data": [_response_out(r) for r in _responses_in_order(db, q.id)]}

@app.post("/intake/{session_token}/responses")
def save_response(session_token: str, body: SaveResponse, db: Session = Depends(get_db)):
    """Create or overwrite the response to one question.

    Args:
        session_token (str): Public questionnaire token.
        body (SaveResponse): question_id plus response_text or file_urls
            (legacy clients may send a single file_url).
        db (Session): DB session.

    Returns:
        dict: {"data": {...response}}

    Raises:
        NotFound: 404 unknown token or foreign question.
        Conflict: 409 questionnaire already submitted.
        ValidationError: 400 answer shape invalid for the question.
    """
    answer = intake.Answer.from_payload(body.response_text, body.file_urls, body.file_url)
    row = intake.save_response(db, session_token, body.question_id, answer)
    return {"data": _response_out(row)}

@app.post("/intake/{session_token}/submit")
def submit_intake(session_token: str, db: Session = Depends(get_db)):
    """Complete the questionnaire once all required questions are answered.

    Raises:
        NotFound: 404 unknown token.
        Conflict: 409 already submitted.
        ValidationError: 400 with remaining required question ids.
    """
    q = intake.submit(db, session_token)
    return {"data": _questionnaire_out(q)}

@app.post("/uploads")
async def upload_file(file: UploadFile = File(...), session_token: str = Form(...),
                      db: Session = Depends(get_db), store: ObjectStore = Depends(get_store)):
    """Store an attachment for an intake session and return its public URL.

    Raises:
        NotFound: 404 unknown token.
        Conflict: 409 questionnaire already submitted.
        ValidationError: 400 empty, oversized (>50MB) or disallowed type.
        InternalError: 500 if the storage provider rejects the upload.
    """
    q = intake.get_by_token(db, session_token)
    if q.status == COMPLETED:
        raise Conflict("Questionnaire already submitted")
    data = await file.read()
    result = upload_attachment(store, q.session_token, file.filename or "upload", file.content_type, data)
    return {"data": result}
