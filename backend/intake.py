"""Response persistence and questionnaire status transitions.

Every function takes the request's ``Session`` and either commits its own
unit of work or raises an ``errors.AppError`` after rolling back.
"""
from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update, case, exists, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attachments import validate_file_urls, encode_file_urls
from errors import NotFound, Conflict, ValidationError, InternalError
from models import (
    Questionnaire, Question, Response,
    NOT_STARTED, IN_PROGRESS, COMPLETED, FILE_UPLOAD, STATUS_ORDER,
)

logger = logging.getLogger(__name__)

TOKEN_ATTEMPTS = 5

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass
class Answer:
    text: Optional[str] = None
    file_urls: Optional[list] = None

    @classmethod
    def from_payload(cls, response_text=None, file_urls=None, file_url=None) -> "Answer":
        """Build an answer from request fields; a lone legacy ``file_url`` becomes a one-item list."""
        if file_urls is None and file_url is not None:
            file_urls = [file_url]
        return cls(text=response_text, file_urls=file_urls)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_session_token() -> str:
    # 16 random bytes -> 22 URL-safe characters
    return secrets.token_urlsafe(16)


def get_by_token(db: Session, session_token: str) -> Questionnaire:
    q = db.execute(
        select(Questionnaire).where(Questionnaire.session_token == session_token)
    ).scalar_one_or_none()
    if not q:
        raise NotFound("Questionnaire not found")
    return q


def create_questionnaire(db: Session, title: str, client_name: str, questions: list) -> Questionnaire:
    """Insert a questionnaire and its questions in one transaction.

    ``display_order`` follows list position. A token collision (unique
    constraint) is retried with a fresh token.

    Raises:
        ValidationError: title or client name blank.
        InternalError: no unique token after ``TOKEN_ATTEMPTS`` tries.
    """
    title = (title or "").strip()
    client_name = (client_name or "").strip()
    if not title or not client_name:
        raise ValidationError("Title and client name are required")

    for _ in range(TOKEN_ATTEMPTS):
        row = Questionnaire(
            session_token=new_session_token(),
            title=title,
            client_name=client_name,
            status=NOT_STARTED,
        )
        row.questions = build_questions(questions)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            continue
        db.refresh(row)
        logger.info("Created questionnaire %s with %d questions", row.id, len(row.questions))
        return row

    raise InternalError("Failed to generate a unique session token")


def build_questions(questions: list) -> list[Question]:
    out = []
    for index, q in enumerate(questions or []):
        text = (q.question_text or "").strip()
        if not text:
            raise ValidationError(f"Question {index + 1} has no text")
        out.append(Question(
            question_text=text,
            question_type=q.question_type or "OPEN_ENDED",
            is_required=q.is_required,
            display_order=index,
        ))
    return out


def replace_questions(db: Session, questionnaire: Questionnaire, questions: list) -> int:
    """Swap the whole question set; returns how many responses were dropped.

    Old questions are deleted together with their responses (FK cascade)
    before the new set is inserted. Caller commits.
    """
    if questionnaire.status == COMPLETED:
        raise Conflict("Questionnaire already submitted")
    new_rows = build_questions(questions)
    dropped = len(questionnaire.responses)
    questionnaire.responses.clear()
    questionnaire.questions.clear()
    # deletes must hit the table before the inserts reuse display_order values
    db.flush()
    questionnaire.questions.extend(new_rows)
    if dropped:
        logger.warning("Question set of questionnaire %s replaced; %d responses dropped",
                       questionnaire.id, dropped)
    return dropped


def change_status(questionnaire: Questionnaire, status: str) -> None:
    """Forward-only admin status change; COMPLETED stamps ``completed_at``."""
    current = questionnaire.status
    if status == current:
        return
    if current == COMPLETED:
        raise Conflict("Questionnaire already submitted")
    if STATUS_ORDER.index(status) < STATUS_ORDER.index(current):
        raise Conflict(f"Cannot move questionnaire from {current} back to {status}")
    questionnaire.status = status
    if status == COMPLETED:
        questionnaire.completed_at = _now_utc()
    logger.info("Questionnaire %s status %s -> %s (admin)", questionnaire.id, current, status)


def _check_answer(question: Question, answer: Answer) -> None:
    has_text = answer.text is not None
    has_files = answer.file_urls is not None
    if has_text == has_files:
        raise ValidationError("Provide either response_text or file_urls")
    if has_files and not validate_file_urls(answer.file_urls):
        raise ValidationError("file_urls must be a non-empty list of non-empty strings")
    if question.question_type == FILE_UPLOAD and not has_files:
        raise ValidationError("This question expects file attachments")
    if question.question_type != FILE_UPLOAD and has_files:
        raise ValidationError("This question expects a text answer")


def _upsert(db: Session, values: dict) -> None:
    keys = ("questionnaire_id", "question_id")
    changes = {k: v for k, v in values.items() if k not in keys}
    changes["updated_at"] = func.now()

    insert = _UPSERT_DIALECTS.get(db.bind.dialect.name)
    if insert is not None:
        stmt = insert(Response).values(**values)
        db.execute(stmt.on_conflict_do_update(index_elements=list(keys), set_=changes))
        return

    # generic path: the unique constraint still decides between insert and update
    try:
        with db.begin_nested():
            db.execute(Response.__table__.insert().values(**values))
    except IntegrityError:
        db.execute(
            update(Response)
            .where(Response.questionnaire_id == values["questionnaire_id"],
                   Response.question_id == values["question_id"])
            .values(**changes)
            .execution_options(synchronize_session=False)
        )


def save_response(db: Session, session_token: str, question_id: int, answer: Answer) -> Response:
    """Create or overwrite the single response for a question.

    Moves a NOT_STARTED questionnaire to IN_PROGRESS in the same
    transaction. The status guard is part of the UPDATE itself, so a save
    that races a submit sees ``Conflict`` instead of writing.

    Args:
        db (Session): DB session.
        session_token (str): Public questionnaire token.
        question_id (int): Question being answered.
        answer (Answer): Text or file URLs.

    Returns:
        Response: The stored row, reloaded.

    Raises:
        NotFound: Unknown token, or question not in this questionnaire.
        Conflict: Questionnaire already COMPLETED.
        ValidationError: Answer shape doesn't fit the question.
    """
    q = get_by_token(db, session_token)
    if q.status == COMPLETED:
        raise Conflict("Questionnaire already submitted")

    question = db.execute(
        select(Question).where(Question.id == question_id, Question.questionnaire_id == q.id)
    ).scalar_one_or_none()
    if not question:
        raise NotFound("Question not found in this questionnaire")
    _check_answer(question, answer)

    if answer.file_urls is not None:
        file_urls, file_url = encode_file_urls(answer.file_urls)
        values = {"response_text": None, "file_urls": file_urls, "file_url": file_url}
    else:
        values = {"response_text": answer.text, "file_urls": None, "file_url": None}
    values.update(questionnaire_id=q.id, question_id=question.id)

    previous = q.status
    try:
        touched = db.execute(
            update(Questionnaire)
            .where(Questionnaire.id == q.id, Questionnaire.status != COMPLETED)
            .values(
                status=case((Questionnaire.status == NOT_STARTED, IN_PROGRESS), else_=Questionnaire.status),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if not touched:
            db.rollback()
            raise Conflict("Questionnaire already submitted")
        _upsert(db, values)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.exception("Response upsert failed for questionnaire %s question %s", q.id, question.id)
        raise InternalError("Failed to save response")

    if previous == NOT_STARTED:
        logger.info("Questionnaire %s status NOT_STARTED -> IN_PROGRESS", q.id)

    return db.execute(
        select(Response)
        .where(Response.questionnaire_id == q.id, Response.question_id == question.id)
        .execution_options(populate_existing=True)
    ).scalar_one()


def check_complete(db: Session, questionnaire: Questionnaire) -> list[Question]:
    """Required questions with no stored response, in display order.

    A response row counts as an answer whatever its content.
    """
    answered = exists().where(
        Response.questionnaire_id == questionnaire.id,
        Response.question_id == Question.id,
    )
    return db.execute(
        select(Question)
        .where(Question.questionnaire_id == questionnaire.id, Question.is_required == True, ~answered)
        .order_by(Question.display_order)
    ).scalars().all()


def submit(db: Session, session_token: str) -> Questionnaire:
    """Mark a questionnaire COMPLETED once every required question is answered.

    Raises:
        NotFound: Unknown token.
        Conflict: Already COMPLETED (including losing a concurrent submit).
        ValidationError: Required questions remain; details list them.
    """
    q = get_by_token(db, session_token)
    if q.status == COMPLETED:
        raise Conflict("Questionnaire already submitted")

    missing = check_complete(db, q)
    if missing:
        raise ValidationError(
            f"Please answer all required questions. {len(missing)} remaining.",
            details={"remaining": len(missing), "question_ids": [m.id for m in missing]},
        )

    now = _now_utc()
    done = db.execute(
        update(Questionnaire)
        .where(Questionnaire.id == q.id, Questionnaire.status != COMPLETED)
        .values(status=COMPLETED, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not done:
        db.rollback()
        raise Conflict("Questionnaire already submitted")
    db.commit()
    db.refresh(q)
    logger.info("Questionnaire %s submitted", q.id)
    return q


def progress(db: Session, questionnaire: Questionnaire) -> dict:
    total = db.execute(
        select(func.count()).select_from(Question).where(Question.questionnaire_id == questionnaire.id)
    ).scalar_one()
    answered = db.execute(
        select(func.count()).select_from(Response).where(Response.questionnaire_id == questionnaire.id)
    ).scalar_one()
    return {
        "answered": answered,
        "total": total,
        "required_remaining": len(check_complete(db, questionnaire)),
    }
