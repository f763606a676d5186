"""Backfill ``responses.file_urls`` from the legacy ``file_url`` column.

Run from ``backend/``:  python -m scripts.migrate_file_urls
"""
import json
import logging
import sys

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import Base, SessionLocal, engine
from logging_setup import configure_logging
from models import Response

logger = logging.getLogger("migrate_file_urls")


def pending(db: Session) -> list[Response]:
    return db.execute(
        select(Response).where(
            Response.file_url.is_not(None),
            or_(Response.file_urls.is_(None), Response.file_urls == ""),
        )
    ).scalars().all()


def migrate_file_urls(db: Session) -> dict:
    """Copy each legacy URL into a one-item JSON list.

    Rows are committed one at a time; a failing row is rolled back, logged
    and counted, and the run continues.

    Returns:
        dict: {"found", "migrated", "errors"}
    """
    rows = pending(db)
    logger.info("Found %d responses to migrate", len(rows))
    migrated = errors = 0
    for row in rows:
        row_id = row.id
        try:
            row.file_urls = json.dumps([row.file_url])
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error migrating response %s", row_id)
            errors += 1
            continue
        migrated += 1
        if migrated % 100 == 0:
            logger.info("Migrated %d/%d...", migrated, len(rows))
    logger.info("Migration complete: %d migrated, %d errors", migrated, errors)
    return {"found": len(rows), "migrated": migrated, "errors": errors}


def main() -> int:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        result = migrate_file_urls(db)
    finally:
        db.close()
    if result["errors"]:
        logger.warning("Some responses failed to migrate; review the errors above")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
