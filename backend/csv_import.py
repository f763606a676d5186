"""Question import from a one-column CSV (``question_text``)."""
from __future__ import annotations
import io

import pandas as pd

from errors import ValidationError
from models import OPEN_ENDED

MAX_QUESTIONS = 200
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB

TEMPLATE = (
    "question_text\n"
    "What is your primary business objective?\n"
    "Describe your current challenges or pain points\n"
    "What is your target timeline for this project?\n"
)


def parse_questions(filename: str, raw: bytes) -> list[dict]:
    """Turn CSV bytes into question payloads (OPEN_ENDED, required).

    Args:
        filename (str): Uploaded file name; must end in ``.csv``.
        raw (bytes): File content.

    Returns:
        list[dict]: ``[{question_text, question_type, is_required}]`` in row order.

    Raises:
        ValidationError: Wrong extension, empty/oversized file, missing
            ``question_text`` header, no usable rows, or more than
            ``MAX_QUESTIONS`` rows.
    """
    if not (filename or "").lower().endswith(".csv"):
        raise ValidationError("Invalid file format. Please upload a CSV file.")
    if len(raw) > MAX_FILE_SIZE:
        raise ValidationError("File is too large. Maximum file size is 5MB.")
    if not raw.strip():
        raise ValidationError("CSV file is empty or cannot be read.")

    try:
        # the first row fixes the field count; a longer row is a parse error, never an index
        df = pd.read_csv(io.BytesIO(raw), header=None, dtype=str, keep_default_na=False,
                         skip_blank_lines=True, encoding="utf-8-sig")
    except pd.errors.EmptyDataError:
        raise ValidationError("CSV file is empty or cannot be read.")
    except pd.errors.ParserError as e:
        raise ValidationError(f"Failed to parse CSV: {str(e).strip()}. Quote question text that contains commas.")
    except UnicodeDecodeError as e:
        raise ValidationError(f"Failed to parse CSV: {e}")

    header = [str(c).strip().lower() for c in df.iloc[0]]
    if "question_text" not in header:
        raise ValidationError('CSV must have a "question_text" header in the first row.')
    column = df.iloc[1:, header.index("question_text")]

    texts = [t.strip() for t in column.tolist() if isinstance(t, str) and t.strip()]
    if not texts:
        raise ValidationError("No valid questions found in CSV. Each row must have text in the question_text column.")
    if len(texts) > MAX_QUESTIONS:
        raise ValidationError(f"CSV contains too many questions (max {MAX_QUESTIONS}). Please split into smaller files.")

    return [{"question_text": t, "question_type": OPEN_ENDED, "is_required": True} for t in texts]
