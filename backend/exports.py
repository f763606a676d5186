"""Admin downloads of a questionnaire's responses (CSV and Markdown)."""
from __future__ import annotations
import re
from urllib.parse import quote

import pandas as pd

from attachments import resolve_urls, display_name

CSV_COLUMNS = ["Question", "Type", "Required", "Response", "File URLs"]


def _response_map(questionnaire) -> dict:
    return {r.question_id: r for r in questionnaire.responses}


def export_filename(questionnaire, ext: str) -> str:
    """ASCII-only download name; falls back to the id when nothing of the title survives."""
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", questionnaire.title).strip("_")
    if not stem:
        stem = f"questionnaire_{questionnaire.id}"
    return f"{stem}_responses.{ext}"


def content_disposition(questionnaire, ext: str) -> str:
    # header values must be latin-1; the full title travels in filename* (RFC 5987)
    full = re.sub(r"\s+", "_", questionnaire.title.strip()) or f"questionnaire_{questionnaire.id}"
    quoted = quote(f"{full}_responses.{ext}", safe="")
    return f"attachment; filename=\"{export_filename(questionnaire, ext)}\"; filename*=UTF-8''{quoted}"


def to_csv(questionnaire) -> bytes:
    responses = _response_map(questionnaire)
    rows = []
    for q in questionnaire.questions:
        r = responses.get(q.id)
        rows.append([
            q.question_text,
            q.question_type,
            "Yes" if q.is_required else "No",
            (r.response_text if r else None) or "",
            " | ".join(resolve_urls(r)),
        ])
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.to_csv(index=False).encode("utf-8")


def to_markdown(questionnaire) -> str:
    responses = _response_map(questionnaire)
    completed = questionnaire.completed_at.strftime("%b %d, %Y %H:%M") if questionnaire.completed_at else ""
    lines = [
        f"# {questionnaire.title}",
        "",
        f"**Client:** {questionnaire.client_name}",
        f"**Completed:** {completed}",
        "",
        "---",
        "",
    ]
    for i, q in enumerate(questionnaire.questions):
        r = responses.get(q.id)
        lines += [f"## Q{i + 1}: {q.question_text}", ""]
        if r and r.response_text:
            lines += [r.response_text, ""]
            continue
        urls = resolve_urls(r)
        if urls:
            lines += [f"[{display_name(u, idx)}]({u})" for idx, u in enumerate(urls)]
            lines.append("")
        else:
            lines += ["*No response*", ""]
    return "\n".join(lines)
