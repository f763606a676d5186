import io, csv
HDR = {"X-API-Key": "test-key"}

def _completed_questionnaire(client):
    d = client.post("/questionnaires", json={
        "title": "Export  Survey",
        "client_name": "Acme",
        "questions": [
            {"question_text": "Say \"hello\", please", "question_type": "OPEN_ENDED"},
            {"question_text": "Files", "question_type": "FILE_UPLOAD", "is_required": False},
            {"question_text": "Skipped", "question_type": "SHORT_ANSWER", "is_required": False},
        ],
    }, headers=HDR).json()["data"]
    token = d["session_token"]
    q1, q2, _ = (q["id"] for q in d["questions"])
    client.post(f"/intake/{token}/responses", json={"question_id": q1, "response_text": "hello, world"})
    client.post(f"/intake/{token}/responses", json={
        "question_id": q2, "file_urls": ["https://x/report.pdf", "https://drive.google.com/folders/abc"],
    })
    assert client.post(f"/intake/{token}/submit").status_code == 200
    return d["id"]

def test_export_csv(client):
    qid = _completed_questionnaire(client)
    r = client.get(f"/questionnaires/{qid}/export.csv", headers=HDR)
    assert r.status_code == 200
    assert "text/csv" in r.headers.get("content-type", "")
    assert 'filename="Export_Survey_responses.csv"' in r.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(r.content.decode("utf-8"))))
    assert rows[0] == ["Question", "Type", "Required", "Response", "File URLs"]
    assert rows[1] == ['Say "hello", please', "OPEN_ENDED", "Yes", "hello, world", ""]
    assert rows[2] == ["Files", "FILE_UPLOAD", "No", "", "https://x/report.pdf | https://drive.google.com/folders/abc"]
    assert rows[3] == ["Skipped", "SHORT_ANSWER", "No", "", ""]

def test_export_markdown(client):
    qid = _completed_questionnaire(client)
    r = client.get(f"/questionnaires/{qid}/export.md", headers=HDR)
    assert r.status_code == 200
    md = r.text
    assert md.startswith("# Export  Survey\n")
    assert "**Client:** Acme" in md
    assert "## Q1: Say \"hello\", please\n\nhello, world" in md
    assert "[report.pdf](https://x/report.pdf)" in md
    assert "[Google Drive Folder](https://drive.google.com/folders/abc)" in md
    assert "## Q3: Skipped\n\n*No response*" in md

def test_review_responses_names_attachments(client):
    qid = _completed_questionnaire(client)
    items = client.get(f"/questionnaires/{qid}/responses", headers=HDR).json()["data"]["items"]
    assert [i["question"]["display_order"] for i in items] == [0, 1, 2]
    assert items[0]["response"]["response_text"] == "hello, world"
    assert items[1]["attachments"] == [
        {"url": "https://x/report.pdf", "name": "report.pdf"},
        {"url": "https://drive.google.com/folders/abc", "name": "Google Drive Folder"},
    ]
    assert items[2]["response"] is None and items[2]["attachments"] == []

def _titled(client, title):
    d = client.post("/questionnaires", json={
        "title": title, "client_name": "Acme",
        "questions": [{"question_text": "Anything?", "is_required": False}],
    }, headers=HDR).json()["data"]
    return d["id"]

def test_export_non_ascii_title(client):
    qid = _titled(client, "Intake für Café 日本")
    for ext in ("csv", "md"):
        r = client.get(f"/questionnaires/{qid}/export.{ext}", headers=HDR)
        assert r.status_code == 200
        disposition = r.headers["content-disposition"]
        assert disposition.isascii()
        assert f'filename="Intake_f_r_Caf_responses.{ext}"' in disposition
        assert f"filename*=UTF-8''Intake_f%C3%BCr_Caf%C3%A9_%E6%97%A5%E6%9C%AC_responses.{ext}" in disposition

def test_export_filename_without_ascii_or_with_separators(client):
    qid = _titled(client, "日本")
    r = client.get(f"/questionnaires/{qid}/export.csv", headers=HDR)
    assert r.status_code == 200
    assert f'filename="questionnaire_{qid}_responses.csv"' in r.headers["content-disposition"]

    qid = _titled(client, 'Q1; "final"')
    r = client.get(f"/questionnaires/{qid}/export.md", headers=HDR)
    assert r.status_code == 200
    assert 'filename="Q1_final_responses.md"' in r.headers["content-disposition"]
