# backend/tests/test_public.py
from storage import make_key

HDR = {"X-API-Key": "test-key"}

def _make_questionnaire(client):
    d = client.post("/questionnaires", json={
        "title": "Public Flow",
        "client_name": "Client Co",
        "questions": [
            {"question_text": "Describe your business", "question_type": "OPEN_ENDED", "is_required": True},
            {"question_text": "Attach documents", "question_type": "FILE_UPLOAD", "is_required": False},
        ],
    }, headers=HDR).json()["data"]
    q1, q2 = (q["id"] for q in d["questions"])
    return d["id"], d["session_token"], q1, q2

def test_end_to_end_intake(client):
    qid, token, q1, q2 = _make_questionnaire(client)

    j = client.get(f"/intake/{token}").json()["data"]
    assert j["status"] == "NOT_STARTED"
    assert [q["id"] for q in j["questions"]] == [q1, q2]
    assert j["progress"] == {"answered": 0, "total": 2, "required_remaining": 1}

    r = client.post(f"/intake/{token}/responses", json={"question_id": q1, "response_text": "We bake bread"})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["response_text"] == "We bake bread"
    assert client.get(f"/intake/{token}").json()["data"]["status"] == "IN_PROGRESS"

    s = client.post(f"/intake/{token}/submit")
    assert s.status_code == 200, s.text
    done = s.json()["data"]
    assert done["status"] == "COMPLETED"
    assert done["completed_at"] is not None

    late = client.post(f"/intake/{token}/responses", json={"question_id": q1, "response_text": "edit"})
    assert late.status_code == 409
    assert late.json()["error"]["message"] == "Questionnaire already submitted"

    again = client.post(f"/intake/{token}/submit")
    assert again.status_code == 409
    after = client.get(f"/intake/{token}").json()["data"]
    assert after["completed_at"] == done["completed_at"]

def test_edits_update_the_same_response(client):
    _, token, q1, _ = _make_questionnaire(client)
    a = client.post(f"/intake/{token}/responses", json={"question_id": q1, "response_text": "v1"}).json()["data"]
    b = client.post(f"/intake/{token}/responses", json={"question_id": q1, "response_text": "v2"}).json()["data"]
    assert a["id"] == b["id"]
    lst = client.get(f"/intake/{token}/responses").json()["data"]
    assert len(lst) == 1 and lst[0]["response_text"] == "v2"

def test_submit_blocked_until_required_answered(client):
    _, token, q1, q2 = _make_questionnaire(client)
    client.post(f"/intake/{token}/responses", json={"question_id": q2, "file_urls": ["https://x/a.pdf"]})
    r = client.post(f"/intake/{token}/submit")
    assert r.status_code == 400
    err = r.json()["error"]
    assert err["message"] == "Please answer all required questions. 1 remaining."
    assert err["details"]["question_ids"] == [q1]

def test_file_answers_round_trip_through_api(client):
    _, token, _, q2 = _make_questionnaire(client)
    r = client.post(f"/intake/{token}/responses", json={
        "question_id": q2, "file_urls": ["https://x/a.pdf", "https://x/b.png"],
    })
    data = r.json()["data"]
    assert data["file_urls"] == ["https://x/a.pdf", "https://x/b.png"]
    assert data["file_url"] == "https://x/a.pdf"

    legacy = client.post(f"/intake/{token}/responses", json={"question_id": q2, "file_url": "https://x/old.doc"})
    assert legacy.json()["data"]["file_urls"] == ["https://x/old.doc"]

def test_bad_answers(client):
    _, token, q1, q2 = _make_questionnaire(client)
    assert client.post(f"/intake/{token}/responses", json={"question_id": q2, "file_urls": []}).status_code == 400
    assert client.post(f"/intake/{token}/responses", json={"question_id": q2, "file_urls": [""]}).status_code == 400
    assert client.post(f"/intake/{token}/responses", json={"question_id": q1}).status_code == 400
    assert client.post(f"/intake/{token}/responses", json={"response_text": "no id"}).status_code == 400
    assert client.post(f"/intake/{token}/responses", json={"question_id": 999999, "response_text": "x"}).status_code == 404
    assert client.get(f"/intake/{token}").json()["data"]["status"] == "NOT_STARTED"

def test_invalid_token(client):
    r = client.get("/intake/THIS_IS_INVALID")
    assert r.status_code == 404
    assert r.json() == {"error": {"message": "Questionnaire not found"}}
    assert client.post("/intake/THIS_IS_INVALID/submit").status_code == 404

def test_upload_stores_object_under_session_prefix(client, store):
    _, token, _, _ = _make_questionnaire(client)
    r = client.post("/uploads", data={"session_token": token},
                    files={"file": ("Report.PDF", b"%PDF-1.4 body", "application/pdf")})
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["file_key"].startswith(f"{token}/")
    assert data["file_key"].endswith(".pdf")
    assert data["file_name"] == "Report.PDF"
    assert data["file_size"] == len(b"%PDF-1.4 body")
    assert store.objects[data["file_key"]] == (b"%PDF-1.4 body", "application/pdf")

def test_upload_rejections(client, store):
    _, token, q1, _ = _make_questionnaire(client)
    bad_type = client.post("/uploads", data={"session_token": token},
                           files={"file": ("run.exe", b"MZ", "application/octet-stream")})
    assert bad_type.status_code == 400
    assert bad_type.json()["error"]["message"] == "File type not allowed"

    unknown = client.post("/uploads", data={"session_token": "nope"},
                          files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    assert unknown.status_code == 404

    store.fail_upload = True
    failed = client.post("/uploads", data={"session_token": token},
                         files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    assert failed.status_code == 500
    assert failed.json()["error"]["message"] == "Failed to upload file"

    store.fail_upload = False
    client.post(f"/intake/{token}/responses", json={"question_id": q1, "response_text": "done"})
    client.post(f"/intake/{token}/submit")
    closed = client.post("/uploads", data={"session_token": token},
                         files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    assert closed.status_code == 409

def test_object_key_extension():
    assert make_key("tok", "Report.PDF").endswith(".pdf")
    for name in ("a.b/c", "x.", "noext", "photo.jp g", "..", "résumé.dóc"):
        key = make_key("tok", name)
        assert key.endswith(".bin")
        assert key.count("/") == 1 and key.startswith("tok/")

def test_upload_with_odd_filename_gets_bin_key(client, store):
    _, token, _, _ = _make_questionnaire(client)
    r = client.post("/uploads", data={"session_token": token},
                    files={"file": ("scan.", b"%PDF", "application/pdf")})
    assert r.status_code == 200, r.text
    key = r.json()["data"]["file_key"]
    assert key.startswith(f"{token}/") and key.endswith(".bin")
    assert key in store.objects
