import genai_service
from conftest import bearer


def _start(client, demo, interview_id, index=0):
    r = client.put(
        f"/api/interviews/{interview_id}/progress",
        json={"question_index": index, "answers": {}},
        headers=demo,
    )
    assert r.status_code == 200, r.text
    return r.json()


def _answer(client, demo, interview_id, index, text, media_asset_id=None):
    body = {"question_index": index, "transcript": text}
    if media_asset_id is not None:
        body["media_asset_id"] = media_asset_id
    return client.post(f"/api/interviews/{interview_id}/answers", json=body, headers=demo)


def test_list_and_detail(client, demo, demo_interview_id):
    mine = client.get("/api/me/interviews", headers=demo).json()
    assert len(mine) == 1
    assert mine[0]["job_title"] == "Junior Frontend Developer"
    assert mine[0]["state"] == "idle"

    detail = client.get(f"/api/interviews/{demo_interview_id}", headers=demo).json()
    assert len(detail["questions"]) == 5
    assert detail["logs"] == []


def test_progress_moves_idle_to_recording(client, demo, demo_interview_id):
    saved = client.put(
        f"/api/interviews/{demo_interview_id}/progress",
        json={"question_index": 2, "answers": {"0": "first", "1": "second"}},
        headers=demo,
    ).json()
    assert saved == {"question_index": 2, "answers": {"0": "first", "1": "second"}}
    assert client.get(f"/api/interviews/{demo_interview_id}", headers=demo).json()["state"] == "recording"
    assert client.get(f"/api/interviews/{demo_interview_id}/progress", headers=demo).json()["question_index"] == 2

    out_of_range = client.put(
        f"/api/interviews/{demo_interview_id}/progress",
        json={"question_index": 5, "answers": {}},
        headers=demo,
    )
    assert out_of_range.status_code == 400


def test_answers_require_recording(client, demo, demo_interview_id):
    assert _answer(client, demo, demo_interview_id, 0, "too early").status_code == 409


def test_answer_upserts_log_entry(client, demo, demo_interview_id):
    _start(client, demo, demo_interview_id)
    first = _answer(client, demo, demo_interview_id, 0, "React is declarative.").json()
    second = _answer(client, demo, demo_interview_id, 0, "  React is declarative and component based. ").json()
    assert first["id"] == second["id"]
    assert second["answer"] == "React is declarative and component based."
    assert second["question"].startswith("Tell me about your experience with React")

    progress = client.get(f"/api/interviews/{demo_interview_id}/progress", headers=demo).json()
    assert progress["answers"] == {"0": "React is declarative and component based."}


def test_submit_runs_analysis_and_moves_to_review(client, demo, admin, demo_interview_id):
    assert client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo).status_code == 400

    _start(client, demo, demo_interview_id)
    _answer(client, demo, demo_interview_id, 0, "I have two years of React experience.")
    r = client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo)
    assert r.status_code == 200, r.text
    submitted = r.json()
    assert submitted["state"] == "submitted"
    assert submitted["completed_at"] is not None
    assert submitted["analysis"]["source"] == "fallback"
    assert submitted["analysis"]["overall_score"] == 5.0

    demo_row = client.get("/api/candidates", params={"search": "demo"}, headers=admin).json()[0]
    assert demo_row["status"] == "awaiting_review"

    again = client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo)
    assert again.status_code == 409

    queue = client.get("/api/reviews", headers=admin).json()
    assert demo_interview_id in [item["id"] for item in queue]


def test_submit_uses_model_analysis(client, demo, demo_interview_id, monkeypatch):
    captured = {}

    async def fake_analysis(title, questions, answers):
        captured.update(title=title, answers=answers)
        return {"summary": "Good", "strengths": [], "improvements": [], "overall_score": 8.0,
                "overall_feedback": "Well done", "source": "model"}

    monkeypatch.setattr(genai_service, "analyze_interview", fake_analysis)
    _start(client, demo, demo_interview_id)
    _answer(client, demo, demo_interview_id, 1, "I fixed a memory leak.")
    submitted = client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo).json()
    assert submitted["analysis"]["overall_score"] == 8.0
    assert captured == {"title": "Junior Frontend Developer", "answers": {1: "I fixed a memory leak."}}


def test_retake_resets_progress_logs_and_media(client, demo, demo_interview_id):
    _start(client, demo, demo_interview_id)
    media = client.post(
        f"/api/interviews/{demo_interview_id}/media",
        data={"question_index": "0"},
        files={"file": ("answer.webm", b"v" * 500, "video/webm")},
        headers=demo,
    ).json()
    _answer(client, demo, demo_interview_id, 0, "answer", media_asset_id=media["id"])

    r = client.post(f"/api/interviews/{demo_interview_id}/retake", headers=demo)
    assert r.status_code == 200
    reset = r.json()
    assert reset["state"] == "idle"
    assert reset["progress"] is None
    assert reset["logs"] == []
    assert client.get(media["url"], headers=demo).status_code == 410

    assert client.post(f"/api/interviews/{demo_interview_id}/retake", headers=demo).status_code == 409


def test_media_upload_rules(client, demo, demo_interview_id):
    url = f"/api/interviews/{demo_interview_id}/media"

    def upload(content, mime="video/webm", index="0"):
        return client.post(
            url, data={"question_index": index}, files={"file": ("answer", content, mime)}, headers=demo
        )

    assert upload(b"v" * 10).status_code == 409
    _start(client, demo, demo_interview_id)

    ok = upload(b"v" * 1000)
    assert ok.status_code == 200
    assert ok.json()["kind"] == "video"
    assert client.get(ok.json()["url"], headers=demo).content == b"v" * 1000

    assert upload(b"v" * 3001).status_code == 413
    assert upload(b"pdf", mime="application/pdf").status_code == 400
    assert upload(b"v", index="9").status_code == 400

    assert upload(b"a" * 2500, mime="audio/webm").status_code == 200
    # The interview is still recording, so nothing of it may be evicted.
    full = upload(b"a" * 2500, mime="audio/webm")
    assert full.status_code == 507


def test_answer_rejects_foreign_media(client, demo, demo_interview_id):
    _start(client, demo, demo_interview_id)
    r = _answer(client, demo, demo_interview_id, 0, "answer", media_asset_id=12345)
    assert r.status_code == 400


def test_other_candidates_cannot_touch_the_interview(client, login, demo_interview_id):
    other = login("michael.chen@example.com")
    assert client.get(f"/api/interviews/{demo_interview_id}", headers=other).status_code == 403
    assert client.post(f"/api/interviews/{demo_interview_id}/submit", headers=other).status_code == 403
    assert client.get("/api/interviews/999", headers=other).status_code == 404


def test_answer_feedback_is_best_effort(client, demo, demo_interview_id, monkeypatch):
    url = f"/api/interviews/{demo_interview_id}/feedback"
    body = {"question": "Why React?", "answer": "Because of hooks."}
    assert client.post(url, json=body, headers=demo).json() == {"feedback": None}

    async def fake_feedback(question, answer):
        return {"encouragement": "Nice!", "suggestion": "Give an example."}

    monkeypatch.setattr(genai_service, "answer_feedback", fake_feedback)
    assert client.post(url, json=body, headers=demo).json()["feedback"]["suggestion"] == "Give an example."


def test_expired_tokens_are_rejected(client):
    assert client.get("/api/me/interviews", headers=bearer("expired")).status_code == 401


def test_failed_submission_returns_to_recording_and_can_be_retried(client, demo, demo_interview_id, monkeypatch):
    async def broken_analysis(title, questions, answers):
        raise RuntimeError("analysis crashed")

    monkeypatch.setattr(genai_service, "analyze_interview", broken_analysis)
    _start(client, demo, demo_interview_id)
    _answer(client, demo, demo_interview_id, 0, "I have two years of React experience.")

    failed = client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo)
    assert failed.status_code == 500
    assert failed.json()["detail"] == "Could not submit the interview. Please try again."
    detail = client.get(f"/api/interviews/{demo_interview_id}", headers=demo).json()
    assert detail["state"] == "recording"
    assert detail["completed_at"] is None

    async def analysis(title, questions, answers):
        return {"summary": "Retried", "strengths": [], "improvements": [], "overall_score": 6.0,
                "overall_feedback": "", "source": "model"}

    monkeypatch.setattr(genai_service, "analyze_interview", analysis)
    retried = client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo)
    assert retried.status_code == 200, retried.text
    assert retried.json()["state"] == "submitted"
    assert retried.json()["analysis"]["summary"] == "Retried"
