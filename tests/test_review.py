import asyncio
import datetime

import fitz
import pytest

import genai_service
from database import async_session
from models import MediaAsset


@pytest.fixture
def samantha_interview(client, admin):
    queue = client.get("/api/reviews", headers=admin).json()
    assert [item["candidate"]["name"] for item in queue] == ["Samantha Jones"]
    return client.get(f"/api/interviews/{queue[0]['id']}", headers=admin).json()


def test_evaluate_stores_weighted_score(client, admin, samantha_interview, monkeypatch):
    url = f"/api/interviews/{samantha_interview['id']}/evaluate"
    assert client.post(url, headers=admin).status_code == 503

    async def fake_evaluate(job_title, job_description, transcript):
        assert "Redux" in transcript
        evaluation = {"clarity": 8, "relevance": 7, "technical_accuracy": 9, "completeness": 6}
        return {**evaluation, "overall_score": genai_service.weighted_overall_score(evaluation),
                "summary": "Good", "strengths": [], "areas_for_improvement": []}

    monkeypatch.setattr(genai_service, "evaluate_interview", fake_evaluate)
    r = client.post(url, headers=admin)
    assert r.status_code == 200
    assert r.json()["overall_score"] == 36 + 18 + 14 + 8

    detail = client.get(f"/api/interviews/{samantha_interview['id']}", headers=admin).json()
    assert detail["evaluation"]["overall_score"] == 76


def test_manual_scores_and_approval(client, admin, samantha_interview, login):
    interview_id = samantha_interview["id"]
    logs = samantha_interview["logs"]
    approve = f"/api/interviews/{interview_id}/approve"

    no_score = client.post(approve, json={}, headers=admin)
    assert no_score.status_code == 400

    score_url = f"/api/interviews/{interview_id}/logs/{logs[0]['id']}/score"
    assert client.put(score_url, json={"score": 101}, headers=admin).status_code == 400
    assert client.put(score_url, json={"score": 80}, headers=admin).json()["manual_score"] == 80
    client.put(f"/api/interviews/{interview_id}/logs/{logs[1]['id']}/score", json={"score": 91}, headers=admin)

    r = client.post(approve, json={}, headers=admin)
    assert r.status_code == 200, r.text
    approved = r.json()
    assert approved["state"] == "reviewed"
    assert approved["score"] == 85.5
    year = datetime.datetime.utcnow().year
    assert approved["certificate_id"] == f"SI-{year}-{interview_id:05d}"

    assert client.post(approve, json={"score": 90}, headers=admin).status_code == 409

    rows = client.get("/api/candidates", params={"search": "samantha"}, headers=admin).json()
    assert rows[0]["status"] == "approved"

    candidate = login("samantha.jones@example.com")
    pdf = client.get(f"/api/interviews/{interview_id}/certificate", headers=candidate)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    with fitz.open(stream=pdf.content, filetype="pdf") as doc:
        text = doc[0].get_text()
    assert "Samantha Jones" in text
    assert approved["certificate_id"] in text

    verified = client.get(f"/api/certificates/{approved['certificate_id']}").json()
    assert verified["candidate_name"] == "Samantha Jones"
    assert verified["score"] == 85.5


def test_explicit_score_wins(client, admin, samantha_interview):
    r = client.post(f"/api/interviews/{samantha_interview['id']}/approve", json={"score": 92}, headers=admin)
    assert r.json()["score"] == 92.0
    bad = client.post(f"/api/interviews/{samantha_interview['id']}/approve", json={"score": 150}, headers=admin)
    assert bad.status_code == 400


def test_certificates_only_for_reviewed(client, admin, samantha_interview):
    r = client.get(f"/api/interviews/{samantha_interview['id']}/certificate", headers=admin)
    assert r.status_code == 409
    assert client.get("/api/certificates/SI-1999-00001").status_code == 404


def test_seeded_reviewed_interview_has_verifiable_certificate(client, admin):
    alex = client.get("/api/candidates", params={"search": "alex"}, headers=admin).json()[0]
    interview = client.get(f"/api/candidates/{alex['id']}", headers=admin).json()["interviews"][0]
    verified = client.get(f"/api/certificates/{interview['certificate_id']}")
    assert verified.status_code == 200
    assert verified.json()["score"] == 87


def test_video_analysis(client, admin, demo, demo_interview_id, monkeypatch):
    client.put(f"/api/interviews/{demo_interview_id}/progress", json={"question_index": 0}, headers=demo)
    media = client.post(
        f"/api/interviews/{demo_interview_id}/media",
        data={"question_index": "0"},
        files={"file": ("answer.webm", b"v" * 800, "video/webm")},
        headers=demo,
    ).json()
    with_media = client.post(
        f"/api/interviews/{demo_interview_id}/answers",
        json={"question_index": 0, "transcript": "I like React.", "media_asset_id": media["id"]},
        headers=demo,
    ).json()
    without_media = client.post(
        f"/api/interviews/{demo_interview_id}/answers",
        json={"question_index": 1, "transcript": "A hard bug."},
        headers=demo,
    ).json()

    base = f"/api/interviews/{demo_interview_id}/logs"
    assert client.post(f"{base}/{without_media['id']}/video-analysis", headers=admin).status_code == 400
    assert client.post(f"{base}/{with_media['id']}/video-analysis", headers=admin).status_code == 503

    async def fake_video(data, mime_type, question):
        assert data == b"v" * 800 and mime_type == "video/webm"
        return {"video_summary": "Calm", "communication_style": "Clear", "key_insights": ["Confident"]}

    monkeypatch.setattr(genai_service, "analyze_video", fake_video)
    r = client.post(f"{base}/{with_media['id']}/video-analysis", headers=admin)
    assert r.json()["communication_style"] == "Clear"


def test_video_analysis_of_evicted_media(client, admin, demo, demo_interview_id, store):
    client.put(f"/api/interviews/{demo_interview_id}/progress", json={"question_index": 0}, headers=demo)
    media = client.post(
        f"/api/interviews/{demo_interview_id}/media",
        data={"question_index": "0"},
        files={"file": ("answer.webm", b"v" * 800, "video/webm")},
        headers=demo,
    ).json()
    log = client.post(
        f"/api/interviews/{demo_interview_id}/answers",
        json={"question_index": 0, "transcript": "I like React.", "media_asset_id": media["id"]},
        headers=demo,
    ).json()
    client.post(f"/api/interviews/{demo_interview_id}/submit", headers=demo)

    async def evict():
        async with async_session() as db:
            return await store.evict_where(db, "global_budget", MediaAsset.id == media["id"])

    assert asyncio.run(evict()) == 1
    r = client.post(f"/api/interviews/{demo_interview_id}/logs/{log['id']}/video-analysis", headers=admin)
    assert r.status_code == 410

    detail = client.get(f"/api/interviews/{demo_interview_id}", headers=admin).json()
    assert detail["logs"][0]["media"]["evicted"] is True
    assert detail["logs"][0]["media"]["url"] is None


def test_analytics_summary(client, admin):
    summary = client.get("/api/analytics/summary", headers=admin).json()
    assert summary["total_interviews"] == 3
    assert summary["pending_review"] == 1
    assert summary["approved"] == 1
    assert summary["average_score"] == 87.0
    assert summary["pipeline"] == {"pending": 3, "awaiting_review": 1, "approved": 1}
    assert {"range": "86-95", "count": 1} in summary["score_distribution"]
    assert [b["range"] for b in summary["score_distribution"]] == ["0-70", "71-85", "86-95", "96-100"]


def test_analytics_follow_activity_and_organization(client, admin):
    client.post("/api/candidates/invite", json={"email": "fresh@example.com"}, headers=admin)
    summary = client.get("/api/analytics/summary", headers=admin).json()
    assert summary["recent_activity"][0]["kind"] == "invite"

    orgs = {o["name"]: o["id"] for o in client.get("/api/organizations").json()}
    client.put("/api/admin/organization", json={"organization_id": orgs["QuantumLeap Co."]}, headers=admin)
    scoped = client.get("/api/analytics/summary", headers=admin).json()
    assert scoped["total_interviews"] == 0
    assert scoped["average_score"] is None
