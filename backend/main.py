from fastapi import FastAPI, UploadFile, File, Form, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from pydantic import BaseModel, Field
from typing import Optional
import base64
import binascii
import csv
import datetime
import io
import json
import logging
import secrets

from config import Config, configure_logging

configure_logging()

from database import init_db, get_db, async_session
from models import (
    Organization, AuthSession, Candidate, InterviewTemplate, Interview, InterviewLogEntry,
    MediaAsset, ActivityEvent, ChatMessage, ThemePreference, utcnow,
)
from auth import (
    hash_password, verify_password, is_admin_username, create_session, resolve_session, end_session,
    chat_subject, get_current_session, require_admin, require_candidate, get_session_candidate,
)
from constants import (
    DEFAULT_CATEGORIES, STATUS_PROGRESS, SCORE_BUCKETS, CANDIDATE_STATUSES, CHAT_WELCOME,
    THEME_PRESETS, DEFAULT_THEME, DEMO_CANDIDATE, DEMO_INTERVIEW,
)
from validators import (
    format_cnic, validate_cnic, is_valid_email, is_hex_color, split_bulk_emails, split_csv_emails,
    partition_emails,
)
from live_session import (
    SessionState, InvalidTransition, transition, FrameBuffer, ReconnectPolicy, LiveInterviewSession,
    fill_missing_transcripts,
)
from media_store import MediaStore, MediaTooLarge, StorageBudgetExceeded, kind_for_mime
from certificate import render_certificate, certificate_id_for
from audio import pcm16_mono_to_wav, audio_level, OUTPUT_SAMPLE_RATE, WAV_HEADER_BYTES
from email_service import send_interview_invite, send_interview_assigned, send_decision_email
from genai_service import GenAIUnavailable, GenAIError
import genai_service

logger = logging.getLogger(__name__)

app = FastAPI(title="SmartInterview API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[Config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

media_store = MediaStore(
    Config.MEDIA_DIR,
    Config.MEDIA_BUDGET_BYTES,
    Config.MEDIA_CANDIDATE_BUDGET_BYTES,
    Config.MEDIA_MAX_ASSET_BYTES,
)
live_connector = genai_service.connect_live

LIVE_LOG_QUESTION = "Full Conversational Interview"


@app.on_event("startup")
async def startup():
    await init_db()


# ── Helpers ──────────────────────────────────────────────

def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dedupe_preserve_order(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        normalized = item.strip()
        if not normalized:
            continue
        key = normalized.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(normalized)
    return out


async def _ai(coro):
    try:
        return await coro
    except GenAIUnavailable as e:
        raise HTTPException(503, str(e))
    except GenAIError as e:
        logger.warning("[GENAI] Request failed: %s", e)
        raise HTTPException(502, f"AI request failed: {e}")


def _advance(interview: Interview, target: SessionState) -> None:
    try:
        interview.session_state = transition(interview.session_state, target).value
    except InvalidTransition as e:
        raise HTTPException(409, str(e))


def record_activity(db: AsyncSession, kind: str, message: str, organization_id: Optional[int] = None) -> None:
    db.add(ActivityEvent(kind=kind, message=message, organization_id=organization_id))


def derive_candidate_status(states: list[str]) -> str:
    if SessionState.SUBMITTED.value in states:
        return "awaiting_review"
    if any(s not in (SessionState.SUBMITTED.value, SessionState.REVIEWED.value) for s in states):
        return "pending"
    if SessionState.REVIEWED.value in states:
        return "approved"
    return "pending"


async def sync_candidate_status(db: AsyncSession, candidate: Candidate) -> None:
    result = await db.execute(select(Interview.session_state).where(Interview.candidate_id == candidate.id))
    candidate.status = derive_candidate_status([state for (state,) in result.all()])


async def find_candidate_by_email(db: AsyncSession, email: str) -> Optional[Candidate]:
    result = await db.execute(
        select(Candidate).where(func.lower(Candidate.email) == email.strip().lower())
    )
    return result.scalars().first()


async def get_candidate_or_404(db: AsyncSession, candidate_id: int) -> Candidate:
    candidate = await db.get(Candidate, candidate_id)
    if not candidate:
        raise HTTPException(404, "Candidate not found")
    return candidate


async def get_template_or_404(db: AsyncSession, template_id: int) -> InterviewTemplate:
    template = await db.get(InterviewTemplate, template_id)
    if not template:
        raise HTTPException(404, "Template not found")
    return template


async def get_interview_for(db: AsyncSession, interview_id: int, session: AuthSession) -> Interview:
    interview = await db.get(Interview, interview_id)
    if not interview:
        raise HTTPException(404, "Interview not found")
    if session.role != "admin" and str(interview.candidate_id) != session.subject:
        raise HTTPException(403, "Not your interview")
    return interview


async def get_organization_or_400(db: AsyncSession, organization_id: Optional[int]) -> Optional[Organization]:
    if organization_id is None:
        return None
    org = await db.get(Organization, organization_id)
    if not org:
        raise HTTPException(400, "Unknown organization")
    return org


async def interview_logs(db: AsyncSession, interview_id: int) -> list[InterviewLogEntry]:
    result = await db.execute(
        select(InterviewLogEntry)
        .where(InterviewLogEntry.interview_id == interview_id)
        .order_by(InterviewLogEntry.position, InterviewLogEntry.id)
    )
    return list(result.scalars().all())


async def assets_by_id(db: AsyncSession, ids: list[int]) -> dict[int, MediaAsset]:
    ids = [i for i in ids if i is not None]
    if not ids:
        return {}
    result = await db.execute(select(MediaAsset).where(MediaAsset.id.in_(ids)))
    return {a.id: a for a in result.scalars().all()}


def question_texts(interview: Interview) -> list[str]:
    return [str(q.get("question", "")) if isinstance(q, dict) else str(q) for q in (interview.questions or [])]


def transcript_from_logs(logs: list[InterviewLogEntry]) -> str:
    return "\n\n".join(
        f"Question: {log.question}\nAnswer: {log.answer}" for log in logs if (log.answer or "").strip()
    )


def media_out(asset: Optional[MediaAsset]) -> Optional[dict]:
    if asset is None:
        return None
    return {
        "id": asset.id,
        "kind": asset.kind,
        "mime_type": asset.mime_type,
        "size_bytes": asset.size_bytes,
        "url": f"/api/media/{asset.id}" if asset.evicted_at is None else None,
        "evicted": asset.evicted_at is not None,
        "eviction_reason": asset.eviction_reason,
    }


def log_out(log: InterviewLogEntry, assets: dict[int, MediaAsset]) -> dict:
    return {
        "id": log.id,
        "position": log.position,
        "question": log.question,
        "answer": log.answer,
        "manual_score": log.manual_score,
        "media": media_out(assets.get(log.media_asset_id)),
        "video_analysis": log.video_analysis,
    }


async def interview_out(db: AsyncSession, interview: Interview, include_logs: bool = True) -> dict:
    out = {
        "id": interview.id,
        "candidate_id": interview.candidate_id,
        "template_id": interview.template_id,
        "organization_id": interview.organization_id,
        "company": interview.company,
        "job_title": interview.job_title,
        "job_description": interview.job_description,
        "timer": interview.timer,
        "categories": interview.categories or [],
        "questions": interview.questions or [],
        "state": interview.session_state,
        "progress": interview.progress,
        "score": interview.score,
        "analysis": interview.analysis,
        "evaluation": interview.evaluation,
        "insights": interview.insights,
        "dropped_frames": interview.dropped_frames or 0,
        "dropped_bytes": interview.dropped_bytes or 0,
        "reconnects": interview.reconnects or 0,
        "certificate_id": interview.certificate_id,
        "created_at": _iso(interview.created_at),
        "completed_at": _iso(interview.completed_at),
        "reviewed_at": _iso(interview.reviewed_at),
    }
    if include_logs:
        logs = await interview_logs(db, interview.id)
        assets = await assets_by_id(db, [log.media_asset_id for log in logs])
        out["logs"] = [log_out(log, assets) for log in logs]
    return out


def candidate_out(c: Candidate, latest_score: Optional[float] = None) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "father_name": c.father_name,
        "gender": c.gender,
        "dob": c.dob,
        "cnic": c.cnic,
        "email": c.email,
        "status": c.status,
        "progress": STATUS_PROGRESS.get(c.status, 0),
        "notes": c.notes or "",
        "rating": c.rating,
        "organization_id": c.organization_id,
        "score": latest_score,
        "created_at": _iso(c.created_at),
    }


async def latest_interviews(db: AsyncSession, candidate_ids: list[int]) -> dict[int, Interview]:
    if not candidate_ids:
        return {}
    result = await db.execute(
        select(Interview)
        .where(Interview.candidate_id.in_(candidate_ids))
        .order_by(Interview.created_at.desc(), Interview.id.desc())
    )
    latest: dict[int, Interview] = {}
    for interview in result.scalars().all():
        latest.setdefault(interview.candidate_id, interview)
    return latest


# ── Auth ─────────────────────────────────────────────────

class LoginRequest(BaseModel):
    username: str
    password: str


class SignupRequest(BaseModel):
    name: str
    father_name: str
    gender: str
    dob: str
    cnic: str
    email: str
    password: str
    confirm_password: str


def session_payload(session: AuthSession, name: str) -> dict:
    return {
        "token": session.token,
        "role": session.role,
        "subject": session.subject,
        "name": name,
        "organization_id": session.organization_id,
        "expires_at": _iso(session.expires_at),
    }


@app.post("/api/auth/login")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    username = body.username.strip()
    if is_admin_username(username):
        if not secrets.compare_digest(body.password.encode(), Config.ADMIN_PASSWORD.encode()):
            raise HTTPException(401, "Invalid credentials")
        session = await create_session(db, "admin", username.lower())
        logger.info("[AUTH] Admin login: %s", username.lower())
        return session_payload(session, "Admin")

    candidate = await find_candidate_by_email(db, username)
    if not candidate:
        raise HTTPException(401, "Invalid credentials")
    if candidate.password_hash:
        ok = verify_password(body.password, candidate.password_hash)
    else:
        ok = secrets.compare_digest(body.password.encode(), Config.DEMO_CANDIDATE_PASSWORD.encode())
    if not ok:
        raise HTTPException(401, "Invalid credentials")
    session = await create_session(db, "candidate", candidate.id)
    return session_payload(session, candidate.name)


@app.post("/api/auth/signup")
async def signup(body: SignupRequest, db: AsyncSession = Depends(get_db)):
    fields = body.model_dump()
    if any(not str(value).strip() for value in fields.values()):
        raise HTTPException(400, "All fields are required.")
    cnic = format_cnic(body.cnic)
    if not validate_cnic(cnic):
        raise HTTPException(400, "Invalid CNIC format. Use 12345-1234567-1.")
    email = body.email.strip().lower()
    if not is_valid_email(email):
        raise HTTPException(400, "Please enter a valid email address.")
    if len(body.password) < 6:
        raise HTTPException(400, "Password must be at least 6 characters.")
    if body.password != body.confirm_password:
        raise HTTPException(400, "Passwords do not match.")

    candidate = await find_candidate_by_email(db, email)
    if candidate and candidate.password_hash:
        raise HTTPException(409, "An account with this email already exists.")
    if candidate is None:
        candidate = Candidate(email=email, status="pending")
        db.add(candidate)
    candidate.name = body.name.strip()
    candidate.father_name = body.father_name.strip()
    candidate.gender = body.gender.strip()
    candidate.dob = body.dob.strip()
    candidate.cnic = cnic
    candidate.password_hash = hash_password(body.password)
    record_activity(db, "signup", f"{candidate.name} created an account.", candidate.organization_id)
    await db.commit()

    session = await create_session(db, "candidate", candidate.id)
    return session_payload(session, candidate.name)


@app.post("/api/auth/demo")
async def demo_login(db: AsyncSession = Depends(get_db)):
    candidate = await find_candidate_by_email(db, DEMO_CANDIDATE["email"])
    if candidate is None:
        candidate = Candidate(name=DEMO_CANDIDATE["name"], email=DEMO_CANDIDATE["email"], status="pending")
        db.add(candidate)
        await db.flush()
        db.add(Interview(
            candidate_id=candidate.id,
            company=DEMO_INTERVIEW["company"],
            job_title=DEMO_INTERVIEW["job_title"],
            job_description=DEMO_INTERVIEW["job_description"],
            timer=DEMO_INTERVIEW["timer"],
            categories=DEMO_INTERVIEW["categories"],
            questions=DEMO_INTERVIEW["questions"],
        ))
        await db.commit()
    session = await create_session(db, "candidate", candidate.id)
    return session_payload(session, candidate.name)


@app.post("/api/auth/logout")
async def logout(
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    await end_session(db, session)
    return {"status": "logged_out"}


@app.get("/api/auth/me")
async def me(
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    if session.role == "admin":
        return session_payload(session, "Admin")
    candidate = await get_session_candidate(db, session)
    return session_payload(session, candidate.name)


# ── Organizations ────────────────────────────────────────

class OrganizationSelect(BaseModel):
    organization_id: Optional[int] = None


@app.get("/api/organizations")
async def list_organizations(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Organization).order_by(Organization.id))
    return [{"id": o.id, "name": o.name} for o in result.scalars().all()]


@app.put("/api/admin/organization")
async def select_organization(
    body: OrganizationSelect,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    org = await get_organization_or_400(db, body.organization_id)
    session.organization_id = org.id if org else None
    await db.commit()
    return {"organization_id": session.organization_id, "name": org.name if org else None}


# ── Templates ────────────────────────────────────────────

class TemplateQuestion(BaseModel):
    question: str
    category: str


class TemplateCreate(BaseModel):
    job_title: str
    job_description: str
    timer: int = 60
    categories: list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    questions: list[TemplateQuestion] = []
    organization_id: Optional[int] = None
    allow_duplicate: bool = False


class GenerateQuestionsRequest(BaseModel):
    job_title: str
    job_description: str
    categories: list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    count: int = 5


class GenerateImageRequest(BaseModel):
    prompt: Optional[str] = None


def template_out(t: InterviewTemplate) -> dict:
    return {
        "id": t.id,
        "organization_id": t.organization_id,
        "job_title": t.job_title,
        "job_description": t.job_description,
        "timer": t.timer,
        "categories": t.categories or [],
        "questions": t.questions or [],
        "image_url": f"/api/media/{t.image_asset_id}" if t.image_asset_id else None,
        "created_at": _iso(t.created_at),
    }


def normalize_template_fields(body: TemplateCreate) -> tuple[str, str, list[str], list[dict]]:
    title = body.job_title.strip()
    description = body.job_description.strip()
    if not title or not description:
        raise HTTPException(400, "Job title and description are required.")
    categories = _dedupe_preserve_order(body.categories)
    if not categories:
        raise HTTPException(400, "Select at least one question category.")
    if not 15 <= body.timer <= Config.QUESTION_TIME_LIMIT * 2:
        raise HTTPException(400, f"Timer must be between 15 and {Config.QUESTION_TIME_LIMIT * 2} seconds.")
    allowed = {c.lower(): c for c in categories}
    questions = []
    for q in body.questions:
        category = allowed.get(q.category.strip().lower())
        if category is None or not q.question.strip():
            continue
        questions.append({"question": q.question.strip(), "category": category})
    return title, description, categories, questions


async def ensure_unique_title(
    db: AsyncSession, title: str, organization_id: Optional[int], exclude_id: Optional[int] = None
) -> None:
    query = select(InterviewTemplate.id).where(func.lower(InterviewTemplate.job_title) == title.lower())
    if organization_id is None:
        query = query.where(InterviewTemplate.organization_id.is_(None))
    else:
        query = query.where(InterviewTemplate.organization_id == organization_id)
    if exclude_id is not None:
        query = query.where(InterviewTemplate.id != exclude_id)
    result = await db.execute(query.limit(1))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(409, "A template with this title already exists for this organization.")


@app.get("/api/templates")
async def list_templates(
    organization_id: Optional[int] = None,
    search: str = "",
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    org_id = organization_id if organization_id is not None else session.organization_id
    query = select(InterviewTemplate).order_by(InterviewTemplate.created_at.desc(), InterviewTemplate.id.desc())
    if org_id is not None:
        query = query.where(InterviewTemplate.organization_id == org_id)
    if search.strip():
        query = query.where(func.lower(InterviewTemplate.job_title).contains(search.strip().lower()))
    result = await db.execute(query)
    return [template_out(t) for t in result.scalars().all()]


@app.post("/api/templates")
async def create_template(
    body: TemplateCreate,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    title, description, categories, questions = normalize_template_fields(body)
    org_id = body.organization_id if body.organization_id is not None else session.organization_id
    await get_organization_or_400(db, org_id)
    if not body.allow_duplicate:
        await ensure_unique_title(db, title, org_id)
    template = InterviewTemplate(
        organization_id=org_id,
        job_title=title,
        job_description=description,
        timer=body.timer,
        categories=categories,
        questions=questions,
    )
    db.add(template)
    record_activity(db, "template", f"Template '{title}' was created.", org_id)
    await db.commit()
    return template_out(template)


@app.put("/api/templates/{template_id}")
async def update_template(
    template_id: int,
    body: TemplateCreate,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    template = await get_template_or_404(db, template_id)
    title, description, categories, questions = normalize_template_fields(body)
    org_id = body.organization_id if body.organization_id is not None else template.organization_id
    await get_organization_or_400(db, org_id)
    if not body.allow_duplicate:
        await ensure_unique_title(db, title, org_id, exclude_id=template.id)
    template.organization_id = org_id
    template.job_title = title
    template.job_description = description
    template.timer = body.timer
    template.categories = categories
    template.questions = questions
    await db.commit()
    return template_out(template)


@app.delete("/api/templates/{template_id}")
async def delete_template(
    template_id: int,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    template = await get_template_or_404(db, template_id)
    image_id = template.image_asset_id
    await db.delete(template)
    await db.commit()
    if image_id:
        await media_store.evict_where(db, "template_deleted", MediaAsset.id == image_id)
    return {"status": "deleted"}


@app.post("/api/templates/generate-questions")
async def generate_template_questions(
    body: GenerateQuestionsRequest,
    session: AuthSession = Depends(require_admin),
):
    if not body.job_title.strip() or not body.job_description.strip():
        raise HTTPException(400, "Job title and description are required.")
    categories = _dedupe_preserve_order(body.categories)
    if not categories:
        raise HTTPException(400, "Select at least one question category.")
    if not 1 <= body.count <= 10:
        raise HTTPException(400, "Question count must be between 1 and 10.")
    questions = await _ai(genai_service.generate_questions(
        body.job_title.strip(), body.job_description.strip(), categories, body.count
    ))
    return {"questions": questions}


async def store_template_image(db: AsyncSession, template: InterviewTemplate, data: bytes, mime_type: str) -> dict:
    if len(data) > Config.TEMPLATE_IMAGE_MAX_BYTES:
        raise HTTPException(413, f"Image must be {Config.TEMPLATE_IMAGE_MAX_BYTES // (1024 * 1024)}MB or smaller.")
    previous = template.image_asset_id
    try:
        asset = await media_store.save(
            db, candidate_id=None, interview_id=None, kind="image", mime_type=mime_type, data=data
        )
    except MediaTooLarge as e:
        raise HTTPException(413, str(e))
    except StorageBudgetExceeded as e:
        raise HTTPException(507, str(e))
    template.image_asset_id = asset.id
    await db.commit()
    if previous:
        await media_store.evict_where(db, "replaced", MediaAsset.id == previous)
    return template_out(template)


@app.post("/api/templates/{template_id}/image")
async def upload_template_image(
    template_id: int,
    file: UploadFile = File(...),
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    template = await get_template_or_404(db, template_id)
    if kind_for_mime(file.content_type or "") != "image":
        raise HTTPException(400, "Please upload an image file.")
    data = await file.read()
    if not data:
        raise HTTPException(400, "Empty upload")
    return await store_template_image(db, template, data, file.content_type)


@app.post("/api/templates/{template_id}/image/generate")
async def generate_template_image(
    template_id: int,
    body: GenerateImageRequest,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    template = await get_template_or_404(db, template_id)
    prompt = (body.prompt or "").strip() or (
        f"A professional, modern banner illustration for a {template.job_title} job interview"
    )
    data = await _ai(genai_service.generate_image(prompt))
    return await store_template_image(db, template, data, "image/jpeg")


# ── Candidates ───────────────────────────────────────────

class InviteRequest(BaseModel):
    email: str
    name: Optional[str] = None


class BulkInviteRequest(BaseModel):
    emails: str


class CandidateUpdate(BaseModel):
    name: Optional[str] = None
    notes: Optional[str] = None
    rating: Optional[int] = None


class AssignRequest(BaseModel):
    template_id: int


async def invite_emails(db: AsyncSession, emails: list[str], session: AuthSession) -> dict:
    if not emails:
        raise HTTPException(400, "No email addresses provided or found to invite.")
    result = await db.execute(select(Candidate.email))
    existing = {email.lower() for (email,) in result.all()}
    valid, invalid, duplicates = partition_emails(emails, existing)

    feedback = [{"type": "error", "message": f"Invalid email format: {e}"} for e in invalid]
    feedback += [{"type": "warning", "message": f"Duplicate email (already invited): {e}"} for e in duplicates]
    created = [
        Candidate(name="New Candidate", email=email, status="pending", organization_id=session.organization_id)
        for email in valid
    ]
    db.add_all(created)
    if created:
        feedback.insert(0, {"type": "success", "message": f"Successfully invited {len(created)} candidate(s)."})
        record_activity(db, "invite", f"{len(created)} candidate(s) were invited to interview.", session.organization_id)
    await db.commit()

    org = await get_organization_or_400(db, session.organization_id)
    for candidate in created:
        send_interview_invite(candidate.email, candidate.name, org.name if org else None)
    return {
        "invited": [candidate_out(c) for c in created],
        "invalid": invalid,
        "duplicates": duplicates,
        "feedback": feedback,
    }


async def filtered_candidates(
    db: AsyncSession, status: str, search: str, sort: str, order: str
) -> list[tuple[Candidate, Optional[float]]]:
    """Candidates matching the list filters, sorted, each with their latest score."""
    if status != "all" and status not in CANDIDATE_STATUSES:
        raise HTTPException(400, f"Unknown status filter: {status}")
    if sort not in {"created", "email", "status", "score"} or order not in {"asc", "desc"}:
        raise HTTPException(400, "Unsupported sort")

    query = select(Candidate)
    if status != "all":
        query = query.where(Candidate.status == status)
    if search.strip():
        needle = search.strip().lower()
        query = query.where(
            func.lower(Candidate.name).contains(needle) | func.lower(Candidate.email).contains(needle)
        )
    result = await db.execute(query.order_by(Candidate.id))
    candidates = list(result.scalars().all())
    latest = await latest_interviews(db, [c.id for c in candidates])
    scores = {cid: i.score for cid, i in latest.items()}

    reverse = order == "desc"
    if sort == "score":
        scored = [c for c in candidates if scores.get(c.id) is not None]
        unscored = [c for c in candidates if scores.get(c.id) is None]
        scored.sort(key=lambda c: scores[c.id], reverse=reverse)
        candidates = scored + unscored
    elif sort == "email":
        candidates.sort(key=lambda c: c.email.lower(), reverse=reverse)
    elif sort == "status":
        candidates.sort(key=lambda c: CANDIDATE_STATUSES.index(c.status), reverse=reverse)
    elif reverse:
        candidates.reverse()
    return [(c, scores.get(c.id)) for c in candidates]


@app.get("/api/candidates")
async def list_candidates(
    status: str = "all",
    search: str = "",
    sort: str = "created",
    order: str = "asc",
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await filtered_candidates(db, status, search, sort, order)
    return [candidate_out(c, score) for c, score in rows]


@app.get("/api/candidates/export")
async def export_candidates_csv(
    status: str = "all",
    search: str = "",
    sort: str = "created",
    order: str = "asc",
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await filtered_candidates(db, status, search, sort, order)
    if not rows:
        raise HTTPException(404, "No candidates to export based on current filters.")

    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    writer.writerow(["ID", "Name", "Email", "Status", "Latest Score"])
    for candidate, score in rows:
        if score is None:
            latest = "N/A"
        else:
            latest = int(score) if float(score).is_integer() else round(score, 1)
        writer.writerow([candidate.id, candidate.name, candidate.email, candidate.status, latest])

    filename = f"candidates_export_{datetime.date.today().isoformat()}.csv"
    return Response(
        buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/candidates/invite")
async def invite_candidate(
    body: InviteRequest,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    email = body.email.strip()
    if not is_valid_email(email):
        raise HTTPException(400, "Please enter a valid email address.")
    if await find_candidate_by_email(db, email):
        raise HTTPException(409, "This candidate has already been invited.")
    candidate = Candidate(
        name=(body.name or "").strip() or "New Candidate",
        email=email.lower(),
        status="pending",
        organization_id=session.organization_id,
    )
    db.add(candidate)
    record_activity(db, "invite", f"{candidate.name} was invited to interview.", session.organization_id)
    await db.commit()
    org = await get_organization_or_400(db, session.organization_id)
    send_interview_invite(candidate.email, candidate.name, org.name if org else None)
    return candidate_out(candidate)


@app.post("/api/candidates/bulk-invite")
async def bulk_invite(
    body: BulkInviteRequest,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await invite_emails(db, split_bulk_emails(body.emails), session)


@app.post("/api/candidates/import-csv")
async def import_candidates_csv(
    file: UploadFile = File(...),
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(400, "CSV file must be UTF-8 text.")
    return await invite_emails(db, split_csv_emails(text), session)


@app.get("/api/candidates/{candidate_id}")
async def get_candidate(
    candidate_id: int,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    candidate = await get_candidate_or_404(db, candidate_id)
    result = await db.execute(
        select(Interview)
        .where(Interview.candidate_id == candidate_id)
        .order_by(Interview.created_at.desc(), Interview.id.desc())
    )
    interviews = list(result.scalars().all())
    out = candidate_out(candidate, interviews[0].score if interviews else None)
    out["interviews"] = [await interview_out(db, i) for i in interviews]
    return out


@app.patch("/api/candidates/{candidate_id}")
async def update_candidate(
    candidate_id: int,
    body: CandidateUpdate,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    candidate = await get_candidate_or_404(db, candidate_id)
    if body.name is not None and body.name.strip():
        candidate.name = body.name.strip()
    if body.notes is not None:
        candidate.notes = body.notes
    if "rating" in body.model_fields_set:
        if body.rating is not None and not 1 <= body.rating <= 5:
            raise HTTPException(400, "Rating must be between 1 and 5.")
        candidate.rating = body.rating
    await db.commit()
    return candidate_out(candidate)


@app.delete("/api/candidates/{candidate_id}")
async def delete_candidate(
    candidate_id: int,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    candidate = await get_candidate_or_404(db, candidate_id)
    await media_store.evict_where(db, "candidate_deleted", MediaAsset.candidate_id == candidate_id)
    interview_ids = select(Interview.id).where(Interview.candidate_id == candidate_id)
    await db.execute(delete(InterviewLogEntry).where(InterviewLogEntry.interview_id.in_(interview_ids)))
    await db.execute(delete(Interview).where(Interview.candidate_id == candidate_id))
    await db.execute(delete(ChatMessage).where(ChatMessage.subject == f"candidate:{candidate_id}"))
    await db.execute(delete(ThemePreference).where(ThemePreference.subject == f"candidate:{candidate_id}"))
    await db.execute(delete(AuthSession).where(
        AuthSession.role == "candidate", AuthSession.subject == str(candidate_id)
    ))
    await db.delete(candidate)
    await db.commit()
    return {"status": "deleted"}


@app.post("/api/candidates/{candidate_id}/interviews")
async def assign_interview(
    candidate_id: int,
    body: AssignRequest,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    candidate = await get_candidate_or_404(db, candidate_id)
    template = await get_template_or_404(db, body.template_id)
    if not template.questions:
        raise HTTPException(400, "Template has no questions yet.")
    org = await db.get(Organization, template.organization_id) if template.organization_id else None
    interview = Interview(
        candidate_id=candidate.id,
        template_id=template.id,
        organization_id=template.organization_id,
        company=org.name if org else "",
        job_title=template.job_title,
        job_description=template.job_description,
        timer=template.timer,
        categories=list(template.categories or []),
        questions=list(template.questions or []),
        session_state=SessionState.IDLE.value,
    )
    db.add(interview)
    await db.flush()
    await sync_candidate_status(db, candidate)
    await db.commit()
    send_interview_assigned(candidate.email, candidate.name, template.job_title)
    return await interview_out(db, interview)


@app.post("/api/candidates/{candidate_id}/insights")
async def candidate_ai_insights(
    candidate_id: int,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await get_candidate_or_404(db, candidate_id)
    result = await db.execute(
        select(Interview)
        .where(Interview.candidate_id == candidate_id)
        .order_by(Interview.created_at.desc(), Interview.id.desc())
    )
    for interview in result.scalars().all():
        transcript = transcript_from_logs(await interview_logs(db, interview.id))
        if transcript:
            break
    else:
        raise HTTPException(400, "No interview transcript available for analysis.")
    insights = await _ai(genai_service.candidate_insights(transcript))
    interview.insights = insights
    await db.commit()
    return {"interview_id": interview.id, **insights}


# ── Candidate interviews ─────────────────────────────────

class ProgressUpdate(BaseModel):
    question_index: int
    answers: dict[int, str] = {}


class AnswerRequest(BaseModel):
    question_index: int
    transcript: str
    media_asset_id: Optional[int] = None


class FeedbackRequest(BaseModel):
    question: str
    answer: str


def _check_question_index(interview: Interview, index: int) -> None:
    if not 0 <= index < len(interview.questions or []):
        raise HTTPException(400, "Question index out of range")


@app.get("/api/me/interviews")
async def my_interviews(
    session: AuthSession = Depends(require_candidate),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Interview)
        .where(Interview.candidate_id == int(session.subject))
        .order_by(Interview.created_at.desc(), Interview.id.desc())
    )
    return [await interview_out(db, i, include_logs=False) for i in result.scalars().all()]


@app.get("/api/interviews/{interview_id}")
async def get_interview(
    interview_id: int,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    return await interview_out(db, interview)


@app.get("/api/interviews/{interview_id}/progress")
async def get_progress(
    interview_id: int,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    return interview.progress or {"question_index": 0, "answers": {}}


@app.put("/api/interviews/{interview_id}/progress")
async def save_progress(
    interview_id: int,
    body: ProgressUpdate,
    session: AuthSession = Depends(require_candidate),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    _check_question_index(interview, body.question_index)
    _advance(interview, SessionState.RECORDING)
    interview.progress = {
        "question_index": body.question_index,
        "answers": {str(k): v for k, v in body.answers.items()},
    }
    await db.commit()
    return interview.progress


@app.post("/api/interviews/{interview_id}/answers")
async def save_answer(
    interview_id: int,
    body: AnswerRequest,
    session: AuthSession = Depends(require_candidate),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    _check_question_index(interview, body.question_index)
    if interview.session_state != SessionState.RECORDING.value:
        raise HTTPException(409, "Interview is not being recorded")
    if body.media_asset_id is not None:
        asset = await db.get(MediaAsset, body.media_asset_id)
        if not asset or asset.interview_id != interview.id:
            raise HTTPException(400, "Unknown media for this interview")

    result = await db.execute(
        select(InterviewLogEntry).where(
            InterviewLogEntry.interview_id == interview.id,
            InterviewLogEntry.position == body.question_index,
        )
    )
    log = result.scalar_one_or_none()
    if log is None:
        log = InterviewLogEntry(
            interview_id=interview.id,
            position=body.question_index,
            question=question_texts(interview)[body.question_index],
        )
        db.add(log)
    log.answer = body.transcript.strip()
    if body.media_asset_id is not None:
        log.media_asset_id = body.media_asset_id

    progress = dict(interview.progress or {"question_index": 0, "answers": {}})
    answers = dict(progress.get("answers") or {})
    answers[str(body.question_index)] = log.answer
    progress["answers"] = answers
    progress["question_index"] = max(int(progress.get("question_index", 0)), body.question_index)
    interview.progress = progress
    await db.commit()
    assets = await assets_by_id(db, [log.media_asset_id])
    return log_out(log, assets)


@app.post("/api/interviews/{interview_id}/media")
async def upload_answer_media(
    interview_id: int,
    question_index: int = Form(...),
    file: UploadFile = File(...),
    session: AuthSession = Depends(require_candidate),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    _check_question_index(interview, question_index)
    if interview.session_state != SessionState.RECORDING.value:
        raise HTTPException(409, "Interview is not being recorded")
    mime_type = file.content_type or ""
    kind = kind_for_mime(mime_type)
    if kind not in {"video", "audio"}:
        raise HTTPException(400, "Answer media must be audio or video.")
    data = await file.read()
    if not data:
        raise HTTPException(400, "Empty upload")
    try:
        asset = await media_store.save(
            db,
            candidate_id=interview.candidate_id,
            interview_id=interview.id,
            kind=kind,
            mime_type=mime_type,
            data=data,
        )
    except MediaTooLarge as e:
        raise HTTPException(413, str(e))
    except StorageBudgetExceeded as e:
        raise HTTPException(507, str(e))
    return {"question_index": question_index, **media_out(asset)}


@app.post("/api/interviews/{interview_id}/feedback")
async def answer_feedback(
    interview_id: int,
    body: FeedbackRequest,
    session: AuthSession = Depends(require_candidate),
    db: AsyncSession = Depends(get_db),
):
    await get_interview_for(db, interview_id, session)
    if not body.answer.strip():
        return {"feedback": None}
    return {"feedback": await genai_service.answer_feedback(body.question, body.answer)}


@app.post("/api/interviews/{interview_id}/retake")
async def retake_interview(
    interview_id: int,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    _advance(interview, SessionState.IDLE)
    interview.progress = None
    await db.execute(delete(InterviewLogEntry).where(InterviewLogEntry.interview_id == interview.id))
    await db.commit()
    await media_store.evict_where(db, "interview_reset", MediaAsset.interview_id == interview.id)
    return await interview_out(db, interview)


@app.post("/api/interviews/{interview_id}/submit")
async def submit_interview(
    interview_id: int,
    session: AuthSession = Depends(require_candidate),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    logs = await interview_logs(db, interview.id)
    answers = {log.position: log.answer for log in logs if (log.answer or "").strip()}
    if not answers:
        raise HTTPException(400, "Answer at least one question before submitting.")
    _advance(interview, SessionState.FINALIZING)
    await db.commit()

    candidate = await get_candidate_or_404(db, interview.candidate_id)
    try:
        interview.analysis = await genai_service.analyze_interview(
            interview.job_title, question_texts(interview), answers
        )
        interview.completed_at = utcnow()
        _advance(interview, SessionState.SUBMITTED)
        await sync_candidate_status(db, candidate)
        record_activity(
            db, "review",
            f"{candidate.name} completed an interview for the {interview.job_title} role.",
            interview.organization_id,
        )
        await db.commit()
    except Exception:
        logger.exception("[POST] Submission failed for interview_id=%s", interview.id)
        await db.rollback()
        await db.refresh(interview)
        interview.session_state = SessionState.RECORDING.value
        await db.commit()
        raise HTTPException(500, "Could not submit the interview. Please try again.")
    return await interview_out(db, interview)


# ── Live interview ───────────────────────────────────────

def live_context(candidate: Candidate, interview: Interview) -> dict:
    return {
        "candidate_name": candidate.name,
        "job_title": interview.job_title,
        "job_description": interview.job_description,
        "company": interview.company,
        "questions": question_texts(interview),
    }


async def finalize_live_session(interview_id: int, live: LiveInterviewSession) -> str:
    """Persist what a live session captured and hand the interview to review."""
    filled = await fill_missing_transcripts(live.assembler, genai_service.transcribe_audio)
    transcript = live.assembler.render()
    logger.info(
        "[POST] interview_id=%s transcript=%s chars, filled %s segment(s)", interview_id, len(transcript), filled
    )

    async with async_session() as db:
        interview = await db.get(Interview, interview_id)
        if interview is None:
            logger.error("[POST] interview_id=%s vanished before finalization", interview_id)
            return "missing"
        candidate = await db.get(Candidate, interview.candidate_id)
        interview.dropped_frames = (interview.dropped_frames or 0) + live.buffer.dropped_frames
        interview.dropped_bytes = (interview.dropped_bytes or 0) + live.buffer.dropped_bytes
        interview.reconnects = (interview.reconnects or 0) + live.reconnects

        if not transcript.strip():
            interview.session_state = transition(interview.session_state, SessionState.RECORDING).value
            await db.commit()
            logger.info("[POST] Nothing captured for interview_id=%s; left in recording", interview_id)
            return interview.session_state

        interview.session_state = transition(interview.session_state, SessionState.FINALIZING).value
        await db.commit()

        try:
            result = await db.execute(
                select(InterviewLogEntry).where(
                    InterviewLogEntry.interview_id == interview_id,
                    InterviewLogEntry.question == LIVE_LOG_QUESTION,
                )
            )
            log = result.scalars().first()
            if log is None:
                count = await db.execute(
                    select(func.count(InterviewLogEntry.id)).where(InterviewLogEntry.interview_id == interview_id)
                )
                log = InterviewLogEntry(interview_id=interview_id, position=count.scalar_one(), question=LIVE_LOG_QUESTION)
                db.add(log)
            log.answer = transcript

            if live.assembler.recording:
                try:
                    asset = await media_store.save(
                        db,
                        candidate_id=interview.candidate_id,
                        interview_id=interview_id,
                        kind="audio",
                        mime_type="audio/wav",
                        data=pcm16_mono_to_wav(bytes(live.assembler.recording)),
                    )
                    log.media_asset_id = asset.id
                except (MediaTooLarge, StorageBudgetExceeded) as e:
                    logger.warning("[POST] Recording for interview_id=%s not stored: %s", interview_id, e)

            interview.analysis = await genai_service.analyze_interview(
                interview.job_title, [LIVE_LOG_QUESTION], {0: transcript}
            )
            interview.completed_at = utcnow()
            interview.session_state = transition(interview.session_state, SessionState.SUBMITTED).value
            await sync_candidate_status(db, candidate)
            record_activity(
                db, "review",
                f"{candidate.name} completed a live interview for the {interview.job_title} role.",
                interview.organization_id,
            )
            await db.commit()
        except Exception:
            logger.exception("[POST] Finalization failed for interview_id=%s", interview_id)
            await db.rollback()
            await db.refresh(interview)
            interview.session_state = transition(interview.session_state, SessionState.RECORDING).value
            await db.commit()
        return interview.session_state


@app.websocket("/ws/interviews/{interview_id}")
async def websocket_interview(ws: WebSocket, interview_id: int, token: str = ""):
    """WebSocket relay: Browser ↔ Backend ↔ live speech model."""
    async with async_session() as db:
        session = await resolve_session(db, token)
        if session is None or session.role != "candidate":
            await ws.close(code=4001, reason="Not authenticated")
            return
        interview = await db.get(Interview, interview_id)
        if not interview or str(interview.candidate_id) != session.subject:
            await ws.close(code=4004, reason="Interview not found")
            return
        try:
            interview.session_state = transition(interview.session_state, SessionState.RECORDING).value
        except InvalidTransition:
            await ws.close(code=4009, reason="Interview is not open for recording")
            return
        candidate = await db.get(Candidate, interview.candidate_id)
        ctx = live_context(candidate, interview)
        await db.commit()

    await ws.accept()
    logger.info("[WS] Live interview started for interview_id=%s", interview_id)

    async def persist_state(state: SessionState) -> None:
        async with async_session() as state_db:
            row = await state_db.get(Interview, interview_id)
            if row is not None:
                row.session_state = state.value
                await state_db.commit()

    async def client_messages():
        while True:
            try:
                raw = await ws.receive_text()
            except WebSocketDisconnect:
                logger.info("[WS] Client disconnected from interview_id=%s", interview_id)
                return
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("[WS] Ignoring non-JSON client message")
                continue
            if isinstance(msg, dict):
                yield msg

    live = LiveInterviewSession(
        interview_id,
        ctx,
        live_connector,
        ws.send_json,
        buffer=FrameBuffer(Config.LIVE_BUFFER_MAX_BYTES, Config.LIVE_BUFFER_POLICY),
        reconnect=ReconnectPolicy(
            max_attempts=Config.LIVE_RECONNECT_ATTEMPTS,
            base_delay=Config.LIVE_RECONNECT_BASE_DELAY,
            max_delay=Config.LIVE_RECONNECT_MAX_DELAY,
        ),
        # The finished recording is stored as one WAV asset.
        max_audio_bytes=min(Config.LIVE_MAX_RECORDING_BYTES, media_store.asset_limit(candidate.id) - WAV_HEADER_BYTES),
        feedback=genai_service.answer_feedback,
        on_state=persist_state,
    )
    await ws.send_json({"type": "status", "state": live.state.value})
    await live.run(client_messages())

    final_state = await finalize_live_session(interview_id, live)
    try:
        await ws.send_json({
            "type": "finalized",
            "state": final_state,
            "droppedFrames": live.buffer.dropped_frames,
            "reconnects": live.reconnects,
        })
        await ws.close()
    except (RuntimeError, OSError, WebSocketDisconnect) as e:
        logger.debug("[WS] Client already gone: %s", e)


# ── Review ───────────────────────────────────────────────

class ManualScoreRequest(BaseModel):
    score: Optional[int] = None


class ApproveRequest(BaseModel):
    score: Optional[float] = None


@app.get("/api/reviews")
async def review_queue(
    organization_id: Optional[int] = None,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    org_id = organization_id if organization_id is not None else session.organization_id
    query = (
        select(Interview, Candidate)
        .join(Candidate, Candidate.id == Interview.candidate_id)
        .where(Interview.session_state == SessionState.SUBMITTED.value)
        .order_by(Interview.completed_at.desc(), Interview.id.desc())
    )
    if org_id is not None:
        query = query.where(Interview.organization_id == org_id)
    result = await db.execute(query)
    out = []
    for interview, candidate in result.all():
        item = await interview_out(db, interview, include_logs=False)
        item["candidate"] = {"id": candidate.id, "name": candidate.name, "email": candidate.email}
        out.append(item)
    return out


@app.post("/api/interviews/{interview_id}/evaluate")
async def evaluate_interview(
    interview_id: int,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    if interview.session_state not in (SessionState.SUBMITTED.value, SessionState.REVIEWED.value):
        raise HTTPException(409, "Only submitted interviews can be evaluated")
    transcript = transcript_from_logs(await interview_logs(db, interview.id))
    if not transcript:
        raise HTTPException(400, "Interview has no answers to evaluate.")
    evaluation = await _ai(genai_service.evaluate_interview(
        interview.job_title, interview.job_description, transcript
    ))
    interview.evaluation = evaluation
    await db.commit()
    return evaluation


@app.put("/api/interviews/{interview_id}/logs/{log_id}/score")
async def set_manual_score(
    interview_id: int,
    log_id: int,
    body: ManualScoreRequest,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    log = await db.get(InterviewLogEntry, log_id)
    if not log or log.interview_id != interview_id:
        raise HTTPException(404, "Log entry not found")
    if body.score is not None and not 0 <= body.score <= 100:
        raise HTTPException(400, "Score must be between 0 and 100.")
    log.manual_score = body.score
    await db.commit()
    return {"id": log.id, "manual_score": log.manual_score}


@app.post("/api/interviews/{interview_id}/logs/{log_id}/video-analysis")
async def analyze_log_video(
    interview_id: int,
    log_id: int,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    log = await db.get(InterviewLogEntry, log_id)
    if not log or log.interview_id != interview_id:
        raise HTTPException(404, "Log entry not found")
    asset = await db.get(MediaAsset, log.media_asset_id) if log.media_asset_id else None
    if asset is None or asset.kind != "video":
        raise HTTPException(400, "No recorded media for this answer.")
    if asset.evicted_at is not None:
        raise HTTPException(410, "Recorded media was evicted to stay within the storage budget.")
    data = await media_store.read(asset)
    analysis = await _ai(genai_service.analyze_video(data, asset.mime_type, log.question))
    log.video_analysis = analysis
    await db.commit()
    return analysis


@app.post("/api/interviews/{interview_id}/approve")
async def approve_interview(
    interview_id: int,
    body: ApproveRequest,
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    score = body.score
    if score is None and isinstance(interview.evaluation, dict):
        score = interview.evaluation.get("overall_score")
    if score is None:
        manual = [log.manual_score for log in await interview_logs(db, interview.id) if log.manual_score is not None]
        if manual:
            score = sum(manual) / len(manual)
    if score is None:
        raise HTTPException(400, "Evaluate or score the interview before approving.")
    if not 0 <= score <= 100:
        raise HTTPException(400, "Score must be between 0 and 100.")

    _advance(interview, SessionState.REVIEWED)
    interview.score = round(float(score), 1)
    interview.reviewed_at = utcnow()
    interview.certificate_id = certificate_id_for(interview.id, interview.reviewed_at)
    candidate = await get_candidate_or_404(db, interview.candidate_id)
    await sync_candidate_status(db, candidate)
    record_activity(db, "approved", f"{candidate.name} was approved.", interview.organization_id)
    await db.commit()

    send_decision_email(
        candidate.email,
        candidate.name,
        interview.job_title,
        interview.score,
        f"{Config.FRONTEND_URL}/certificates/{interview.certificate_id}",
    )
    return await interview_out(db, interview)


@app.get("/api/analytics/summary")
async def analytics_summary(
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    org_id = session.organization_id
    interview_query = select(Interview)
    candidate_query = select(Candidate)
    activity_query = select(ActivityEvent).order_by(ActivityEvent.created_at.desc(), ActivityEvent.id.desc()).limit(10)
    if org_id is not None:
        interview_query = interview_query.where(Interview.organization_id == org_id)
        candidate_query = candidate_query.where(
            (Candidate.organization_id == org_id)
            | Candidate.id.in_(select(Interview.candidate_id).where(Interview.organization_id == org_id))
        )
        activity_query = activity_query.where(
            (ActivityEvent.organization_id == org_id) | ActivityEvent.organization_id.is_(None)
        )
    interviews = list((await db.execute(interview_query)).scalars().all())
    candidates = list((await db.execute(candidate_query)).scalars().all())
    activity = list((await db.execute(activity_query)).scalars().all())

    scores = [i.score for i in interviews if i.score is not None]
    distribution = {label: 0 for label, _, _ in SCORE_BUCKETS}
    for score in scores:
        rounded = round(score)
        for label, low, high in SCORE_BUCKETS:
            if low <= rounded <= high:
                distribution[label] += 1
                break
    pipeline = {status: 0 for status in CANDIDATE_STATUSES}
    for c in candidates:
        pipeline[c.status] = pipeline.get(c.status, 0) + 1

    return {
        "total_interviews": len(interviews),
        "pending_review": sum(1 for i in interviews if i.session_state == SessionState.SUBMITTED.value),
        "approved": sum(1 for i in interviews if i.session_state == SessionState.REVIEWED.value),
        "average_score": round(sum(scores) / len(scores), 1) if scores else None,
        "pipeline": pipeline,
        "score_distribution": [{"range": label, "count": count} for label, count in distribution.items()],
        "recent_activity": [
            {"id": e.id, "kind": e.kind, "message": e.message, "created_at": _iso(e.created_at)}
            for e in activity
        ],
    }


# ── Media ────────────────────────────────────────────────

@app.get("/api/media/usage")
async def media_usage(
    session: AuthSession = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await media_store.usage(db)


@app.get("/api/media/{asset_id}")
async def get_media(
    asset_id: int,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    asset = await db.get(MediaAsset, asset_id)
    if not asset:
        raise HTTPException(404, "Media not found")
    if session.role != "admin" and asset.candidate_id is not None and str(asset.candidate_id) != session.subject:
        raise HTTPException(403, "Not your media")
    if asset.evicted_at is not None:
        raise HTTPException(410, "Recorded media was evicted to stay within the storage budget.")
    path = media_store.path_for(asset)
    if not path.exists():
        raise HTTPException(410, "Recorded media is no longer available.")
    return FileResponse(path, media_type=asset.mime_type)


# ── Certificates ─────────────────────────────────────────

@app.get("/api/interviews/{interview_id}/certificate")
async def download_certificate(
    interview_id: int,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    interview = await get_interview_for(db, interview_id, session)
    if interview.session_state != SessionState.REVIEWED.value or not interview.certificate_id:
        raise HTTPException(409, "Certificates are only available for approved interviews.")
    candidate = await get_candidate_or_404(db, interview.candidate_id)
    issued = (interview.reviewed_at or utcnow()).date()
    pdf = render_certificate(
        candidate.name,
        interview.job_title,
        interview.company or "",
        interview.score,
        issued,
        interview.certificate_id,
        f"{Config.FRONTEND_URL}/certificates/{interview.certificate_id}",
    )
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{interview.certificate_id}.pdf"'},
    )


@app.get("/api/certificates/{certificate_id}")
async def verify_certificate(certificate_id: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Interview).where(Interview.certificate_id == certificate_id))
    interview = result.scalar_one_or_none()
    if not interview or interview.session_state != SessionState.REVIEWED.value:
        raise HTTPException(404, "Certificate not found")
    candidate = await get_candidate_or_404(db, interview.candidate_id)
    return {
        "certificate_id": certificate_id,
        "candidate_name": candidate.name,
        "job_title": interview.job_title,
        "organization": interview.company,
        "score": interview.score,
        "issued_on": interview.reviewed_at.date().isoformat() if interview.reviewed_at else None,
    }


# ── AI tools ─────────────────────────────────────────────

class SpeakRequest(BaseModel):
    text: str
    voice: Optional[str] = None


class AudioCheckRequest(BaseModel):
    data: str


@app.post("/api/tools/transcribe")
async def transcribe_tool(
    file: UploadFile = File(...),
    session: AuthSession = Depends(get_current_session),
):
    if kind_for_mime(file.content_type or "") not in {"audio", "video"}:
        raise HTTPException(400, "Please upload an audio recording.")
    data = await file.read()
    if not data:
        raise HTTPException(400, "Empty upload")
    if len(data) > Config.MEDIA_MAX_ASSET_BYTES:
        raise HTTPException(413, "Recording is too large.")
    text = await _ai(genai_service.transcribe_audio(data, file.content_type))
    return {"text": text}


@app.post("/api/tools/speak")
async def speak_tool(
    body: SpeakRequest,
    session: AuthSession = Depends(get_current_session),
):
    text = body.text.strip()
    if not 1 <= len(text) <= 2000:
        raise HTTPException(400, "Text must be between 1 and 2000 characters.")
    pcm = await _ai(genai_service.synthesize_speech(text, body.voice))
    return Response(content=pcm16_mono_to_wav(pcm, OUTPUT_SAMPLE_RATE), media_type="audio/wav")


@app.post("/api/tools/audio-check")
async def audio_check(
    body: AudioCheckRequest,
    session: AuthSession = Depends(get_current_session),
):
    try:
        pcm = base64.b64decode(body.data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(400, "Audio must be base64-encoded PCM16.")
    return audio_level(pcm)


# ── Chat assistant ───────────────────────────────────────

class ChatRequest(BaseModel):
    message: str


async def chat_history(db: AsyncSession, subject: str) -> list[ChatMessage]:
    result = await db.execute(
        select(ChatMessage).where(ChatMessage.subject == subject).order_by(ChatMessage.id)
    )
    return list(result.scalars().all())


@app.get("/api/chat")
async def get_chat(
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    history = await chat_history(db, chat_subject(session))
    if not history:
        return {"messages": [{"role": "model", "text": CHAT_WELCOME, "welcome": True}]}
    return {"messages": [{"role": m.role, "text": m.text, "created_at": _iso(m.created_at)} for m in history]}


@app.post("/api/chat")
async def post_chat(
    body: ChatRequest,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    message = body.message.strip()
    if not 1 <= len(message) <= 2000:
        raise HTTPException(400, "Message must be between 1 and 2000 characters.")
    subject = chat_subject(session)
    history = await chat_history(db, subject)
    limit = max(Config.CHAT_HISTORY_LIMIT, 0)
    recent = [{"role": m.role, "text": m.text} for m in history[-limit:]] if limit else []
    reply = await genai_service.chat_reply(recent, message)
    db.add(ChatMessage(subject=subject, role="user", text=message))
    db.add(ChatMessage(subject=subject, role="model", text=reply))
    await db.commit()
    return {"reply": reply}


@app.delete("/api/chat")
async def clear_chat(
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(ChatMessage).where(ChatMessage.subject == chat_subject(session)))
    await db.commit()
    return {"status": "cleared"}


# ── Themes ───────────────────────────────────────────────

class ThemeUpdate(BaseModel):
    theme_id: Optional[str] = None
    primary: Optional[str] = None
    secondary: Optional[str] = None


def effective_theme(pref: Optional[ThemePreference]) -> dict:
    theme_id = pref.theme_id if pref and pref.theme_id in THEME_PRESETS else DEFAULT_THEME
    preset = THEME_PRESETS[theme_id]
    colors = dict(preset["colors"])
    if pref and pref.primary_color:
        colors["--primary-accent"] = pref.primary_color
    if pref and pref.secondary_color:
        colors["--secondary-accent"] = pref.secondary_color
    return {
        "theme_id": theme_id,
        "name": preset["name"],
        "mode": preset["mode"],
        "custom": bool(pref and (pref.primary_color or pref.secondary_color)),
        "colors": colors,
    }


@app.get("/api/themes")
async def list_themes():
    return [
        {"id": theme_id, "name": preset["name"], "mode": preset["mode"], "colors": preset["colors"]}
        for theme_id, preset in THEME_PRESETS.items()
    ]


@app.get("/api/theme")
async def get_theme(
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    return effective_theme(await db.get(ThemePreference, chat_subject(session)))


@app.put("/api/theme")
async def update_theme(
    body: ThemeUpdate,
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    if body.theme_id is not None and body.theme_id not in THEME_PRESETS:
        raise HTTPException(400, f"Unknown theme: {body.theme_id}")
    for color in (body.primary, body.secondary):
        if color is not None and not is_hex_color(color):
            raise HTTPException(400, f"Invalid color: {color}")

    subject = chat_subject(session)
    pref = await db.get(ThemePreference, subject)
    if pref is None:
        pref = ThemePreference(subject=subject, theme_id=DEFAULT_THEME)
        db.add(pref)
    if body.theme_id is not None and body.theme_id != pref.theme_id:
        pref.theme_id = body.theme_id
        pref.primary_color = None
        pref.secondary_color = None
    if body.primary is not None:
        pref.primary_color = body.primary
    if body.secondary is not None:
        pref.secondary_color = body.secondary
    await db.commit()
    return effective_theme(pref)


@app.delete("/api/theme/custom")
async def reset_theme_colors(
    session: AuthSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    pref = await db.get(ThemePreference, chat_subject(session))
    if pref is not None:
        pref.primary_color = None
        pref.secondary_color = None
        await db.commit()
    return effective_theme(pref)
