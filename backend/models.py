from sqlalchemy import Column, Integer, String, Float, Text, DateTime, JSON, ForeignKey
from sqlalchemy.orm import DeclarativeBase
import datetime


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token = Column(String, primary_key=True)
    role = Column(String, nullable=False)  # admin, candidate
    subject = Column(String, nullable=False)  # admin username or candidate id
    organization_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, default="New Candidate")
    father_name = Column(String, default="")
    gender = Column(String, default="")
    dob = Column(String, default="")
    cnic = Column(String, default="")
    email = Column(String, nullable=False)
    password_hash = Column(String, nullable=True)
    status = Column(String, default="pending")  # pending, awaiting_review, approved
    notes = Column(Text, default="")
    rating = Column(Integer, nullable=True)
    organization_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class InterviewTemplate(Base):
    __tablename__ = "interview_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    job_title = Column(String, nullable=False)
    job_description = Column(Text, nullable=False)
    timer = Column(Integer, default=60)  # seconds per question
    categories = Column(JSON, nullable=False)  # list of strings
    questions = Column(JSON, nullable=False)  # list of {"question", "category"}
    image_asset_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Interview(Base):
    __tablename__ = "interviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=False)
    template_id = Column(Integer, nullable=True)
    organization_id = Column(Integer, nullable=True)
    company = Column(String, default="")
    job_title = Column(String, nullable=False)
    job_description = Column(Text, default="")
    timer = Column(Integer, default=60)
    categories = Column(JSON, nullable=True)
    questions = Column(JSON, nullable=False)  # list of {"question", "category"}
    session_state = Column(String, default="idle")  # idle, recording, streaming, finalizing, submitted, reviewed
    progress = Column(JSON, nullable=True)  # {"question_index": int, "answers": {idx: transcript}}
    score = Column(Float, nullable=True)  # 0-100
    analysis = Column(JSON, nullable=True)
    evaluation = Column(JSON, nullable=True)
    insights = Column(JSON, nullable=True)
    dropped_frames = Column(Integer, default=0)
    dropped_bytes = Column(Integer, default=0)
    reconnects = Column(Integer, default=0)
    certificate_id = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)


class InterviewLogEntry(Base):
    __tablename__ = "interview_log_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    interview_id = Column(Integer, ForeignKey("interviews.id"), nullable=False)
    position = Column(Integer, nullable=False)  # question index
    question = Column(Text, nullable=False)
    answer = Column(Text, default="")
    manual_score = Column(Integer, nullable=True)  # 0-100
    media_asset_id = Column(Integer, nullable=True)
    video_analysis = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class MediaAsset(Base):
    __tablename__ = "media_assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    candidate_id = Column(Integer, nullable=True)
    interview_id = Column(Integer, nullable=True)
    kind = Column(String, nullable=False)  # video, audio, image
    mime_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    path = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    evicted_at = Column(DateTime, nullable=True)
    eviction_reason = Column(String, nullable=True)


class ActivityEvent(Base):
    __tablename__ = "activity_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=True)
    kind = Column(String, nullable=False)  # invite, review, approved, template, signup
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject = Column(String, nullable=False)
    role = Column(String, nullable=False)  # user, model
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class ThemePreference(Base):
    __tablename__ = "theme_preferences"

    subject = Column(String, primary_key=True)
    theme_id = Column(String, nullable=False, default="default-dark")
    primary_color = Column(String, nullable=True)
    secondary_color = Column(String, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
