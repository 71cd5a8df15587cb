"""Every call to the hosted generative models goes through this module."""

import asyncio
import json
import logging
import re
from typing import Optional

from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from config import Config
from constants import TECH_STACK, CHAT_ERROR_REPLY
from audio import INPUT_SAMPLE_RATE
from live_session import LiveUnavailable

logger = logging.getLogger(__name__)


class GenAIUnavailable(Exception):
    """No API key is configured."""


class GenAIError(Exception):
    """The model call failed or returned something unusable."""


# ── Response schemas ─────────────────────────────────────

class GeneratedQuestion(BaseModel):
    question: str
    category: str


class InterviewAnalysis(BaseModel):
    summary: str
    strengths: list[str]
    improvements: list[str]
    overall_score: float
    overall_feedback: str


class InterviewEvaluation(BaseModel):
    clarity: float
    relevance: float
    technical_accuracy: float
    completeness: float
    summary: str
    strengths: list[str]
    areas_for_improvement: list[str]


class CandidateInsights(BaseModel):
    summary: str
    strengths: list[str]
    areas_for_improvement: list[str]


class AnswerFeedback(BaseModel):
    encouragement: str
    suggestion: str


class VideoAnalysis(BaseModel):
    video_summary: str
    communication_style: str
    key_insights: list[str]


# ── Helpers ──────────────────────────────────────────────

def _clamp_float(value, minimum: float, maximum: float, default: float) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        numeric = default
    return max(minimum, min(maximum, numeric))


def _normalize_string_list(value, max_items: int = 12, max_len: int = 400) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for item in value:
        text = str(item).strip()
        if not text:
            continue
        lowered = text.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        out.append(text[:max_len])
        if len(out) >= max_items:
            break
    return out


def parse_json_text(text: str):
    """Parse model output as JSON, tolerating code fences and surrounding prose."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.endswith("```"):
            text = text[:-3]
        elif "```" in text:
            text = text[:text.rfind("```")]
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
        if match:
            return json.loads(match.group())
        raise


def weighted_overall_score(evaluation: dict) -> int:
    """Technical accuracy x4, completeness x3, relevance x2, clarity x1 (0-100)."""
    return int(round(
        evaluation["technical_accuracy"] * 4
        + evaluation["completeness"] * 3
        + evaluation["relevance"] * 2
        + evaluation["clarity"] * 1
    ))


def _client() -> genai.Client:
    if not Config.GEMINI_API_KEY:
        raise GenAIUnavailable("GEMINI_API_KEY is not configured")
    return genai.Client(api_key=Config.GEMINI_API_KEY)


async def _generate(model: str, contents, config: Optional[dict] = None):
    client = _client()
    try:
        return await asyncio.to_thread(
            client.models.generate_content,
            model=model,
            contents=contents,
            config=config,
        )
    except Exception as e:
        raise GenAIError(str(e)) from e


async def _generate_json(model: str, contents, schema, system_instruction: Optional[str] = None):
    config = {"response_mime_type": "application/json", "response_schema": schema}
    if system_instruction:
        config["system_instruction"] = system_instruction
    response = await _generate(model, contents, config)
    try:
        return parse_json_text(response.text)
    except (json.JSONDecodeError, TypeError) as e:
        raise GenAIError(f"Model returned invalid JSON: {e}") from e


# ── Templates ────────────────────────────────────────────

async def generate_questions(
    job_title: str, job_description: str, categories: list[str], count: int = 5
) -> list[dict]:
    prompt = (
        f'Generate {count} interview questions for a "{job_title}" role.\n'
        f"Job description: {job_description}\n"
        f"Questions should be distributed across these categories: {', '.join(categories)}.\n"
        "Return a JSON array of objects with \"question\" and \"category\" fields."
    )
    raw = await _generate_json(Config.TEXT_MODEL, prompt, list[GeneratedQuestion])
    if not isinstance(raw, list):
        raise GenAIError("Expected a list of questions")

    allowed = {c.lower(): c for c in categories}
    questions: list[dict] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        text = str(item.get("question", "")).strip()
        if not text:
            continue
        category = allowed.get(str(item.get("category", "")).strip().lower(), categories[0])
        questions.append({"question": text, "category": category})
    if not questions:
        raise GenAIError("Model returned no usable questions")
    logger.info("[GENAI] Generated %s question(s) for '%s'", len(questions), job_title)
    return questions[:count]


async def generate_image(prompt: str) -> bytes:
    client = _client()
    try:
        response = await asyncio.to_thread(
            client.models.generate_images,
            model=Config.IMAGE_MODEL,
            prompt=prompt,
            config={"number_of_images": 1, "output_mime_type": "image/jpeg", "aspect_ratio": "16:9"},
        )
        return response.generated_images[0].image.image_bytes
    except (IndexError, AttributeError, TypeError) as e:
        raise GenAIError("Model returned no image") from e
    except Exception as e:
        raise GenAIError(str(e)) from e


# ── Interview analysis ───────────────────────────────────

def _format_answers(questions: list[str], answers: dict[int, str]) -> str:
    lines = []
    for idx, question in enumerate(questions):
        answer = (answers.get(idx) or "").strip() or "(no answer)"
        lines.append(f"Question {idx + 1}: {question}\nAnswer: {answer}")
    return "\n\n".join(lines)


async def analyze_interview(title: str, questions: list[str], answers: dict[int, str]) -> dict:
    """Summary analysis of a submitted interview. Falls back to a neutral result."""
    prompt = (
        f'You are analysing a candidate\'s answers for the interview "{title}".\n\n'
        f"{_format_answers(questions, answers)}\n\n"
        "Return JSON with: summary, strengths (list), improvements (list), "
        "overall_score (1-10) and overall_feedback."
    )
    try:
        raw = await _generate_json(Config.TEXT_MODEL, prompt, InterviewAnalysis)
        if not isinstance(raw, dict):
            raise GenAIError("Expected an analysis object")
        return {
            "summary": str(raw.get("summary", "")).strip(),
            "strengths": _normalize_string_list(raw.get("strengths")),
            "improvements": _normalize_string_list(raw.get("improvements")),
            "overall_score": round(_clamp_float(raw.get("overall_score"), 1.0, 10.0, 5.0), 1),
            "overall_feedback": str(raw.get("overall_feedback", "")).strip(),
            "source": "model",
        }
    except (GenAIUnavailable, GenAIError, json.JSONDecodeError) as e:
        logger.warning("[GENAI] Interview analysis fallback: %s", e)
        return {
            "summary": "Automated analysis is unavailable for this interview.",
            "strengths": [],
            "improvements": [],
            "overall_score": 5.0,
            "overall_feedback": "Thank you for completing the interview. A reviewer will go through your answers.",
            "source": "fallback",
            "error": str(e),
        }


async def evaluate_interview(job_title: str, job_description: str, transcript: str) -> dict:
    prompt = (
        f"Evaluate this interview for the role of {job_title}.\n"
        f"Job description: {job_description or 'n/a'}\n\n"
        f"Transcript:\n{transcript}\n\n"
        "Score clarity, relevance, technical_accuracy and completeness from 1 to 10 each. "
        "Score strictly: use 5-6 for average answers and 8+ only with strong evidence. "
        "Also return summary, strengths (list) and areas_for_improvement (list)."
    )
    raw = await _generate_json(Config.TEXT_MODEL, prompt, InterviewEvaluation)
    if not isinstance(raw, dict):
        raise GenAIError("Expected an evaluation object")
    evaluation = {
        key: round(_clamp_float(raw.get(key), 1.0, 10.0, 5.0), 1)
        for key in ("clarity", "relevance", "technical_accuracy", "completeness")
    }
    evaluation["overall_score"] = weighted_overall_score(evaluation)
    evaluation["summary"] = str(raw.get("summary", "")).strip()
    evaluation["strengths"] = _normalize_string_list(raw.get("strengths"))
    evaluation["areas_for_improvement"] = _normalize_string_list(raw.get("areas_for_improvement"))
    return evaluation


async def candidate_insights(transcript: str) -> dict:
    prompt = (
        "Analyse the following interview transcript and give a short summary of the candidate, "
        "their strengths and their areas for improvement.\n\n"
        f"{transcript}"
    )
    raw = await _generate_json(
        Config.TEXT_MODEL, prompt, CandidateInsights,
        system_instruction="You are an expert technical recruiter AI.",
    )
    if not isinstance(raw, dict):
        raise GenAIError("Expected an insights object")
    return {
        "summary": str(raw.get("summary", "")).strip(),
        "strengths": _normalize_string_list(raw.get("strengths")),
        "areas_for_improvement": _normalize_string_list(raw.get("areas_for_improvement")),
    }


async def answer_feedback(question: str, answer: str) -> Optional[dict]:
    """Quick coaching for one answer. Returns None when unavailable."""
    prompt = (
        "You are a supportive interview coach. The candidate was asked:\n"
        f"{question}\n\nTheir answer:\n{answer}\n\n"
        "Reply with one sentence of encouragement and one concrete suggestion."
    )
    try:
        raw = await _generate_json(Config.TEXT_MODEL, prompt, AnswerFeedback)
        feedback = AnswerFeedback.model_validate(raw)
    except (GenAIUnavailable, GenAIError, ValidationError, json.JSONDecodeError) as e:
        logger.info("[GENAI] Answer feedback skipped: %s", e)
        return None
    return feedback.model_dump()


async def analyze_video(data: bytes, mime_type: str, question: str) -> dict:
    contents = [
        types.Part.from_bytes(data=data, mime_type=mime_type),
        (
            f'This is a candidate\'s recorded answer to the interview question: "{question}". '
            "Summarise the answer, describe the communication style (tone, pace, confidence, body language) "
            "and list key insights for a recruiter."
        ),
    ]
    raw = await _generate_json(Config.VIDEO_MODEL, contents, VideoAnalysis)
    if not isinstance(raw, dict):
        raise GenAIError("Expected a video analysis object")
    return {
        "video_summary": str(raw.get("video_summary", "")).strip(),
        "communication_style": str(raw.get("communication_style", "")).strip(),
        "key_insights": _normalize_string_list(raw.get("key_insights")),
    }


# ── Audio tools ──────────────────────────────────────────

async def transcribe_audio(data: bytes, mime_type: str) -> str:
    contents = [
        types.Part.from_bytes(data=data, mime_type=mime_type),
        "Transcribe this audio recording.",
    ]
    response = await _generate(Config.TEXT_MODEL, contents)
    return (response.text or "").strip()


async def synthesize_speech(text: str, voice: Optional[str] = None) -> bytes:
    """PCM16 mono 24 kHz audio for ``text``."""
    config = {
        "response_modalities": ["AUDIO"],
        "speech_config": {
            "voice_config": {"prebuilt_voice_config": {"voice_name": voice or Config.TTS_VOICE}},
        },
    }
    response = await _generate(Config.TTS_MODEL, text, config)
    try:
        audio = response.candidates[0].content.parts[0].inline_data.data
    except (IndexError, AttributeError, TypeError) as e:
        raise GenAIError("Model returned no audio") from e
    if not audio:
        raise GenAIError("Model returned no audio")
    return audio


# ── Chat ─────────────────────────────────────────────────

def chat_system_instruction() -> str:
    return (
        "You are a helpful AI assistant for the SmartInterview platform. Your purpose is to answer "
        "questions about the project, its architecture, and the technologies used. Be concise and "
        f"helpful. Here is the tech stack data for context: {json.dumps(TECH_STACK)}"
    )


async def chat_reply(history: list[dict], message: str) -> str:
    contents = [
        {"role": item["role"], "parts": [{"text": item["text"]}]}
        for item in history
    ]
    contents.append({"role": "user", "parts": [{"text": message}]})
    try:
        response = await _generate(
            Config.TEXT_MODEL, contents, {"system_instruction": chat_system_instruction()}
        )
        reply = (response.text or "").strip()
    except (GenAIUnavailable, GenAIError) as e:
        logger.warning("[GENAI] Chat fallback: %s", e)
        return CHAT_ERROR_REPLY
    return reply or CHAT_ERROR_REPLY


# ── Live sessions ────────────────────────────────────────

def build_live_system_instruction(ctx: dict) -> str:
    questions = "\n".join(f"- {q}" for q in ctx.get("questions", []))
    question_block = f"\nYou may draw on these prepared questions:\n{questions}\n" if questions else ""
    return (
        f"You are a friendly and professional interviewer for the role of {ctx['job_title']} "
        f"at {ctx.get('company') or 'our company'}. You are interviewing {ctx['candidate_name']}.\n"
        f"Job description: {ctx.get('job_description') or 'n/a'}\n"
        f"{question_block}"
        "Ask around 5 questions, one at a time, and wait for the candidate to finish answering "
        "before moving on. Keep your own turns short. When you have asked your final question and "
        "heard the answer, thank the candidate and say 'The interview is now complete.'"
    )


def live_connect_config(ctx: dict) -> dict:
    return {
        "response_modalities": ["AUDIO"],
        "speech_config": {
            "voice_config": {"prebuilt_voice_config": {"voice_name": Config.LIVE_VOICE}},
        },
        "system_instruction": build_live_system_instruction(ctx),
        "input_audio_transcription": {},
        "output_audio_transcription": {},
    }


class GeminiLiveUpstream:
    """Adapter from a google-genai live session to the relay's upstream interface."""

    def __init__(self, session, connection):
        self._session = session
        self._connection = connection

    async def send_audio(self, pcm: bytes) -> None:
        await self._session.send_realtime_input(
            audio=types.Blob(data=pcm, mime_type=f"audio/pcm;rate={INPUT_SAMPLE_RATE}")
        )

    async def send_text(self, text: str) -> None:
        await self._session.send_client_content(
            turns={"role": "user", "parts": [{"text": text}]},
            turn_complete=True,
        )

    async def events(self):
        while True:
            received = 0
            async for message in self._session.receive():
                received += 1
                if message.data:
                    yield {"type": "audio", "data": message.data}
                content = message.server_content
                if content is None:
                    continue
                if content.input_transcription and content.input_transcription.text:
                    yield {"type": "input_transcript", "text": content.input_transcription.text}
                if content.output_transcription and content.output_transcription.text:
                    yield {"type": "output_transcript", "text": content.output_transcription.text}
                if content.interrupted:
                    yield {"type": "interrupted"}
                if content.turn_complete:
                    yield {"type": "turn_complete"}
            if received == 0:
                return

    async def close(self) -> None:
        await self._connection.__aexit__(None, None, None)


async def connect_live(ctx: dict) -> GeminiLiveUpstream:
    try:
        client = _client()
    except GenAIUnavailable as e:
        raise LiveUnavailable(str(e)) from e
    connection = client.aio.live.connect(model=Config.LIVE_MODEL, config=live_connect_config(ctx))
    session = await connection.__aenter__()
    logger.info("[LIVE] Connected to %s", Config.LIVE_MODEL)
    return GeminiLiveUpstream(session, connection)
