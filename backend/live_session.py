"""Live interview sessions.

A candidate's browser streams PCM16 audio over a WebSocket; the backend relays
it to a hosted live speech model and relays synthesized audio and streaming
transcription back. This module owns the parts of that pipeline that are ours:

* the interview session state machine (idle -> recording -> streaming ->
  finalizing -> submitted -> reviewed),
* a byte-bounded frame buffer between capture and the upstream socket, with an
  explicit drop policy when the upstream is slow or reconnecting,
* reconnect with exponential backoff when the upstream socket drops,
* transcript assembly from streamed transcription fragments.

The upstream itself is injected as a ``connector`` coroutine so the vendor
client stays in ``genai_service``.
"""

import asyncio
import base64
import binascii
import collections
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import websockets

from audio import OUTPUT_SAMPLE_RATE, audio_level, pcm16_mono_to_wav

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"


ALLOWED_TRANSITIONS = {
    SessionState.IDLE: {SessionState.RECORDING},
    SessionState.RECORDING: {SessionState.STREAMING, SessionState.FINALIZING, SessionState.IDLE},
    SessionState.STREAMING: {SessionState.RECORDING, SessionState.FINALIZING},
    SessionState.FINALIZING: {SessionState.SUBMITTED, SessionState.RECORDING},
    SessionState.SUBMITTED: {SessionState.REVIEWED},
    SessionState.REVIEWED: set(),
}

# Media belonging to interviews in these states must never be evicted.
IN_FLIGHT_STATES = {SessionState.RECORDING.value, SessionState.STREAMING.value, SessionState.FINALIZING.value}

COMPLETION_PHRASE = "the interview is now complete"

DROP_ERRORS = (websockets.ConnectionClosed, ConnectionError, OSError, asyncio.TimeoutError)


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move interview from '{current}' to '{target}'")
        self.current = current
        self.target = target


class LiveUnavailable(Exception):
    """The live model cannot be reached at all; retrying will not help."""


def transition(current, target) -> SessionState:
    current = SessionState(current)
    target = SessionState(target)
    if current == target == SessionState.RECORDING:
        return target
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)
    return target


# ── Backpressure ─────────────────────────────────────────

class FrameBuffer:
    """Byte-bounded FIFO of audio frames waiting to go upstream.

    ``put`` never blocks the capture side. When a frame does not fit, the
    ``drop_oldest`` policy discards queued frames from the head until it does,
    while ``drop_newest`` discards the incoming frame. Every discarded frame is
    counted in ``dropped_frames`` / ``dropped_bytes``.
    """

    POLICIES = ("drop_oldest", "drop_newest")

    def __init__(self, max_bytes: int, policy: str = "drop_oldest"):
        if policy not in self.POLICIES:
            raise ValueError(f"Unknown buffer policy: {policy}")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = max_bytes
        self.policy = policy
        self.dropped_frames = 0
        self.dropped_bytes = 0
        self._frames: collections.deque[bytes] = collections.deque()
        self._size = 0
        self._ready = asyncio.Event()
        self._closed = False

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def pending_bytes(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    def _drop(self, size: int) -> None:
        self.dropped_frames += 1
        self.dropped_bytes += size

    def put(self, frame: bytes) -> bool:
        """Queue a frame. Returns False if this frame was discarded."""
        if self._closed or not frame:
            return False
        size = len(frame)
        if size > self.max_bytes:
            self._drop(size)
            return False
        if self._size + size > self.max_bytes:
            if self.policy == "drop_newest":
                self._drop(size)
                return False
            while self._frames and self._size + size > self.max_bytes:
                old = self._frames.popleft()
                self._size -= len(old)
                self._drop(len(old))
        self._frames.append(frame)
        self._size += size
        self._ready.set()
        return True

    def requeue(self, frame: bytes) -> bool:
        """Put back a frame whose send failed, ahead of everything queued."""
        if self._closed or not frame:
            return False
        if self._size + len(frame) > self.max_bytes:
            self._drop(len(frame))
            return False
        self._frames.appendleft(frame)
        self._size += len(frame)
        self._ready.set()
        return True

    async def get(self) -> Optional[bytes]:
        """Next frame, or None once the buffer is closed and drained."""
        while not self._frames:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        frame = self._frames.popleft()
        self._size -= len(frame)
        return frame

    def close(self) -> None:
        self._closed = True
        self._ready.set()


# ── Reconnect ────────────────────────────────────────────

@dataclass
class ReconnectPolicy:
    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** max(0, attempt - 1)))


# ── Transcript ───────────────────────────────────────────

class TranscriptAssembler:
    """Turns streamed transcription fragments into ordered speaker turns.

    Parts are ``{"role": "ai"|"user", "text": str, "index": int}``. Candidate
    audio is kept in one capped recording; each user part remembers the slice
    of that recording captured since the previous user part, so empty turns
    can be transcribed afterwards.
    """

    MIN_SEGMENT_BYTES = 16000  # half a second of 16 kHz PCM16

    def __init__(self, max_audio_bytes: int):
        self.parts: list[dict] = []
        self.segments: list[dict] = []
        self.recording = bytearray()
        self.truncated_bytes = 0
        self.completion_detected = False
        self._max_audio_bytes = max_audio_bytes
        self._segment_start = 0
        self._open_role: Optional[str] = None
        self._open_text: list[str] = []

    def add_audio(self, pcm: bytes) -> None:
        room = self._max_audio_bytes - len(self.recording)
        if room <= 0:
            self.truncated_bytes += len(pcm)
            return
        self.recording.extend(pcm[:room])
        if len(pcm) > room:
            self.truncated_bytes += len(pcm) - room

    def add_input(self, text: str) -> list[dict]:
        flushed = []
        if self._open_role == "ai":
            flushed = self._flush()
        self._open_role = "user"
        self._open_text.append(text)
        return flushed

    def add_output(self, text: str) -> list[dict]:
        flushed = []
        if self._open_role == "user":
            flushed = self._flush()
        elif self._open_role is None and self._speech_pending():
            # Candidate spoke but no input transcription arrived.
            flushed = [self._append("user", "")]
        self._open_role = "ai"
        self._open_text.append(text)
        return flushed

    def add_typed(self, text: str) -> list[dict]:
        flushed = self._flush()
        flushed.append(self._append("user", text.strip()))
        return flushed

    def complete_turn(self) -> list[dict]:
        return self._flush()

    def finish(self) -> list[dict]:
        flushed = self._flush()
        if self._speech_pending():
            flushed.append(self._append("user", ""))
        return flushed

    def question_before(self, index: int) -> str:
        for part in reversed(self.parts[:index]):
            if part["role"] == "ai" and part["text"]:
                return part["text"]
        return ""

    def empty_user_segments(self) -> list[tuple[int, bytes]]:
        by_index = {p["index"]: p for p in self.parts}
        out = []
        for seg in self.segments:
            part = by_index.get(seg["index"])
            if part is not None and not part["text"]:
                out.append((seg["index"], bytes(self.recording[seg["start"]:seg["end"]])))
        return out

    def fill(self, index: int, text: str) -> None:
        for part in self.parts:
            if part["index"] == index and part["role"] == "user":
                part["text"] = text.strip()
                return

    def render(self) -> str:
        return "\n\n".join(
            f"{'Interviewer' if p['role'] == 'ai' else 'Candidate'}: {p['text']}"
            for p in self.parts
            if p["text"]
        )

    def _pending_audio_bytes(self) -> int:
        return len(self.recording) - self._segment_start

    def _speech_pending(self) -> bool:
        """Whether the audio since the last candidate turn is worth a turn of its own.

        Silence, such as the open microphone before the greeting, is skipped over
        so it never reaches transcription.
        """
        if self._pending_audio_bytes() < self.MIN_SEGMENT_BYTES:
            return False
        if audio_level(bytes(self.recording[self._segment_start:]))["detected"]:
            return True
        self._segment_start = len(self.recording)
        return False

    def _flush(self) -> list[dict]:
        if self._open_role is None:
            return []
        text = " ".join("".join(self._open_text).split())
        role = self._open_role
        self._open_role = None
        self._open_text = []
        if not text:
            return []
        part = self._append(role, text)
        if role == "ai" and COMPLETION_PHRASE in text.lower():
            self.completion_detected = True
        return [part]

    def _append(self, role: str, text: str) -> dict:
        part = {"role": role, "text": text, "index": len(self.parts)}
        self.parts.append(part)
        if role == "user":
            end = len(self.recording)
            if end > self._segment_start:
                self.segments.append({"index": part["index"], "start": self._segment_start, "end": end})
            self._segment_start = end
        return part


async def fill_missing_transcripts(
    assembler: TranscriptAssembler,
    transcribe: Callable[[bytes, str], Awaitable[str]],
) -> int:
    """Transcribe candidate turns whose live transcription never arrived."""
    pending = assembler.empty_user_segments()
    if not pending:
        return 0
    logger.info("[POST] Transcribing %s candidate segment(s) without live transcription", len(pending))

    async def _transcribe_one(index: int, pcm: bytes) -> tuple[int, str]:
        try:
            return index, await transcribe(pcm16_mono_to_wav(pcm), "audio/wav")
        except Exception as e:
            logger.warning("[POST] Transcription failed for segment %s: %s", index, e)
            return index, ""

    results = await asyncio.gather(*[_transcribe_one(i, pcm) for i, pcm in pending])
    filled = 0
    for index, text in results:
        if text.strip():
            assembler.fill(index, text)
            filled += 1
    return filled


# ── Session ──────────────────────────────────────────────

Connector = Callable[[dict], Awaitable[Any]]
Sender = Callable[[dict], Awaitable[None]]


class LiveInterviewSession:
    """Relay between one candidate socket and the live model.

    ``connector(context)`` returns an upstream with ``send_audio(bytes)``,
    ``send_text(str)``, ``events()`` (async iterator of normalized event
    dicts) and ``close()``. ``send(payload)`` delivers a JSON message to the
    candidate's browser.
    """

    def __init__(
        self,
        interview_id: int,
        context: dict,
        connector: Connector,
        send: Sender,
        *,
        buffer: FrameBuffer,
        reconnect: ReconnectPolicy,
        max_audio_bytes: int,
        feedback: Optional[Callable[[str, str], Awaitable[Optional[dict]]]] = None,
        on_state: Optional[Callable[[SessionState], Awaitable[None]]] = None,
        notice_interval: float = 1.0,
    ):
        self.interview_id = interview_id
        self.context = context
        self.buffer = buffer
        self.reconnect_policy = reconnect
        self.assembler = TranscriptAssembler(max_audio_bytes)
        self.state = SessionState.RECORDING
        self.reconnects = 0
        self.completed = False
        self.upstream_failed = False
        self._connector = connector
        self._send = send
        self._feedback = feedback
        self._on_state = on_state
        self._notice_interval = notice_interval
        self._stop = asyncio.Event()
        self._upstream = None
        self._typed_backlog: list[str] = []
        self._feedback_tasks: set[asyncio.Task] = set()
        self._notified_drops = 0
        self._last_notice_at: Optional[float] = None

    def stop(self) -> None:
        self._stop.set()

    async def run(self, messages: AsyncIterator[dict]) -> None:
        pump = asyncio.create_task(self._pump_client(messages))
        upstream_loop = asyncio.create_task(self._run_upstream())
        stopper = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({pump, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._stop.set()
            for task in (pump, stopper):
                task.cancel()
            await asyncio.gather(pump, stopper, return_exceptions=True)
            await asyncio.gather(upstream_loop, return_exceptions=True)
            self.buffer.close()
            for task in list(self._feedback_tasks):
                task.cancel()
            await asyncio.gather(*self._feedback_tasks, return_exceptions=True)
            self.assembler.finish()
        logger.info(
            "[LIVE] Session ended for interview_id=%s: parts=%s dropped_frames=%s reconnects=%s completed=%s",
            self.interview_id, len(self.assembler.parts), self.buffer.dropped_frames,
            self.reconnects, self.completed,
        )

    async def _emit(self, payload: dict) -> None:
        try:
            await self._send(payload)
        except Exception as e:
            logger.debug("[WS] Could not deliver %s to client: %s", payload.get("type"), e)

    async def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        self.state = transition(self.state, state)
        if self._on_state is not None:
            await self._on_state(self.state)
        await self._emit({"type": "status", "state": self.state.value})

    # client -> upstream

    async def _pump_client(self, messages: AsyncIterator[dict]) -> None:
        async for msg in messages:
            kind = msg.get("type")
            if kind == "audio" and msg.get("data"):
                try:
                    pcm = base64.b64decode(msg["data"], validate=True)
                except (binascii.Error, ValueError):
                    await self._emit({"type": "error", "error": "Invalid audio frame"})
                    continue
                self.assembler.add_audio(pcm)
                self.buffer.put(pcm)
                await self._maybe_notify_backpressure()
            elif kind == "text" and str(msg.get("text") or "").strip():
                text = str(msg["text"]).strip()
                self._after_flush(self.assembler.add_typed(text))
                await self._send_text(text)
            elif kind == "stop":
                logger.info("[WS] Candidate stopped interview_id=%s", self.interview_id)
                return
            else:
                logger.debug("[WS] Ignoring client message type=%s", kind)

    async def _maybe_notify_backpressure(self) -> None:
        if self.buffer.dropped_frames <= self._notified_drops:
            return
        now = asyncio.get_running_loop().time()
        if self._last_notice_at is not None and now - self._last_notice_at < self._notice_interval:
            return
        self._last_notice_at = now
        self._notified_drops = self.buffer.dropped_frames
        logger.warning(
            "[LIVE] Backpressure on interview_id=%s: dropped %s frame(s), %s byte(s)",
            self.interview_id, self.buffer.dropped_frames, self.buffer.dropped_bytes,
        )
        await self._emit({
            "type": "backpressure",
            "policy": self.buffer.policy,
            "droppedFrames": self.buffer.dropped_frames,
            "droppedBytes": self.buffer.dropped_bytes,
        })

    async def _send_text(self, text: str) -> None:
        upstream = self._upstream
        if upstream is None:
            self._typed_backlog.append(text)
            return
        try:
            await upstream.send_text(text)
        except Exception as e:
            logger.warning("[LIVE] Typed answer queued until reconnect: %s", e)
            self._typed_backlog.append(text)

    async def _send_frames(self, upstream) -> None:
        while True:
            frame = await self.buffer.get()
            if frame is None:
                return
            try:
                await upstream.send_audio(frame)
            except BaseException:
                self.buffer.requeue(frame)
                raise

    # upstream -> client

    async def _receive_events(self, upstream) -> None:
        async for event in upstream.events():
            kind = event.get("type")
            if kind == "audio":
                await self._emit({
                    "type": "audio",
                    "mimeType": f"audio/pcm;rate={OUTPUT_SAMPLE_RATE}",
                    "data": base64.b64encode(event["data"]).decode("ascii"),
                })
            elif kind == "input_transcript":
                self._after_flush(self.assembler.add_input(event["text"]))
                await self._emit({"type": "transcript", "role": "user", "text": event["text"]})
            elif kind == "output_transcript":
                self._after_flush(self.assembler.add_output(event["text"]))
                await self._emit({"type": "transcript", "role": "ai", "text": event["text"]})
            elif kind == "interrupted":
                await self._emit({"type": "interrupted"})
            elif kind == "turn_complete":
                self._after_flush(self.assembler.complete_turn())
                await self._emit({"type": "turnComplete"})
                if self.assembler.completion_detected and not self.completed:
                    self.completed = True
                    await self._emit({"type": "interviewComplete"})
                    self._stop.set()

    def _after_flush(self, parts: list[dict]) -> None:
        if self._feedback is None:
            return
        for part in parts:
            if part["role"] != "user" or not part["text"]:
                continue
            question = self.assembler.question_before(part["index"])
            if not question:
                continue
            task = asyncio.create_task(self._deliver_feedback(question, part["text"]))
            self._feedback_tasks.add(task)
            task.add_done_callback(self._feedback_tasks.discard)

    async def _deliver_feedback(self, question: str, answer: str) -> None:
        try:
            result = await self._feedback(question, answer)
        except Exception as e:
            logger.warning("[LIVE] Answer feedback failed: %s", e)
            return
        if result:
            await self._emit({"type": "feedback", **result})

    # connection lifecycle

    async def _run_upstream(self) -> None:
        try:
            await self._upstream_loop()
        except Exception as e:
            self.upstream_failed = True
            logger.error("[LIVE] Upstream loop failed for interview_id=%s", self.interview_id, exc_info=e)
            await self._emit({"type": "error", "error": "Live session failed"})
            self.buffer.close()

    async def _upstream_loop(self) -> None:
        attempt = 0
        while not self._stop.is_set():
            try:
                upstream = await self._connect()
                if upstream is None:
                    return
            except LiveUnavailable as e:
                logger.error("[LIVE] Live model unavailable: %s", e)
                self.upstream_failed = True
                await self._emit({"type": "error", "error": str(e)})
                return
            except Exception as e:
                reason = f"connect failed: {e}"
                logger.warning("[LIVE] Connect attempt failed for interview_id=%s: %s", self.interview_id, e)
            else:
                attempt = 0
                self._upstream = upstream
                try:
                    await self._set_state(SessionState.STREAMING)
                    await self._flush_typed_backlog(upstream)
                    reason = await self._relay(upstream)
                finally:
                    self._upstream = None
                    await self._close_upstream(upstream)
                if self._stop.is_set():
                    return
                self.reconnects += 1
                await self._set_state(SessionState.RECORDING)

            attempt += 1
            if attempt > self.reconnect_policy.max_attempts:
                self.upstream_failed = True
                logger.error(
                    "[LIVE] Giving up on live model for interview_id=%s after %s attempt(s)",
                    self.interview_id, attempt - 1,
                )
                await self._emit({"type": "error", "error": "Live session unavailable"})
                return
            delay = self.reconnect_policy.delay(attempt)
            await self._emit({"type": "sessionDropped", "reason": reason, "attempt": attempt, "retryIn": delay})
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def _connect(self):
        """Open the upstream, or return None if the session stops first."""
        connect = asyncio.create_task(self._connector(self.context))
        stopper = asyncio.create_task(self._stop.wait())
        done, _ = await asyncio.wait({connect, stopper}, return_when=asyncio.FIRST_COMPLETED)
        stopper.cancel()
        if connect in done:
            return connect.result()
        connect.cancel()
        await asyncio.gather(connect, return_exceptions=True)
        return None

    async def _flush_typed_backlog(self, upstream) -> None:
        backlog, self._typed_backlog = self._typed_backlog, []
        for text in backlog:
            await self._send_text(text)

    async def _relay(self, upstream) -> str:
        sender = asyncio.create_task(self._send_frames(upstream))
        receiver = asyncio.create_task(self._receive_events(upstream))
        stopper = asyncio.create_task(self._stop.wait())
        done, pending = await asyncio.wait({sender, receiver, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if stopper in done:
            return "stopped"
        for task in done:
            exc = task.exception()
            if exc is None:
                continue
            if isinstance(exc, DROP_ERRORS):
                logger.warning("[LIVE] Upstream dropped for interview_id=%s: %s", self.interview_id, exc)
            else:
                logger.error("[LIVE] Relay error for interview_id=%s", self.interview_id, exc_info=exc)
            return str(exc) or exc.__class__.__name__
        return "upstream closed the stream"

    async def _close_upstream(self, upstream) -> None:
        try:
            await upstream.close()
        except Exception as e:
            logger.debug("[LIVE] Error closing upstream: %s", e)
