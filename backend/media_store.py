"""Recorded media on disk under a global and a per-candidate byte budget."""

import asyncio
import datetime
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from live_session import IN_FLIGHT_STATES, SessionState
from models import Interview, MediaAsset, utcnow

logger = logging.getLogger(__name__)


class MediaTooLarge(Exception):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Media is {size} bytes; the limit is {limit} bytes")
        self.size = size
        self.limit = limit


class StorageBudgetExceeded(Exception):
    def __init__(self, scope: str, needed: int):
        super().__init__(f"Not enough evictable media to free {needed} bytes of {scope} storage")
        self.scope = scope
        self.needed = needed


def plan_eviction(
    assets: Iterable[MediaAsset],
    bytes_needed: int,
    protected: frozenset[int] | set[int] = frozenset(),
    preferred: frozenset[int] | set[int] = frozenset(),
) -> Optional[list[MediaAsset]]:
    """Pick assets to evict so that at least ``bytes_needed`` bytes are freed.

    Assets of interviews in ``preferred`` (already reviewed) go first, then the
    rest oldest first. Assets of interviews in ``protected`` are never picked.
    Returns None when the evictable assets cannot free enough.
    """
    if bytes_needed <= 0:
        return []
    evictable = [
        a for a in assets
        if a.evicted_at is None and (a.interview_id is None or a.interview_id not in protected)
    ]
    evictable.sort(key=lambda a: (
        0 if a.interview_id is not None and a.interview_id in preferred else 1,
        a.created_at or datetime.datetime.min,
        a.id or 0,
    ))
    chosen: list[MediaAsset] = []
    freed = 0
    for asset in evictable:
        if freed >= bytes_needed:
            break
        chosen.append(asset)
        freed += asset.size_bytes
    if freed < bytes_needed:
        return None
    return chosen


def kind_for_mime(mime_type: str) -> Optional[str]:
    major = (mime_type or "").split("/", 1)[0].lower()
    if major in {"video", "audio", "image"}:
        return major
    return None


class MediaStore:
    def __init__(self, root: str, budget_bytes: int, candidate_budget_bytes: int, max_asset_bytes: int):
        self.root = Path(root)
        self.budget_bytes = budget_bytes
        self.candidate_budget_bytes = candidate_budget_bytes
        self.max_asset_bytes = max_asset_bytes
        self._lock = asyncio.Lock()

    def path_for(self, asset: MediaAsset) -> Path:
        return self.root / asset.path

    def asset_limit(self, candidate_id: Optional[int]) -> int:
        limit = min(self.max_asset_bytes, self.budget_bytes)
        if candidate_id is not None:
            limit = min(limit, self.candidate_budget_bytes)
        return limit

    async def save(
        self,
        db: AsyncSession,
        *,
        candidate_id: Optional[int],
        interview_id: Optional[int],
        kind: str,
        mime_type: str,
        data: bytes,
    ) -> MediaAsset:
        size = len(data)
        if size == 0:
            raise ValueError("Empty media upload")
        limit = self.asset_limit(candidate_id)
        if size > limit:
            raise MediaTooLarge(size, limit)

        async with self._lock:
            protected, preferred = await self._interview_sets(db)
            result = await db.execute(select(MediaAsset).where(MediaAsset.evicted_at.is_(None)))
            live = list(result.scalars().all())

            to_evict: list[tuple[MediaAsset, str]] = []
            if candidate_id is not None:
                own = [a for a in live if a.candidate_id == candidate_id]
                over = sum(a.size_bytes for a in own) + size - self.candidate_budget_bytes
                plan = plan_eviction(own, over, protected, preferred)
                if plan is None:
                    raise StorageBudgetExceeded("candidate", over)
                to_evict.extend((a, "candidate_budget") for a in plan)

            planned = {a.id for a, _ in to_evict}
            remaining = [a for a in live if a.id not in planned]
            over = sum(a.size_bytes for a in remaining) + size - self.budget_bytes
            plan = plan_eviction(remaining, over, protected, preferred)
            if plan is None:
                raise StorageBudgetExceeded("global", over)
            to_evict.extend((a, "global_budget") for a in plan)

            filename = f"{uuid.uuid4().hex}{self._extension(mime_type)}"
            await asyncio.to_thread(self._write, self.root / filename, data)
            asset = MediaAsset(
                candidate_id=candidate_id,
                interview_id=interview_id,
                kind=kind,
                mime_type=mime_type,
                size_bytes=size,
                path=filename,
            )
            db.add(asset)
            stale = self._mark_evicted(to_evict)
            try:
                await db.commit()
            except Exception:
                await asyncio.to_thread(self._unlink, self.root / filename)
                raise
            await self._remove_files(stale)

        logger.info(
            "[MEDIA] Stored asset_id=%s (%s, %s bytes) for candidate_id=%s; evicted %s asset(s)",
            asset.id, mime_type, size, candidate_id, len(to_evict),
        )
        return asset

    async def evict_where(self, db: AsyncSession, reason: str, *conditions) -> int:
        """Evict every live asset matching ``conditions`` and commit."""
        async with self._lock:
            result = await db.execute(
                select(MediaAsset).where(MediaAsset.evicted_at.is_(None), *conditions)
            )
            assets = list(result.scalars().all())
            stale = self._mark_evicted([(a, reason) for a in assets])
            await db.commit()
            await self._remove_files(stale)
        if assets:
            logger.info("[MEDIA] Evicted %s asset(s): %s", len(assets), reason)
        return len(assets)

    async def usage(self, db: AsyncSession) -> dict:
        result = await db.execute(select(MediaAsset))
        assets = list(result.scalars().all())
        live = [a for a in assets if a.evicted_at is None]
        per_candidate: dict[int, int] = {}
        for a in live:
            if a.candidate_id is not None:
                per_candidate[a.candidate_id] = per_candidate.get(a.candidate_id, 0) + a.size_bytes
        return {
            "used_bytes": sum(a.size_bytes for a in live),
            "budget_bytes": self.budget_bytes,
            "candidate_budget_bytes": self.candidate_budget_bytes,
            "max_asset_bytes": self.max_asset_bytes,
            "live_assets": len(live),
            "evicted_assets": len(assets) - len(live),
            "per_candidate": [
                {"candidate_id": cid, "used_bytes": used} for cid, used in sorted(per_candidate.items())
            ],
        }

    async def read(self, asset: MediaAsset) -> bytes:
        return await asyncio.to_thread(self.path_for(asset).read_bytes)

    async def _interview_sets(self, db: AsyncSession) -> tuple[set[int], set[int]]:
        result = await db.execute(
            select(Interview.id, Interview.session_state).where(
                Interview.session_state.in_(list(IN_FLIGHT_STATES) + [SessionState.REVIEWED.value])
            )
        )
        protected: set[int] = set()
        preferred: set[int] = set()
        for interview_id, state in result.all():
            if state == SessionState.REVIEWED.value:
                preferred.add(interview_id)
            else:
                protected.add(interview_id)
        return protected, preferred

    def _mark_evicted(self, items: list[tuple[MediaAsset, str]]) -> list[Path]:
        now = utcnow()
        paths = []
        for asset, reason in items:
            asset.evicted_at = now
            asset.eviction_reason = reason
            paths.append(self.path_for(asset))
        return paths

    async def _remove_files(self, paths: list[Path]) -> None:
        for path in paths:
            await asyncio.to_thread(self._unlink, path)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("[MEDIA] File already gone: %s", path)

    @staticmethod
    def _extension(mime_type: str) -> str:
        base = (mime_type or "").split(";", 1)[0].strip().lower()
        if base == "audio/wav":
            return ".wav"
        if base == "video/webm" or base == "audio/webm":
            return ".webm"
        return mimetypes.guess_extension(base) or ".bin"
