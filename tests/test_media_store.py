import asyncio
import datetime

import pytest
from sqlalchemy import select

from database import async_session
from media_store import plan_eviction, kind_for_mime, MediaTooLarge, StorageBudgetExceeded
from models import Candidate, Interview, MediaAsset

BASE = datetime.datetime(2024, 1, 1)


def _asset(asset_id, size, interview_id=None, minutes=0, evicted=False):
    return MediaAsset(
        id=asset_id,
        size_bytes=size,
        interview_id=interview_id,
        created_at=BASE + datetime.timedelta(minutes=minutes),
        evicted_at=BASE if evicted else None,
    )


def test_plan_prefers_reviewed_interviews():
    old = _asset(1, 100, interview_id=10, minutes=0)
    reviewed = _asset(2, 100, interview_id=20, minutes=5)
    plan = plan_eviction([old, reviewed], 50, preferred={20})
    assert [a.id for a in plan] == [2]


def test_plan_is_oldest_first_with_id_tiebreak():
    assets = [_asset(3, 40, minutes=1), _asset(2, 40, minutes=0), _asset(1, 40, minutes=0)]
    plan = plan_eviction(assets, 70)
    assert [a.id for a in plan] == [1, 2]


def test_plan_never_touches_protected_or_evicted():
    assets = [
        _asset(1, 500, interview_id=7),
        _asset(2, 500, evicted=True),
        _asset(3, 100),
    ]
    assert plan_eviction(assets, 200, protected={7}) is None
    assert [a.id for a in plan_eviction(assets, 100, protected={7})] == [3]


def test_plan_with_nothing_needed():
    assert plan_eviction([_asset(1, 10)], 0) == []


def test_kind_for_mime():
    assert kind_for_mime("video/webm;codecs=vp9") == "video"
    assert kind_for_mime("audio/wav") == "audio"
    assert kind_for_mime("image/png") == "image"
    assert kind_for_mime("application/pdf") is None
    assert kind_for_mime("") is None


async def _candidate(db, email):
    result = await db.execute(select(Candidate).where(Candidate.email == email))
    return result.scalar_one()


async def _interview_for(db, candidate_id):
    result = await db.execute(select(Interview).where(Interview.candidate_id == candidate_id))
    return result.scalars().first()


def test_candidate_budget_evicts_reviewed_media(client, store):
    async def scenario():
        async with async_session() as db:
            alex = await _candidate(db, "alex.doe@example.com")
            interview = await _interview_for(db, alex.id)
            first = await store.save(
                db, candidate_id=alex.id, interview_id=interview.id, kind="video",
                mime_type="video/webm", data=b"a" * 2500,
            )
            second = await store.save(
                db, candidate_id=alex.id, interview_id=interview.id, kind="video",
                mime_type="video/webm", data=b"b" * 2500,
            )
            usage = await store.usage(db)
            return first, second, usage

    first, second, usage = asyncio.run(scenario())

    assert first.evicted_at is not None
    assert first.eviction_reason == "candidate_budget"
    assert not store.path_for(first).exists()
    assert store.path_for(second).read_bytes() == b"b" * 2500
    assert usage["used_bytes"] == 2500
    assert usage["evicted_assets"] == 1
    assert usage["per_candidate"] == [{"candidate_id": second.candidate_id, "used_bytes": 2500}]


def test_in_flight_media_is_never_evicted(client, store):
    async def scenario():
        async with async_session() as db:
            michael = await _candidate(db, "michael.chen@example.com")
            interview = Interview(
                candidate_id=michael.id, job_title="QA Engineer", questions=[], session_state="recording"
            )
            db.add(interview)
            await db.commit()
            await store.save(
                db, candidate_id=michael.id, interview_id=interview.id, kind="audio",
                mime_type="audio/wav", data=b"a" * 2500,
            )
            with pytest.raises(StorageBudgetExceeded) as exc:
                await store.save(
                    db, candidate_id=michael.id, interview_id=interview.id, kind="audio",
                    mime_type="audio/wav", data=b"b" * 2500,
                )
            result = await db.execute(select(MediaAsset).where(MediaAsset.candidate_id == michael.id))
            return exc.value, list(result.scalars().all())

    error, assets = asyncio.run(scenario())

    assert error.scope == "candidate"
    assert len(assets) == 1
    assert assets[0].evicted_at is None


def test_global_budget_evicts_oldest_template_image(client, store):
    async def scenario():
        async with async_session() as db:
            images = []
            for i in range(3):
                images.append(await store.save(
                    db, candidate_id=None, interview_id=None, kind="image",
                    mime_type="image/png", data=bytes([i]) * 3000,
                ))
            jessica = await _candidate(db, "jessica.davis@example.com")
            clip = await store.save(
                db, candidate_id=jessica.id, interview_id=None, kind="audio",
                mime_type="audio/wav", data=b"c" * 2000,
            )
            return images, clip

    images, clip = asyncio.run(scenario())

    assert images[0].eviction_reason == "global_budget"
    assert images[1].evicted_at is None and images[2].evicted_at is None
    assert clip.path.endswith(".wav")


def test_oversized_and_empty_media_are_rejected(client, store):
    async def scenario():
        async with async_session() as db:
            with pytest.raises(MediaTooLarge):
                await store.save(
                    db, candidate_id=1, interview_id=None, kind="video",
                    mime_type="video/webm", data=b"x" * 3001,
                )
            with pytest.raises(ValueError):
                await store.save(
                    db, candidate_id=1, interview_id=None, kind="video",
                    mime_type="video/webm", data=b"",
                )

    asyncio.run(scenario())


def test_evict_where_marks_and_removes(client, store):
    async def scenario():
        async with async_session() as db:
            asset = await store.save(
                db, candidate_id=42, interview_id=None, kind="audio", mime_type="audio/wav", data=b"z" * 100,
            )
            count = await store.evict_where(db, "candidate_deleted", MediaAsset.candidate_id == 42)
            return asset, count

    asset, count = asyncio.run(scenario())

    assert count == 1
    assert asset.eviction_reason == "candidate_deleted"
    assert not store.path_for(asset).exists()
