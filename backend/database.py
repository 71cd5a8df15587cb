from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool
from sqlalchemy import select, text
import logging

from config import Config
from constants import ORGANIZATIONS, SEED_CANDIDATES, DEMO_CANDIDATE, DEMO_INTERVIEW
from models import Base, Organization, Candidate, Interview, InterviewLogEntry, utcnow

logger = logging.getLogger(__name__)

DATABASE_URL = Config.DATABASE_URL

# aiosqlite connections are bound to the loop that opened them
_engine_kwargs = {"poolclass": NullPool} if DATABASE_URL.startswith("sqlite") else {}
engine = create_async_engine(DATABASE_URL, echo=False, **_engine_kwargs)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        # No live socket survives a restart.
        result = await conn.execute(text(
            "UPDATE interviews SET session_state = 'recording' WHERE session_state = 'streaming'"
        ))
        if result.rowcount:
            logger.info("[DB] Reset %s interrupted live session(s) to recording", result.rowcount)

    async with async_session() as session:
        existing = await session.execute(select(Organization.name))
        known = {name for (name,) in existing.all()}
        for name in ORGANIZATIONS:
            if name not in known:
                session.add(Organization(name=name))
        await session.flush()

        result = await session.execute(select(Candidate).limit(1))
        if result.scalar_one_or_none() is None:
            await _seed_candidates(session)
        await session.commit()


async def _seed_candidates(session: AsyncSession) -> None:
    orgs = await session.execute(select(Organization))
    org_ids = {org.name: org.id for org in orgs.scalars()}

    for seed in SEED_CANDIDATES:
        candidate = Candidate(
            name=seed["name"],
            father_name=seed["father_name"],
            gender=seed["gender"],
            dob=seed["dob"],
            cnic=seed["cnic"],
            email=seed["email"],
            status=seed["status"],
            organization_id=org_ids.get(seed["interviews"][0]["company"]) if seed["interviews"] else None,
        )
        session.add(candidate)
        await session.flush()

        for item in seed["interviews"]:
            interview = Interview(
                candidate_id=candidate.id,
                organization_id=org_ids.get(item["company"]),
                company=item["company"],
                job_title=item["job_title"],
                job_description=item.get("job_description", ""),
                timer=item.get("timer", 60),
                categories=item.get("categories", ["Technical"]),
                questions=[{"question": log["question"], "category": "Technical"} for log in item["logs"]],
                session_state=item["session_state"],
                score=item["score"],
                completed_at=utcnow(),
            )
            session.add(interview)
            await session.flush()
            if interview.session_state == "reviewed":
                interview.reviewed_at = utcnow()
                interview.certificate_id = f"SI-{interview.reviewed_at.year}-{interview.id:05d}"
            for position, log in enumerate(item["logs"]):
                session.add(InterviewLogEntry(
                    interview_id=interview.id,
                    position=position,
                    question=log["question"],
                    answer=log["answer"],
                ))

    demo = Candidate(
        name=DEMO_CANDIDATE["name"],
        email=DEMO_CANDIDATE["email"],
        status=DEMO_CANDIDATE["status"],
    )
    session.add(demo)
    await session.flush()
    session.add(Interview(
        candidate_id=demo.id,
        organization_id=org_ids.get(DEMO_INTERVIEW["company"]),
        company=DEMO_INTERVIEW["company"],
        job_title=DEMO_INTERVIEW["job_title"],
        job_description=DEMO_INTERVIEW["job_description"],
        timer=DEMO_INTERVIEW["timer"],
        categories=DEMO_INTERVIEW["categories"],
        questions=DEMO_INTERVIEW["questions"],
        session_state="idle",
    ))
    logger.info("[DB] Seeded %s candidates", len(SEED_CANDIDATES) + 1)


async def get_db():
    async with async_session() as session:
        yield session
