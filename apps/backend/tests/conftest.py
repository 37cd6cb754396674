import os

# Tests run on the in-process stores with rate limiting off
os.environ.pop("DATABASE_URL", None)
os.environ.pop("LOCATIONIQ_API_KEY", None)
os.environ["RATE_LIMIT_ENABLED"] = "false"

from datetime import date, datetime, timedelta, timezone

import pytest

from core.dedup import compute_source_hash
from pipeline.memory_store import MemoryJobStore

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_job(**overrides):
    job = {
        "source_id": 1,
        "title": "Junior Engineer (Civil)",
        "organisation": "Public Works Department",
        "source_url": "https://example.gov.in/jobs/1",
        "official_notification_url": "https://example.gov.in/notice/1",
        "category": "Engineering",
        "qualification": "Graduate",
        "status": "open",
        "state": "Maharashtra",
        "district": "Pune",
        "lat": None,
        "lon": None,
        "location_label": None,
        "vacancies": 120,
        "description": "Recruitment of Junior Engineers in the civil wing.",
        "age_limit": None,
        "salary": None,
        "apply_start_date": None,
        "apply_end_date": None,
        "exam_date": None,
        "published_at": NOW,
    }
    job.update(overrides)
    job["source_hash"] = compute_source_hash(job)
    return job


SAMPLE_JOBS = [
    dict(
        title="Junior Engineer (Civil)",
        organisation="Public Works Department",
        source_url="https://example.gov.in/jobs/1",
        category="Engineering",
        state="Maharashtra",
        district="Pune",
        lat=18.5204,
        lon=73.8567,
        apply_end_date=date(2025, 6, 20),
        published_at=NOW - timedelta(days=10),
    ),
    dict(
        title="Staff Nurse",
        organisation="All India Institute of Medical Sciences",
        source_url="https://example.gov.in/jobs/2",
        category="Medical",
        qualification="B.Sc Nursing",
        state="Delhi",
        district="New Delhi",
        lat=28.5672,
        lon=77.2100,
        description="Staff nurse posts at AIIMS New Delhi.",
        apply_end_date=date(2025, 6, 15),
        published_at=NOW - timedelta(days=5),
    ),
    dict(
        title="Sub-Inspector (Executive)",
        organisation="Central Reserve Police Force",
        source_url="https://example.gov.in/jobs/3",
        category="Police",
        status="upcoming",
        state="National",
        district=None,
        description="Sub-Inspector recruitment, all India posting.",
        apply_end_date=None,
        published_at=NOW - timedelta(days=2),
    ),
    dict(
        title="Assistant Section Officer",
        organisation="Staff Selection Commission",
        source_url="https://example.gov.in/jobs/4",
        category="Administrative",
        state="Maharashtra",
        district="Mumbai",
        lat=19.0760,
        lon=72.8777,
        description="Assistant Section Officer posts in Mumbai offices.",
        apply_end_date=date(2025, 6, 12),
        published_at=NOW - timedelta(days=8),
    ),
    dict(
        title="Primary Teacher",
        organisation="Government of Karnataka Education Department",
        source_url="https://example.gov.in/jobs/5",
        category="Teaching",
        qualification="12th",
        status="result_out",
        state="Karnataka",
        district="Bengaluru",
        lat=12.9716,
        lon=77.5946,
        description="Primary teacher recruitment results.",
        apply_end_date=date(2025, 5, 1),
        published_at=NOW - timedelta(days=60),
    ),
]


@pytest.fixture
def memory_store():
    return MemoryJobStore()


@pytest.fixture
def seeded_store(memory_store):
    for overrides in SAMPLE_JOBS:
        memory_store.upsert(make_job(**overrides))
    return memory_store
