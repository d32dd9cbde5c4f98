import os
import sys
from pathlib import Path

import pytest


# Ensure `import app...` and the test helpers resolve when tests run from repo root.
TESTS_DIR = Path(__file__).resolve().parent
BACKEND_DIR = TESTS_DIR.parent
for path in (BACKEND_DIR, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


# Minimal defaults so settings can initialize in test environments.
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_SECRET_KEY", "internal_test")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("FEE_CALCULATION_STRATEGY", "comprehensive")


from fakes import FakeSupabase  # noqa: E402
from factories import SCHOOL_ID  # noqa: E402
from app.core.database import SchoolDB  # noqa: E402


@pytest.fixture
def fake():
    return FakeSupabase()


@pytest.fixture
def db(fake):
    return SchoolDB(SCHOOL_ID, fake)
