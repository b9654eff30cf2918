import os
import shutil
import tempfile

import pytest

# Point the app at a throwaway database before safetravel.config is imported
_db_dir = tempfile.mkdtemp(prefix="safetravel-test-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["AUTHORITY_WEBHOOK_URL"] = ""


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient
    from safetravel.main import app

    with TestClient(app) as test_client:
        yield test_client


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_db_dir, ignore_errors=True)
