import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Settings are read once at import time, so the environment has to be in place
# before anything under community_connect is imported.
_DATA_DIR = tempfile.mkdtemp(prefix="community-connect-tests-")
os.environ["COMMUNITY_DB_PATH"] = os.path.join(_DATA_DIR, "community.db")
os.environ["INGESTION_ENABLED"] = "false"
os.environ["FIREBASE_CREDENTIALS_PATH"] = ""
os.environ["ADMIN_USERNAMES"] = "admin_tester"
os.environ["AUTH_SECRET"] = "test-secret"

from community_connect.core.storage import connect_sqlite, ensure_schema  # noqa: E402


@pytest.fixture
def conn(tmp_path):
    c = connect_sqlite(str(tmp_path / "test.db"))
    ensure_schema(c)
    yield c
    c.close()
