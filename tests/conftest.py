import os
import sys


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

import pytest  # noqa: E402

from sqn.models import ConnectionInformation  # noqa: E402


@pytest.fixture
def connection() -> ConnectionInformation:
    return ConnectionInformation(server_uri="http://localhost:9000", login="token-abc", password=None)
