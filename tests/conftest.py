import os
import sys
from pathlib import Path

import pytest

# Ensure repository root importable early
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Point the app at a throwaway database before crawler is imported
_TEST_DB = Path(ROOT_DIR) / "instance" / "crawler_test.db"
_TEST_DB.parent.mkdir(parents=True, exist_ok=True)
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DB.as_posix()}"

from crawler import create_app, db  # noqa: E402
from crawler.seed_content import seed_all  # noqa: E402


@pytest.fixture(scope="session")
def test_app():
    app = create_app(seed=False)
    app.config.update({"TESTING": True})
    return app


@pytest.fixture(autouse=True)
def _push_app_context(test_app):
    ctx = test_app.app_context()
    ctx.push()
    try:
        yield
    finally:
        ctx.pop()


@pytest.fixture()
def client(test_app):
    return test_app.test_client()


@pytest.fixture()
def seeded(test_app):
    """Fresh tables with the built-in content catalog."""
    db.session.remove()
    db.drop_all()
    db.create_all()
    seed_all()
    yield
    db.session.remove()
