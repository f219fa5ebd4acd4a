import os
import sys
import tempfile

import pytest

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="charlitron-tests-")

os.environ["DATABASE_PATH"] = os.path.join(_TEST_DATA_DIR, "app.sqlite3")
os.environ["STORAGE_DIR"] = os.path.join(_TEST_DATA_DIR, "storage")
os.environ["ADMIN_PASSWORD"] = "admin-test-password"
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["SITE_URL"] = "https://charlitron.test"
os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_API_KEY_FILE"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app  # noqa: E402
from app.services.ai_assistant import AIAssistant, get_ai_assistant  # noqa: E402
from app.services.blog_store import BlogStore, get_blog_store  # noqa: E402
from app.services.directory_store import DirectoryStore, get_directory_store  # noqa: E402
from app.services.favorites_store import FavoritesStore, get_favorites_store  # noqa: E402
from app.services.feedback_store import FeedbackStore, get_feedback_store  # noqa: E402
from app.services.object_storage import ObjectStorage, get_object_storage  # noqa: E402


class Stores:
    def __init__(self, tmp_path):
        db_path = str(tmp_path / "isolated.sqlite3")
        self.db_path = db_path
        self.directory = DirectoryStore(db_path=db_path)
        self.blog = BlogStore(db_path=db_path)
        self.feedback = FeedbackStore(db_path=db_path)
        self.favorites = FavoritesStore()
        self.storage = ObjectStorage(root_dir=str(tmp_path / "storage"), public_base_url="/storage")
        self.assistant = AIAssistant(directory=self.directory, feedback=self.feedback)


@pytest.fixture
def stores(tmp_path):
    isolated = Stores(tmp_path)
    app.dependency_overrides[get_directory_store] = lambda: isolated.directory
    app.dependency_overrides[get_blog_store] = lambda: isolated.blog
    app.dependency_overrides[get_feedback_store] = lambda: isolated.feedback
    app.dependency_overrides[get_favorites_store] = lambda: isolated.favorites
    app.dependency_overrides[get_object_storage] = lambda: isolated.storage
    app.dependency_overrides[get_ai_assistant] = lambda: isolated.assistant
    yield isolated
    app.dependency_overrides.clear()


@pytest.fixture
def client(stores):
    return TestClient(app)


@pytest.fixture
def admin_headers(client):
    login = client.post("/auth/login", json={"password": "admin-test-password"})
    assert login.status_code == 200
    return {"Authorization": f"Bearer {login.json()['access_token']}"}
