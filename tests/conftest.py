import pytest
from fastapi.testclient import TestClient

from dialoglab.gateway import GatewayError
from dialoglab.main import create_app
from dialoglab.settings import settings


class FakeGateway:
    """Stands in for the inference API; records calls and can be told to fail."""

    def __init__(self):
        self.replies = []
        self.chat_calls = []
        self.vision_calls = []
        self.fail_chat = False
        self.fail_speak = False
        self.transcript = ""
        self.vision_reply = '{"objects": ["apple", "chairs"]}'
        self.closed = False

    async def chat(self, messages, *, model=None, temperature=0.7, max_tokens=200):
        self.chat_calls.append([dict(m) for m in messages])
        if self.fail_chat:
            raise GatewayError("chat unavailable")
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.chat_calls)}"

    async def speak(self, text):
        if self.fail_speak:
            raise GatewayError("tts unavailable")
        return b"mp3:" + text.encode("utf-8")

    async def transcribe(self, audio, *, filename="audio.webm", mime_type="audio/webm"):
        return self.transcript

    async def describe_image(self, image_url, question, *, system=None, max_tokens=300):
        self.vision_calls.append((image_url, question, system))
        if self.fail_chat:
            raise GatewayError("vision unavailable")
        return self.vision_reply

    async def aclose(self):
        self.closed = True


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(gateway, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "teacher_password", "secret")
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    return create_app(gateway=gateway)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def teacher_token(client):
    response = client.post("/api/teacher/login", json={"password": "secret"})
    return response.json()["sessionId"]


@pytest.fixture
def teacher_headers(teacher_token):
    return {"Authorization": f"Bearer {teacher_token}"}
