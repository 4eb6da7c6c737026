from __future__ import annotations

import itertools
from pathlib import Path
from types import SimpleNamespace

import pytest
from google.genai import types

from conversations import SessionStore
from generator import ResponseGenerator

BOT_ID = 999


class FakeTelegramFile:
    def __init__(self, payload: bytes = b"\xff\xd8fake-jpeg") -> None:
        self.payload = payload

    async def download_to_drive(self, custom_path=None):
        Path(custom_path).write_bytes(self.payload)
        return Path(custom_path)


class FakeBot:
    """Records outbound Telegram calls; message ids are handed out sequentially."""

    id = BOT_ID

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self._ids = itertools.count(500)
        self.get_file_error: Exception | None = None
        self.edit_error: Exception | None = None

    def _record(self, name: str, **kwargs) -> SimpleNamespace:
        message_id = next(self._ids)
        self.calls.append((name, {**kwargs, "sent_id": message_id}))
        return SimpleNamespace(message_id=message_id)

    def named(self, name: str) -> list[dict]:
        return [kw for n, kw in self.calls if n == name]

    async def send_message(self, chat_id, text, **kwargs):
        return self._record("send_message", chat_id=chat_id, text=text, **kwargs)

    async def send_photo(self, chat_id, photo, **kwargs):
        # the file must still exist when Telegram reads it
        assert Path(photo).exists()
        return self._record("send_photo", chat_id=chat_id, photo=photo, **kwargs)

    async def edit_message_text(self, chat_id, message_id, text, **kwargs):
        if self.edit_error is not None:
            raise self.edit_error
        return self._record("edit_message_text", chat_id=chat_id, message_id=message_id, text=text, **kwargs)

    async def delete_message(self, chat_id, message_id):
        self._record("delete_message", chat_id=chat_id, message_id=message_id)
        return True

    async def send_chat_action(self, chat_id, action):
        self._record("send_chat_action", chat_id=chat_id, action=action)
        return True

    async def get_file(self, file_id):
        if self.get_file_error is not None:
            raise self.get_file_error
        return FakeTelegramFile()


class FakeModels:
    def __init__(self, responses=None, error: Exception | None = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.calls: list[dict] = []

    async def generate_content(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def make_client(models: FakeModels) -> SimpleNamespace:
    return SimpleNamespace(aio=SimpleNamespace(models=models))


def make_response(text: str | None = "Hi there", images: list[tuple[bytes, str]] | None = None):
    parts = []
    if text is not None:
        parts.append(types.Part(text=text))
    for data, mime_type in images or []:
        parts.append(types.Part(inline_data=types.Blob(data=data, mime_type=mime_type)))
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=parts))]
    )


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def uploads_dir(tmp_path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def models() -> FakeModels:
    return FakeModels(responses=[make_response()])


@pytest.fixture
def generator(models, store, uploads_dir) -> ResponseGenerator:
    return ResponseGenerator(make_client(models), "gemini-test", store, uploads_dir)


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()
