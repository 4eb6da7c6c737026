import logging
import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from google import genai
from google.genai import types

from config import FALLBACK_TEXT, HISTORY_REQUEST_TURNS
from conversations import ROLE_MODEL, ROLE_USER, Part, SessionStore, Turn
from transfer import encode_image

logger = logging.getLogger(__name__)

IMAGE_REPLY_MARKER = "[Image]"


@dataclass
class GeneratedReply:
    text: str
    image_paths: list[Path] = field(default_factory=list)


def to_content(turn: Turn) -> types.Content:
    parts = []
    for part in turn.parts:
        if part.is_inline:
            parts.append(types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
        else:
            parts.append(types.Part(text=part.text or ""))
    return types.Content(role=turn.role, parts=parts)


class ResponseGenerator:
    """
    Sends a prompt (with the recent history of its conversation) to Gemini,
    asking for both text and image output, and records the exchange.
    """

    def __init__(
        self,
        client: genai.Client,
        model: str,
        store: SessionStore,
        uploads_dir: Path,
        request_turns: int = HISTORY_REQUEST_TURNS,
    ) -> None:
        self._client = client
        self.model = model
        self.store = store
        self.uploads_dir = Path(uploads_dir)
        self.request_turns = request_turns

    async def generate(
        self,
        conversation_id: str,
        prompt: str,
        image_path: Optional[str | Path] = None,
    ) -> GeneratedReply:
        """
        Never raises: any backend or response problem yields FALLBACK_TEXT and
        leaves the history untouched. Returned image files belong to the caller.
        """
        history = self.store.get_history(conversation_id)
        if self.request_turns > 0:
            history = history[-self.request_turns:]
        else:
            history = []

        written: list[Path] = []
        try:
            parts = [Part.from_text(prompt)]
            if image_path:
                parts.append(encode_image(image_path))
            user_turn = Turn(role=ROLE_USER, parts=tuple(parts))

            contents = [to_content(t) for t in history]
            contents.append(to_content(user_turn))

            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["TEXT", "IMAGE"],
                ),
            )

            text, images = self._split_response(response)
            for index, (data, mime_type) in enumerate(images):
                written.append(self._save_image(data, mime_type, index))

            if not text.strip():
                text = ""
            # Gemini rejects empty text parts in later requests.
            stored_text = text or IMAGE_REPLY_MARKER
            model_turn = Turn(role=ROLE_MODEL, parts=(Part.from_text(stored_text),))
            self.store.append_turns(conversation_id, [user_turn, model_turn])
        except Exception:
            logger.exception("Error generating AI response for conversation %s", conversation_id)
            for path in written:
                path.unlink(missing_ok=True)
            return GeneratedReply(text=FALLBACK_TEXT)

        return GeneratedReply(text=text, image_paths=written)

    @staticmethod
    def _split_response(response: types.GenerateContentResponse) -> tuple[str, list[tuple[bytes, str]]]:
        if not response.candidates:
            raise ValueError("response has no candidates")
        content = response.candidates[0].content
        if content is None or not content.parts:
            raise ValueError("response candidate has no content parts")

        texts: list[str] = []
        images: list[tuple[bytes, str]] = []
        for part in content.parts:
            if part.text and not part.thought:
                texts.append(part.text)
            blob = part.inline_data
            if blob is not None and blob.data and (blob.mime_type or "").startswith("image/"):
                images.append((blob.data, blob.mime_type))
        if not "".join(texts).strip() and not images:
            raise ValueError("response has neither text nor images")
        return "".join(texts), images

    def _save_image(self, data: bytes, mime_type: str, index: int) -> Path:
        ext = mimetypes.guess_extension(mime_type) or ".png"
        path = self.uploads_dir / f"response_{int(time.time() * 1000)}_{index}{ext}"
        path.write_bytes(data)
        return path
