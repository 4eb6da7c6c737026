import logging
from pathlib import Path

from telegram import Bot
from telegram.error import TelegramError

from conversations import Part

logger = logging.getLogger(__name__)

INPUT_IMAGE_MIME = "image/jpeg"


class TransferError(Exception):
    """A Telegram file could not be fetched to local storage."""


async def fetch_file(bot: Bot, file_id: str, uploads_dir: Path) -> Path:
    """
    Download a Telegram file into ``uploads_dir/<file_id>.jpg`` and return the path.

    The caller owns the file afterwards. A partial download is not cleaned up.
    Sending the same photo again rewrites the same file, which refreshes its
    mtime for every regeneration entry pointing at it.
    """
    target = Path(uploads_dir) / f"{file_id}.jpg"
    try:
        tg_file = await bot.get_file(file_id)
        await tg_file.download_to_drive(custom_path=target)
    except (TelegramError, OSError) as exc:
        logger.exception("Failed to download Telegram file %s", file_id)
        raise TransferError(f"could not fetch file {file_id}") from exc
    return target


def encode_image(path: str | Path) -> Part:
    """Read a local image into an inline part. Raises OSError if the file is gone."""
    data = Path(path).read_bytes()
    return Part.from_bytes(data, INPUT_IMAGE_MIME)
