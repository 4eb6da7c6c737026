import logging
import time
from pathlib import Path
from typing import Optional

from telegram.ext import ContextTypes

from config import IMAGE_INPUT_TTL_SECONDS, TEXT_INPUT_TTL_SECONDS
from conversations import SessionStore, conversation_started_at

logger = logging.getLogger(__name__)


def sweep(
    store: SessionStore,
    now: Optional[float] = None,
    image_ttl: float = IMAGE_INPUT_TTL_SECONDS,
    text_ttl: float = TEXT_INPUT_TTL_SECONDS,
) -> int:
    """
    Drop stale regeneration inputs and delete their uploaded images.

    Image entries expire by the file's mtime; an entry whose file cannot be
    checked or deleted is dropped regardless. Text-only entries expire by the
    timestamp inside their conversation id, not by when the entry was saved.
    Returns the number of entries removed.
    """
    if now is None:
        now = time.time()

    removed = 0
    for key, entry in store.inputs():
        if entry.image_path:
            path = Path(entry.image_path)
            try:
                if now - path.stat().st_mtime <= image_ttl:
                    continue
                path.unlink()
            except OSError:
                logger.warning("Could not clean up %s, dropping its entry anyway", path, exc_info=True)
            store.drop_input(key)
            removed += 1
            continue

        started = conversation_started_at(entry.conversation_id)
        if started is not None and now - started <= text_ttl:
            continue
        store.drop_input(key)
        removed += 1

    return removed


async def janitor_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    store: SessionStore = context.bot_data["store"]
    removed = sweep(store)
    if removed:
        logger.info("Janitor removed %d stale regeneration inputs", removed)
