import os

from dotenv import load_dotenv

load_dotenv()

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")

UPLOADS_DIR = os.getenv("BOT_UPLOADS_DIR", "uploads")
JANITOR_INTERVAL_SECONDS = int(os.getenv("JANITOR_INTERVAL_SECONDS", "3600"))

HISTORY_MAX_TURNS = 20      # stored per conversation
HISTORY_REQUEST_TURNS = 10  # sent to the model per request

IMAGE_INPUT_TTL_SECONDS = 60 * 60
TEXT_INPUT_TTL_SECONDS = 24 * 60 * 60

FALLBACK_TEXT = "Sorry, I couldn't process that request."
DEFAULT_PHOTO_PROMPT = "What's in this image?"
