import logging
from pathlib import Path
from typing import Optional

from google import genai

from telegram import (
    Bot,
    BotCommand,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    ReplyParameters,
    Update,
)
from telegram.constants import ChatAction
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from config import (
    DEFAULT_PHOTO_PROMPT,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    JANITOR_INTERVAL_SECONDS,
    TELEGRAM_BOT_TOKEN,
    UPLOADS_DIR,
)
from conversations import RegenerationInput, SessionStore, resolve_conversation_id
from generator import GeneratedReply, ResponseGenerator
from janitor import janitor_job
from transfer import TransferError, fetch_file

# --- Logging setup ---
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

# Tone down noisy libs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

REGEN_PREFIX = "regen:"

RESET_TEXT = "Chat history has been reset. We're starting a fresh conversation!"
MESSAGE_ERROR_TEXT = "Sorry, I couldn't process your message."
IMAGE_ERROR_TEXT = "Sorry, I couldn't process that image."
REGEN_UNAVAILABLE_TEXT = "This request is no longer available for regeneration."
REGEN_ERROR_TEXT = "Sorry, regeneration failed. Please try again."


def regenerate_markup(input_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton("🔄 Regenerate", callback_data=f"{REGEN_PREFIX}{input_id}")]]
    )


def parse_regenerate_data(data: Optional[str]) -> Optional[int]:
    if not data or not data.startswith(REGEN_PREFIX):
        return None
    try:
        return int(data[len(REGEN_PREFIX):])
    except ValueError:
        return None


def _threaded(message_id: int) -> ReplyParameters:
    return ReplyParameters(message_id=message_id, allow_sending_without_reply=True)


def _discard(paths: list[Path]) -> None:
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to delete generated image %s", path, exc_info=True)


async def send_typing(bot: Bot, chat_id: int) -> None:
    # Cosmetic only; a failure here must not stop the reply.
    try:
        await bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
    except Exception:
        logger.warning("Failed to send typing indicator to chat %s", chat_id, exc_info=True)


async def deliver(
    bot: Bot,
    store: SessionStore,
    chat_id: int,
    input_id: int,
    conversation_id: str,
    reply: GeneratedReply,
) -> list[int]:
    """
    Send the reply text, then each generated image, threaded to the inbound
    message and carrying a regenerate button. Every sent message is linked to
    the conversation; image files are deleted whether or not the send worked.
    """
    markup = regenerate_markup(input_id)
    sent: list[int] = []
    try:
        if reply.text:
            msg = await bot.send_message(
                chat_id=chat_id,
                text=reply.text,
                reply_parameters=_threaded(input_id),
                reply_markup=markup,
            )
            store.link_message(chat_id, msg.message_id, conversation_id)
            sent.append(msg.message_id)

        for path in reply.image_paths:
            msg = await bot.send_photo(
                chat_id=chat_id,
                photo=Path(path),
                reply_parameters=_threaded(input_id),
                reply_markup=markup,
            )
            store.link_message(chat_id, msg.message_id, conversation_id)
            sent.append(msg.message_id)
    finally:
        _discard(reply.image_paths)
    return sent


# ========== Handlers ==========

async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.message:
        await update.message.reply_text(
            "Hi! Send me a message or a photo and I'll answer with Gemini.\n"
            "Reply to one of my messages to continue that conversation.\n"
            "Press 🔄 Regenerate under an answer to get a new one.\n"
            "Use /reset to forget all your conversations."
        )


async def reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    msg = update.message
    user = update.effective_user
    if msg is None or user is None:
        return

    store: SessionStore = context.bot_data["store"]
    removed = store.reset_user(user.id)
    logger.info("Reset %d conversations for user_id=%s", removed, user.id)
    await msg.reply_text(RESET_TEXT)


async def text_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    msg = update.message
    if msg is None or not msg.text or msg.from_user is None:
        return

    logger.info("Received message from user_id=%s chat_id=%s", msg.from_user.id, msg.chat_id)

    store: SessionStore = context.bot_data["store"]
    generator: ResponseGenerator = context.bot_data["generator"]

    conversation_id = resolve_conversation_id(store, msg, context.bot.id)
    await send_typing(context.bot, msg.chat_id)

    try:
        store.save_input(
            msg.chat_id,
            msg.message_id,
            RegenerationInput(prompt=msg.text, image_path=None, conversation_id=conversation_id),
        )
        reply = await generator.generate(conversation_id, msg.text)
        await deliver(context.bot, store, msg.chat_id, msg.message_id, conversation_id, reply)
    except Exception:
        logger.exception("Error processing message")
        await msg.reply_text(MESSAGE_ERROR_TEXT)


async def photo_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Download the largest version of the photo, keep it for possible
    regeneration, and answer the caption (or a default question) about it.
    """
    msg = update.message
    if msg is None or not msg.photo or msg.from_user is None:
        return

    store: SessionStore = context.bot_data["store"]
    generator: ResponseGenerator = context.bot_data["generator"]
    uploads_dir: Path = context.bot_data["uploads_dir"]

    conversation_id = resolve_conversation_id(store, msg, context.bot.id)
    prompt = msg.caption or DEFAULT_PHOTO_PROMPT
    await send_typing(context.bot, msg.chat_id)

    try:
        image_path = await fetch_file(context.bot, msg.photo[-1].file_id, uploads_dir)
        store.save_input(
            msg.chat_id,
            msg.message_id,
            RegenerationInput(prompt=prompt, image_path=str(image_path), conversation_id=conversation_id),
        )
        reply = await generator.generate(conversation_id, prompt, image_path)
        await deliver(context.bot, store, msg.chat_id, msg.message_id, conversation_id, reply)
    except TransferError:
        await msg.reply_text(IMAGE_ERROR_TEXT)
    except Exception:
        logger.exception("Error processing photo")
        await msg.reply_text(IMAGE_ERROR_TEXT)


async def regenerate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None:
        return

    # Telegram expects an answer quickly, before any slow work. A query that
    # waited too long in the update queue can no longer be answered.
    try:
        await query.answer("Regenerating…")
    except TelegramError:
        logger.warning("Failed to answer regenerate callback %s", query.data, exc_info=True)

    input_id = parse_regenerate_data(query.data)
    original = query.message
    if input_id is None or original is None:
        return

    chat_id = original.chat.id
    store: SessionStore = context.bot_data["store"]
    generator: ResponseGenerator = context.bot_data["generator"]

    entry = store.get_input(chat_id, input_id)
    if entry is None:
        await context.bot.send_message(
            chat_id=chat_id,
            text=REGEN_UNAVAILABLE_TEXT,
            reply_parameters=_threaded(original.message_id),
        )
        return

    reply: Optional[GeneratedReply] = None
    try:
        await send_typing(context.bot, chat_id)
        reply = await generator.generate(entry.conversation_id, entry.prompt, entry.image_path)

        was_photo = bool(getattr(original, "photo", None))
        if not was_photo and reply.text:
            try:
                await context.bot.edit_message_text(
                    chat_id=chat_id,
                    message_id=original.message_id,
                    text=reply.text,
                    reply_markup=regenerate_markup(input_id),
                )
            except BadRequest as exc:
                if "not modified" not in str(exc).lower():
                    raise
            if reply.image_paths:
                images_only = GeneratedReply(text="", image_paths=reply.image_paths)
                await deliver(context.bot, store, chat_id, input_id, entry.conversation_id, images_only)
        else:
            await context.bot.delete_message(chat_id=chat_id, message_id=original.message_id)
            await deliver(context.bot, store, chat_id, input_id, entry.conversation_id, reply)
    except Exception:
        logger.exception("Error regenerating response for message %s in chat %s", input_id, chat_id)
        if reply is not None:
            _discard(reply.image_paths)
        await context.bot.send_message(
            chat_id=chat_id,
            text=REGEN_ERROR_TEXT,
            reply_parameters=_threaded(original.message_id),
        )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %r", update, exc_info=context.error)


async def post_init(app: Application) -> None:
    """
    Set Telegram command list so clients show them as suggestions
    when user types '/'.
    """
    try:
        await app.bot.set_my_commands(
            [
                BotCommand("start", "Show a short info about this bot"),
                BotCommand("reset", "Forget all your conversations"),
            ]
        )
        logger.info("Bot commands registered with Telegram")
    except Exception:
        logger.exception("Failed to set bot commands")


def build_application(token: str, generator: ResponseGenerator) -> Application:
    app = (
        Application.builder()
        .token(token)
        .post_init(post_init)
        .build()
    )

    app.bot_data["store"] = generator.store
    app.bot_data["generator"] = generator
    app.bot_data["uploads_dir"] = generator.uploads_dir

    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("reset", reset))
    app.add_handler(MessageHandler(filters.PHOTO, photo_handler))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, text_handler))
    app.add_handler(CallbackQueryHandler(regenerate, pattern=rf"^{REGEN_PREFIX}\d+$"))
    app.add_error_handler(error_handler)

    app.job_queue.run_repeating(
        janitor_job,
        interval=JANITOR_INTERVAL_SECONDS,
        first=JANITOR_INTERVAL_SECONDS,
        name="janitor",
    )
    return app


def main() -> None:
    if not TELEGRAM_BOT_TOKEN:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")
    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY is not set")

    uploads_dir = Path(UPLOADS_DIR)
    uploads_dir.mkdir(parents=True, exist_ok=True)

    store = SessionStore()
    generator = ResponseGenerator(
        genai.Client(api_key=GEMINI_API_KEY),
        GEMINI_MODEL,
        store,
        uploads_dir,
    )

    app = build_application(TELEGRAM_BOT_TOKEN, generator)
    logger.info("Bot is running with model %s", GEMINI_MODEL)
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
