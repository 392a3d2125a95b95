"""Telegram bot: answers direct messages and group messages that address it.

Each question becomes a job on the shared queue. The user gets a placeholder
right away, which is replaced by the answer, an error text, or a "taking
longer than expected" text once the wait is over. Retries are left to the
worker pool.
"""

import asyncio
import logging
from typing import Any, Optional, Tuple, cast

from telegram import Bot, Message, ReplyParameters, Update
from telegram.constants import ChatAction, ChatType
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from core import init_logging, load_config
from jobs.models import JobRecord, JobResult, Platform
from jobs.waiter import PENDING, CompletionWaiter, WaitOutcome
from worker.worker import build_backend, build_pool

from .base import EMPTY_QUESTION_TEXT, ERROR_TEXT, PROCESSING_TEXT, TIMEOUT_TEXT, UNEXPECTED_ERROR_TEXT
from .text import TELEGRAM_MAX_LENGTH, split_message, strip_mentions

logger = logging.getLogger(__name__)


class TelegramBot:
    def __init__(self, waiter: CompletionWaiter, timeout: float = 60.0) -> None:
        self.waiter = waiter
        self.timeout = timeout

    @staticmethod
    def is_addressed(message: Message, bot: Bot) -> bool:
        """Private chats always count; elsewhere the bot must be mentioned or replied to."""
        if message.chat.type == ChatType.PRIVATE:
            return True
        if bot.username and f"@{bot.username}" in (message.text or ""):
            return True
        replied = message.reply_to_message
        return replied is not None and replied.from_user is not None and replied.from_user.id == bot.id

    def build_job(self, message: Message) -> Optional[JobRecord]:
        """Job for `message`, or None when nothing but mentions was sent."""
        question = strip_mentions(message.text or "")
        if not question:
            return None
        user = message.from_user
        return JobRecord(
            platform=Platform.TELEGRAM,
            user_id=str(user.id) if user else "unknown",
            user_name=(user.username or user.first_name or "Unknown") if user else "Unknown",
            message=question,
            message_id=str(message.message_id),
            metadata={"chatId": message.chat.id, "chatType": str(message.chat.type)},
        )

    async def deliver(self, target: Tuple[Message, Message], outcome: WaitOutcome) -> None:
        message, placeholder = target
        if outcome is PENDING:
            await placeholder.edit_text(TIMEOUT_TEXT)
            logger.warning("Job timeout chat_id=%s message_id=%s", message.chat.id, message.message_id)
            return

        result = cast(JobResult, outcome)
        if result.success and result.response:
            await placeholder.delete()
            for chunk in split_message(result.response, TELEGRAM_MAX_LENGTH):
                await message.reply_text(chunk, reply_parameters=ReplyParameters(message_id=message.message_id))
            logger.info(
                "Response sent successfully chat_id=%s processing_time=%.3f",
                message.chat.id,
                result.processing_time,
            )
            return

        await placeholder.edit_text(ERROR_TEXT)
        logger.error("Error in job processing chat_id=%s error=%s", message.chat.id, result.error)

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or not message.text:
            return
        if not self.is_addressed(message, context.bot):
            return

        job = self.build_job(message)
        if job is None:
            logger.warning("Empty question after removing mentions chat_id=%s", message.chat.id)
            try:
                await message.reply_text(EMPTY_QUESTION_TEXT)
            except Exception as e:
                logger.error("Failed to send empty-question reply chat_id=%s: %s", message.chat.id, e)
            return

        logger.info(
            "Processing message user_id=%s user_name=%s chat_type=%s message_length=%d",
            job.user_id,
            job.user_name,
            message.chat.type,
            len(job.message),
        )

        try:
            await message.chat.send_action(ChatAction.TYPING)
            pending = await asyncio.to_thread(self.waiter.submit, job)
            try:
                placeholder = await message.reply_text(PROCESSING_TEXT)
                outcome = await asyncio.to_thread(pending.wait, self.timeout)
            finally:
                pending.close()
            await self.deliver((message, placeholder), outcome)
        except Exception as e:
            logger.error("Error handling message user_id=%s: %s", job.user_id, e)
            try:
                await message.reply_text(UNEXPECTED_ERROR_TEXT)
            except Exception as reply_error:
                logger.error("Failed to send error reply user_id=%s: %s", job.user_id, reply_error)

    async def on_error(self, update: Optional[Any], context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Bot error update=%s: %s", update, context.error)


def build_application(token: str, bot: TelegramBot) -> Application:
    application = Application.builder().token(token).concurrent_updates(True).build()
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, bot.handle_message))
    application.add_error_handler(bot.on_error)
    return application


def main() -> None:
    config = load_config()
    init_logging(config.log_level)
    logger.info("Starting Telegram bot service...")

    if not config.telegram.token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN environment variable is required")

    backend = build_backend(config)
    pool = build_pool(config, backend)
    pool.start()
    logger.info("Queue worker started")

    bot = TelegramBot(CompletionWaiter(backend), timeout=config.telegram.timeout)
    application = build_application(config.telegram.token, bot)
    try:
        # run_polling installs its own SIGINT/SIGTERM handling
        application.run_polling(allowed_updates=Update.ALL_TYPES)
    finally:
        pool.stop()
        backend.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
