# services.py
"""
Per-app wiring of the ledger client, member directory, notification dispatcher
and event processor. Registered the same way the Flask extensions are.
"""
import logging

from flask import current_app

from events.listener import EventProcessor
from events.models import SqlEventStore
from ledger_sdk import LedgerClient, LedgerConfig
from members.directory import MemberDirectory
from notifications.channel import TelegramChannel
from notifications.dispatcher import NotificationDispatcher
from notifications.utils import record_dispatch

logger = logging.getLogger(__name__)

EXTENSION_KEY = "lending"


class LendingServices:
    def __init__(self, ledger=None, dispatcher=None, directory=None):
        self._ledger = ledger
        self.dispatcher = dispatcher
        self.directory = directory
        self.config = {}

    def init_app(self, app):
        self.config = app.config
        if self.directory is None:
            self.directory = MemberDirectory.from_file(app.config.get("MEMBERS_FILE"))
        if self.dispatcher is None:
            token = app.config.get("TELEGRAM_BOT_TOKEN")
            channel = None
            if token:
                channel = TelegramChannel(
                    token,
                    api_url=app.config.get("TELEGRAM_API_URL", "https://api.telegram.org"),
                    timeout=app.config.get("NOTIFICATION_TIMEOUT", 10),
                )
            else:
                logger.warning("TELEGRAM_BOT_TOKEN not set; notifications will be skipped")
            self.dispatcher = NotificationDispatcher(
                channel,
                directory=self.directory,
                fallback_recipient=app.config.get("TELEGRAM_CHAT_ID"),
                base_url=app.config.get("APP_BASE_URL"),
                recorder=record_dispatch,
            )
        self.dispatcher.init()
        app.extensions[EXTENSION_KEY] = self

    @property
    def ledger(self):
        # built on first use so the app (and flask db commands) start without a contract address
        if self._ledger is None:
            self._ledger = LedgerClient(LedgerConfig.from_mapping(self.config))
            logger.info("Ledger client ready for %s (signer: %s)", self._ledger.address,
                        self._ledger.signer_address or "none")
        return self._ledger

    def event_processor(self) -> EventProcessor:
        return EventProcessor(self.ledger, self.dispatcher, SqlEventStore())

    def shutdown(self):
        if self.dispatcher is not None:
            self.dispatcher.shutdown()


def get_services() -> LendingServices:
    return current_app.extensions[EXTENSION_KEY]
