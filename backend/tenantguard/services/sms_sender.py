"""
SMS delivery for urgent quota notices.

Providers:
- Twilio (production)
- Mock (testing)

Selected with QUOTA_SMS_PROVIDER (twilio | mock).
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


@dataclass
class SmsMessage:
    to_number: str
    body: str


class SmsSender(ABC):
    """Abstract SMS sender. send() returns True on success."""

    @abstractmethod
    def send(self, message: SmsMessage) -> bool:
        pass


class TwilioSmsSender(SmsSender):
    """Twilio Messages API sender."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
        self.from_number = from_number or os.getenv("TWILIO_FROM_NUMBER")
        self._client = client

        if not (self.account_sid and self.auth_token and self.from_number):
            logger.warning("Twilio credentials not configured")

    def send(self, message: SmsMessage) -> bool:
        if not (self.account_sid and self.auth_token and self.from_number):
            logger.error("Cannot send SMS: Twilio credentials not configured")
            return False

        try:
            client = self._client or httpx.Client(timeout=15.0)
            try:
                response = client.post(
                    TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                    auth=(self.account_sid, self.auth_token),
                    data={
                        "To": message.to_number,
                        "From": self.from_number,
                        "Body": message.body,
                    },
                )
            finally:
                if self._client is None:
                    client.close()
        except httpx.HTTPError as e:
            logger.error("Failed to send SMS via Twilio", extra={"error": str(e)}, exc_info=True)
            return False

        if response.status_code in (200, 201):
            logger.info("SMS sent")
            return True

        logger.error(
            "Twilio API error",
            extra={"status_code": response.status_code, "response": response.text},
        )
        return False


class MockSmsSender(SmsSender):
    """Records messages instead of sending them."""

    def __init__(self, succeed: bool = True):
        self.sent_messages: List[SmsMessage] = []
        self.succeed = succeed

    def send(self, message: SmsMessage) -> bool:
        self.sent_messages.append(message)
        return self.succeed


def get_sms_sender() -> SmsSender:
    provider = os.getenv("QUOTA_SMS_PROVIDER", "twilio").lower()
    if provider == "mock":
        return MockSmsSender()
    return TwilioSmsSender()
