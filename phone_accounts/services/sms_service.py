"""
SMS delivery of verification codes.

The code issuer only knows the SmsSender interface. Integrators either use
TwilioSmsSender or pass their own subclass to ServiceContext.create().
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..config import SmsConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class SmsSender(ABC):
    """Delivers a verification code to a phone number."""

    @abstractmethod
    def send_code(self, phone: str, code: str) -> dict:
        """
        Send a verification code.

        Returns:
            Dict with "success" and either a provider message id ("sid")
            or an "error" description
        """


class TwilioSmsSender(SmsSender):
    """Sends verification codes via Twilio."""

    def __init__(self, config: Optional[SmsConfig] = None, client=None):
        """
        Initialize the Twilio sender.

        Args:
            config: Twilio credentials and message template
            client: Pre-built Twilio client (skips credential checks)

        Raises:
            ConfigurationError: If Twilio is not configured
        """
        self.config = config or SmsConfig()

        if not self.config.from_number:
            raise ConfigurationError("TWILIO_PHONE_NUMBER is not set, cannot send verification codes")

        if client is None:
            if not self.config.is_configured():
                raise ConfigurationError("Twilio credentials are not set, cannot send verification codes")
            try:
                from twilio.rest import Client
            except ImportError as e:
                raise ConfigurationError("twilio library not installed, SMS disabled") from e
            client = Client(self.config.account_sid, self.config.auth_token)
            logger.info("Twilio SMS sender initialized")

        self._client = client

    def format_message(self, code: str) -> str:
        return self.config.message_template.format(code=code)

    def send_code(self, phone: str, code: str) -> dict:
        try:
            message = self._client.messages.create(
                body=self.format_message(code),
                from_=self.config.from_number,
                to=phone
            )
            logger.info(f"Verification SMS sent to {phone}: {message.sid}")
            return {"success": True, "sid": message.sid}
        except Exception as e:
            logger.error(f"Verification SMS failed to {phone}: {e}")
            return {"success": False, "error": str(e)}
