"""Telephony providers that place outbound calls."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from outbound_caller.core.exceptions import ConfigError, ProviderError

logger = logging.getLogger(__name__)


class TelephonyProvider(ABC):
    """Dials a number and points the provider at our webhooks."""

    @abstractmethod
    async def place_call(
        self,
        to: str,
        from_: Optional[str],
        answer_url: str,
        status_url: str,
        recording_url: Optional[str] = None,
    ) -> str:
        """Start a call and return the provider's call id."""


class TwilioProvider(TelephonyProvider):
    """Twilio Programmable Voice."""

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        default_from_number: Optional[str],
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.default_from_number = default_from_number
        self._client: Optional[Client] = None

    @property
    def configured(self) -> bool:
        return all([self.account_sid, self.auth_token, self.default_from_number])

    def _get_client(self) -> Client:
        if not self.configured:
            raise ConfigError(
                "Twilio is not configured. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN "
                "and TWILIO_PHONE_NUMBER."
            )
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    async def place_call(
        self,
        to: str,
        from_: Optional[str],
        answer_url: str,
        status_url: str,
        recording_url: Optional[str] = None,
    ) -> str:
        client = self._get_client()
        params = dict(
            to=to,
            from_=from_ or self.default_from_number,
            url=answer_url,
            method="POST",
            status_callback=status_url,
            status_callback_method="POST",
            status_callback_event=["initiated", "ringing", "answered", "completed"],
        )
        if recording_url:
            params.update(
                record=True,
                recording_status_callback=recording_url,
                recording_status_callback_event=["completed"],
            )

        logger.info(f"[TWILIO] Placing call to={to} answer_url={answer_url}")
        try:
            # The REST client is blocking
            call = await asyncio.to_thread(client.calls.create, **params)
        except TwilioRestException as e:
            logger.error(f"[TWILIO] Call to {to} rejected: {e.msg}")
            raise ProviderError(f"Twilio rejected the call: {e.msg}") from e
        except Exception as e:
            logger.error(f"[TWILIO] Call to {to} failed: {e}")
            raise ProviderError(f"Twilio call failed: {e}") from e

        logger.info(f"[TWILIO] Call created sid={call.sid} status={call.status}")
        return call.sid
