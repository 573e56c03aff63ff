"""Delivery of composed messages to the notification gateway.

The gateway owns the actual email/SMS channel. From the dispatcher's point
of view a send is a blocking call: it either returns or raises TransportError.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from config import settings
from errors import TransportError
from logger_config import setup_logger
from schemas import MessagePayload

logger = setup_logger(__name__, 'transport.log')


class NotificationTransport(ABC):
    """Interface of anything that can deliver a MessagePayload to a user."""

    @abstractmethod
    def send(self, user, payload: MessagePayload) -> None:
        """Deliver payload to user or raise TransportError."""


class HttpNotificationTransport(NotificationTransport):
    """POSTs messages to ``{base_url}/api/notifications/send``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or settings.NOTIFICATION_API_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.TRANSPORT_TIMEOUT
        self._client = client

    def _request_body(self, user, payload: MessagePayload) -> dict:
        return {
            "user_id": user.id,
            "to": user.email,
            "locale": user.locale,
            **payload.model_dump(),
        }

    def send(self, user, payload: MessagePayload) -> None:
        """Send one message.

        Raises:
            TransportError: On timeout, network error or any non-2xx response
        """
        api_url = f"{self.base_url}/api/notifications/send"
        logger.info(f"Sending {payload.nature} to user {user.id}: {payload.subject!r}")

        try:
            if self._client is not None:
                response = self._client.post(api_url, json=self._request_body(user, payload), timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(api_url, json=self._request_body(user, payload))
        except httpx.TimeoutException as e:
            logger.error(f"Timeout while sending {payload.nature} to user {user.id}")
            raise TransportError(f"Timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.error(f"Network error while sending {payload.nature} to user {user.id}: {str(e)}")
            raise TransportError(f"Network error: {str(e)}") from e

        if not response.is_success:
            logger.error(
                f"Gateway refused {payload.nature} for user {user.id}. "
                f"Status: {response.status_code}, Response: {response.text}"
            )
            raise TransportError(f"Gateway returned {response.status_code}")

        logger.info(f"Delivered {payload.nature} to user {user.id}")
