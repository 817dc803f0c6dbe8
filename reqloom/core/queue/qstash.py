"""HTTP relay publisher (QStash-compatible).

Publishing hands the message to the relay, which owns delivery to the
worker webhook: ``Upstash-Retries`` bounds the attempts and the relay
applies its own backoff. The callback signature is computed here and
forwarded to the worker unchanged.
"""

import logging
from typing import Optional

import httpx

from ..constants import DELIVERY_MAX_ATTEMPTS
from ..exceptions import QueueError
from .messages import JobMessage
from .signing import SIGNATURE_HEADER, sign_body

logger = logging.getLogger(__name__)


class QStashQueue:
    """Publish job messages to a QStash-style relay over HTTPS."""

    def __init__(
        self,
        base_url: str,
        token: str,
        callback_url: str,
        signing_key: str,
        max_attempts: int = DELIVERY_MAX_ATTEMPTS,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        if not token:
            raise ValueError("QStash token is required")
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.max_attempts = max_attempts
        self._token = token
        self._signing_key = signing_key
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def publish_url(self) -> str:
        return f"{self.base_url}/v2/publish/{self.callback_url}"

    def publish(self, message: JobMessage) -> str:
        """Publish ``message``. Returns the relay's message id.

        Raises:
            QueueError: relay unreachable or rejected the publish.
        """
        body = message.to_json()
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Upstash-Retries": str(max(self.max_attempts - 1, 0)),
            f"Upstash-Forward-{SIGNATURE_HEADER}": sign_body(body, self._signing_key),
        }
        try:
            response = self._client.post(self.publish_url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Queue publish rejected for analysis {message.analysis_id}: "
                f"HTTP {e.response.status_code}"
            )
            raise QueueError(f"Queue rejected publish: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Queue publish failed for analysis {message.analysis_id}: {e}")
            raise QueueError(f"Queue unreachable: {e}") from e

        try:
            message_id = response.json().get("messageId", "")
        except ValueError:
            message_id = ""
        logger.info(f"Published analysis {message.analysis_id} to relay (messageId={message_id})")
        return message_id

    def close(self) -> None:
        self._client.close()
