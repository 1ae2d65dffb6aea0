"""Risk alert delivery through an outbound webhook."""
import logging
from typing import Any, Dict
from datetime import datetime, timezone

import requests

from papertrade.config import Config

logger = logging.getLogger(__name__)


class Notifier:
    """Send account alerts to a webhook. Never raises exceptions to protect the caller."""

    def __init__(self, webhook_url: str, timeout: float = 5.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = requests.Session()

    def send_event(self, event_type: str, data: Dict[str, Any]) -> bool:
        """
        Send event to the alert webhook.

        Args:
            event_type: Type of event (e.g., 'margin_call', 'stop_out')
            data: Event payload

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.webhook_url:
            logger.info(f"Alert {event_type} (no webhook configured): {data}")
            return False

        try:
            payload = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event_type": event_type,
                "app_name": Config.APP_NAME,
                "data": data,
            }

            response = self.session.post(
                self.webhook_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )

            if response.status_code >= 400:
                logger.warning(
                    f"Webhook returned {response.status_code}: {response.text[:200]}"
                )
                return False

            logger.debug(f"Event sent: {event_type}")
            return True

        except requests.exceptions.Timeout:
            logger.warning(f"Webhook timeout sending {event_type}")
            return False
        except requests.exceptions.ConnectionError:
            logger.warning(f"Webhook connection error sending {event_type}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending webhook event: {e}", exc_info=True)
            return False

    def send_margin_call(self, account_id: int, metrics: Dict[str, Any]) -> bool:
        return self.send_event("margin_call", {"account_id": account_id, **metrics})

    def send_stop_out(self, account_id: int, position_id: int, metrics: Dict[str, Any]) -> bool:
        return self.send_event(
            "stop_out",
            {"account_id": account_id, "position_id": position_id, **metrics},
        )

    def close(self) -> None:
        self.session.close()
