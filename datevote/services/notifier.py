"""Delivery channels for the "majority reached" signal.

Notifiers only perform I/O. They are called after the vote has been written,
and wrap every transport failure in ``NotificationDeliveryError``.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import requests
from slack_sdk.errors import SlackApiError

from datevote.blocks.tally import majority_blocks
from datevote.errors import NotificationDeliveryError
from datevote.services.threshold import ThresholdSignal

RESEND_URL = "https://api.resend.com/emails"
DEFAULT_TIMEOUT = 10.0

log = logging.getLogger(__name__)


class Notifier:
    name = "notifier"

    def send_majority_reached(self, signal: ThresholdSignal) -> None:
        raise NotImplementedError("send_majority_reached を各通知チャネルで実装してください")


class SlackNotifier(Notifier):
    """Post the celebration into the poll's channel."""

    name = "slack"

    def __init__(self, client) -> None:
        self.client = client

    def send_majority_reached(self, signal: ThresholdSignal) -> None:
        if not signal.channel_id:
            log.warning("event %s has no channel; skipping Slack notice", signal.event_id)
            return
        text = f"{signal.title}: 回答が {signal.new_rate}% に到達しました"
        try:
            self.client.chat_postMessage(
                channel=signal.channel_id,
                text=text,
                blocks=majority_blocks(signal),
            )
        except SlackApiError as e:
            raise NotificationDeliveryError(self.name, str(e.response.get("error", e)))
        except OSError as e:
            # URLError, socket.timeout and connection resets from the HTTP transport
            raise NotificationDeliveryError(self.name, str(e))


def _plain_text_body(signal: ThresholdSignal) -> str:
    lines = [
        f"{signal.title}",
        f"{signal.total_responded} of {signal.expected_participants} people have answered ({signal.new_rate}%).",
    ]
    if signal.best_slot is not None:
        lines.append(
            f"Leading slot so far: {signal.best_slot.label} ({signal.best_slot.votes} votes)"
        )
    if signal.location:
        lines.append(f"Location: {signal.location}")
    return "\n".join(lines)


class EmailNotifier(Notifier):
    """Send a plain-text mail to every participant who left an address."""

    name = "email"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str = "datevote",
        organizer_email: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not api_key:
            raise RuntimeError("RESEND_API_KEY must be set to send email")
        self.api_key = api_key
        self.sender = f"{from_name} <{from_address}>"
        self.organizer_email = organizer_email
        self.timeout = timeout

    def recipients(self, signal: ThresholdSignal) -> List[str]:
        out: List[str] = []
        for p in signal.roster:
            if p.email and p.email not in out:
                out.append(p.email)
        if self.organizer_email and self.organizer_email not in out:
            out.append(self.organizer_email)
        return out

    def send_majority_reached(self, signal: ThresholdSignal) -> None:
        to = self.recipients(signal)
        if not to:
            log.info("no email recipients for event %s", signal.event_id)
            return
        payload: Dict[str, object] = {
            "from": self.sender,
            "to": to,
            "subject": f"{signal.title}: {signal.new_rate}% have answered",
            "text": _plain_text_body(signal),
        }
        try:
            resp = requests.post(
                RESEND_URL,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    # same key on retry -> Resend sends once
                    "Idempotency-Key": signal.delivery_key,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise NotificationDeliveryError(self.name, str(e))
