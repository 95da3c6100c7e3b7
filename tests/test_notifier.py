import os, sys
from datetime import date
from urllib.error import URLError

import pytest
import requests
from slack_sdk.errors import SlackApiError

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from datevote.errors import NotificationDeliveryError
from datevote.models.events import DateOption, Participant
from datevote.services import notifier as notifier_mod
from datevote.services.notifier import EmailNotifier, SlackNotifier
from datevote.services.threshold import ThresholdSignal


def make_signal(channel_id="C1", emails=("ann@example.com", None, "ann@example.com")):
    return ThresholdSignal(
        event_id="e1",
        title="忘年会",
        new_rate=75,
        best_slot=DateOption("slot-1", "2026-11-06", date(2026, 11, 6), votes=3),
        total_responded=3,
        expected_participants=4,
        channel_id=channel_id,
        roster=[Participant(f"p{i}", email=e) for i, e in enumerate(emails)],
    )


class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeClient:
    def __init__(self, error=None):
        self.error = error
        self.posts = []

    def chat_postMessage(self, **kwargs):
        if self.error:
            raise SlackApiError("failed", {"ok": False, "error": self.error})
        self.posts.append(kwargs)


def test_email_goes_to_each_address_once(monkeypatch):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append({"url": url, "json": json, "headers": headers})
        return FakeResponse()

    monkeypatch.setattr(notifier_mod.requests, "post", fake_post)
    email = EmailNotifier("key", "bot@example.com", organizer_email="boss@example.com")
    signal = make_signal()
    email.send_majority_reached(signal)

    assert len(sent) == 1
    payload = sent[0]["json"]
    assert sent[0]["url"] == notifier_mod.RESEND_URL
    assert payload["to"] == ["ann@example.com", "boss@example.com"]
    assert payload["from"] == "datevote <bot@example.com>"
    assert "75%" in payload["subject"]
    assert "2026-11-06" in payload["text"]
    assert sent[0]["headers"]["Authorization"] == "Bearer key"
    assert sent[0]["headers"]["Idempotency-Key"] == signal.delivery_key


def test_email_without_recipients_sends_nothing(monkeypatch):
    monkeypatch.setattr(
        notifier_mod.requests, "post", lambda *a, **k: pytest.fail("should not post")
    )
    EmailNotifier("key", "bot@example.com").send_majority_reached(make_signal(emails=(None,)))


def test_email_transport_failure_is_wrapped(monkeypatch):
    monkeypatch.setattr(notifier_mod.requests, "post", lambda *a, **k: FakeResponse(500))
    with pytest.raises(NotificationDeliveryError) as err:
        EmailNotifier("key", "bot@example.com").send_majority_reached(make_signal())
    assert err.value.channel == "email"


def test_email_requires_api_key():
    with pytest.raises(RuntimeError):
        EmailNotifier("", "bot@example.com")


def test_slack_posts_to_event_channel():
    client = FakeClient()
    SlackNotifier(client).send_majority_reached(make_signal())
    assert client.posts[0]["channel"] == "C1"
    assert "75%" in client.posts[0]["text"]
    assert client.posts[0]["blocks"]


def test_slack_skips_events_without_channel():
    client = FakeClient()
    SlackNotifier(client).send_majority_reached(make_signal(channel_id=None))
    assert client.posts == []


def test_slack_api_error_is_wrapped():
    with pytest.raises(NotificationDeliveryError) as err:
        SlackNotifier(FakeClient(error="channel_not_found")).send_majority_reached(make_signal())
    assert err.value.reason == "channel_not_found"


def test_slack_transport_error_is_wrapped():
    class TimingOutClient:
        def chat_postMessage(self, **kwargs):
            raise URLError("timed out")

    with pytest.raises(NotificationDeliveryError) as err:
        SlackNotifier(TimingOutClient()).send_majority_reached(make_signal())
    assert err.value.channel == "slack"
    assert "timed out" in err.value.reason
