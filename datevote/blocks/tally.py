"""Utilities to build Slack Block Kit structures for polls and results."""

from __future__ import annotations

import json
from typing import Dict, List, Optional

from datevote.models.events import Availability, Event, EventMode, Recommendation
from datevote.services.recommend import confidence_label
from datevote.services.scoring import CRITERION_LABELS, Criterion
from datevote.services.survey import Question
from datevote.services.threshold import ThresholdSignal, participation_rate

_CONFIDENCE_JA = {"excellent": "とても高い", "good": "高い", "fair": "ふつう", "weak": "低い"}


def _bar(votes: int, total: int, width: int = 10) -> str:
    if total <= 0:
        return "░" * width
    filled = min(width, round(votes / total * width))
    return "█" * filled + "░" * (width - filled)


def poll_blocks(event: Event) -> List[Dict]:
    """Opening message of a poll with the entry button."""
    lines = [f"• {o.label}" for o in event.date_options]
    if event.mode is EventMode.PREFERENCE_SURVEY:
        button = {"text": "希望を答える", "action_id": "open_survey"}
        lead = "いくつかの質問に答えると、みんなに合う日程をおすすめします。"
    else:
        button = {"text": "都合を入力", "action_id": "open_vote"}
        lead = "参加できる候補日を選んでください。"
    blocks: List[Dict] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"🗓 {event.title}"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"{lead}\n" + "\n".join(lines)}},
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": button["text"]},
                    "style": "primary",
                    "value": event.event_id,
                    "action_id": button["action_id"],
                }
            ],
        },
    ]
    return blocks


def tally_blocks(event: Event) -> List[Dict]:
    total = event.total_responded
    lines = [
        f"*{o.label}*  {_bar(o.votes, total)}  {o.votes} 票"
        + (f"（{', '.join(o.voters)}）" if o.voters else "")
        for o in event.date_options
    ]
    progress = f"_回答済み_: {total}"
    if event.expected_participants > 0:
        rate = participation_rate(total, event.expected_participants)
        progress += f"/{event.expected_participants}（{rate}%）"
    blocks: List[Dict] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines) or "-"}},
        {"type": "context", "elements": [{"type": "mrkdwn", "text": progress}]},
    ]
    if event.budget_enabled:
        budget_lines = [f"*{b.label}*: {b.votes} 票" for b in event.budget_options]
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": "*予算*\n" + "\n".join(budget_lines)}}
        )
    return blocks


def recommendation_blocks(
    rec: Recommendation, event_id: str, narration: Optional[str] = None
) -> List[Dict]:
    best = rec.best
    label = _CONFIDENCE_JA[confidence_label(rec.confidence)]
    reasons = []
    for d in best.details:
        names = ", ".join(
            CRITERION_LABELS.get(Criterion(m.criterion), m.criterion) for m in d.matches
        )
        reasons.append(f"- {d.participant_name}: {d.score}pt（{names}）")
    blocks: List[Dict] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"おすすめ: {best.option.label}"}},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*スコア*: {best.score}pt\n"
                    f"*希望に合う人*: {rec.preferred_by}/{rec.total_participants}\n"
                    f"*信頼度*: {rec.confidence}%（{label}）"
                ),
            },
        },
    ]
    if narration:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": narration}})
    if reasons:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": "\n".join(reasons)[:2900]}]}
        )
    buttons = [
        {
            "type": "button",
            "text": {"type": "plain_text", "text": f"{s.option.label} で参加"},
            "value": json.dumps({"event_id": event_id, "label": s.option.label}),
            "action_id": f"confirm_slot_{i}",
        }
        for i, s in enumerate([best] + rec.alternates)
    ]
    buttons[0]["style"] = "primary"
    blocks.append({"type": "actions", "elements": buttons})
    if rec.alternates:
        alt = "\n".join(f"- {s.option.label}（{s.score}pt）" for s in rec.alternates)
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*他の候補*\n{alt}"}})
    return blocks


def majority_blocks(signal: ThresholdSignal) -> List[Dict]:
    best = signal.best_slot
    best_txt = f"*{best.label}*（{best.votes} 票）" if best else "-"
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f":tada: *{signal.title}* の回答が {signal.new_rate}% に到達しました！"
                    f"（{signal.total_responded}/{signal.expected_participants}名）\n"
                    f"いまの最有力: {best_txt}"
                ),
            },
        }
    ]


def vote_modal(event: Event, previous: Optional[Dict[str, Availability]] = None) -> Dict:
    previous = previous or {}
    options = [
        {"text": {"type": "plain_text", "text": o.label}, "value": o.label}
        for o in event.date_options
    ]
    checkboxes: Dict = {"type": "checkboxes", "action_id": "v", "options": options}
    initial = [o for o in options if previous.get(o["value"]) == Availability.AVAILABLE]
    if initial:
        checkboxes["initial_options"] = initial
    blocks: List[Dict] = [
        {"type": "input", "block_id": "slots", "optional": True,
         "label": {"type": "plain_text", "text": "参加できる日程"}, "element": checkboxes},
    ]
    if event.budget_enabled:
        blocks.append(
            {"type": "input", "block_id": "budget", "optional": True,
             "label": {"type": "plain_text", "text": "予算"},
             "element": {
                 "type": "static_select", "action_id": "v",
                 "options": [
                     {"text": {"type": "plain_text", "text": b.label}, "value": b.label}
                     for b in event.budget_options
                 ],
             }}
        )
    return {
        "type": "modal",
        "callback_id": "submit_availability",
        "private_metadata": json.dumps({"event_id": event.event_id}),
        "title": {"type": "plain_text", "text": "都合を入力"},
        "submit": {"type": "plain_text", "text": "送信"},
        "close": {"type": "plain_text", "text": "キャンセル"},
        "blocks": blocks,
    }


def survey_modal(event: Event, questions: List[Question]) -> Dict:
    blocks: List[Dict] = []
    for q in questions:
        blocks.append(
            {"type": "input", "block_id": q.id,
             "label": {"type": "plain_text", "text": q.prompt},
             "element": {
                 "type": "static_select", "action_id": "v",
                 "options": [
                     {"text": {"type": "plain_text", "text": label}, "value": value}
                     for value, label in q.options
                 ],
             }}
        )
    return {
        "type": "modal",
        "callback_id": "submit_survey",
        "private_metadata": json.dumps({"event_id": event.event_id}),
        "title": {"type": "plain_text", "text": "希望を答える"},
        "submit": {"type": "plain_text", "text": "送信"},
        "close": {"type": "plain_text", "text": "キャンセル"},
        "blocks": blocks,
    }
