# datevote/flows/vote_flow.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from slack_bolt import App

from datevote.agent.llm_agent import LLMAgent
from datevote.blocks.tally import (
    poll_blocks,
    recommendation_blocks,
    survey_modal,
    tally_blocks,
    vote_modal,
)
from datevote.errors import DateVoteError, InsufficientData, ValidationError
from datevote.models.events import DateOption, Event, EventMode, Recommendation
from datevote.services.exports import build_ics, export_csv
from datevote.services.planner import EventPlanner, slot
from datevote.services.survey import missing_answers, questions_for_event
from datevote.services.threshold import best_slot_by_votes


# ===== /日程開始 の引数パース =====

_MODE_WORDS = {
    "survey": EventMode.PREFERENCE_SURVEY,
    "アンケート": EventMode.PREFERENCE_SURVEY,
    "希望": EventMode.PREFERENCE_SURVEY,
    "vote": EventMode.DIRECT_VOTE,
    "direct": EventMode.DIRECT_VOTE,
    "投票": EventMode.DIRECT_VOTE,
}

_SLOT_FORMATS = ("%Y-%m-%d %H:%M", "%Y/%m/%d %H:%M", "%Y-%m-%d", "%Y/%m/%d")


@dataclass
class StartRequest:
    title: str
    date_options: List[DateOption]
    expected_participants: int = 0
    budget_labels: List[str] = field(default_factory=list)
    mode: EventMode = EventMode.DIRECT_VOTE


def _parse_slot(text: str) -> DateOption:
    raw = " ".join(text.split())
    for fmt in _SLOT_FORMATS:
        try:
            dt = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        has_time = "%H" in fmt
        return slot(dt.date(), dt.time() if has_time else None)
    raise ValidationError("日付の形式が読めません", [f"slot={text}"])


_HEADCOUNT = re.compile(r"^(\d+)\s*[人名]$")


def parse_start_command(text: str) -> StartRequest:
    """`タイトル | 候補日, ... | 8人 | 予算, ... | survey` を読む。

    タイトルと候補日は必須。残りは順不同で、`8人` / `8名` なら予定人数、
    モード語なら回答方式、それ以外は予算の選択肢として扱う。
    `| 5000 |` のような数字だけの項目は予算として読む。
    """
    parts = [p.strip() for p in (text or "").split("|")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValidationError("タイトルと候補日が必要です")

    req = StartRequest(
        title=parts[0],
        date_options=[_parse_slot(s) for s in parts[1].split(",") if s.strip()],
    )
    for part in parts[2:]:
        if not part:
            continue
        headcount = _HEADCOUNT.match(part)
        if headcount:
            req.expected_participants = int(headcount.group(1))
        elif part.lower() in _MODE_WORDS:
            req.mode = _MODE_WORDS[part.lower()]
        else:
            req.budget_labels = [b.strip() for b in part.split(",") if b.strip()]
    return req


# ===== /日程変更 の引数パース =====

_UPDATE_KEYS = {
    "人数": "expected_participants",
    "場所": "location",
    "タイトル": "title",
}


def parse_update_command(text: str) -> Dict[str, Any]:
    """`人数=6 | 場所=渋谷 | タイトル=新年会` を update_event の引数にする。"""
    changes: Dict[str, Any] = {}
    for part in (text or "").split("|"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        field_name = _UPDATE_KEYS.get(key.strip())
        if not sep or field_name is None:
            raise ValidationError("変更できる項目は 人数・場所・タイトル です", [part.strip()])
        value = value.strip()
        if field_name == "expected_participants":
            count = re.match(r"^(\d+)\s*[人名]?$", value)
            if count is None:
                raise ValidationError("人数は数字で指定してください", [f"人数={value}"])
            changes[field_name] = int(count.group(1))
        else:
            changes[field_name] = value
    if not changes:
        raise ValidationError("変更する項目を指定してください")
    return changes


# ===== Slack ペイロードの取り出し =====

def _user_name(body: Dict) -> str:
    user = body.get("user") or {}
    if isinstance(user, dict):
        return user.get("username") or user.get("name") or user.get("id") or ""
    # slash command
    return body.get("user_name") or body.get("user_id") or ""


def _event_id_from_view(view: Dict) -> Optional[str]:
    meta = json.loads(view.get("private_metadata") or "{}")
    return meta.get("event_id")


def _selected(view: Dict, block_id: str) -> Dict:
    block = view["state"]["values"].get(block_id, {})
    return next((v for v in block.values() if isinstance(v, dict)), {})


def _error_text(e: DateVoteError) -> str:
    details = getattr(e, "details", None) or []
    return str(e) + (f"（{', '.join(details)}）" if details else "")


def _guide(threshold: int = 70) -> str:
    return (
        "*日程調整の使い方*\n"
        "1) `/日程開始 タイトル | 2026-11-06 19:00, 2026-11-07 | 8人 | 3000-5000, 5000-7000`\n"
        "   人数・予算は省略可。最後に `survey` を付けると希望アンケート方式になります。\n"
        "2) ボタンから都合（または希望）を入力します。何度でも上書きできます。\n"
        f"3) `/日程集計`：いまの票数と回答率を表示します。回答率が {threshold}% に届くと自動でお知らせします。\n"
        "4) `/日程おすすめ`：アンケートの回答からおすすめ日程を出します。\n"
        "5) `/日程確定`：いちばん票の多い日程を告知し、カレンダー(.ics)を添付します。\n"
        "6) `/日程エクスポート`：回答一覧を CSV で出力します。\n"
        "7) `/日程変更 人数=6 | 場所=渋谷 | タイトル=新年会`：開始後に人数などを直します。\n"
    )


# ===== メイン登録 =====

def register_vote_flow(app: App, planner: EventPlanner, llm: Optional[LLMAgent] = None) -> None:

    def _narrate(rec: Recommendation, title: str) -> Optional[str]:
        return llm.narrate(rec, title) if llm else None

    def _latest(body: Dict, say) -> Optional[Event]:
        event = planner.latest_event(body.get("channel_id"))
        if event is None:
            say(text="このチャンネルに日程調整が見つかりません。`/日程開始` で始めてください。")
        return event

    # /日程説明：定型の利用ガイド
    @app.command("/日程説明")
    def cmd_help(ack, body, say):
        ack()
        say(text=_guide(planner.settings.threshold))

    # 開始：候補日を投稿
    @app.command("/日程開始")
    def cmd_start(ack, body, client, say, logger):
        ack()
        channel_id = body["channel_id"]
        try:
            req = parse_start_command(body.get("text", ""))
            event = planner.create_event(
                title=req.title,
                date_options=req.date_options,
                budget_labels=req.budget_labels,
                expected_participants=req.expected_participants,
                mode=req.mode,
                channel_id=channel_id,
                organizer=body.get("user_id"),
            )
        except ValidationError as e:
            say(text=f"開始できませんでした: {_error_text(e)}\n\n{_guide(planner.settings.threshold)}")
            return
        except Exception as e:
            logger.exception(e)
            say(text="日程調整の作成でエラーが発生しました。もう一度お試しください。")
            return
        client.chat_postMessage(channel=channel_id, text=f"🗓 {event.title}", blocks=poll_blocks(event))

    # 人数・場所・タイトルの変更（人数が減ると回答率が上がる）
    @app.command("/日程変更")
    def cmd_update(ack, body, say, logger):
        ack()
        try:
            event = _latest(body, say)
            if event is None:
                return
            outcome = planner.update_event(event.event_id, **parse_update_command(body.get("text", "")))
        except ValidationError as e:
            say(text=f"変更できませんでした: {_error_text(e)}")
            return
        except Exception as e:
            logger.exception(e)
            say(text="変更でエラーが発生しました。もう一度お試しください。")
            return
        say(text=f"{outcome.event.title} を更新しました。", blocks=tally_blocks(outcome.event))
        for err in outcome.notification_errors:
            logger.warning("notification failed: %s", err)

    # 都合入力モーダル
    @app.action("open_vote")
    def on_open_vote(ack, body, action, client, logger):
        ack()
        try:
            event = planner.get_event(action["value"])
            name = _user_name(body).lower()
            previous = next(
                (p.availabilities for p in event.participants if p.key == name), None
            )
            client.views_open(trigger_id=body["trigger_id"], view=vote_modal(event, previous))
        except Exception as e:
            logger.exception(e)

    @app.view("submit_availability")
    def on_submit_availability(ack, body, view, client, logger):
        event_id = _event_id_from_view(view)
        user_id = body["user"]["id"]
        try:
            event = planner.get_event(event_id)
            picked = {o["value"] for o in _selected(view, "slots").get("selected_options") or []}
            budget = (_selected(view, "budget").get("selected_option") or {}).get("value")
            outcome = planner.submit_vote(
                event_id,
                _user_name(body),
                {o.label: o.label in picked for o in event.date_options},
                selected_budget=budget,
            )
        except ValidationError as e:
            ack(response_action="errors", errors={"slots": _error_text(e)})
            return
        except Exception as e:
            ack()
            logger.exception(e)
            return
        ack()

        event = outcome.event
        if event.channel_id:
            client.chat_postEphemeral(
                channel=event.channel_id,
                user=user_id,
                text="都合を保存しました。ありがとうございます！",
                blocks=tally_blocks(event),
            )
        for err in outcome.notification_errors:
            logger.warning("notification failed: %s", err)

    # 希望アンケート
    @app.action("open_survey")
    def on_open_survey(ack, body, action, client, logger):
        ack()
        try:
            event = planner.get_event(action["value"])
            client.views_open(
                trigger_id=body["trigger_id"],
                view=survey_modal(event, questions_for_event(event.title)),
            )
        except Exception as e:
            logger.exception(e)

    @app.view("submit_survey")
    def on_submit_survey(ack, body, view, client, logger):
        event_id = _event_id_from_view(view)
        user_id = body["user"]["id"]
        answers = {
            block_id: (_selected(view, block_id).get("selected_option") or {}).get("value")
            for block_id in view["state"]["values"]
        }
        try:
            event = planner.get_event(event_id)
            unanswered = missing_answers(answers, questions_for_event(event.title))
            if unanswered:
                ack(response_action="errors", errors={q: "選択してください" for q in unanswered})
                return
            outcome = planner.submit_preferences(event_id, _user_name(body), answers)
        except ValidationError as e:
            first = next(iter(view["state"]["values"]), "")
            ack(response_action="errors", errors={first: _error_text(e)})
            return
        except Exception as e:
            ack()
            logger.exception(e)
            return
        ack()

        event = outcome.event
        if not event.channel_id:
            return
        if outcome.waiting is not None:
            client.chat_postEphemeral(
                channel=event.channel_id,
                user=user_id,
                text=(
                    f"希望を保存しました。あと {outcome.waiting.missing} 人の回答で"
                    "おすすめ日程を出します。"
                ),
            )
            return
        rec = outcome.recommendation
        if rec is None:
            return
        client.chat_postMessage(
            channel=event.channel_id,
            text=f"おすすめ日程: {rec.best.option.label}",
            blocks=recommendation_blocks(rec, event.event_id, _narrate(rec, event.title)),
        )

    # おすすめの候補で参加表明
    @app.action(re.compile(r"^confirm_slot_\d+$"))
    def on_confirm_slot(ack, body, action, client, logger):
        ack()
        user_id = body["user"]["id"]
        channel_id = (body.get("channel") or {}).get("id")
        try:
            value = json.loads(action["value"])
            planner.confirm_slot(value["event_id"], _user_name(body), value["label"])
        except ValidationError as e:
            if channel_id:
                client.chat_postEphemeral(
                    channel=channel_id, user=user_id, text=f"登録できませんでした: {_error_text(e)}"
                )
            return
        except Exception as e:
            logger.exception(e)
            return
        if channel_id:
            client.chat_postEphemeral(
                channel=channel_id, user=user_id, text=f"{value['label']} で参加を登録しました！"
            )

    # ---- 現在の集計を出す ----
    @app.command("/日程集計")
    def cmd_tally(ack, body, say, logger):
        ack()
        try:
            event = _latest(body, say)
            if event is None:
                return
            say(text=f"{event.title} の回答状況です。", blocks=tally_blocks(event))
        except Exception as e:
            logger.exception(e)
            say(text="集計でエラーが発生しました。もう一度お試しください。")

    # ---- おすすめ（回答がそろう前でも最低人数を超えていれば出す） ----
    @app.command("/日程おすすめ")
    def cmd_recommend(ack, body, say, logger):
        ack()
        try:
            event = _latest(body, say)
            if event is None:
                return
            if event.mode is not EventMode.PREFERENCE_SURVEY:
                say(text="この日程調整は投票方式です。`/日程集計` で票数を確認してください。")
                return
            result = planner.recommend(event.event_id, force=True)
            if isinstance(result, InsufficientData):
                say(text=f"回答が足りません（{result.current}/{result.required}）。もう少しお待ちください。")
                return
            if result is None:
                say(text="候補日がありません。")
                return
            say(
                text=f"おすすめ日程: {result.best.option.label}",
                blocks=recommendation_blocks(result, event.event_id, _narrate(result, event.title)),
            )
        except Exception as e:
            logger.exception(e)
            say(text="おすすめの計算でエラーが発生しました。もう一度お試しください。")

    # ---- 手動で確定する ----
    @app.command("/日程確定")
    def cmd_finalize(ack, body, say, client, logger):
        ack()
        try:
            event = _latest(body, say)
            if event is None:
                return
            chosen: Optional[DateOption] = None
            if event.mode is EventMode.PREFERENCE_SURVEY and not event.total_responded:
                rec = planner.recommend(event.event_id, force=True)
                if isinstance(rec, Recommendation):
                    chosen = rec.best.option
            else:
                best = best_slot_by_votes(event.date_options)
                if best is not None and best.votes > 0:
                    chosen = best
            if chosen is None:
                say(text="まだ確定できるだけの回答がありません。")
                return

            say(text=f":white_check_mark: *{event.title}* は *{chosen.label}* に決まりました！")
            client.files_upload_v2(
                channel=event.channel_id or body["channel_id"],
                content=build_ics(event.title, chosen, location=event.location),
                filename=f"{event.event_id}.ics",
                title=f"{event.title} ({chosen.label})",
            )
        except Exception as e:
            logger.exception(e)
            say(text="確定処理でエラーが発生しました。もう一度お試しください。")

    # ---- CSV で出力 ----
    @app.command("/日程エクスポート")
    def cmd_export(ack, body, say, client, logger):
        ack()
        try:
            event = _latest(body, say)
            if event is None:
                return
            client.files_upload_v2(
                channel=event.channel_id or body["channel_id"],
                content=export_csv(event),
                filename=f"{event.event_id}.csv",
                title=f"{event.title} 回答一覧",
            )
        except Exception as e:
            logger.exception(e)
            say(text="エクスポートでエラーが発生しました。もう一度お試しください。")
