"""Slack最小構成 + 日程調整フロー登録（候補日→投票/アンケート→集計→確定）
※ 投票は SQLite に保存されます（DATEVOTE_DB_PATH）
"""

import logging
import os
import sys

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from datevote import config
from datevote.agent.llm_agent import LLMAgent
from datevote.config import PlannerSettings
from datevote.flows.vote_flow import register_vote_flow
from datevote.services.notifier import EmailNotifier, SlackNotifier
from datevote.services.planner import EventPlanner

REQUIRED_ENV = [
    "SLACK_BOT_TOKEN",
    "SLACK_APP_TOKEN",
]
missing = [k for k in REQUIRED_ENV if not os.environ.get(k)]
if missing:
    sys.stderr.write(f"[ERROR] Missing environment variables: {', '.join(missing)}\n")
    sys.exit(1)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = App(token=os.environ["SLACK_BOT_TOKEN"])

# Gemini は任意。キーが無ければ定型文で告知する
llm = LLMAgent(model=config.GEMINI_MODEL) if config.GEMINI_API_KEY_MAIN else None

notifiers = [SlackNotifier(app.client)]
if config.RESEND_API_KEY:
    notifiers.append(
        EmailNotifier(
            api_key=config.RESEND_API_KEY,
            from_address=config.EMAIL_FROM_ADDRESS,
            from_name=config.EMAIL_FROM_NAME,
            organizer_email=config.EMAIL_ORGANIZER_ADDRESS or None,
        )
    )

planner = EventPlanner(PlannerSettings.from_env(), notifiers=notifiers)


def _strip_mention(text: str) -> str:
    if not text:
        return ""
    if text.startswith("<@"):
        after = text.split(">", 1)
        return after[1].strip() if len(after) == 2 else text
    return text


@app.event("app_mention")
def on_mention(event, say, logger):
    user = event.get("user")
    prompt = _strip_mention(event.get("text", ""))
    if llm is None:
        reply = "`/日程説明` で使い方を確認できます。"
    else:
        reply = llm.respond(prompt)
    say(text=f"<@{user}> {reply}", thread_ts=event.get("ts"))


register_vote_flow(app, planner, llm)


if __name__ == "__main__":
    handler = SocketModeHandler(app, os.environ["SLACK_APP_TOKEN"])
    handler.start()
