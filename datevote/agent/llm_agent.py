"""Gemini ベースの告知文エージェント。

集計・おすすめの結果（数値）は決定的に計算済みで、ここでは Slack に流す
一言コメントを作るだけ。履歴は `InMemoryChatMessageHistory` に保持し、
直近の発言だけをプロンプトに渡す。
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from langchain_core.chat_history import InMemoryChatMessageHistory
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from langchain_google_genai import ChatGoogleGenerativeAI

from datevote.models.events import Recommendation
from datevote.services.recommend import summarize

log = logging.getLogger(__name__)


class LLMAgent:
    """Gemini を用いた告知文エージェント。"""

    def __init__(
        self,
        name: str = "LLMAgent",
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_history: int = 20,
    ) -> None:
        self.name = name
        self.system_prompt = system_prompt or (
            "あなたは日程調整の幹事アシスタントです。集計結果をもとに、"
            "Slack 向けの短く前向きな案内文を日本語で書きます。数値は変えないでください。"
        )

        api_key = os.environ.get("GEMINI_API_KEY_MAIN")
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY_MAIN must be set")

        model_name = model or os.environ.get("GEMINI_MODEL", "gemini-2.5-flash-lite")
        self.llm = ChatGoogleGenerativeAI(model=model_name, google_api_key=api_key)
        self.max_history = max_history
        self.history = InMemoryChatMessageHistory()

        self.prompt = ChatPromptTemplate.from_messages(
            [
                ("system", self.system_prompt),
                MessagesPlaceholder("history"),
                ("human", "{input}"),
            ]
        )
        self.chain = self.prompt | self.llm

    def remember(self, text: str, as_user: bool = True) -> None:
        """返信せずに“記憶だけ”を積む。"""
        if not text or not text.strip():
            return
        if as_user:
            self.history.add_user_message(text.strip())
        else:
            self.history.add_ai_message(text.strip())

    def respond(self, message: str) -> str:
        """入力メッセージに応答を生成する。"""

        if not message or not message.strip():
            return "ご用件を一言で教えてください。"

        recent = self.history.messages[-self.max_history:]
        try:
            reply = self.chain.invoke({"history": recent, "input": message.strip()})
        except Exception as e:
            log.warning("Gemini call failed: %s", e)
            return (
                "エラーが発生しました。少し時間をおいて再試行してください。"
                f"（詳細: {type(e).__name__})"
            )
        text = getattr(reply, "content", str(reply))
        self.remember(message, as_user=True)
        self.remember(text, as_user=False)
        return text

    def narrate(self, rec: Recommendation, title: str) -> str:
        """おすすめ結果の告知文。LLM が使えなければ定型文に落とす。"""
        facts = summarize(rec)
        alternates = ", ".join(s.option.label for s in rec.alternates) or "なし"
        prompt = (
            f"イベント「{title}」の日程おすすめ結果を 2〜3 行で紹介してください。\n"
            f"- 結果: {facts}\n"
            f"- 代替候補: {alternates}\n"
            "注意: 参加を強制しない、やわらかい口調で。"
        )
        try:
            text = self.chain.invoke({"history": [], "input": prompt})
        except Exception as e:
            log.warning("narration fell back to summary: %s", e)
            return facts
        content = getattr(text, "content", "")
        return content.strip() if isinstance(content, str) and content.strip() else facts
