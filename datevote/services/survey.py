"""Survey questions per event type.

The event title decides which short questionnaire participants get. Every
question id is a criterion (or alias) understood by ``services.scoring``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple


class EventType(str, Enum):
    DINNER = "dinner"
    BUSINESS_LUNCH = "business_lunch"
    BIRTHDAY = "birthday"
    WEEKEND_TRIP = "weekend_trip"
    TEAM_MEETING = "team_meeting"
    SPORT = "sport"
    FAMILY = "family"
    GENERIC = "generic"


@dataclass(frozen=True)
class Question:
    id: str
    prompt: str
    options: Tuple[Tuple[str, str], ...]  # (value, label)

    def values(self) -> List[str]:
        return [v for v, _ in self.options]


FLEXIBLE = ("any", "どれでもOK")

QUESTION_TEMPLATES: Dict[EventType, List[Question]] = {
    EventType.DINNER: [
        Question("day_preference", "どの曜日がいいですか？", (
            ("weekday", "平日（月〜木）"), ("friday", "金曜の夜"),
            ("weekend", "週末（土日）"), FLEXIBLE,
        )),
        Question("time_preference", "開始時間は？", (
            ("early", "19時〜20時"), ("standard", "20時〜21時"),
            ("late", "21時以降"), FLEXIBLE,
        )),
    ],
    EventType.BUSINESS_LUNCH: [
        Question("day_preference", "ランチの曜日は？", (
            ("monday", "月曜"), ("tuesday_thursday", "火〜木"),
            ("friday", "金曜"), FLEXIBLE,
        )),
        Question("duration", "所要時間は？", (
            ("quick", "1時間"), ("standard", "1時間半"), ("long", "2時間以上"), FLEXIBLE,
        )),
    ],
    EventType.BIRTHDAY: [
        Question("time_preference", "時間帯は？", (
            ("lunch", "ランチ（12時〜15時）"), ("afternoon", "午後（15時〜18時）"),
            ("evening", "夜（19時以降）"), FLEXIBLE,
        )),
        Question("period", "月のどのあたり？", (
            ("early", "上旬"), ("mid", "中旬"), ("late", "下旬"), FLEXIBLE,
        )),
    ],
    EventType.WEEKEND_TRIP: [
        Question("duration", "日数は？", (
            ("short", "1泊2日"), ("long", "2泊以上"), FLEXIBLE,
        )),
        Question("season_preference", "季節は？", (
            ("spring", "春"), ("summer", "夏"), ("fall", "秋"), ("winter", "冬"), FLEXIBLE,
        )),
    ],
    EventType.TEAM_MEETING: [
        Question("day_preference", "都合のよい曜日は？", (
            ("monday", "月曜"), ("mid_week", "火〜木"), ("friday", "金曜"), FLEXIBLE,
        )),
        Question("time_slot", "時間帯は？", (
            ("morning", "午前（9時〜12時）"), ("afternoon", "午後（14時〜17時）"),
            ("end_day", "夕方（17時〜19時）"), FLEXIBLE,
        )),
    ],
    EventType.SPORT: [
        Question("day_preference", "曜日は？", (
            ("weekday_evening", "平日の夜"), ("saturday_morning", "土曜の朝"),
            ("sunday", "日曜"), FLEXIBLE,
        )),
        Question("time_preference", "時間は？", (
            ("early_morning", "早朝（7時〜9時）"), ("late_morning", "午前（9時〜12時）"),
            ("evening", "夜"), FLEXIBLE,
        )),
    ],
    EventType.FAMILY: [
        Question("day_preference", "曜日は？", (
            ("sunday_lunch", "日曜のお昼"), ("saturday", "土曜"), ("weekday", "平日"), FLEXIBLE,
        )),
        Question("time_preference", "時間帯は？", (
            ("lunch", "ランチ"), ("afternoon", "午後"), ("dinner", "夕食"), FLEXIBLE,
        )),
    ],
    EventType.GENERIC: [
        Question("day_type", "平日と週末どちらがいい？", (
            ("weekday", "平日"), ("weekend", "週末"), FLEXIBLE,
        )),
        Question("time_of_day", "時間帯は？", (
            ("morning", "朝"), ("afternoon", "昼"), ("evening", "夜"), FLEXIBLE,
        )),
    ],
}

# checked in order; first hit wins
_KEYWORDS: List[Tuple[EventType, Tuple[str, ...]]] = [
    (EventType.BUSINESS_LUNCH, ("business lunch", "商談", "ランチミーティング")),
    (EventType.DINNER, ("dinner", "飲み会", "食事会", "忘年会", "新年会", "歓迎会", "送別会")),
    (EventType.BIRTHDAY, ("birthday", "誕生日", "バースデー")),
    (EventType.WEEKEND_TRIP, ("trip", "旅行", "合宿")),
    (EventType.TEAM_MEETING, ("meeting", "会議", "定例", "打ち合わせ", "mtg")),
    (EventType.SPORT, ("sport", "フットサル", "テニス", "ランニング", "ゴルフ")),
    (EventType.FAMILY, ("family", "家族", "親戚")),
]


def detect_event_type(title: Optional[str]) -> EventType:
    text = (title or "").lower()
    if not text:
        return EventType.GENERIC
    for event_type, words in _KEYWORDS:
        if any(w in text for w in words):
            return event_type
    return EventType.GENERIC


def questions_for_event(title: Optional[str]) -> List[Question]:
    return QUESTION_TEMPLATES[detect_event_type(title)]


def missing_answers(answers: Mapping[str, str], questions: List[Question]) -> List[str]:
    """Question ids left unanswered (empty list means the survey is complete)."""
    return [q.id for q in questions if not (answers or {}).get(q.id)]
