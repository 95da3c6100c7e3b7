"""CSV export of a poll and an iCalendar file for the chosen slot."""

from __future__ import annotations

import csv
import io
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from datevote.models.events import Availability, DateOption, Event

_AVAILABILITY_TEXT = {
    Availability.AVAILABLE: "available",
    Availability.UNAVAILABLE: "unavailable",
    Availability.NO_ANSWER: "",
}


def export_csv(event: Event) -> str:
    """One row per participant, one column per slot, plus a totals row."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    header = ["Name", "Email"] + [o.label for o in event.date_options]
    if event.budget_enabled:
        header.append("Budget")
    writer.writerow(header)

    for p in event.participants:
        row = [p.name, p.email or ""]
        row += [
            _AVAILABILITY_TEXT[p.availabilities.get(o.label, Availability.NO_ANSWER)]
            for o in event.date_options
        ]
        if event.budget_enabled:
            row.append(p.selected_budget or "")
        writer.writerow(row)

    totals = ["TOTAL", ""] + [str(o.votes) for o in event.date_options]
    if event.budget_enabled:
        totals.append("")
    writer.writerow(totals)
    return buf.getvalue()


def _ics_escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r", "")
        .replace("\n", "\\n")
    )


def _ics_local(dt: datetime) -> str:
    return dt.strftime("%Y%m%dT%H%M%S")


def build_ics(
    title: str,
    option: DateOption,
    duration: timedelta = timedelta(hours=2),
    location: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """VCALENDAR with a single VEVENT. Times are floating (no TZ conversion)."""
    start = option.starts_at()
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//datevote//poll//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{uuid.uuid4()}@datevote",
        f"DTSTAMP:{stamp}",
    ]
    if option.time is None:
        end = option.date + timedelta(days=1)
        lines.append(f"DTSTART;VALUE=DATE:{option.date.strftime('%Y%m%d')}")
        lines.append(f"DTEND;VALUE=DATE:{end.strftime('%Y%m%d')}")
    else:
        lines.append(f"DTSTART:{_ics_local(start)}")
        lines.append(f"DTEND:{_ics_local(start + duration)}")
    lines.append(f"SUMMARY:{_ics_escape(title)}")
    if location:
        lines.append(f"LOCATION:{_ics_escape(location)}")
    if description:
        lines.append(f"DESCRIPTION:{_ics_escape(description)}")
    lines += ["STATUS:CONFIRMED", "END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(lines) + "\r\n"
