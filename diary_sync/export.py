"""Spreadsheet export of diary activities.

The formatter turns activities into a flat row sequence: for each date a
header row with the date label, one row per activity, then a blank row.
Sinks encode those rows as an Excel workbook or a CSV file.
"""

import csv
import logging
from dataclasses import dataclass
from datetime import date as date_type
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .diary.activity import Activity
from .diary.store import ALL_DATES, group_by_date, sort_activities

__all__ = [
    "ExportRow",
    "EXPORT_COLUMNS",
    "DURATION_COLUMN",
    "format_date_label",
    "build_export_rows",
    "export_filename",
    "ExcelExportSink",
    "CsvExportSink",
    "get_export_sink",
]

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ("Date", "Start Time", "End Time", "Activity")
DURATION_COLUMN = "Duration (min)"

# Column widths in characters: Date, Start Time, End Time, Activity
COLUMN_WIDTHS = (30, 15, 15, 30)
DURATION_WIDTH = 15

SHEET_NAME = "Diary"

_WEEKDAYS = {
    "id": ("Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu", "Minggu"),
    "en": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
}
_MONTHS = {
    "id": (
        "Januari", "Februari", "Maret", "April", "Mei", "Juni",
        "Juli", "Agustus", "September", "Oktober", "November", "Desember",
    ),
    "en": (
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ),
}

DateLabelFormatter = Callable[[str], str]


def format_date_label(iso_date: str, locale: str = "id") -> str:
    """Long date label, e.g. "Rabu, 10 Januari 2024" (id) or
    "Wednesday, 10 January 2024" (en).

    Unknown locales fall back to English; unparseable dates are returned
    unchanged.
    """
    try:
        day = date_type.fromisoformat(iso_date)
    except (TypeError, ValueError):
        return iso_date
    language = (locale or "en").replace("_", "-").split("-")[0].lower()
    if language not in _WEEKDAYS:
        language = "en"
    weekday = _WEEKDAYS[language][day.weekday()]
    month = _MONTHS[language][day.month - 1]
    return f"{weekday}, {day.day} {month} {day.year}"


@dataclass(frozen=True)
class ExportRow:
    """One spreadsheet row. Header rows carry only ``date``."""

    date: str = ""
    start_time: str = ""
    end_time: str = ""
    activity: str = ""
    duration: Optional[int] = None

    @property
    def is_blank(self) -> bool:
        return not (self.date or self.start_time or self.end_time or self.activity)

    def values(self, include_duration: bool = False) -> list:
        values = [self.date, self.start_time, self.end_time, self.activity]
        if include_duration:
            values.insert(3, "" if self.duration is None else self.duration)
        return values

    def as_dict(self, include_duration: bool = False) -> dict:
        return dict(zip(columns(include_duration), self.values(include_duration)))


def columns(include_duration: bool = False) -> tuple[str, ...]:
    if include_duration:
        return EXPORT_COLUMNS[:3] + (DURATION_COLUMN,) + EXPORT_COLUMNS[3:]
    return EXPORT_COLUMNS


def build_export_rows(
    activities: Iterable[Activity],
    date_label: Optional[DateLabelFormatter] = None,
) -> list[ExportRow]:
    """Reshape activities into grouped export rows.

    Activities are expected already filtered. Dates come out ascending with
    activities in start-time order; the output depends only on the input.
    """
    date_label = date_label or format_date_label
    rows: list[ExportRow] = []
    for day, day_activities in group_by_date(sort_activities(activities)).items():
        rows.append(ExportRow(date=date_label(day)))
        for activity in day_activities:
            rows.append(
                ExportRow(
                    start_time=activity.start_time,
                    end_time=activity.end_time,
                    activity=activity.description,
                    duration=activity.range.duration_minutes,
                )
            )
        rows.append(ExportRow())
    return rows


def export_filename(selected: Optional[str] = ALL_DATES, extension: str = "xlsx") -> str:
    """``diary-all.xlsx`` or ``diary-<date>.xlsx``."""
    suffix = "all" if not selected or selected == ALL_DATES else selected
    return f"diary-{suffix}.{extension.lstrip('.')}"


class ExcelExportSink:
    """Writes rows to an .xlsx workbook with a single "Diary" sheet."""

    extension = "xlsx"

    def __init__(self, include_duration: bool = False):
        self.include_duration = include_duration

    def export_rows(self, rows: Iterable[ExportRow], path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        wb = Workbook()
        ws = wb.active
        ws.title = SHEET_NAME

        header = columns(self.include_duration)
        ws.append(list(header))
        for cell in ws[1]:
            cell.font = Font(bold=True)

        count = 0
        for row in rows:
            values = row.values(self.include_duration)
            ws.append([None if value == "" else value for value in values])
            if row.date:
                ws.cell(row=ws.max_row, column=1).font = Font(bold=True)
            count += 1

        widths = list(COLUMN_WIDTHS)
        if self.include_duration:
            widths.insert(3, DURATION_WIDTH)
        for col_idx, width in enumerate(widths, start=1):
            ws.column_dimensions[get_column_letter(col_idx)].width = width

        wb.save(path)
        logger.info(f"Exported {count} rows to {path}")
        return path


class CsvExportSink:
    """Writes rows to a UTF-8 CSV file with a header line."""

    extension = "csv"

    def __init__(self, include_duration: bool = False):
        self.include_duration = include_duration

    def export_rows(self, rows: Iterable[ExportRow], path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        count = 0
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(columns(self.include_duration))
            for row in rows:
                writer.writerow(row.values(self.include_duration))
                count += 1

        logger.info(f"Exported {count} rows to {path}")
        return path


def get_export_sink(fmt: str, include_duration: bool = False):
    """Sink for ``"xlsx"`` or ``"csv"``."""
    fmt = (fmt or "xlsx").lower().lstrip(".")
    if fmt == "csv":
        return CsvExportSink(include_duration=include_duration)
    if fmt == "xlsx":
        return ExcelExportSink(include_duration=include_duration)
    raise ValueError(f"Unsupported export format: {fmt!r}")
