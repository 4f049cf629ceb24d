"""Select the courses to export from a CSV list of course codes."""

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Set

from .config import FilterConfig
from .models import Course

logger = logging.getLogger(__name__)


def load_course_codes(csv_path: Path, code_column: str = 'kod', delimiter: str = ';') -> Set[str]:
    """Read the set of course codes listed in a CSV file."""
    with open(csv_path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.DictReader(f, delimiter=delimiter)
        return {
            row[code_column].strip()
            for row in reader
            if row.get(code_column) and row[code_column].strip()
        }


def filter_courses(courses: Iterable[Course], config: FilterConfig) -> List[Course]:
    """Keep courses whose code is listed and that started on or after the threshold."""
    selected = list(courses)

    if config.csv_path:
        codes = load_course_codes(Path(config.csv_path), config.code_column, config.delimiter)
        selected = [course for course in selected if course.code in codes]
        logger.info("%d courses match %d listed codes", len(selected), len(codes))

    if config.started_after:
        threshold = datetime.combine(config.started_after, datetime.min.time(), tzinfo=timezone.utc)
        selected = [
            course for course in selected
            if course.start_date is not None and _as_utc(course.start_date) >= threshold
        ]

    return selected


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
