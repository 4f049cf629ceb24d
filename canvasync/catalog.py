"""Course listing cache and on-disk artifact layout."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from .config import Config
from .http_client import CanvasClient
from .models import Course
from .utils import atomic_write, ensure_directory, safe_filename

logger = logging.getLogger(__name__)


def course_folder(course: Course, root_dir: Path, create: bool = True) -> Path:
    """Folder holding the artifact of a course: ``<root>/<start year>/<name>``."""
    start = course.start_date
    year = str(start.year) if start else 'undated'
    folder = Path(root_dir) / year / safe_filename(course.name)
    if create:
        ensure_directory(folder)
    return folder


def find_artifact(folder: Path, suffix: str = '.imscc') -> Optional[Path]:
    """Return the finished artifact in ``folder``, if there is one."""
    if not folder.is_dir():
        return None
    for entry in sorted(folder.iterdir()):
        if entry.is_file() and entry.name.endswith(suffix):
            return entry
    return None


class CourseCatalog:
    """Account course listing, cached in ``<root>/courses.json`` across runs."""

    def __init__(self, config: Config, client: CanvasClient):
        self.config = config
        self.client = client
        self.cache_file = Path(config.root_dir) / 'courses.json'

    def load_cached(self) -> Optional[List[Course]]:
        if not self.cache_file.exists():
            return None
        with open(self.cache_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        courses = [Course.model_validate(item) for item in data]
        logger.info("Loaded %d courses from cache", len(courses))
        return courses

    def _save(self, courses: List[Course]) -> None:
        ensure_directory(self.cache_file.parent)
        data = [course.model_dump(mode='json') for course in courses]
        atomic_write(self.cache_file, json.dumps(data, indent=2, ensure_ascii=False))

    async def load(self, refresh: bool = False) -> List[Course]:
        """Return all courses, from the cache unless ``refresh`` is set."""
        if not refresh:
            cached = self.load_cached()
            if cached is not None:
                return cached

        courses: List[Course] = []
        async for page in self.client.iter_course_pages():
            courses.extend(page)
            self._save(courses)
            logger.info("Fetched %d courses. Total: %d", len(page), len(courses))

        return courses
