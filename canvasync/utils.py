"""Utility functions for Canvas Sync."""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig


console = Console()

# Characters that are illegal in a path component on at least one common filesystem
UNSAFE_PATH_CHARS = '/\\:*?"<>|'


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Route log records to the rich console and, optionally, a file."""
    config = config or LoggingConfig()
    handlers: List[logging.Handler] = [
        RichHandler(console=console, show_path=False, rich_tracebacks=True)
    ]
    if config.file:
        ensure_directory(Path(config.file).parent)
        file_handler = logging.FileHandler(config.file, encoding='utf-8')
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=config.level.upper(),
        format='%(message)s',
        datefmt='[%X]',
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)


def atomic_write(file_path: Path, content: Union[str, bytes], mode: str = 'w') -> None:
    """Atomically write content to a file."""
    temp_path = file_path.with_suffix(file_path.suffix + '.tmp')

    try:
        if mode == 'w':
            with open(temp_path, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        elif mode == 'wb':
            with open(temp_path, 'wb') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        else:
            raise ValueError(f"Unsupported mode: {mode}")

        os.replace(temp_path, file_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def append_jsonl(file_path: Path, record: Dict[str, Any]) -> None:
    """Append a record to a JSONL file."""
    line = json.dumps(record, ensure_ascii=False) + '\n'

    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'a', encoding='utf-8') as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def read_jsonl(file_path: Path) -> Generator[Dict[str, Any], None, None]:
    """Read records from a JSONL file, skipping damaged lines."""
    if not file_path.exists():
        return

    with open(file_path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue


def load_jsonl(file_path: Path) -> List[Dict[str, Any]]:
    """Load all records from a JSONL file."""
    return list(read_jsonl(file_path))


def format_bytes(bytes_count: float) -> str:
    """Format bytes count in human readable format."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format duration in human readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def safe_filename(filename: str) -> str:
    """Replace characters that cannot appear in a path component."""
    for char in UNSAFE_PATH_CHARS:
        filename = filename.replace(char, '_')

    if not filename.strip():
        filename = 'unnamed'

    return filename


def ensure_directory(path: Path) -> None:
    """Ensure directory exists, create if necessary."""
    path.mkdir(parents=True, exist_ok=True)


def file_size(path: Path) -> int:
    """Size of a file on disk, 0 when it does not exist."""
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0
