"""
Content Cache - Per-user filesystem blob store of extracted HTML.

Layout::

    {root}/{user_id}/{article_id}.{extension}

Writes go to a temporary file in the same directory and are moved into
place with ``os.replace``, so a reader, a second writer or a racing cleanup
only ever sees a complete old file, a complete new file, or no file.

Usage:
    from utils.cache import ContentCache

    cache = ContentCache(settings.CACHE_DIR)
    cache.set(user_id, article_id, html)
    html = cache.get(user_id, article_id)
"""

import logging
import os
import re
import tempfile
import time
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Optional

from utils.errors import ValidationError
from utils.schemas import CleanupReport

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"

# A key is one path segment: no separators, no dot-only names.
_SAFE_KEY = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _check_key(name: str, value: str) -> str:
    if not value or not _SAFE_KEY.match(value) or ".." in value:
        raise ValidationError(f"Invalid cache key: {name}", {name: value})
    return value


class ContentCache:
    """Filesystem-backed HTML cache partitioned by user."""

    def __init__(self, root: str | Path, extension: str = "html") -> None:
        self.root = Path(root)
        self.extension = extension.lstrip(".")

    def path_for(self, user_id: str, article_id: str) -> Path:
        _check_key("user_id", user_id)
        _check_key("article_id", article_id)
        return self.root / user_id / f"{article_id}.{self.extension}"

    def user_dir(self, user_id: str) -> Path:
        return self.root / _check_key("user_id", user_id)

    def get(self, user_id: str, article_id: str) -> Optional[str]:
        """Return cached content, or None on a miss or an unreadable file."""
        path = self.path_for(user_id, article_id)
        try:
            # Bytes in, bytes out: no newline translation on either side
            return path.read_bytes().decode("utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(
                "Failed to read cache entry",
                extra={"article_id": article_id, "path": str(path), "error": str(e)},
            )
            return None
        except UnicodeDecodeError as e:
            logger.warning(
                "Cache entry is not valid UTF-8",
                extra={"article_id": article_id, "path": str(path), "error": str(e)},
            )
            return None

    def set(self, user_id: str, article_id: str, content: str) -> None:
        """Write content, creating the user partition if needed. Overwrites."""
        path = self.path_for(user_id, article_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{article_id}.", suffix=TEMP_SUFFIX
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def delete(self, user_id: str, article_id: str) -> None:
        try:
            self.path_for(user_id, article_id).unlink()
        except FileNotFoundError:
            pass

    def exists(self, user_id: str, article_id: str) -> bool:
        return self.path_for(user_id, article_id).is_file()

    def iter_user_files(self, user_id: str) -> Iterator[Path]:
        """Cache files of one user, skipping temp files and other extensions."""
        directory = self.user_dir(user_id)
        if not directory.is_dir():
            return
        suffix = f".{self.extension}"
        for entry in directory.iterdir():
            if entry.name.startswith(".") or entry.suffix != suffix:
                continue
            if entry.is_file():
                yield entry

    def cleanup(self, max_age: timedelta, now: Optional[float] = None) -> CleanupReport:
        """Delete cache files older than ``max_age`` across all user partitions.

        Files placed directly under the root, files with another extension
        and in-flight temp files are never touched. A failure on one file is
        logged and counted; the scan continues.
        """
        now = time.time() if now is None else now
        max_age_seconds = max_age.total_seconds()
        report = CleanupReport()
        suffix = f".{self.extension}"

        if not self.root.is_dir():
            logger.info("Cache root missing, nothing to clean", extra={"root": str(self.root)})
            return report

        for user_dir in self.root.iterdir():
            if not user_dir.is_dir():
                continue

            try:
                entries = list(user_dir.iterdir())
            except OSError as e:
                logger.warning(
                    "Failed to list cache partition",
                    extra={"path": str(user_dir), "error": str(e)},
                )
                report.errors += 1
                continue

            for entry in entries:
                if entry.name.startswith(".") or entry.suffix != suffix:
                    continue

                report.scanned += 1
                try:
                    age = now - entry.stat().st_mtime
                    if age > max_age_seconds:
                        entry.unlink()
                        report.deleted += 1
                except FileNotFoundError:
                    # Deleted or replaced concurrently
                    continue
                except OSError as e:
                    logger.warning(
                        "Failed to process cache file",
                        extra={"path": str(entry), "error": str(e)},
                    )
                    report.errors += 1

        logger.info(
            "Cache cleanup: scanned %d files, deleted %d old files",
            report.scanned,
            report.deleted,
            extra={"errors": report.errors},
        )
        return report
