"""On-disk token cache keyed by request fingerprint.

Each cached TokenRecord lives in its own JSON file, '<fingerprint>.json',
under one directory per host. Files are written atomically (temp file +
rename) with mode 600, because they hold refresh tokens and, for
confidential clients, the client secret used to obtain them.

Concurrent writers to the same fingerprint are last-write-wins; there is no
locking or merge.

Usage:
    from aadtoken.auth.cache import TokenCacheStore, default_cache_dir

    store = TokenCacheStore(default_cache_dir())
    record = store.get(fp)
"""

from __future__ import annotations

import json
import os
import stat
import tempfile
from collections.abc import Callable
from pathlib import Path

from rich.prompt import Confirm

from aadtoken.auth.record import TokenRecord
from aadtoken.core.errors import CacheError
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)

CACHE_DIR_ENV = "AADTOKEN_CACHE_DIR"
DEFAULT_CACHE_DIR = Path.home() / ".aadtoken"
CACHE_FILE_SUFFIX = ".json"


def default_cache_dir(configured: str | None = None) -> Path:
    """Resolve the host-wide cache directory.

    Order: explicit configured path, AADTOKEN_CACHE_DIR, ~/.aadtoken.
    Independent of the current working directory.
    """
    if configured:
        return Path(configured).expanduser().resolve()
    env_dir = os.environ.get(CACHE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return DEFAULT_CACHE_DIR


def _ask_create(directory: Path) -> bool:
    return Confirm.ask(
        f"aadtoken can cache tokens in [cyan]{directory}[/cyan] so you don't have "
        "to sign in every time.\nCreate this directory?",
        default=True,
    )


class TokenCacheStore:
    """Fingerprint-to-TokenRecord store backed by one file per entry.

    Attributes:
        directory: Cache directory
        interactive: Whether the one-time creation gate may prompt the user

    A missing directory reads as an empty cache. It is only created through
    ensure_directory(), which asks first in interactive contexts and does
    nothing in non-interactive ones.
    """

    def __init__(
        self,
        directory: str | Path,
        interactive: bool = False,
        confirm: Callable[[Path], bool] | None = None,
    ):
        self.directory = Path(directory)
        self.interactive = interactive
        self._confirm = confirm or _ask_create
        self._declined = False

    def _path_for(self, fp: str) -> Path:
        if not fp or not all(c in "0123456789abcdef" for c in fp):
            raise CacheError(f"Invalid token fingerprint: {fp!r}")
        return self.directory / f"{fp}{CACHE_FILE_SUFFIX}"

    def exists(self) -> bool:
        return self.directory.is_dir()

    def ensure_directory(self, force: bool = False) -> bool:
        """One-time creation gate for the cache directory.

        Args:
            force: Create without asking (explicit CLI 'init-cache')

        Returns:
            True if the directory exists afterwards
        """
        if self.exists():
            return True
        if not force:
            if not self.interactive or self._declined:
                return False
            if not self._confirm(self.directory):
                self._declined = True
                logger.info("Token cache directory creation declined", path=str(self.directory))
                return False

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            os.chmod(self.directory, stat.S_IRWXU)
        except OSError as e:
            raise CacheError(
                f"Failed to create token cache directory {self.directory}: {e}",
                path=str(self.directory),
            ) from e
        logger.info("Token cache directory created", path=str(self.directory))
        return True

    def get(self, fp: str) -> TokenRecord | None:
        """Load the record cached under fp.

        Returns:
            The record, or None if nothing is cached (or the directory is absent)

        Raises:
            CacheError: If the entry exists but cannot be read or decoded
        """
        path = self._path_for(fp)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return TokenRecord.from_dict(data)
        except OSError as e:
            raise CacheError(f"Failed to read cached token {path}: {e}", path=str(path)) from e
        except (ValueError, KeyError, TypeError) as e:
            # ValueError covers json.JSONDecodeError and bad ISO timestamps
            raise CacheError(f"Corrupt cached token {path}: {e}", path=str(path)) from e

    def put(self, fp: str, record: TokenRecord) -> None:
        """Write record under fp, replacing any existing entry.

        Raises:
            CacheError: If the directory is missing and was not created, or the write fails
        """
        path = self._path_for(fp)
        if not self.ensure_directory():
            raise CacheError(
                f"Token cache directory {self.directory} does not exist. "
                "Run 'aadtoken init-cache' to create it.",
                path=str(self.directory),
            )

        content = json.dumps(record.to_dict(), indent=2)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise CacheError(f"Failed to write cached token {path}: {e}", path=str(path)) from e

        logger.debug("Token cached", fingerprint=fp[:12], path=str(path))

    def delete(self, fp: str) -> bool:
        """Remove the entry for fp.

        Returns:
            True if an entry was deleted, False if none existed
        """
        path = self._path_for(fp)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheError(f"Failed to delete cached token {path}: {e}", path=str(path)) from e
        logger.debug("Cached token deleted", fingerprint=fp[:12])
        return True

    def list(self) -> list[tuple[str, TokenRecord]]:
        """Return all readable entries as (fingerprint, record) pairs.

        Unreadable entries are skipped with a warning.
        """
        if not self.exists():
            return []

        entries: list[tuple[str, TokenRecord]] = []
        for path in sorted(self.directory.glob(f"*{CACHE_FILE_SUFFIX}")):
            fp = path.stem
            try:
                record = self.get(fp)
            except CacheError as e:
                logger.warning("Skipping unreadable cached token", path=str(path), error=str(e))
                continue
            if record is not None:
                entries.append((fp, record))
        return entries

    def clear(self) -> int:
        """Delete every cached entry. The directory itself is kept.

        Returns:
            Number of entries deleted
        """
        if not self.exists():
            return 0
        count = 0
        for path in self.directory.glob(f"*{CACHE_FILE_SUFFIX}"):
            try:
                path.unlink()
                count += 1
            except OSError as e:
                raise CacheError(
                    f"Failed to delete cached token {path}: {e}", path=str(path)
                ) from e
        logger.info("Token cache cleared", path=str(self.directory), deleted=count)
        return count
