"""Reader and writer for the taskrc key/value configuration file.

Format:
    # comment
    key = value
    rc.key = "quoted value"      (the ``rc.`` prefix is dropped)
    include ~/.config/task/extra.rc

Included files are read relative to the including file; later
definitions override earlier ones. Writes only ever touch the main file.
"""

from pathlib import Path

from taskledger._utils import atomic_write_text
from taskledger.errors import ConfigFileError
from taskledger.locking import FileLock
from taskledger.logging import Loggers
from taskledger.replica import FileStamp, file_stamp

logger = Loggers.context()

INCLUDE_DIRECTIVES = ("include", "import")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_line(line: str) -> tuple[str, str] | None:
    """Parse one ``key=value`` line; None for blanks, comments and includes."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    if stripped.split(None, 1)[0] in INCLUDE_DIRECTIVES and "=" not in stripped:
        return None
    if "=" not in stripped:
        raise ValueError("expected key=value")
    key, value = stripped.split("=", 1)
    key = key.strip()
    if key.startswith("rc."):
        key = key[3:]
    if not key:
        raise ValueError("empty key")
    return key, _unquote(value.strip())


class Taskrc:
    """Key/value configuration file with locked, atomic updates."""

    def __init__(self, path: Path, lock_timeout: float = 5.0):
        self.path = Path(path).expanduser()
        self.lock_timeout = lock_timeout
        self.lock = FileLock(self.path.with_name(self.path.name + ".lock"))

    def stamp(self) -> FileStamp | None:
        return file_stamp(self.path)

    def read(self) -> dict[str, str]:
        """All settings, with includes resolved. A missing file is empty.

        Raises:
            ConfigFileError: On unreadable files or malformed lines
        """
        settings: dict[str, str] = {}
        if self.path.exists():
            self._read_into(self.path, settings, set())
        return settings

    def _read_into(self, path: Path, settings: dict[str, str], seen: set[Path]) -> None:
        resolved = path.resolve()
        if resolved in seen:
            logger.debug("taskrc_include_cycle", path=str(path))
            return
        seen.add(resolved)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise ConfigFileError(path, e.strerror or str(e)) from e

        for number, line in enumerate(lines, start=1):
            words = line.strip().split(None, 1)
            if len(words) == 2 and words[0] in INCLUDE_DIRECTIVES and "=" not in line:
                target = Path(_unquote(words[1].strip())).expanduser()
                if not target.is_absolute():
                    target = path.parent / target
                if not target.exists():
                    raise ConfigFileError(path, f"included file {target} not found", line=number)
                self._read_into(target, settings, seen)
                continue
            try:
                parsed = parse_line(line)
            except ValueError as e:
                raise ConfigFileError(path, str(e), line=number) from e
            if parsed:
                settings[parsed[0]] = parsed[1]

    def set_value(self, key: str, value: str | None) -> None:
        """Persist ``key`` in the main file, or remove it when ``value`` is None.

        Every other line, comments included, is preserved. The file is
        replaced atomically under the taskrc lock.

        Raises:
            LockTimeoutError: If another writer holds the taskrc lock
            ConfigFileError: If the file cannot be read or written
        """
        with self.lock.hold(self.lock_timeout):
            try:
                lines = self.path.read_text(encoding="utf-8").splitlines() if self.path.exists() else []
            except OSError as e:
                raise ConfigFileError(self.path, e.strerror or str(e)) from e

            kept = []
            for line in lines:
                try:
                    parsed = parse_line(line)
                except ValueError:
                    parsed = None
                if parsed and parsed[0] == key:
                    continue
                kept.append(line)
            if value is not None:
                kept.append(f"{key}={value}")

            try:
                atomic_write_text(self.path, "\n".join(kept) + "\n" if kept else "")
            except OSError as e:
                raise ConfigFileError(self.path, e.strerror or str(e)) from e
        logger.debug("taskrc_updated", path=str(self.path), key=key, removed=value is None)
