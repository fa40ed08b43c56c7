"""
Chat transcript - a running text log of one or more connections.

Transcript is an observer: register it with a connection (or a session's
dispatcher) and it turns every notification into one line of text, the way
a chat window shows it.
"""

import threading
import logging
from pathlib import Path
from typing import Optional, Callable, List, Union

from .notifier import ConnectionObserver
from .errors import TranscriptError


logger = logging.getLogger(__name__)


DEFAULT_FILENAME = "transcript.txt"


class Transcript(ConnectionObserver):
    """
    Thread-safe chat log.

    Args:
        echo: Optional callback invoked with each new line, e.g. print
    """

    def __init__(self, echo: Optional[Callable[[str], None]] = None):
        self._lines: List[str] = []
        self._echo = echo
        self._lock = threading.Lock()

    # ========== Observer Methods ==========

    def on_listening(self, port: int):
        self.append(f"LISTENING ON PORT {port}")

    def on_connecting(self, host: str, port: int):
        self.append(f"CONNECTING TO {host} ON PORT {port}")

    def on_connected(self):
        self.append("CONNECTION ESTABLISHED")

    def on_message_sent(self, text: str):
        self.append(f"SEND:  {text}")

    def on_message_received(self, text: str):
        self.append(f"RECEIVE:  {text}")

    def on_remote_closed(self):
        self.append("CONNECTION CLOSED FROM OTHER SIDE")

    def on_error(self, error: Exception):
        self.append(f"ERROR:  {error}")

    def on_closed(self):
        self.append("*** CONNECTION CLOSED ***")

    # ========== Log Access ==========

    def append(self, line: str):
        """Add a line to the log."""
        with self._lock:
            self._lines.append(line)
        if self._echo:
            self._echo(line)

    @property
    def lines(self) -> List[str]:
        """A copy of the logged lines."""
        with self._lock:
            return list(self._lines)

    def text(self) -> str:
        with self._lock:
            return "".join(line + "\n" for line in self._lines)

    def clear(self):
        with self._lock:
            self._lines.clear()

    def save(self, path: Union[str, Path] = DEFAULT_FILENAME) -> Path:
        """
        Write the transcript to a text file (UTF-8), replacing its contents.

        Args:
            path: Destination file

        Returns:
            The path written

        Raises:
            TranscriptError: If the file can't be written
        """
        path = Path(path)
        try:
            path.write_text(self.text(), encoding="utf-8")
        except OSError as e:
            raise TranscriptError(f"Error while writing transcript to {path}: {e}") from e

        logger.info(f"Transcript saved to {path}")
        return path

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
