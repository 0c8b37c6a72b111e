from __future__ import annotations

import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

logger = logging.getLogger(__name__)


def read_lines(path: str | Path) -> Iterator[str]:
    """Yield every line of 'path' once, or of stdin when 'path' is '-'."""
    if str(path) == "-":
        yield from sys.stdin
        return
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        yield from f


def follow(
    path: str | Path,
    poll_interval: float = 1.0,
    from_end: bool = True,
    stop: Optional[threading.Event] = None,
) -> Iterator[str]:
    """Yield complete lines appended to 'path', polling for new data.

    The file is reopened from the start when it is rotated (new inode) or
    truncated. A missing file is waited for. Iteration ends once 'stop' is set.
    """
    path = Path(path)
    f: Optional[BinaryIO] = None
    inode: Optional[int] = None
    position = 0
    pending = b""
    first_open = True

    def should_stop() -> bool:
        return stop is not None and stop.is_set()

    def wait() -> None:
        if stop is not None:
            stop.wait(poll_interval)
        else:
            time.sleep(poll_interval)

    try:
        while not should_stop():
            if f is None:
                try:
                    f = open(path, "rb")
                except FileNotFoundError:
                    # A file that appears later is read from its start
                    first_open = False
                    wait()
                    continue
                inode = os.fstat(f.fileno()).st_ino
                if first_open and from_end:
                    f.seek(0, os.SEEK_END)
                first_open = False
                position = f.tell()
                pending = b""
                logger.info("Following %s from offset %d", path, position)

            chunk = f.read()
            if chunk:
                position = f.tell()
                *complete, pending = (pending + chunk).split(b"\n")
                for line in complete:
                    yield line.decode("utf-8", errors="replace") + "\n"
                continue

            try:
                st: Optional[os.stat_result] = os.stat(path)
            except FileNotFoundError:
                st = None
            if st is None or st.st_ino != inode:
                logger.info("%s was rotated, reopening", path)
                f.close()
                f = None
                continue
            if st.st_size < position:
                logger.info("%s was truncated, reading from start", path)
                f.seek(0)
                position = 0
                pending = b""
                continue
            wait()
    finally:
        if f is not None:
            f.close()
