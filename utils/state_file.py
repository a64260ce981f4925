"""Atomic JSON rewrites and tolerant loading for durable state collections."""

from __future__ import annotations

import errno
import json
import logging
import os
import tempfile
import time
from typing import Any

logger = logging.getLogger(__name__)

E_JSON_CORRUPT = "E_JSON_CORRUPT"

_TRANSIENT_REPLACE_ERRNOS = {errno.EACCES, errno.EBUSY, errno.EPERM}
_REPLACE_RETRIES = 5
_REPLACE_BASE_DELAY_SECONDS = 0.03


def atomic_write_json(path: str, payload: Any, *, indent: int = 2) -> None:
    """Serialize `payload` to a temp file beside `path`, then swap it in.

    Readers see either the previous file or the new one, never a partial write.
    Any failure removes the temp file and propagates.
    """

    abs_path = str(path)
    state_dir = os.path.dirname(abs_path) or "."
    os.makedirs(state_dir, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        prefix=f"{os.path.basename(abs_path)}.",
        suffix=".tmp",
        dir=state_dir,
        text=True,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=indent)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass
        for attempt in range(_REPLACE_RETRIES + 1):
            try:
                os.replace(tmp_path, abs_path)
                break
            except OSError as exc:
                transient = int(getattr(exc, "errno", 0) or 0) in _TRANSIENT_REPLACE_ERRNOS
                if not transient or attempt >= _REPLACE_RETRIES:
                    raise
                time.sleep(_REPLACE_BASE_DELAY_SECONDS * (1.5**attempt))
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def load_json_list(path: str) -> list[Any]:
    """Return the JSON list stored at `path`.

    Missing files, unreadable files, malformed JSON and non-list payloads all
    come back as an empty list; the problem is logged, never raised.
    """

    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            payload = json.load(f)
    except (OSError, UnicodeError, ValueError) as exc:
        logger.warning("%s: state file unreadable path=%s err=%s", E_JSON_CORRUPT, path, exc)
        return []
    if not isinstance(payload, list):
        logger.warning("%s: state file is not a list path=%s type=%s", E_JSON_CORRUPT, path, type(payload).__name__)
        return []
    return payload
