"""JSON persistence for the daemon config file."""

from __future__ import annotations

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any


def _json_kind(value: Any) -> type:
    # bool is an int subclass; keep them apart so "true" never lands in a float key.
    if isinstance(value, bool):
        return bool
    if isinstance(value, (int, float)):
        return float
    return type(value)


def sanitize_settings(loaded: dict[str, Any], defaults: dict[str, Any], *, logger) -> dict[str, Any]:
    """Drop entries whose JSON type can't serve the known key.

    Unknown keys are kept: a newer daemon may have written them.
    """

    clean: dict[str, Any] = {}
    for key, value in loaded.items():
        default = defaults.get(key)
        if key in defaults and default is not None:
            if value is None or _json_kind(value) is not _json_kind(default):
                logger.warning("Ignoring config %s=%r (expected %s)", key, value, _json_kind(default).__name__)
                continue
        clean[key] = value
    return clean


def load_config_settings(
    *,
    config_file: Path,
    defaults: dict[str, Any],
    retries: int = 3,
    retry_delay: float = 0.02,
    logger,
) -> dict[str, Any] | None:
    """Return `{**defaults, **file}`, or None when the file stays unreadable.

    A missing file yields a copy of *defaults*. A JSONDecodeError is retried
    (an admin's editor may be halfway through a write); other errors are not.
    """

    if not config_file.exists():
        return dict(defaults)

    attempts = max(1, int(retries))
    last_error: Exception | None = None
    for attempt in range(attempts):
        try:
            raw = config_file.read_text(encoding="utf-8")
            loaded = json.loads(raw)
        except json.JSONDecodeError as e:
            last_error = e
            if attempt + 1 < attempts:
                time.sleep(retry_delay)
            continue
        except OSError as e:
            last_error = e
            break

        if not isinstance(loaded, dict):
            logger.warning("Config %s is not a JSON object; using defaults", config_file)
            loaded = {}
        return {**defaults, **sanitize_settings(loaded, defaults, logger=logger)}

    logger.warning("Failed to load config %s: %s", config_file, last_error)
    return None


def save_config_settings_atomic(*, config_dir: Path, config_file: Path, settings: dict[str, Any], logger) -> None:
    """Write *settings* next to *config_file* and rename over it."""

    tmp_name: str | None = None
    try:
        config_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=str(config_dir),
            prefix=".config.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = f.name
            json.dump(settings, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, config_file)
        tmp_name = None
    except OSError as e:
        logger.warning("Failed to save config %s: %s", config_file, e)
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
