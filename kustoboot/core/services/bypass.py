"""
Docker Desktop profile bypass.

A fresh Docker Desktop install stops at the onboarding, license and
sign-in screens and never starts its engine without a user clicking
through them. Merging these keys into ``settings-store.json`` lets it
come up headless after a reboot, under the continuation task, with
nobody logged in to click anything.

Applying the bypass is idempotent; existing keys not listed here are
preserved.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from kustoboot.core.models.action import ErrorKind, Receipt

logger = logging.getLogger(__name__)

BYPASS_SETTINGS: dict[str, Any] = {
    "DisplayedOnboarding": True,
    "LicenseTermsVersion": 2,
    "AutoStart": True,
    "OpenUIOnStartupDisabled": True,
    "AnalyticsEnabled": False,
    "ShowSurveyNotifications": False,
}


def _read_settings(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    raw = path.read_text(encoding="utf-8-sig")
    if not raw.strip():
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def apply_profile_bypass(settings_path: Path) -> Receipt:
    """Merge the bypass keys into Docker Desktop's settings file.

    A corrupt settings file is moved aside to ``<name>.bak`` and replaced
    with the bypass keys alone.
    """
    try:
        current = _read_settings(settings_path)
    except (ValueError, OSError) as e:
        backup = settings_path.with_suffix(settings_path.suffix + ".bak")
        logger.warning("Unreadable %s (%s) — moving it to %s", settings_path, e, backup.name)
        try:
            settings_path.replace(backup)
        except OSError as move_err:
            return Receipt.failure(
                "bypass", "apply", f"Cannot move aside {settings_path}: {move_err}",
                ErrorKind.INSTALL,
            )
        current = {}

    missing = {k: v for k, v in BYPASS_SETTINGS.items() if current.get(k) != v}
    if not missing:
        return Receipt.skip("bypass", "apply", "already applied")

    merged = {**current, **BYPASS_SETTINGS}
    try:
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=settings_path.parent, prefix=".settings_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(merged, f, indent=2)
            tmp.replace(settings_path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        return Receipt.failure("bypass", "apply", f"Cannot write {settings_path}: {e}", ErrorKind.INSTALL)

    logger.info("Applied Docker Desktop profile bypass (%s)", ", ".join(sorted(missing)))
    return Receipt.success(
        "bypass", "apply", output=str(settings_path), metadata={"keys": sorted(missing)}
    )


def missing_bypass_keys(settings_path: Path) -> list[str]:
    """Bypass keys absent from, or different in, the settings file."""
    try:
        current = _read_settings(settings_path)
    except (ValueError, OSError):
        return sorted(BYPASS_SETTINGS)
    return sorted(k for k, v in BYPASS_SETTINGS.items() if current.get(k) != v)
