"""Profile stores — load and save per-user calibration and personality profiles.

The engine only depends on the :class:`ProfileStore` contract; the concrete
stores here cover tests (in-memory) and single-host deployments (one JSON
document per user and profile kind).
"""

from __future__ import annotations

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TypeVar
from urllib.parse import quote

import structlog
from pydantic import BaseModel, ValidationError

from moodsync.errors import ProfileStoreError
from moodsync.models import CalibrationProfile, PersonalityProfile

logger = structlog.get_logger(__name__)

_ProfileT = TypeVar("_ProfileT", CalibrationProfile, PersonalityProfile)


class ProfileStore(ABC):
    """Contract for the external per-user profile store.

    ``load_*`` return ``None`` for unknown users and raise
    :class:`ProfileStoreError` on I/O failure.  ``save_*`` must be
    all-or-nothing.
    """

    @abstractmethod
    def load_calibration(self, user_id: str) -> CalibrationProfile | None:
        """Return the stored calibration profile, if any."""

    @abstractmethod
    def save_calibration(self, profile: CalibrationProfile) -> None:
        """Persist a calibration profile."""

    @abstractmethod
    def load_personality(self, user_id: str) -> PersonalityProfile | None:
        """Return the stored personality profile, if any."""

    @abstractmethod
    def save_personality(self, profile: PersonalityProfile) -> None:
        """Persist a personality profile."""


class InMemoryProfileStore(ProfileStore):
    """Dictionary-backed store; keeps deep copies so callers cannot mutate it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calibration: dict[str, CalibrationProfile] = {}
        self._personality: dict[str, PersonalityProfile] = {}

    def load_calibration(self, user_id: str) -> CalibrationProfile | None:
        with self._lock:
            profile = self._calibration.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    def save_calibration(self, profile: CalibrationProfile) -> None:
        with self._lock:
            self._calibration[profile.user_id] = profile.model_copy(deep=True)

    def load_personality(self, user_id: str) -> PersonalityProfile | None:
        with self._lock:
            profile = self._personality.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    def save_personality(self, profile: PersonalityProfile) -> None:
        with self._lock:
            self._personality[profile.user_id] = profile.model_copy(deep=True)


class JsonFileProfileStore(ProfileStore):
    """One JSON document per user and profile kind under *root*.

    Layout::

        <root>/<quoted user_id>/calibration.json
        <root>/<quoted user_id>/personality.json

    The directory name is the percent-encoded user id (every character
    outside ``[A-Za-z0-9_.~-]`` is escaped), so distinct ids never share a
    directory and no id can contain a path separator.  ``""``, ``"."`` and
    ``".."`` are rejected.

    Writes go to a temporary file in the same directory and are moved into
    place with :func:`os.replace`, so a crash never leaves a torn document.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _path(self, user_id: str, kind: str) -> Path:
        if user_id in ("", ".", ".."):
            raise ProfileStoreError(f"invalid user id for the profile store: {user_id!r}")
        return self._root / quote(user_id, safe="") / f"{kind}.json"

    def _load(self, user_id: str, kind: str, model: type[_ProfileT]) -> _ProfileT | None:
        path = self._path(user_id, kind)
        if not path.exists():
            return None
        try:
            profile = model.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.error("profile_store.load_failed", path=str(path), error=str(exc))
            raise ProfileStoreError(f"could not load {kind} profile for {user_id!r}") from exc
        if profile.user_id != user_id:
            logger.error(
                "profile_store.owner_mismatch", path=str(path), expected=user_id, found=profile.user_id,
            )
            raise ProfileStoreError(
                f"{kind} profile at {path} belongs to {profile.user_id!r}, not {user_id!r}"
            )
        return profile

    def _save(self, user_id: str, kind: str, profile: BaseModel) -> None:
        path = self._path(user_id, kind)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{kind}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(profile.model_dump_json(indent=2))
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("profile_store.save_failed", path=str(path), error=str(exc))
            raise ProfileStoreError(f"could not save {kind} profile for {user_id!r}") from exc
        logger.debug("profile_store.saved", path=str(path))

    def load_calibration(self, user_id: str) -> CalibrationProfile | None:
        return self._load(user_id, "calibration", CalibrationProfile)

    def save_calibration(self, profile: CalibrationProfile) -> None:
        self._save(profile.user_id, "calibration", profile)

    def load_personality(self, user_id: str) -> PersonalityProfile | None:
        return self._load(user_id, "personality", PersonalityProfile)

    def save_personality(self, profile: PersonalityProfile) -> None:
        self._save(profile.user_id, "personality", profile)
