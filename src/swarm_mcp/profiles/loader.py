"""Profile loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import ROLES, AgentProfile

DEFAULT_PROFILE_DIR = Path(__file__).resolve().parent / "defaults"


class ProfileLoadError(RuntimeError):
    """Raised when one or more profile files cannot be parsed."""


class ProfileLoader:
    """Loads agent profiles from YAML files on disk.

    The bundled defaults are searched first so any configured directory can
    override a role by shipping a profile with the same id.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None, *, include_defaults: bool = True) -> None:
        paths = [DEFAULT_PROFILE_DIR] if include_defaults else []
        paths.extend(Path(path) for path in (search_paths or []))
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._cache: dict[str, AgentProfile] | None = None

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentProfile]:
        """Load profiles from all configured search paths.

        Later search paths override earlier ones when profile ids collide.
        """

        profiles: dict[str, AgentProfile] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    profile = AgentProfile.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Profile validation error in {path}: {exc}")
                    continue

                profiles[profile.id] = profile

        if errors:
            raise ProfileLoadError("; ".join(errors))

        self._cache = profiles
        return profiles

    def get(self, profile_id: str) -> AgentProfile:
        """Return a single profile by id, loading lazily on first use."""

        profiles = self._cache if self._cache is not None else self.load_all()
        try:
            return profiles[profile_id]
        except KeyError as exc:
            raise ProfileLoadError(f"Profile '{profile_id}' not found in search paths") from exc

    def missing_roles(self) -> list[str]:
        profiles = self._cache if self._cache is not None else self.load_all()
        return [role for role in ROLES if role not in profiles]


def load_profiles(search_paths: Iterable[Path] | None = None) -> dict[str, AgentProfile]:
    """Convenience wrapper for loading profiles from the provided paths."""

    loader = ProfileLoader(search_paths)
    return loader.load_all()


__all__ = ["DEFAULT_PROFILE_DIR", "ProfileLoadError", "ProfileLoader", "load_profiles"]
