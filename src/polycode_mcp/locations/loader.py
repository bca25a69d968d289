"""Location loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import Location


class LocationLoadError(RuntimeError):
    """Raised when one or more location files cannot be parsed."""


class LocationLoader:
    """Loads location definitions from YAML files on disk.

    A file holds either one location mapping or a list of them.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, Location]:
        """Load locations from all configured search paths.

        Later search paths override earlier ones when location ids collide.
        """

        if not self._search_paths:
            return {}

        locations: dict[str, Location] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                entries = document if isinstance(document, list) else [document]
                for entry in entries:
                    try:
                        location = Location.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Location validation error in {path}: {exc}")
                        continue
                    locations[location.id] = location

        if errors:
            raise LocationLoadError("; ".join(errors))

        return locations

    def get(self, location_id: str) -> Location:
        locations = self.load_all()
        try:
            return locations[location_id]
        except KeyError as exc:
            raise LocationLoadError(f"Location '{location_id}' not found in search paths") from exc


def load_locations(search_paths: Iterable[Path] | None = None) -> dict[str, Location]:
    """Convenience wrapper for loading locations from the provided paths."""

    return LocationLoader(search_paths).load_all()


__all__ = ["Location", "LocationLoadError", "LocationLoader", "load_locations"]
