"""Application version and the persisted visibility of the tester's views."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable

APP_VERSION_MAJOR = 0
APP_VERSION_MINOR = 1
APP_VERSION_PATCH = 0

DEFAULT_VIEWS = ("产品信息", "主视图", "副视图")
_VISIBLE_KEY = "VisibleViews"


def app_version() -> str:
    """The version string shown to users, such as "v0.1.0"."""
    return f"v{APP_VERSION_MAJOR}.{APP_VERSION_MINOR}.{APP_VERSION_PATCH}"


class ViewLayout:
    """Which named views are shown, stored in a JSON settings file.

    Views are kept in sorted order. When nothing is stored, or the stored
    list is empty, every view is shown.
    """

    def __init__(self, path: str | os.PathLike, views: Iterable[str] = DEFAULT_VIEWS):
        self.path = Path(path)
        self._visible: dict[str, bool] = {name: True for name in sorted(set(views))}

    @property
    def views(self) -> list[str]:
        return list(self._visible)

    def _read(self) -> dict:
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return document if isinstance(document, dict) else {}

    def load(self) -> None:
        """Apply the stored visibility, showing every view when none is stored."""
        stored = self._read().get(_VISIBLE_KEY)
        names = [name for name in stored if isinstance(name, str)] if isinstance(stored, list) else []
        self.set_visible(names or self.views)

    def save(self) -> None:
        """Store the names of the views that are visible."""
        document = self._read()
        document[_VISIBLE_KEY] = self.visible_views()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")

    def set_visible(self, visible_views: Iterable[str]) -> None:
        """Show exactly the listed views; unknown names are ignored."""
        wanted = set(visible_views)
        for name in self._visible:
            self._visible[name] = name in wanted

    def visible_views(self) -> list[str]:
        return [name for name, shown in self._visible.items() if shown]