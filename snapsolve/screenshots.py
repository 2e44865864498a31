from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
from typing import Protocol, Sequence


class ScreenshotQueue(Protocol):
    def list_queued(self) -> list[str]: ...

    def list_extra(self) -> list[str]: ...

    def load_preview(self, image_id: str) -> str | None: ...

    def clear_extra(self) -> None: ...


class FileScreenshotQueue:
    """Ordered in-memory queues of image file paths."""

    def __init__(
        self,
        queued: Sequence[str | Path] = (),
        extra: Sequence[str | Path] = (),
    ) -> None:
        self._queued = [str(path) for path in queued]
        self._extra = [str(path) for path in extra]

    def list_queued(self) -> list[str]:
        return list(self._queued)

    def list_extra(self) -> list[str]:
        return list(self._extra)

    def add_queued(self, path: str | Path) -> None:
        self._queued.append(str(path))

    def add_extra(self, path: str | Path) -> None:
        self._extra.append(str(path))

    def clear_extra(self) -> None:
        self._extra.clear()

    def load_preview(self, image_id: str) -> str | None:
        path = Path(image_id)
        if not path.is_file():
            return None
        mime_type, _ = mimetypes.guess_type(path.name)
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        return f"data:{mime_type or 'image/png'};base64,{encoded}"
