"""Image references handed to the moderation gate.

An ``ImageRef`` is an opaque, locally resolvable handle to a candidate image:
a filesystem path, a ``file://`` URI, or an in-memory blob. It is owned by
the caller; moderation only ever reads it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

MEMORY_SCHEME = "memory"


class InvalidImageRefError(ValueError):
    """Raised when a caller passes a reference that cannot be read."""


@dataclass(frozen=True)
class ImageRef:
    """Immutable handle to a candidate image."""

    uri: str
    data: bytes | None = field(default=None, repr=False, compare=False)

    @classmethod
    def coerce(cls, value: ImageRef | str | os.PathLike[str]) -> ImageRef:
        """Build an ``ImageRef`` from a path, URI, or existing reference."""
        if isinstance(value, ImageRef):
            return value
        if isinstance(value, os.PathLike):
            return cls(os.fspath(value))
        if isinstance(value, str):
            return cls(value)
        raise InvalidImageRefError(f"Unsupported image reference type: {type(value).__name__}")

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "upload") -> ImageRef:
        """Wrap an in-memory image blob."""
        return cls(uri=f"{MEMORY_SCHEME}://{name}", data=data)

    @property
    def is_blob(self) -> bool:
        return self.data is not None

    @property
    def path(self) -> Path:
        """Resolve the reference to a local filesystem path.

        Raises:
            InvalidImageRefError: If the reference is a blob or uses a
                scheme other than ``file``.
        """
        if self.is_blob:
            raise InvalidImageRefError(f"{self.uri} is an in-memory blob, not a file")

        parsed = urlparse(self.uri)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        # Single-letter schemes are Windows drive letters.
        if parsed.scheme == "" or len(parsed.scheme) == 1:
            return Path(self.uri)
        raise InvalidImageRefError(f"Unsupported image URI scheme: {parsed.scheme!r}")

    def validate(self) -> None:
        """Check that the reference points at something readable.

        Raises:
            InvalidImageRefError: If the reference is empty, uses an unsupported
                scheme, names a missing file, or wraps an empty blob.
        """
        if not self.uri:
            raise InvalidImageRefError("Image reference is empty")
        if self.is_blob:
            if not self.data:
                raise InvalidImageRefError(f"{self.uri} is an empty blob")
            return
        if not self.path.is_file():
            raise InvalidImageRefError(f"Image not found: {self.uri}")

    def read_bytes(self) -> bytes:
        """Return the raw image bytes."""
        if self.data is not None:
            return self.data
        return self.path.read_bytes()
