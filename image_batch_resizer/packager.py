"""
Archive packaging: bundle every Completed item into one zip.

Entry names are ``<archive name>/<source stem>.<extension>``.  Sources that
share a stem (compared case-insensitively, since most desktop file systems
fold case on extraction) get their item id appended, so no entry ever
replaces another.  Packaging reads the registry and never mutates it.
"""

import io
import logging
import unicodedata
import zipfile
from pathlib import PurePath

from image_batch_resizer.config import DEFAULT_ARCHIVE_NAME
from image_batch_resizer.models import OutputFormat
from image_batch_resizer.registry import ItemRegistry

logger = logging.getLogger(__name__)

# Characters forbidden in folder names (superset across Windows/macOS/Linux)
_INVALID_NAME_CHARS = set('<>:"|?*/\\\0')
# Reserved device names on Windows (case-insensitive)
_RESERVED_NAMES = frozenset({
    "CON", "PRN", "AUX", "NUL",
    *(f"COM{i}" for i in range(1, 10)),
    *(f"LPT{i}" for i in range(1, 10)),
})


class ArchiveError(Exception):
    """The package writer failed; the registry is unchanged and the call may be retried."""


class EmptyArchiveError(ArchiveError):
    """There are no Completed items to package."""


# =============================================================================
# Name handling
# =============================================================================
def sanitize_archive_name(name: str | None, default: str = DEFAULT_ARCHIVE_NAME) -> str:
    """Make *name* safe as a single folder component.

    Path separators, control characters and characters invalid on common
    file systems are stripped, as are leading/trailing dots and spaces.
    An empty result or a reserved Windows device name falls back to *default*.
    """
    if not name:
        return default
    cleaned = "".join(
        ch for ch in str(name)
        if ch not in _INVALID_NAME_CHARS and unicodedata.category(ch) != "Cc"
    )
    cleaned = cleaned.strip(" .")
    while ".." in cleaned:
        cleaned = cleaned.replace("..", ".")
    if not cleaned or cleaned.split(".")[0].upper() in _RESERVED_NAMES:
        return default
    return cleaned


def entry_stem(source_name: str) -> str:
    """Stem of a source's display name, stripped of any directory part."""
    stem = PurePath(source_name.replace("\\", "/")).stem
    return sanitize_archive_name(stem, default="image")


def assign_entry_names(items: list[tuple[str, str]], extension: str) -> list[str]:
    """Give each ``(item_id, source_name)`` a unique file name, preserving order.

    The first source with a given stem keeps it; later ones become
    ``<stem>-<item_id>``.
    """
    extension = extension.lstrip(".")
    taken: set[str] = set()
    names = []
    for item_id, source_name in items:
        stem = entry_stem(source_name)
        candidate = f"{stem}.{extension}"
        if candidate.casefold() in taken:
            candidate = f"{stem}-{item_id}.{extension}"
            counter = 1
            while candidate.casefold() in taken:
                candidate = f"{stem}-{item_id}-{counter:02d}.{extension}"
                counter += 1
        taken.add(candidate.casefold())
        names.append(candidate)
    return names


# =============================================================================
# Package writer
# =============================================================================
class ZipPackageWriter:
    """Serializes ordered ``(name, bytes)`` entries into a zip archive."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self.compression = compression

    def build(self, entries: list[tuple[str, bytes]]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", self.compression) as zf:
            # Explicit directory entries so the folder survives even when empty
            folders = sorted({name.rsplit("/", 1)[0] + "/" for name, _ in entries if "/" in name})
            for folder in folders:
                zf.writestr(folder, b"")
            for name, data in entries:
                if name not in folders:
                    zf.writestr(name, data)
        return buffer.getvalue()


class ArchivePackager:
    def __init__(self, writer=None):
        self.writer = writer or ZipPackageWriter()

    def collect_entries(
        self,
        registry: ItemRegistry,
        archive_name: str,
        extension: str | None = None,
    ) -> list[tuple[str, bytes]]:
        """Name and gather the encoded bytes of every Completed item."""
        folder = sanitize_archive_name(archive_name)
        completed = registry.completed()
        if extension is None:
            extension = registry.policy.output_format.extension
        else:
            extension = _normalize_extension(extension)
        names = assign_entry_names([(view.id, view.name) for view, _ in completed], extension)
        return [(f"{folder}/{name}", result.data) for name, (_, result) in zip(names, completed)]

    def build_archive(
        self,
        registry: ItemRegistry,
        archive_name: str,
        extension: str | None = None,
    ) -> bytes:
        """Build the archive for all Completed items.

        Zero Completed items yields an archive holding only the folder; callers
        that want to refuse that should check first.  Raises ArchiveError if
        the writer fails.
        """
        entries = self.collect_entries(registry, archive_name, extension)
        folder = sanitize_archive_name(archive_name)
        try:
            blob = self.writer.build(entries or [(f"{folder}/", b"")])
        except Exception as exc:
            raise ArchiveError(f"could not build archive '{folder}': {exc}") from exc
        logger.info("Built archive '%s' with %d entr%s (%d bytes)",
                    folder, len(entries), "y" if len(entries) == 1 else "ies", len(blob))
        return blob


def _normalize_extension(extension: str) -> str:
    """Accept 'jpg', '.JPG', 'jpeg' or an OutputFormat; return the archive extension."""
    try:
        return OutputFormat.parse(extension).extension
    except ValueError:
        return str(extension).strip().lstrip(".").lower()
