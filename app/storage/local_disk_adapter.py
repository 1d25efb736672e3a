import os
import tempfile
from pathlib import Path

from app.storage.base import BaseBlobStorage, candidate_paths
from app.storage.exceptions import BlobExistsError, BlobNotFoundError, StorageError


class LocalDiskAdapter(BaseBlobStorage):
    """Stores blobs as files under a root directory.

    Writes go to a temporary file in the target directory and are hard-linked
    into place, so a reader never sees a partial file and an existing file is
    never replaced.
    """

    def __init__(self, files_root: Path) -> None:
        self._files_root = files_root

    def put(self, path: str, data: bytes, content_type: str) -> str:
        _ = content_type
        for candidate in candidate_paths(path):
            target = self._resolve(candidate)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                if self._write_new(target, data):
                    return candidate
            except OSError as exc:
                raise StorageError(f"Failed to write {path}: {exc}") from exc
        raise BlobExistsError(f"No free name left for {path}")

    def get(self, location: str) -> bytes:
        target = self._resolve(location)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"File not found: {target}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {location}: {exc}") from exc

    def delete(self, location: str) -> None:
        try:
            self._resolve(location).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {location}: {exc}") from exc

    @staticmethod
    def _write_new(target: Path, data: bytes) -> bool:
        """Write *data* to *target* unless it exists; ``False`` when it does."""
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.link(tmp_name, target)
        except FileExistsError:
            return False
        finally:
            Path(tmp_name).unlink(missing_ok=True)
        return True

    def _resolve(self, location: str) -> Path:
        root = self._files_root.resolve()
        target = (root / location).resolve()
        if not target.is_relative_to(root):
            raise StorageError(f"Location escapes the storage root: {location}")
        return target
