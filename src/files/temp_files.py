"""
Staged upload storage.

Files live in one directory as `<fileId>_<originalName>`, so the original
name and size can be recovered from the file id alone without a registry.
"""
import glob
import logging
import tempfile
import uuid
from pathlib import Path
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_FOLDER_NAME = "fhir_uploads"


def staged_file_name(file_id: str, original_name: str) -> str:
    """`<fileId>_<name>`, with any directory part of the name dropped."""
    return f"{file_id}_{Path(original_name).name}"


class TempFileManager:
    """Locates and stores staged uploads by file id."""

    def __init__(self, temp_dir: Union[str, Path, None] = None):
        if temp_dir:
            self.temp_dir = Path(temp_dir)
        else:
            self.temp_dir = Path(tempfile.gettempdir()) / DEFAULT_FOLDER_NAME
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def _find(self, file_id: str) -> Optional[Path]:
        prefix = f"{file_id}_"
        for candidate in self.temp_dir.glob(f"{glob.escape(file_id)}_*"):
            if candidate.is_file() and candidate.name.startswith(prefix):
                return candidate
        return None

    def exists(self, file_id: str) -> bool:
        return bool(file_id) and self._find(file_id) is not None

    def path(self, file_id: str, original_name: str) -> Path:
        return self.temp_dir / staged_file_name(file_id, original_name)

    def info(self, file_id: str) -> Tuple[str, int]:
        """
        (original_name, size_in_bytes) of a staged file.

        Returns ("", 0) when the file does not exist.
        """
        staged = self._find(file_id) if file_id else None
        if staged is None:
            return "", 0
        return staged.name[len(file_id) + 1:], staged.stat().st_size

    def save(self, content: bytes, original_name: str) -> str:
        """Stage content under a new file id and return the id."""
        file_id = str(uuid.uuid4())
        target = self.path(file_id, original_name)
        target.write_bytes(content)
        logger.info("Staged file %s (%d bytes)", target.name, len(content), extra={"file_id": file_id})
        return file_id
