import os
import shutil
import time
import uuid
from typing import Iterable, List, Optional

import structlog
from fastapi import UploadFile

from errors import UnexpectedError
from schemas import Attachment

logger = structlog.get_logger(__name__)


class UploadStorage:
    """Writes uploaded files to a local directory and hands back references."""

    def __init__(self, upload_dir: str):
        self.upload_dir = upload_dir

    def ensure_dir(self) -> None:
        os.makedirs(self.upload_dir, exist_ok=True)

    def _filename(self, original: str) -> str:
        name = os.path.basename(original.replace("\\", "/")) or "upload"
        # the random part keeps same-name files from one request apart
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{name}"

    def save(self, upload: UploadFile) -> Attachment:
        filename = self._filename(upload.filename or "")
        path = os.path.join(self.upload_dir, filename)
        try:
            self.ensure_dir()
            with open(path, "wb") as out:
                shutil.copyfileobj(upload.file, out)
        except OSError as exc:
            logger.error("upload_failed", path=path, error=str(exc), exc_info=True)
            raise UnexpectedError(str(exc)) from exc
        logger.info("upload_stored", path=path)
        return Attachment(path=path, filename=filename)

    def save_all(self, uploads: Optional[Iterable[UploadFile]]) -> List[Attachment]:
        # browsers send an empty part when no file was picked
        return [self.save(u) for u in uploads or [] if u is not None and u.filename]
