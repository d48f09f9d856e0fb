"""
Filesystem blob store with a public area (served over HTTP) and an archive area.

Files move public -> archive by rename only; nothing moves back.
"""
import logging
import mimetypes
import os
import time
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from blobrelay.models import FileInfo

logger = logging.getLogger(__name__)

PUBLIC = 'public'
ARCHIVED = 'archived'
SCOPES = (PUBLIC, ARCHIVED)


class BlobStoreError(OSError):
    pass


class InvalidScopeError(ValueError):
    pass


class InvalidFileNameError(ValueError):
    pass


def guess_ext(filename: Optional[str], mime: Optional[str], default_ext: str = '.bin') -> str:
    """Return extension WITH a leading dot, e.g. ".png"."""
    if filename and '.' in filename:
        ext = '.' + filename.rsplit('.', 1)[-1].strip().lower()
        if 1 < len(ext) <= 8 and ext[1:].isalnum():
            return ext
    if mime:
        ext = mimetypes.guess_extension(mime.split(';')[0].strip())
        if ext:
            return ext
    return default_ext


def parse_scopes(scope: Optional[str]) -> Tuple[str, ...]:
    """'public', 'archived' or 'all' (the default) -> tuple of scopes."""
    scope = (scope or 'all').strip().lower()
    if scope == 'all':
        return SCOPES
    if scope in SCOPES:
        return (scope,)
    raise InvalidScopeError(f'unknown scope {scope!r}')


def created_at(path: Path) -> float:
    st = path.stat()
    # st_birthtime is missing on most Linux filesystems; mtime survives rename, ctime does not
    return getattr(st, 'st_birthtime', st.st_mtime)


class BlobStore:

    def __init__(self, public_dir: Path, archive_dir: Path, url_for=None):
        self.public_dir = Path(public_dir)
        self.archive_dir = Path(archive_dir)
        self.url_for = url_for
        self.public_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def dir_for(self, scope: str) -> Path:
        if scope == PUBLIC:
            return self.public_dir
        if scope == ARCHIVED:
            return self.archive_dir
        raise InvalidScopeError(f'unknown scope {scope!r}')

    def _path(self, scope: str, name: str) -> Path:
        if not name or name in ('.', '..') or '/' in name or '\\' in name or '\x00' in name:
            raise InvalidFileNameError(f'invalid file name {name!r}')
        return self.dir_for(scope) / name

    def save(self, data: bytes, ext: str = '.bin') -> Path:
        name = f'{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}{ext}'
        path = self.public_dir / name
        try:
            path.write_bytes(data)
        except OSError as e:
            raise BlobStoreError(f'could not store {name}: {e}') from e
        logger.info("stored %s (%d bytes)", name, len(data))
        return path

    def public_file(self, name: str) -> Optional[Path]:
        path = self._path(PUBLIC, name)
        return path if path.is_file() else None

    def names(self, scope: str) -> List[str]:
        try:
            return sorted(p.name for p in self.dir_for(scope).iterdir() if p.is_file())
        except OSError as e:
            raise BlobStoreError(f'cannot list {scope} area: {e}') from e

    def list(self, scope: str) -> List[FileInfo]:
        out = []
        for name in self.names(scope):
            path = self.dir_for(scope) / name
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            out.append(FileInfo(
                name=name, scope=scope, size=st.st_size,
                created_at=getattr(st, 'st_birthtime', st.st_mtime),
                url=self.url_for(name) if scope == PUBLIC and self.url_for else None,
            ))
        return out

    def age(self, name: str, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return now - created_at(self._path(PUBLIC, name))

    def archive(self, name: str) -> Path:
        """Atomically move a public file into the archive area."""
        src = self._path(PUBLIC, name)
        dst = self._path(ARCHIVED, name)
        try:
            os.replace(src, dst)
        except OSError as e:
            raise BlobStoreError(f'could not archive {name}: {e}') from e
        return dst

    def delete(self, scope: str, name: str) -> None:
        path = self._path(scope, name)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise BlobStoreError(f'{scope}/{name} not found') from e
        except OSError as e:
            raise BlobStoreError(f'could not delete {scope}/{name}: {e}') from e

    def delete_all(self, scope: str) -> Dict[str, list]:
        deleted, errors = [], []
        for name in self.names(scope):
            try:
                self.delete(scope, name)
                deleted.append(name)
            except BlobStoreError as e:
                logger.error("delete failed for %s/%s: %s", scope, name, e)
                errors.append({'name': name, 'error': str(e)})
        return {'deleted': deleted, 'errors': errors}
