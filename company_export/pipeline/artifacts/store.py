"""File-backed artifact store for per-organization export namespaces.

Every organization gets one namespace directory under
``{storage_root}/exports/``, named ``{id}_{slug}`` where the slug is a
lowercase ASCII rendition of the organization name. Artifacts inside a
namespace are addressed by a sanitized sub-key, so free-text values such as
invoice numbers can never introduce path separators, parent references or
characters that are invalid in filenames.

Writes go to a temporary file in the target directory and are moved into
place with ``os.replace``, so a reader never sees a half-written document
and re-running an export overwrites the previous artifact.

Examples
--------
>>> slugify("Acme & Co. / Skis!")
'acme-co-skis'
>>> namespace_name(42, "Acme & Co. / Skis!")
'42_acme-co-skis'
>>> sanitize_sub_key("INV/001")
'INV-001'
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import unicodedata
from pathlib import Path

from company_export.config import EMPTY_SLUG_FALLBACK, EXPORTS_SUBDIR
from company_export.exceptions import ArtifactWriteFailure

logger = logging.getLogger(__name__)

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
_SUB_KEY_INVALID = re.compile(r"[^A-Za-z0-9._-]+")


def slugify(value: str) -> str:
    """Return a lowercase, hyphen-separated ASCII slug for ``value``.

    Accented characters are transliterated to their ASCII base letter, ``@``
    becomes ``at``, and every other run of non-alphanumerics collapses into a
    single hyphen. Leading and trailing hyphens are removed.
    """
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    ascii_value = ascii_value.replace("@", "-at-").lower()
    return _SLUG_INVALID.sub("-", ascii_value).strip("-")


def namespace_name(organization_id: int, organization_name: str) -> str:
    """Return the namespace directory name for an organization.

    The numeric id prefix keeps names unique even when two organizations
    slugify to the same text or when the name has no usable characters.
    """
    slug = slugify(organization_name) or EMPTY_SLUG_FALLBACK
    return f"{int(organization_id)}_{slug}"


def sanitize_sub_key(value: str) -> str:
    """Make a free-text value safe to use as a single filename component.

    Runs of characters outside ``[A-Za-z0-9._-]`` (including ``/`` and
    ``\\``) become one hyphen, and leading dots and hyphens are stripped so
    the result can be neither hidden nor a ``.``/``..`` reference. Returns an
    empty string when nothing usable remains.
    """
    cleaned = _SUB_KEY_INVALID.sub("-", value or "")
    cleaned = re.sub(r"\.{2,}", ".", cleaned)
    return cleaned.strip(".-")


class ArtifactStore:
    """Maps (organization, artifact name) to paths under a storage root.

    Parameters
    ----------
    storage_root : Path
        Logical root of the file-backed storage. Namespaces are created
        below ``storage_root / EXPORTS_SUBDIR``.
    """

    def __init__(self, storage_root: Path) -> None:
        self.storage_root = Path(storage_root)
        self.exports_root = self.storage_root / EXPORTS_SUBDIR

    def ensure_namespace(self, organization_id: int, organization_name: str) -> Path:
        """Create (if absent) and return the organization's namespace directory.

        Safe to call repeatedly and from concurrent workers.

        Raises
        ------
        ArtifactWriteFailure
            If the directory cannot be created.
        """
        path = self.exports_root / namespace_name(organization_id, organization_name)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise ArtifactWriteFailure(
                f"Cannot create namespace {path}: {error}",
                context={"org_id": organization_id, "path": str(path)},
                transient=False,
            ) from error
        return path

    def artifact_path(self, namespace: Path, filename: str) -> Path:
        """Return the path of ``filename`` inside ``namespace``.

        Raises
        ------
        ValueError
            If ``filename`` is not a single, plain path component.
        """
        candidate = namespace / filename
        if (
            not filename
            or filename in (".", "..")
            or Path(filename).name != filename
            or "\\" in filename
            or candidate.resolve().parent != namespace.resolve()
        ):
            raise ValueError(f"Unsafe artifact filename: {filename!r}")
        return candidate

    def write_artifact(self, namespace: Path, filename: str, data: bytes) -> Path:
        """Atomically write ``data`` to ``filename`` inside ``namespace``.

        Returns
        -------
        Path
            The final artifact path.

        Raises
        ------
        ArtifactWriteFailure
            If the temporary file cannot be written or moved into place.
        """
        target = self.artifact_path(namespace, filename)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "wb", dir=namespace, prefix=".tmp-", suffix=".part", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, target)
        except OSError as error:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ArtifactWriteFailure(
                f"Cannot write artifact {target}: {error}",
                context={"path": str(target)},
            ) from error
        logger.debug("Wrote %d bytes to %s", len(data), target)
        return target
