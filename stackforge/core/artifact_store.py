"""Revision-addressed template artifact store with a mutable "latest" alias.

Key layout (plain object keys in any ``BlobStore``)::

    {prefix}/{revision}/{template_name}   immutable once written
    {prefix}/latest/{template_name}       repointed on every publish

A revision key is never overwritten with different content. The alias is
reassigned on publish but never deleted, so a stack's running definition can
always be traced back to the exact revision it was deployed from.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stackforge.backends.base import BlobStore
from stackforge.core.errors import ArtifactIntegrityError, ArtifactNotFound
from stackforge.core.hasher import compute_revision, compute_tree_revision, sha256_hex
from stackforge.models.artifacts import TemplateArtifact
from stackforge.models.stacks import TemplateArtifactRef

logger = logging.getLogger(__name__)

LATEST_ALIAS = "latest"

_TEMPLATE_SUFFIXES = (".yml", ".yaml", ".json", ".template")


class TemplateArtifactStore:
    """Publishes and locates stack template bundles.

    Parameters
    ----------
    blob_store:
        Backing object storage (local directory, S3 bucket, in-memory).
    prefix:
        Key prefix under which all templates live.
    """

    def __init__(self, blob_store: BlobStore, prefix: str = "templates") -> None:
        self._blobs = blob_store
        self._prefix = prefix.strip("/")

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def revision_key(self, template_name: str, revision: str) -> str:
        if revision == LATEST_ALIAS:
            raise ValueError(f"{LATEST_ALIAS!r} is reserved for the mutable alias")
        return f"{self._prefix}/{revision}/{template_name}"

    def alias_key(self, template_name: str, alias: str = LATEST_ALIAS) -> str:
        return f"{self._prefix}/{alias}/{template_name}"

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self,
        template_name: str,
        body: bytes,
        *,
        revision: str | None = None,
    ) -> TemplateArtifact:
        """Write *body* under its revision key and repoint the alias.

        Publishing identical content under an existing revision is a no-op
        for the revision key. Different content under an existing revision
        raises ``ArtifactIntegrityError``.
        """
        revision = revision or compute_revision(body)
        rev_key = self.revision_key(template_name, revision)
        latest_key = self.alias_key(template_name)
        digest = sha256_hex(body)

        if self._blobs.exists(rev_key):
            existing = self._blobs.get(rev_key)
            if sha256_hex(existing) != digest:
                raise ArtifactIntegrityError(
                    f"Revision {revision} of {template_name!r} is already published "
                    f"with different content"
                )
            logger.debug("Revision %s of %s already published", revision, template_name)
        else:
            self._blobs.put(rev_key, body)
            logger.info("Published %s at revision %s", template_name, revision)

        self._blobs.put(latest_key, body)

        return TemplateArtifact(
            template_name=template_name,
            revision=revision,
            revision_key=rev_key,
            latest_key=latest_key,
            sha256=digest,
            size_bytes=len(body),
            url=self._blobs.url_for(rev_key),
        )

    def publish_bundle(
        self, source: str | Path, *, revision: str | None = None
    ) -> list[TemplateArtifact]:
        """Publish every template in a source directory under one revision.

        The revision defaults to the hash of the whole tree, so nested
        templates that reference each other share a revision.
        """
        root = Path(source)
        if not root.exists():
            raise ArtifactNotFound(f"Template source not found: {root}")
        revision = revision or compute_tree_revision(root)

        if root.is_file():
            return [self.publish(root.name, root.read_bytes(), revision=revision)]

        artifacts: list[TemplateArtifact] = []
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.suffix not in _TEMPLATE_SUFFIXES:
                continue
            name = path.relative_to(root).as_posix()
            artifacts.append(self.publish(name, path.read_bytes(), revision=revision))
        return artifacts

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def has_revision(self, template_name: str, revision: str) -> bool:
        return self._blobs.exists(self.revision_key(template_name, revision))

    def get_body(self, template_name: str, revision: str | None = None) -> bytes:
        key = (
            self.revision_key(template_name, revision)
            if revision
            else self.alias_key(template_name)
        )
        if not self._blobs.exists(key):
            raise ArtifactNotFound(f"No template at {key}")
        return self._blobs.get(key)

    def url_for(self, ref: TemplateArtifactRef, revision: str | None = None) -> str:
        """URL of the template a stack should be deployed from.

        An explicit revision (argument or ``ref.revision``) must already be
        published; otherwise the alias is used.
        """
        pinned = revision or ref.revision
        if pinned:
            key = self.revision_key(ref.template_name, pinned)
        else:
            key = self.alias_key(ref.template_name, ref.alias)
        if not self._blobs.exists(key):
            raise ArtifactNotFound(f"No template at {key}")
        return self._blobs.url_for(key)
