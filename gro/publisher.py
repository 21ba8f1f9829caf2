from __future__ import annotations

import re
from dataclasses import replace

from .errors import ValidationError
from .store import DesiredStateStore


IMAGE_REF_RE = re.compile(
    r"^(?P<repo>[a-z0-9]+(?:[._\-/:][a-z0-9]+)*?)"
    r"(?::(?P<tag>[A-Za-z0-9_][A-Za-z0-9_.\-]{0,127}))?"
    r"(?:@(?P<digest>sha256:[a-f0-9]{64}))?$"
)
MUTABLE_TAGS = {"latest"}


def image_reference(repository: str, tag: str | None = None, digest: str | None = None) -> str:
    ref = repository
    if tag:
        ref += f":{tag}"
    if digest:
        ref += f"@{digest}"
    return ref


def commit_tag(repository: str, commit_sha: str, length: int = 12) -> str:
    """Unique, immutable tag for a source revision: ``repo:<short sha>``."""
    sha = commit_sha.strip().lower()
    if not re.fullmatch(r"[0-9a-f]{7,40}", sha):
        raise ValidationError(f"not a commit sha: {commit_sha!r}")
    return image_reference(repository, tag=sha[:length])


def validate_immutable(ref: str) -> None:
    m = IMAGE_REF_RE.match(ref or "")
    if not m:
        raise ValidationError(f"malformed image reference: {ref!r}")
    if m.group("digest"):
        return
    tag = m.group("tag")
    if not tag:
        raise ValidationError(f"image reference {ref!r} has no tag or digest")
    if tag in MUTABLE_TAGS:
        raise ValidationError(f"tag '{tag}' is mutable; publish a unique tag or digest")


class RevisionPublisher:
    """Turns a freshly built image into a new desired-state revision.

    Only the image changes; replica count, resources and health checks are
    carried over from the resource's current revision.
    """

    def __init__(self, store: DesiredStateStore):
        self.store = store

    def publish_image(self, resource: str, ref: str, replica_count: int | None = None) -> int:
        validate_immutable(ref)
        current = self.store.current(resource)
        if current is None:
            raise ValidationError(f"resource '{resource}' has no desired state yet")
        changes: dict = {"image_reference": ref, "revision_id": 0}
        if replica_count is not None:
            changes["replica_count"] = replica_count
        return self.store.publish(replace(current, **changes))

    def publish_commit(self, resource: str, repository: str, commit_sha: str) -> int:
        return self.publish_image(resource, commit_tag(repository, commit_sha))
