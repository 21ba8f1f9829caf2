import pytest

from gro.errors import ValidationError
from gro.publisher import RevisionPublisher, commit_tag, image_reference, validate_immutable
from gro.store import DesiredStateStore

from conftest import make_desired


def test_commit_tag_is_short_sha():
    assert commit_tag("ghcr.io/acme/web", "ABCDEF0123456789abcdef0123456789abcdef01") == "ghcr.io/acme/web:abcdef012345"
    with pytest.raises(ValidationError):
        commit_tag("web", "not-a-sha")


@pytest.mark.parametrize(
    "ref",
    [
        "web:v2",
        "ghcr.io/acme/web:abc123",
        "registry:5000/team/web:1.4.2",
        "web@sha256:" + "a" * 64,
        image_reference("web", tag="v1", digest="sha256:" + "b" * 64),
    ],
)
def test_immutable_references_accepted(ref):
    validate_immutable(ref)


@pytest.mark.parametrize("ref", ["web", "web:latest", "", "Web:v1", "web:"])
def test_mutable_or_malformed_references_rejected(ref):
    with pytest.raises(ValidationError):
        validate_immutable(ref)


def test_publish_image_only_changes_image():
    store = DesiredStateStore()
    store.publish(make_desired("web:v1", replicas=4))
    pub = RevisionPublisher(store)

    rev = pub.publish_image("web", "web:v2")
    cur = store.current("web")
    assert cur.revision_id == rev == 2
    assert cur.image_reference == "web:v2"
    assert cur.replica_count == 4
    assert cur.health_check == store.history("web")[0].health_check


def test_publish_commit_and_replica_override():
    store = DesiredStateStore()
    store.publish(make_desired("web:v1", replicas=2))
    pub = RevisionPublisher(store)
    pub.publish_commit("web", "web", "0123456789abcdef")
    assert store.current("web").image_reference == "web:0123456789ab"
    pub.publish_image("web", "web:v9", replica_count=5)
    assert store.current("web").replica_count == 5


def test_publish_image_requires_existing_resource():
    pub = RevisionPublisher(DesiredStateStore())
    with pytest.raises(ValidationError):
        pub.publish_image("web", "web:v2")
