"""Tests for the in-memory and on-disk definition stores."""
import json
import threading

import pytest

from reuseci.dsl import bundle, definition, job, sh
from reuseci.errors import NotFoundError, VersionImmutabilityError
from reuseci.model import Reference
from reuseci.serialize import content_digest
from reuseci.store import LocalDefinitionStore, MemoryDefinitionStore, publish_all


def _pipeline(cmd="echo one", version="v1"):
    return definition(f"acme/ci@{version}", job("build", sh("build", cmd)))


@pytest.fixture(params=["memory", "local"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryDefinitionStore()
    return LocalDefinitionStore(tmp_path / "store")


def test_publish_returns_content_digest(any_store):
    item = _pipeline()
    assert any_store.publish(item) == content_digest(item)


def test_publish_same_content_is_idempotent(any_store):
    first = any_store.publish(_pipeline())
    assert any_store.publish(_pipeline()) == first


def test_republish_different_content_rejected(any_store):
    any_store.publish(_pipeline("echo one"))
    with pytest.raises(VersionImmutabilityError) as exc:
        any_store.publish(_pipeline("echo two"))
    assert exc.value.reference == "acme/ci@v1"
    assert exc.value.details["expected_digest"] == content_digest(_pipeline("echo one"))
    assert exc.value.details["actual_digest"] == content_digest(_pipeline("echo two"))
    # the original content is still served
    assert any_store.fetch(Reference.parse("acme/ci@v1")).item == _pipeline("echo one")


def test_fetch_missing(any_store):
    with pytest.raises(NotFoundError) as exc:
        any_store.fetch(Reference.parse("acme/nothing@v1"))
    assert exc.value.reference == "acme/nothing@v1"


def test_versions_and_contains(any_store):
    publish_all(any_store, [_pipeline(version="v1"), _pipeline(version="v2"), bundle("acme/b@v1", sh("x", "ok"))])
    assert any_store.versions("acme/ci") == ["v1", "v2"]
    assert any_store.versions("acme/unknown") == []
    assert Reference.parse("acme/ci@v2") in any_store
    assert Reference.parse("acme/ci@v3") not in any_store


def test_local_store_layout(tmp_path):
    store = LocalDefinitionStore(tmp_path)
    digest = store.publish(_pipeline())
    path = tmp_path / "acme" / "ci" / "v1.json"
    assert path.is_file()
    raw = json.loads(path.read_text())
    assert raw["digest"] == digest
    assert raw["document"]["kind"] == "definition"
    assert not list(tmp_path.rglob("*.tmp"))


def test_local_store_survives_reopen(tmp_path):
    LocalDefinitionStore(tmp_path).publish(_pipeline())
    reopened = LocalDefinitionStore(tmp_path)
    published = reopened.fetch(Reference.parse("acme/ci@v1"))
    assert published.item == _pipeline()
    with pytest.raises(VersionImmutabilityError):
        reopened.publish(_pipeline("echo changed"))


def test_local_stores_sharing_a_root_never_both_claim_a_tag(tmp_path):
    # two store objects stand in for two publishing processes
    for attempt in range(50):
        root = tmp_path / str(attempt)
        stores = [LocalDefinitionStore(root), LocalDefinitionStore(root)]
        items = [_pipeline("echo one"), _pipeline("echo two")]
        barrier = threading.Barrier(2)
        outcomes = [None, None]

        def publish(i):
            barrier.wait()
            try:
                outcomes[i] = stores[i].publish(items[i])
            except VersionImmutabilityError as e:
                outcomes[i] = e

        threads = [threading.Thread(target=publish, args=(i,)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [i for i, o in enumerate(outcomes) if isinstance(o, str)]
        assert len(winners) == 1, f"attempt {attempt}: {outcomes}"
        stored = LocalDefinitionStore(root).fetch(Reference.parse("acme/ci@v1"))
        assert stored.digest == content_digest(items[winners[0]])
        assert not list(root.rglob("*.tmp"))
