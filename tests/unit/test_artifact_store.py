"""Tests for TemplateArtifactStore — revision immutability, latest alias, bundles."""

from __future__ import annotations

from pathlib import Path

import pytest

from stackforge.backends.memory import InMemoryBlobStore
from stackforge.core.artifact_store import TemplateArtifactStore
from stackforge.core.errors import ArtifactIntegrityError, ArtifactNotFound
from stackforge.core.hasher import compute_revision, sha256_hex
from stackforge.models.stacks import TemplateArtifactRef


class TestPublish:
    def test_publish_writes_revision_and_alias(
        self, artifact_store: TemplateArtifactStore, blob_store: InMemoryBlobStore
    ):
        body = b"Resources: {}\n"
        artifact = artifact_store.publish("iam.yml", body, revision="r1")
        assert artifact.revision_key == "templates/r1/iam.yml"
        assert artifact.latest_key == "templates/latest/iam.yml"
        assert artifact.sha256 == sha256_hex(body)
        assert artifact.size_bytes == len(body)
        assert artifact.url == "memory://templates/r1/iam.yml"
        assert blob_store.keys() == ["templates/latest/iam.yml", "templates/r1/iam.yml"]

    def test_revision_defaults_to_content_hash(self, artifact_store: TemplateArtifactStore):
        body = b"Description: x\n"
        artifact = artifact_store.publish("x.yml", body)
        assert artifact.revision == compute_revision(body)

    def test_republishing_same_content_is_noop(self, artifact_store: TemplateArtifactStore):
        first = artifact_store.publish("iam.yml", b"same", revision="r1")
        second = artifact_store.publish("iam.yml", b"same", revision="r1")
        assert first.revision_key == second.revision_key
        assert artifact_store.get_body("iam.yml", "r1") == b"same"

    def test_different_content_under_existing_revision_rejected(
        self, artifact_store: TemplateArtifactStore
    ):
        artifact_store.publish("iam.yml", b"original", revision="r1")
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.publish("iam.yml", b"tampered", revision="r1")
        assert artifact_store.get_body("iam.yml", "r1") == b"original"

    def test_latest_alias_follows_newest_publish(self, artifact_store: TemplateArtifactStore):
        artifact_store.publish("iam.yml", b"one", revision="r1")
        artifact_store.publish("iam.yml", b"two", revision="r2")
        assert artifact_store.get_body("iam.yml") == b"two"
        assert artifact_store.get_body("iam.yml", "r1") == b"one"

    def test_latest_is_reserved(self, artifact_store: TemplateArtifactStore):
        with pytest.raises(ValueError):
            artifact_store.publish("iam.yml", b"x", revision="latest")

    def test_prefix_is_normalized(self, blob_store: InMemoryBlobStore):
        store = TemplateArtifactStore(blob_store, prefix="/cfn/")
        assert store.revision_key("a.yml", "r1") == "cfn/r1/a.yml"


class TestBundle:
    def test_bundle_shares_one_revision(self, artifact_store: TemplateArtifactStore, tmp_dir: Path):
        root = tmp_dir / "bundle"
        (root / "nested").mkdir(parents=True)
        (root / "parent.yml").write_text("Resources: {}\n")
        (root / "nested" / "child.yaml").write_text("Resources: {}\n")
        (root / "README.md").write_text("not a template")

        artifacts = artifact_store.publish_bundle(root)
        assert [a.template_name for a in artifacts] == ["nested/child.yaml", "parent.yml"]
        assert len({a.revision for a in artifacts}) == 1

    def test_bundle_revision_tracks_tree_content(
        self, artifact_store: TemplateArtifactStore, tmp_dir: Path
    ):
        root = tmp_dir / "bundle"
        root.mkdir()
        (root / "a.yml").write_text("v1")
        first = artifact_store.publish_bundle(root)[0].revision
        (root / "a.yml").write_text("v2")
        second = artifact_store.publish_bundle(root)[0].revision
        assert first != second

    def test_single_file_source(self, artifact_store: TemplateArtifactStore, tmp_dir: Path):
        path = tmp_dir / "solo.yml"
        path.write_text("Resources: {}\n")
        [artifact] = artifact_store.publish_bundle(path)
        assert artifact.template_name == "solo.yml"

    def test_missing_source(self, artifact_store: TemplateArtifactStore, tmp_dir: Path):
        with pytest.raises(ArtifactNotFound):
            artifact_store.publish_bundle(tmp_dir / "missing")


class TestLookup:
    def test_url_for_pinned_revision(self, artifact_store: TemplateArtifactStore):
        artifact_store.publish("iam.yml", b"x", revision="r1")
        ref = TemplateArtifactRef(template_name="iam.yml", revision="r1")
        assert artifact_store.url_for(ref) == "memory://templates/r1/iam.yml"

    def test_url_for_alias(self, artifact_store: TemplateArtifactStore):
        artifact_store.publish("iam.yml", b"x", revision="r1")
        ref = TemplateArtifactRef(template_name="iam.yml")
        assert artifact_store.url_for(ref) == "memory://templates/latest/iam.yml"

    def test_unpublished_revision_not_found(self, artifact_store: TemplateArtifactStore):
        ref = TemplateArtifactRef(template_name="iam.yml", revision="r9")
        with pytest.raises(ArtifactNotFound):
            artifact_store.url_for(ref)
        assert artifact_store.has_revision("iam.yml", "r9") is False
