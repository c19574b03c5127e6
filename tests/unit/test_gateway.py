"""
Unit tests for the object access gateway.

Covers path resolution, authorization, finalize and the download
responses (full, ranged, unsatisfiable), including backend failures
before and after the first byte.
"""

from uuid import uuid4

import pytest

from src.core.errors import AuthError, ConflictError, NotFoundError, StorageError
from src.core.storage import AccessMode, AclPolicy, AclPolicyStore, ObjectAccessGateway, ObjectLocation, Visibility
from src.core.storage.acl import ACL_POLICY_METADATA_KEY
from src.infrastructure.storage.client import MockStorageClient

CONTENT = b"0123456789abcdefghij"  # 20 bytes


def upload(storage, gateway, owner="alice", visibility=Visibility.PRIVATE, data=CONTENT):
    """Store an object with a policy already attached and return its id."""
    object_id = str(uuid4())
    policy = AclPolicy(owner=owner, visibility=visibility)
    storage.put_object(
        gateway.location_for(object_id),
        data,
        content_type="video/mp4",
        metadata={ACL_POLICY_METADATA_KEY: policy.to_json()},
    )
    return object_id


def drain(response) -> bytes:
    return b"".join(response.body)


class TestResolve:

    def test_resolves_existing_object(self, storage, gateway):
        object_id = upload(storage, gateway)

        stored = gateway.resolve(f"/objects/{object_id}")

        assert stored.id == object_id
        assert stored.size == len(CONTENT)
        assert stored.content_type == "video/mp4"
        assert stored.policy == AclPolicy("alice", Visibility.PRIVATE)

    @pytest.mark.parametrize("path", [
        "/objects/not-a-uuid",
        "/objects/../private/uploads/x",
        "/uploads/3f2b8c1e-1d2a-4c3b-9a8b-0123456789ab",
        "/objects/3f2b8c1e-1d2a-1c3b-9a8b-0123456789ab",  # uuid1, not uuid4
        "/objects/3f2b8c1e-1d2a-4c3b-9a8b-0123456789ab\n",
        "",
    ])
    def test_foreign_paths_are_not_found(self, gateway, path):
        with pytest.raises(NotFoundError):
            gateway.resolve(path)

    def test_strict_missing_object_is_not_found(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.resolve(f"/objects/{uuid4()}")

    def test_optimistic_does_not_touch_backend(self, gateway):
        object_id = str(uuid4())
        stored = gateway.resolve(f"/objects/{object_id}", mode=AccessMode.OPTIMISTIC)
        assert stored.location.key == f"private/uploads/{object_id}"


class TestAuthorize:

    def test_private_object_refused_for_other_user(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        gateway.authorize(stored, "alice")
        with pytest.raises(AuthError):
            gateway.authorize(stored, "bob")
        with pytest.raises(AuthError):
            gateway.authorize(stored, None)

    def test_unfinalized_object_is_unreadable(self, storage, gateway):
        object_id = str(uuid4())
        storage.put_object(gateway.location_for(object_id), CONTENT)
        stored = gateway.resolve(f"/objects/{object_id}")

        assert not gateway.can_access(stored, "alice")


class TestFinalize:

    def test_attaches_policy(self, storage, gateway):
        object_id = str(uuid4())
        storage.put_object(gateway.location_for(object_id), CONTENT, content_type="video/mp4")

        gateway.finalize(object_id, "alice", Visibility.PUBLIC)

        stored = gateway.resolve(f"/objects/{object_id}")
        assert stored.policy == AclPolicy("alice", Visibility.PUBLIC)
        assert stored.content_type == "video/mp4"

    def test_repeating_the_same_finalize_is_a_no_op(self, storage, gateway):
        object_id = upload(storage, gateway, owner="alice", visibility=Visibility.PRIVATE)

        stored = gateway.finalize(object_id, "alice", Visibility.PRIVATE)

        assert stored.policy == AclPolicy("alice", Visibility.PRIVATE)

    def test_visibility_cannot_change_after_finalize(self, storage, gateway):
        object_id = upload(storage, gateway, owner="alice", visibility=Visibility.PRIVATE)

        with pytest.raises(ConflictError) as exc_info:
            gateway.finalize(object_id, "alice", Visibility.PUBLIC)

        assert exc_info.value.code == "ALREADY_FINALIZED"
        assert not gateway.resolve(f"/objects/{object_id}").is_public

    def test_losing_a_concurrent_finalize_is_refused(self, gateway_config):
        class RacingWriter(MockStorageClient):
            """Another finalize lands right after ours."""

            def update_metadata(self, location, updates):
                super().update_metadata(location, updates)
                rival = AclPolicy("mallory", Visibility.PUBLIC)
                super().update_metadata(location, {ACL_POLICY_METADATA_KEY: rival.to_json()})

        storage = RacingWriter()
        gateway = ObjectAccessGateway(storage, AclPolicyStore(storage), gateway_config)
        object_id = str(uuid4())
        storage.put_object(gateway.location_for(object_id), CONTENT, content_type="video/mp4")

        with pytest.raises(AuthError):
            gateway.finalize(object_id, "alice", Visibility.PRIVATE)

    def test_other_owner_is_refused(self, storage, gateway):
        object_id = upload(storage, gateway, owner="alice")

        with pytest.raises(AuthError):
            gateway.finalize(object_id, "mallory", Visibility.PUBLIC)
        assert gateway.resolve(f"/objects/{object_id}").policy.owner == "alice"

    def test_finalize_of_missing_object_is_storage_error(self, gateway):
        with pytest.raises(StorageError):
            gateway.finalize(str(uuid4()), "alice", Visibility.PUBLIC)

    def test_finalize_of_invalid_id_is_not_found(self, gateway):
        with pytest.raises(NotFoundError):
            gateway.finalize("nope", "alice", Visibility.PUBLIC)


class TestDownload:

    def test_full_private_body(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        response = gateway.download(stored)

        assert response.status_code == 200
        assert response.headers["Content-Length"] == "20"
        assert response.headers["Content-Type"] == "video/mp4"
        assert response.headers["Accept-Ranges"] == "bytes"
        assert response.headers["Cache-Control"] == "private, max-age=3600"
        assert drain(response) == CONTENT

    def test_full_public_body_is_immutable(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway, visibility=Visibility.PUBLIC)}")

        response = gateway.download(stored)

        assert response.headers["Cache-Control"] == "public, max-age=86400, immutable"

    def test_range(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway, visibility=Visibility.PUBLIC)}")

        response = gateway.download(stored, "bytes=5-12")

        assert response.status_code == 206
        assert response.headers["Content-Range"] == "bytes 5-12/20"
        assert response.headers["Content-Length"] == "8"
        assert response.headers["Cache-Control"] == "public, max-age=86400"
        assert drain(response) == CONTENT[5:13]

    def test_open_range_and_clamping(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        assert drain(gateway.download(stored, "bytes=15-")) == CONTENT[15:]
        clamped = gateway.download(stored, "bytes=15-100")
        assert clamped.headers["Content-Range"] == "bytes 15-19/20"
        assert drain(clamped) == CONTENT[15:]

    @pytest.mark.parametrize("header", ["bytes=20-", "bytes=9-3", "bytes=-5", "bytes=0-1,4-5"])
    def test_unsatisfiable_range(self, storage, gateway, header):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        response = gateway.download(stored, header)

        assert response.status_code == 416
        assert response.headers["Content-Range"] == "bytes */20"
        assert response.body is None

    def test_head_never_reads_body(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        response = gateway.head(stored)

        assert response.status_code == 200
        assert response.headers["Content-Length"] == "20"
        assert response.body is None

    def test_failure_before_first_byte_is_storage_error(self, acl_store, gateway_config):
        class FailingOpen(MockStorageClient):
            def open_stream(self, location, start=None, end=None, chunk_size=64 * 1024):
                raise ConnectionError("backend unreachable")

        storage = FailingOpen()
        gateway = ObjectAccessGateway(storage, acl_store, gateway_config)
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        with pytest.raises(StorageError):
            gateway.download(stored)

    def test_failure_mid_stream_is_reraised_and_stream_closed(self, acl_store, gateway_config):
        closed = []

        class FlakyStream(MockStorageClient):
            def open_stream(self, location, start=None, end=None, chunk_size=64 * 1024):
                try:
                    yield b"abcd"
                    raise ConnectionResetError("peer went away")
                finally:
                    closed.append(True)

        storage = FlakyStream()
        gateway = ObjectAccessGateway(storage, acl_store, gateway_config)
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        response = gateway.download(stored)
        body = iter(response.body)

        assert response.status_code == 200
        assert next(body) == b"abcd"
        with pytest.raises(ConnectionResetError):
            next(body)
        assert closed == [True]

    def test_streams_in_bounded_chunks(self, storage, gateway):
        stored = gateway.resolve(f"/objects/{upload(storage, gateway)}")

        chunks = list(gateway.download(stored).body)

        assert max(len(chunk) for chunk in chunks) <= 4
        assert b"".join(chunks) == CONTENT


class TestSearchPublic:

    def test_finds_first_matching_prefix(self, storage, gateway):
        storage.put_object(ObjectLocation("busker-test", "assets/logo.png"), b"png", content_type="image/png")

        stored = gateway.search_public("logo.png")

        assert stored is not None
        assert stored.is_public
        assert stored.location.key == "assets/logo.png"

    def test_missing_or_escaping_paths(self, storage, gateway):
        storage.put_object(ObjectLocation("busker-test", "private/secret"), b"x")

        assert gateway.search_public("nothing-here.png") is None
        assert gateway.search_public("../private/secret") is None
        assert gateway.search_public("") is None
