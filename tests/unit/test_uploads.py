"""
Unit tests for upload URL issuance and the mock signer.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from src.core.errors import AuthError, StorageError
from src.core.storage import UploadKind, UploadURLIssuer
from src.infrastructure.storage.client import MockStorageClient


class TestUploadURLIssuer:

    def test_grant_targets_a_fresh_private_upload_key(self, issuer):
        grant = issuer.issue(UploadKind.VIDEO, requester_id="alice")

        assert grant.location.container == "busker-test"
        assert grant.location.key == f"private/uploads/{grant.object_id}"
        assert grant.object_path == f"/objects/{grant.object_id}"
        assert grant.method == "PUT"
        assert grant.kind == UploadKind.VIDEO

    def test_grant_expires_in_fifteen_minutes(self, issuer):
        before = datetime.now(timezone.utc)
        grant = issuer.issue(UploadKind.THUMBNAIL, requester_id="alice")

        assert before + timedelta(seconds=899) <= grant.expires_at <= before + timedelta(seconds=901)
        assert not grant.is_expired()
        assert grant.is_expired(now=grant.expires_at)

    def test_every_call_gets_a_distinct_object(self, issuer):
        ids = {issuer.issue(UploadKind.VIDEO, requester_id="alice").object_id for _ in range(200)}
        assert len(ids) == 200

    def test_signing_failure_is_storage_error(self, gateway):
        class BrokenSigner(MockStorageClient):
            def generate_upload_url(self, location, expires_in):
                raise RuntimeError("signer down")

        issuer = UploadURLIssuer(BrokenSigner(), gateway)
        with pytest.raises(StorageError):
            issuer.issue(UploadKind.VIDEO, requester_id="alice")


class TestMockSignedUpload:

    def test_signed_url_writes_exactly_its_object(self, gateway):
        now = [1000.0]
        storage = MockStorageClient(clock=lambda: now[0])
        issuer = UploadURLIssuer(storage, gateway)
        grant = issuer.issue(UploadKind.VIDEO, requester_id="alice")

        location = storage.put_signed(grant.url, b"video-bytes", content_type="video/mp4")

        assert location == grant.location
        assert storage.head(grant.location).size == len(b"video-bytes")

    def test_expired_url_is_rejected(self, gateway):
        now = [1000.0]
        storage = MockStorageClient(clock=lambda: now[0])
        issuer = UploadURLIssuer(storage, gateway, ttl_seconds=900)
        grant = issuer.issue(UploadKind.VIDEO, requester_id="alice")

        now[0] += 900
        with pytest.raises(AuthError):
            storage.put_signed(grant.url, b"late")
        assert storage.head(grant.location) is None

    def test_expired_grants_are_dropped(self, gateway):
        now = [1000.0]
        storage = MockStorageClient(clock=lambda: now[0])
        issuer = UploadURLIssuer(storage, gateway, ttl_seconds=900)
        stale = issuer.issue(UploadKind.VIDEO, requester_id="alice")

        now[0] += 900
        fresh = issuer.issue(UploadKind.VIDEO, requester_id="alice")

        assert list(storage._grants) == [parse_qs(urlparse(fresh.url).query)["token"][0]]
        with pytest.raises(AuthError):
            storage.put_signed(stale.url, b"late")

    def test_unknown_url_is_rejected(self, storage):
        with pytest.raises(AuthError):
            storage.put_signed("mock://storage/b/k?token=forged", b"x")
