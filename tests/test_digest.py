import hashlib

import pytest

from jamf_package_updater import models
from jamf_package_updater.digest import (
    DigestComparison,
    DigestSnapshot,
    compareDigests,
    computeDigest,
    isPlaceholderDigest,
)
from jamf_package_updater.errors import PayloadMissing, PayloadUnreadable, UnsupportedFormat
from jamf_package_updater.models import LocalPayload

from conftest import PAYLOAD_BYTES, PAYLOAD_DIGEST


def test_compute_digest_reads_in_chunks(tmp_path):
    content = bytes(range(256)) * 40
    path = tmp_path / "Big.dmg"
    path.write_bytes(content)

    assert computeDigest(path, chunkSize=7) == hashlib.md5(content).hexdigest()


def test_compute_digest_of_empty_file(tmp_path):
    path = tmp_path / "Empty.pkg"
    path.write_bytes(b"")

    assert computeDigest(path) == hashlib.md5(b"").hexdigest()


@pytest.mark.parametrize(
    "local, remote, expected",
    [
        ("abc123", "abc123", DigestComparison.IDENTICAL),
        ("abc123", "ABC123", DigestComparison.IDENTICAL),
        ("abc123", " abc123\n", DigestComparison.IDENTICAL),
        ("abc123", "old999", DigestComparison.DIVERGENT),
        ("abc123", "", DigestComparison.DIVERGENT),
        ("abc123", None, DigestComparison.DIVERGENT),
        ("", "", DigestComparison.DIVERGENT),
    ],
)
def test_compare_digests(local, remote, expected):
    assert compareDigests(local, remote) is expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, True),
        ("", True),
        ("   ", True),
        ("Unknown", True),
        ("pending", True),
        ("00000000000000000000000000000000", True),
        ("d41d8cd98f00b204e9800998ecf8427e", False),
        ("old999", False),
    ],
)
def test_is_placeholder_digest(value, expected):
    assert isPlaceholderDigest(value) is expected


class TestLocalPayload:
    def test_accepts_pkg_and_dmg_case_insensitively(self, tmp_path):
        for name in ("App.pkg", "App.PKG", "Disk.dmg"):
            path = tmp_path / name
            path.write_bytes(b"x")
            assert LocalPayload.fromPath(path).format == name.rsplit(".", 1)[1].lower()

    def test_rejects_other_extensions_before_checking_existence(self, tmp_path):
        with pytest.raises(UnsupportedFormat) as excinfo:
            LocalPayload.fromPath(tmp_path / "App.zip")

        assert ".zip" in str(excinfo.value)
        assert excinfo.value.exitCode == 3

    def test_rejects_missing_file(self, tmp_path):
        with pytest.raises(PayloadMissing):
            LocalPayload.fromPath(tmp_path / "Missing.pkg")

    def test_exposes_file_details(self, payloadFile):
        payload = LocalPayload.fromPath(payloadFile)

        assert payload.filename == "App-2.3.0.pkg"
        assert payload.stem == "App-2.3.0"
        assert payload.size == len(PAYLOAD_BYTES)

    def test_local_digest_is_computed_once(self, payloadFile, monkeypatch):
        calls = []

        def _computeDigest(path):
            calls.append(path)
            return PAYLOAD_DIGEST

        monkeypatch.setattr(models, "computeDigest", _computeDigest)
        payload = LocalPayload.fromPath(payloadFile)

        assert payload.localDigest == PAYLOAD_DIGEST
        assert payload.localDigest == PAYLOAD_DIGEST
        assert len(calls) == 1

    def test_payload_removed_after_validation_is_reported(self, payloadFile):
        payload = LocalPayload.fromPath(payloadFile)
        payloadFile.unlink()

        with pytest.raises(PayloadUnreadable) as excinfo:
            payload.size

        assert excinfo.value.exitCode == 3

    def test_read_error_while_hashing_is_reported(self, payloadFile, monkeypatch):
        def _computeDigest(path):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(models, "computeDigest", _computeDigest)
        payload = LocalPayload.fromPath(payloadFile)

        with pytest.raises(PayloadUnreadable) as excinfo:
            payload.localDigest

        assert "Permission denied" in str(excinfo.value)


class TestDigestSnapshot:
    def test_sha512_only_change_is_detected(self):
        baseline = DigestSnapshot(hashType="SHA_512", hashValue="aa" * 64)
        current = DigestSnapshot(hashType="SHA_512", hashValue="bb" * 64)

        assert current.changedFields(baseline) == ["hashValue"]
        assert current.displayValue() == "SHA_512 " + "bb" * 64

    def test_md5_change_is_detected_case_insensitively(self):
        baseline = DigestSnapshot(md5="ABC")

        assert not DigestSnapshot(md5="abc ").differsFrom(baseline)
        assert DigestSnapshot(md5="def").changedFields(baseline) == ["md5"]

    def test_placeholders_never_count_as_changes(self):
        baseline = DigestSnapshot(md5="abc", hashType="SHA_512", hashValue="aa")

        assert not DigestSnapshot(md5="", hashType="SHA_512", hashValue="pending").differsFrom(baseline)

    def test_hash_type_without_value_is_not_a_change(self):
        current = DigestSnapshot(hashType="SHA_512")

        assert current.isEmpty
        assert not current.differsFrom(DigestSnapshot())

    def test_record_snapshot(self, packageRecord):
        assert packageRecord.snapshot == DigestSnapshot(md5="old999")
