import hashlib
import logging
from dataclasses import replace

import pytest

from jamf_package_updater.errors import FailureKind, JamfApiError
from jamf_package_updater.models import PackageRecord

PAYLOAD_BYTES = b"App 2.3.0 installer payload"
PAYLOAD_DIGEST = hashlib.md5(PAYLOAD_BYTES).hexdigest()

MUTATING_CALLS = {"updateMetadata", "uploadPayload", "triggerRefresh"}


def retryable(message="HTTP 503: Service Unavailable"):
    return JamfApiError(message, FailureKind.RETRYABLE, 503)


def fatal(message="HTTP 400: Bad Request"):
    return JamfApiError(message, FailureKind.FATAL, 400)


class FakeJamfClient:
    """Records every call and replays scripted responses."""

    def __init__(
        self,
        record=None,
        polledDigests=None,
        uploadResults=None,
        policies=None,
        policyDetails=None,
        listError=None,
        metadataError=None,
        refreshError=None,
        polledId=None,
    ):
        self.record = record
        self.polledDigests = list(polledDigests or [])
        self.uploadResults = list(uploadResults or [])
        self.policies = list(policies or [])
        self.policyDetails = dict(policyDetails or {})
        self.listError = listError
        self.metadataError = metadataError
        self.refreshError = refreshError
        self.polledId = polledId
        self.calls = []

    @property
    def callNames(self):
        return [name for name, *_ in self.calls]

    @property
    def mutatingCalls(self):
        return [name for name in self.callNames if name in MUTATING_CALLS]

    def lookupPackage(self, name):
        self.calls.append(("lookupPackage", name))
        return self.record

    def getPackage(self, packageId):
        self.calls.append(("getPackage", packageId))
        digest = self.polledDigests.pop(0) if self.polledDigests else self.record.remoteDigest
        if isinstance(digest, Exception):
            raise digest
        # A dict replays several checksum fields at once
        changes = digest if isinstance(digest, dict) else {"remoteDigest": digest}
        return replace(self.record, id=self.polledId or self.record.id, **changes)

    def updateMetadata(self, packageId, fields, current=None):
        self.calls.append(("updateMetadata", packageId, fields, current))
        if self.metadataError:
            raise self.metadataError

    def uploadPayload(self, packageId, path):
        self.calls.append(("uploadPayload", packageId, path))
        result = self.uploadResults.pop(0) if self.uploadResults else None
        if isinstance(result, BaseException):
            raise result

    def triggerRefresh(self, packageId):
        self.calls.append(("triggerRefresh", packageId))
        if self.refreshError:
            raise self.refreshError

    def listPolicies(self):
        self.calls.append(("listPolicies",))
        if self.listError:
            raise self.listError
        return list(self.policies)

    def getPolicy(self, policyId):
        self.calls.append(("getPolicy", policyId))
        detail = self.policyDetails.get(policyId, {})
        if isinstance(detail, Exception):
            raise detail
        return detail


def policyWith(*packageNames):
    return {
        "general": {"name": "ignored"},
        "package_configuration": {
            "packages": [{"id": i, "name": n, "action": "Install"} for i, n in enumerate(packageNames, 1)]
        },
    }


@pytest.fixture
def payloadFile(tmp_path):
    path = tmp_path / "App-2.3.0.pkg"
    path.write_bytes(PAYLOAD_BYTES)
    return path


@pytest.fixture
def packageRecord():
    raw = {
        "id": "42",
        "packageName": "App-2.3.0",
        "fileName": "App-2.2.0.pkg",
        "categoryId": "-1",
        "priority": 10,
        "rebootRequired": False,
        "md5": "old999",
    }
    return PackageRecord(
        id="42",
        name="App-2.3.0",
        filename="App-2.2.0.pkg",
        remoteDigest="old999",
        size=1024,
        raw=raw,
    )


@pytest.fixture
def makeClient(packageRecord):
    def _makeClient(**kwargs):
        kwargs.setdefault("record", packageRecord)
        return FakeJamfClient(**kwargs)

    return _makeClient


@pytest.fixture
def sleeps():
    """Sleep stand-in that records requested delays."""
    recorded = []

    def _sleep(seconds):
        recorded.append(seconds)

    _sleep.recorded = recorded
    return _sleep


@pytest.fixture
def restoreLogging():
    rootLogger = logging.getLogger()
    jamfLogger = logging.getLogger("jamf_pro_sdk")
    saved = (rootLogger.handlers[:], rootLogger.level, jamfLogger.handlers[:], jamfLogger.level, jamfLogger.propagate)
    yield
    for handler in rootLogger.handlers + jamfLogger.handlers:
        if handler not in saved[0]:
            handler.close()
    rootLogger.handlers, rootLogger.level = saved[0], saved[1]
    jamfLogger.handlers, jamfLogger.level, jamfLogger.propagate = saved[2], saved[3], saved[4]
