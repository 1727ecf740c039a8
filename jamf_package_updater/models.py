"""
Data model for jamf-package-updater

Snapshots of remote state (package records, policy references) and the
ephemeral record of a single update run. Nothing in here is persisted.

----
MIT License

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.
----
"""

import enum
import functools
from dataclasses import dataclass, field
from pathlib import Path

from jamf_package_updater.digest import DigestSnapshot, computeDigest
from jamf_package_updater.errors import (
    PayloadMissing,
    PayloadUnreadable,
    ScanDegraded,
    UnsupportedFormat,
)

SUPPORTED_FORMATS = ("pkg", "dmg")


@dataclass(frozen=True)
class PackageRecord:
    """A package as Jamf Pro reported it at one point in time."""

    id: str
    name: str
    filename: str
    remoteDigest: str = ""
    size: int = None
    hashType: str = ""
    hashValue: str = ""
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def snapshot(self):
        return DigestSnapshot(self.remoteDigest, self.hashType, self.hashValue)


@dataclass
class LocalPayload:
    """The installer file to upload."""

    path: Path
    format: str

    ## Validate a local installer before anything touches the network
    @classmethod
    def fromPath(cls, path):
        """
        Builds a LocalPayload from a file path.

        Args:
            path (str or Path): Path to a .pkg or .dmg file.

        Returns:
            LocalPayload: The validated payload.

        Raises:
            UnsupportedFormat: If the extension is not .pkg or .dmg.
            PayloadMissing: If the file does not exist.
        """
        path = Path(path).expanduser()
        fileFormat = path.suffix.lstrip(".").lower()

        if fileFormat not in SUPPORTED_FORMATS:
            raise UnsupportedFormat(path)

        if not path.is_file():
            raise PayloadMissing(path)

        return cls(path=path, format=fileFormat)

    @property
    def filename(self):
        return self.path.name

    @property
    def stem(self):
        return self.path.stem

    @property
    def size(self):
        try:
            return self.path.stat().st_size
        except OSError as e:
            raise PayloadUnreadable(self.path, e) from e

    ## The file may vanish or become unreadable after validation
    @functools.cached_property
    def localDigest(self):
        try:
            return computeDigest(self.path)
        except OSError as e:
            raise PayloadUnreadable(self.path, e) from e


class MatchKind(enum.Enum):
    NAME = "name"
    FILENAME = "filename"


@dataclass(frozen=True)
class PolicyReference:
    policyId: int
    policyName: str
    matchKind: MatchKind


@dataclass(frozen=True)
class UnscannablePolicy:
    policyId: int
    policyName: str
    reason: str


@dataclass
class PolicyScanResult:
    """Policies that reference a package, plus the ones we could not read."""

    references: list = field(default_factory=list)
    unscannable: list = field(default_factory=list)
    listingError: str = None

    @property
    def degraded(self):
        return bool(self.unscannable or self.listingError)

    def warning(self):
        if not self.degraded:
            return None
        return ScanDegraded(self.unscannable, self.listingError)


class Outcome(enum.Enum):
    SKIPPED = "Skipped"
    UPDATED = "Updated"
    DRY_RUN = "DryRun"
    FAILED = "Failed"


class UpdateState(enum.Enum):
    LOOKUP_PACKAGE = "LookupPackage"
    COMPARE_DIGEST = "CompareDigest"
    SCAN_POLICIES = "ScanPolicies"
    UPDATE_METADATA = "UpdateMetadata"
    UPLOAD_PAYLOAD = "UploadPayload"
    TRIGGER_REFRESH = "TriggerRefresh"
    POLL_VERIFICATION = "PollVerification"
    DONE = "Done"


@dataclass
class UpdateAttempt:
    """
    Everything that happened during one update run.

    Owned by the orchestrator for the duration of the run and handed to the
    CLI for reporting. `payloadUploaded` is set as soon as Jamf Pro accepts
    the bytes, so a failed run still tells the operator whether the remote
    package may be mid-transition.
    """

    packageName: str
    outcome: Outcome = None
    packageId: str = None
    baselineDigest: str = None
    localDigest: str = None
    finalDigest: str = None
    uploadAttempts: int = 0
    verificationAttempts: int = 0
    scan: PolicyScanResult = None
    metadataUpdated: bool = False
    payloadUploaded: bool = False
    refreshTriggered: bool = False
    states: list = field(default_factory=list)
    error: Exception = None

    @property
    def retryCountUpload(self):
        return max(self.uploadAttempts - 1, 0)

    @property
    def affectedPolicies(self):
        return list(self.scan.references) if self.scan else []

    @property
    def succeeded(self):
        return self.outcome in (Outcome.SKIPPED, Outcome.UPDATED, Outcome.DRY_RUN)

    @property
    def exitCode(self):
        if self.succeeded:
            return 0
        return getattr(self.error, "exitCode", 1)
