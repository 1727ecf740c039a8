"""
Error taxonomy for jamf-package-updater

Every failure the update workflow can surface to the operator is one of the
exceptions below. Each carries the process exit code used by the CLI, so the
operator (or a CI job) can tell the failure kinds apart without parsing text.

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

import requests


class FailureKind(enum.Enum):
    """Whether a failed remote call is worth repeating."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


## Decide whether a failed request may be retried
def classifyFailure(error):
    """
    Classifies an exception raised while talking to Jamf Pro.

    Server-side conditions (5xx responses, dropped connections, timeouts) are
    retryable. Client-side conditions (4xx responses, including authentication
    failures, and anything we cannot recognize) are fatal.

    Args:
        error (Exception): The exception raised by requests or the jamf SDK.

    Returns:
        FailureKind: RETRYABLE or FATAL.
    """

    if isinstance(error, JamfApiError):
        return error.kind

    if isinstance(error, requests.exceptions.HTTPError):
        statusCode = getattr(error.response, "status_code", None)
        return classifyStatus(statusCode)

    if isinstance(
        error,
        (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            requests.exceptions.ChunkedEncodingError,
        ),
    ):
        return FailureKind.RETRYABLE

    return FailureKind.FATAL


## Map an HTTP status code onto a failure kind
def classifyStatus(statusCode):
    """Returns RETRYABLE for 5xx status codes and FATAL for everything else."""
    if statusCode is not None and 500 <= int(statusCode) <= 599:
        return FailureKind.RETRYABLE
    return FailureKind.FATAL


class UpdaterError(Exception):
    """Base class for every error reported to the operator."""

    exitCode = 1

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class JamfApiError(UpdaterError):
    """A Jamf Pro API call failed; `kind` tells callers whether to retry."""

    def __init__(self, message, kind=FailureKind.FATAL, statusCode=None):
        super().__init__(message)
        self.kind = kind
        self.statusCode = statusCode

    @property
    def retryable(self):
        return self.kind is FailureKind.RETRYABLE


class CredentialsMissing(UpdaterError):
    exitCode = 2

    def __init__(self, message=None):
        super().__init__(
            message
            or "No Jamf Pro credentials found. Run `jamf-package-updater auth` first "
            "or set the JAMF_CLIENT_ID, JAMF_CLIENT_SECRET and JAMF_URL environment variables."
        )


class CredentialsError(UpdaterError):
    """The system keyring could not be read or written."""

    exitCode = 2


class UnsupportedFormat(UpdaterError):
    exitCode = 3

    def __init__(self, path):
        self.path = path
        extension = path.suffix.lstrip(".") or "<none>"
        super().__init__(f"File must be a .pkg or .dmg (got .{extension}): {path}")


class PayloadMissing(UpdaterError):
    exitCode = 3

    def __init__(self, path):
        self.path = path
        super().__init__(f"File not found: {path}")


class PayloadUnreadable(UpdaterError):
    exitCode = 3

    def __init__(self, path, cause):
        self.path = path
        self.cause = cause
        super().__init__(f"Unable to read {path}: {cause}")


class PackageNotFound(UpdaterError):
    exitCode = 4

    def __init__(self, packageName):
        self.packageName = packageName
        super().__init__(f"Package '{packageName}' not found in Jamf Pro")


class MetadataUpdateFailed(UpdaterError):
    exitCode = 5

    def __init__(self, packageId, cause):
        self.packageId = packageId
        self.cause = cause
        super().__init__(
            f"Failed to update metadata for package {packageId}, nothing was uploaded: {cause}"
        )


class UploadFailed(UpdaterError):
    """The upload retry budget ran out, or an attempt failed fatally."""

    exitCode = 6

    def __init__(self, kind, message, attempts):
        self.kind = kind
        self.attempts = attempts
        super().__init__(
            f"Upload failed after {attempts} attempt{'s' if attempts != 1 else ''} "
            f"({kind.value}): {message}"
        )


class RefreshFailed(UpdaterError):
    exitCode = 7

    def __init__(self, cause):
        self.cause = cause
        super().__init__(
            f"Payload was uploaded, but the JCDS inventory refresh could not be triggered: {cause}"
        )


class VerificationFailed(UpdaterError):
    exitCode = 8

    def __init__(self, packageId, cause):
        self.packageId = packageId
        self.cause = cause
        super().__init__(
            f"Payload was uploaded, but package {packageId} could not be re-read for verification: {cause}"
        )


class StaleDigestError(UpdaterError):
    """Jamf Pro never reported a new checksum for the uploaded payload."""

    exitCode = 9

    def __init__(self, baselineDigest, attempts, lastDigest=None):
        self.baselineDigest = baselineDigest
        self.attempts = attempts
        self.lastDigest = lastDigest
        super().__init__(
            f"Payload was uploaded, but the package checksum still reads "
            f"'{lastDigest or baselineDigest or 'unknown'}' after {attempts} "
            f"verification poll{'s' if attempts != 1 else ''}. The update is unverified."
        )


class IdentityMismatch(UpdaterError):
    exitCode = 10

    def __init__(self, expectedId, actualId):
        self.expectedId = expectedId
        self.actualId = actualId
        super().__init__(
            f"Package id changed during the update (expected {expectedId}, got {actualId})"
        )


class ScanDegraded(UpdaterError):
    """Some policies could not be inspected. Reported, never raised by the update."""

    def __init__(self, unscannable, listingError=None):
        self.unscannable = list(unscannable)
        self.listingError = listingError
        if listingError:
            message = f"Policy list could not be fetched, references are unknown: {listingError}"
        else:
            message = (
                f"{len(self.unscannable)} "
                f"{'policy' if len(self.unscannable) == 1 else 'policies'} could not be scanned: "
                + ", ".join(f"{p.policyName} (ID: {p.policyId})" for p in self.unscannable)
            )
        super().__init__(message)
