"""
Update orchestrator for jamf-package-updater

Runs one in-place package update as an explicit sequence of states:

    LookupPackage -> CompareDigest -> (Done: Skipped)
                                   -> ScanPolicies -> UpdateMetadata -> UploadPayload
                                      -> TriggerRefresh -> PollVerification -> Done

Each state has one method that does its work and returns the next state.
Any UpdaterError ends the run in Done(Failed) with the error attached to the
UpdateAttempt. Nothing is rolled back: a payload that was uploaded but never
verified stays uploaded, and the attempt says so.

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

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from jamf_package_updater import upload, verify
from jamf_package_updater.digest import (
    DigestComparison,
    compareDigests,
    isPlaceholderDigest,
    normalizeDigest,
)
from jamf_package_updater.errors import (
    IdentityMismatch,
    JamfApiError,
    MetadataUpdateFailed,
    PackageNotFound,
    StaleDigestError,
    UpdaterError,
    UploadFailed,
)
from jamf_package_updater.models import (
    LocalPayload,
    Outcome,
    UpdateAttempt,
    UpdateState,
)
from jamf_package_updater.policies import scanPolicies


@dataclass
class UpdateSettings:
    """Tunables for a single update run."""

    dryRun: bool = False
    priority: int = None
    uploadAttempts: int = upload.MAX_ATTEMPTS
    retryDelay: float = upload.RETRY_DELAY
    retryBackoff: float = upload.RETRY_BACKOFF
    pollInterval: float = verify.POLL_INTERVAL
    maxPolls: int = verify.MAX_POLLS
    pollTimeout: float = verify.POLL_TIMEOUT


class UpdateOrchestrator:
    """
    Drives one package update from lookup to verified checksum.

    Args:
        client (JamfPackageClient): The Jamf Pro client.
        path (str or Path): The installer to upload.
        packageName (str, optional): Name of the package in Jamf Pro. Defaults to the file stem.
        settings (UpdateSettings, optional): Retry and polling tunables.
        sleep (callable, optional): Used for retry and poll delays.
        clock (callable, optional): Monotonic clock for the verification time budget.
    """

    def __init__(
        self,
        client,
        path,
        packageName=None,
        settings=None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.client = client
        self.path = Path(path)
        self.settings = settings or UpdateSettings()
        self.sleep = sleep
        self.clock = clock

        self.payload = None
        self.record = None
        self.attempt = UpdateAttempt(packageName=packageName or self.path.stem)

        self.transitions = {
            UpdateState.LOOKUP_PACKAGE: self.lookupPackage,
            UpdateState.COMPARE_DIGEST: self.compareDigest,
            UpdateState.SCAN_POLICIES: self.scanPolicies,
            UpdateState.UPDATE_METADATA: self.updateMetadata,
            UpdateState.UPLOAD_PAYLOAD: self.uploadPayload,
            UpdateState.TRIGGER_REFRESH: self.triggerRefresh,
            UpdateState.POLL_VERIFICATION: self.pollVerification,
        }

    ## Run every state in order until Done
    def run(self):
        """
        Runs the update.

        The payload is validated before the first state, so an unsupported or
        missing file fails without any call to Jamf Pro.

        Returns:
            UpdateAttempt: The record of this run. Failures are reported through
                           its `outcome` and `error` rather than raised.
        """

        state = UpdateState.LOOKUP_PACKAGE

        try:
            self.payload = LocalPayload.fromPath(self.path)

            while state is not UpdateState.DONE:
                logging.debug(f"Entering state {state.value}")
                self.attempt.states.append(state)
                state = self.transitions[state]()

        except UpdaterError as e:
            self.attempt.outcome = Outcome.FAILED
            self.attempt.error = e
            logging.error(f"{type(e).__name__}: {e}")

        self.attempt.states.append(UpdateState.DONE)
        logging.debug(
            f"Update finished with outcome {self.attempt.outcome.value} "
            f"(states: {' -> '.join(s.value for s in self.attempt.states)})"
        )
        return self.attempt

    def lookupPackage(self):
        packageName = self.attempt.packageName
        logging.info(f"Searching for package '{packageName}'...")

        self.record = self.client.lookupPackage(packageName)
        if self.record is None:
            raise PackageNotFound(packageName)

        self.attempt.packageId = self.record.id
        self.attempt.baselineDigest = self.record.snapshot.displayValue()
        logging.info(
            f"Found package '{self.record.name}' (ID: {self.record.id}, file: {self.record.filename})"
        )
        return UpdateState.COMPARE_DIGEST

    ## Skip the update entirely if Jamf Pro already has this exact payload
    def compareDigest(self):
        self.attempt.localDigest = self.payload.localDigest
        logging.info(
            f"Local MD5: {self.attempt.localDigest} | Jamf Pro MD5: {self.record.remoteDigest or 'unknown'}"
        )

        comparison = compareDigests(self.attempt.localDigest, self.record.remoteDigest)
        if comparison is DigestComparison.IDENTICAL:
            logging.info(
                f"Package '{self.record.name}' already matches {self.payload.filename}, nothing to update"
            )
            self.attempt.outcome = Outcome.SKIPPED
            return UpdateState.DONE

        return UpdateState.SCAN_POLICIES

    ## Report which policies will pick up the new payload
    def scanPolicies(self):
        scanResult = scanPolicies(self.client, self.record.name, self.record.filename)
        self.attempt.scan = scanResult

        referenceCount = len(scanResult.references)
        logging.info(
            f"Found {referenceCount} {'policy' if referenceCount == 1 else 'policies'} referencing this package"
        )
        for reference in scanResult.references:
            logging.info(
                f"  - {reference.policyName} (ID: {reference.policyId}, matched by {reference.matchKind.value})"
            )

        if scanWarning := scanResult.warning():
            logging.warning(str(scanWarning))

        if self.settings.dryRun:
            logging.info(
                f"DRY RUN: would update package {self.record.id} to file {self.payload.filename} "
                f"({self.payload.size} bytes), upload it, and verify the new checksum"
            )
            self.attempt.outcome = Outcome.DRY_RUN
            return UpdateState.DONE

        return UpdateState.UPDATE_METADATA

    ## Point the existing record at the new file without touching its ID
    def updateMetadata(self):
        fields = {"fileName": self.payload.filename, "size": str(self.payload.size)}
        if self.settings.priority is not None:
            fields["priority"] = self.settings.priority

        logging.info("Updating package metadata...")
        try:
            self.client.updateMetadata(self.record.id, fields, current=self.record.raw)
        except JamfApiError as e:
            raise MetadataUpdateFailed(self.record.id, e.message) from e

        self.attempt.metadataUpdated = True
        logging.info("Metadata updated")
        return UpdateState.UPLOAD_PAYLOAD

    def uploadPayload(self):
        try:
            self.attempt.uploadAttempts = upload.uploadWithRetry(
                self.client,
                self.record.id,
                self.payload.path,
                maxAttempts=self.settings.uploadAttempts,
                delay=self.settings.retryDelay,
                backoff=self.settings.retryBackoff,
                sleep=self.sleep,
            )
        except UploadFailed as e:
            self.attempt.uploadAttempts = e.attempts
            raise

        self.attempt.payloadUploaded = True
        logging.info("Upload complete")
        return UpdateState.TRIGGER_REFRESH

    def triggerRefresh(self):
        verify.triggerRefresh(self.client, self.record.id)
        self.attempt.refreshTriggered = True
        return UpdateState.POLL_VERIFICATION

    ## Wait for Jamf Pro to report a checksum that differs from the one we started with
    def pollVerification(self):
        logging.info("Waiting for Jamf Pro to report the new checksum...")
        try:
            verification = verify.pollForDigestChange(
                self.client,
                self.record.id,
                self.record.snapshot,
                interval=self.settings.pollInterval,
                maxPolls=self.settings.maxPolls,
                timeout=self.settings.pollTimeout,
                sleep=self.sleep,
                clock=self.clock,
            )
        except StaleDigestError as e:
            self.attempt.verificationAttempts = e.attempts
            self.attempt.finalDigest = e.lastDigest
            raise

        self.attempt.verificationAttempts = verification.attempts
        self.attempt.finalDigest = verification.digest

        if verification.record.id != self.record.id:
            raise IdentityMismatch(self.record.id, verification.record.id)

        remoteMd5 = verification.record.remoteDigest
        if isPlaceholderDigest(remoteMd5):
            logging.info(
                f"Jamf Pro records {verification.digest} for this package, so it cannot be "
                f"compared with the local MD5"
            )
        elif normalizeDigest(remoteMd5) != normalizeDigest(self.attempt.localDigest):
            logging.warning(
                f"Jamf Pro reports checksum {remoteMd5}, which differs from the local "
                f"MD5 {self.attempt.localDigest}. Jamf Pro may be hashing the payload differently."
            )

        self.attempt.outcome = Outcome.UPDATED
        logging.info(
            f"Package '{self.record.name}' (ID: {self.record.id}) updated successfully"
        )
        return UpdateState.DONE


## Convenience wrapper for a single update run
def updatePackage(client, path, packageName=None, settings=None, **kwargs):
    return UpdateOrchestrator(client, path, packageName, settings, **kwargs).run()
