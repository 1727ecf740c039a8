"""
Refresh and verification poller for jamf-package-updater

Jamf Pro accepts an upload and a JCDS inventory refresh request long before
it has recalculated the package checksum. A successful refresh call only
means the request was queued, so after triggering it we keep re-reading the
package until its recorded MD5 moves away from the value it had before the
upload. If it never does, the update is treated as failed: a stale checksum
means JCDS consumers may still serve or validate against the old payload.

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

from jamf_package_updater.digest import DigestSnapshot
from jamf_package_updater.errors import (
    FailureKind,
    JamfApiError,
    RefreshFailed,
    StaleDigestError,
    VerificationFailed,
)

POLL_INTERVAL = 15
MAX_POLLS = 20
POLL_TIMEOUT = 900


@dataclass
class VerificationResult:
    record: object
    attempts: int

    @property
    def digest(self):
        return self.record.snapshot.displayValue()


## Ask Jamf Pro to recalculate package checksums
def triggerRefresh(client, packageId):
    """
    Triggers a JCDS inventory refresh.

    Raises:
        RefreshFailed: If Jamf Pro did not accept the request.
    """
    logging.info("Refreshing package inventory (recalculating checksums)...")
    try:
        client.triggerRefresh(packageId)
    except JamfApiError as e:
        raise RefreshFailed(e.message) from e
    logging.info("Inventory refresh requested")


## Poll the package record until its checksum changes
def pollForDigestChange(
    client,
    packageId,
    baselineDigest,
    interval=POLL_INTERVAL,
    maxPolls=MAX_POLLS,
    timeout=POLL_TIMEOUT,
    sleep=time.sleep,
    clock=time.monotonic,
):
    """
    Re-reads a package until Jamf Pro reports a new checksum for it.

    The checksum counts as changed when any of the recorded checksum fields
    (MD5, hash type or hash value) holds a real value that differs from the
    baseline taken before the upload. Tenants that only record a SHA-512 are
    verified through the hash value. Polling
    stops after `maxPolls` reads or once `timeout` seconds have elapsed,
    whichever comes first. A retryable read failure uses up one poll; a fatal
    one ends verification immediately.

    Args:
        client (JamfPackageClient): The Jamf Pro client.
        packageId (str): ID of the package being verified.
        baselineDigest (DigestSnapshot or str): The checksums recorded before the upload
            began. A plain string is taken as the MD5.
        interval (float, optional): Seconds between polls. Defaults to 15.
        maxPolls (int, optional): Maximum number of reads. Defaults to 20.
        timeout (float, optional): Overall time budget in seconds. Defaults to 900.
        sleep (callable, optional): Used to wait between polls.
        clock (callable, optional): Monotonic clock used for the time budget.

    Returns:
        VerificationResult: The record carrying the new checksum and the number of polls made.

    Raises:
        StaleDigestError: If the checksum never changed within the budget.
        VerificationFailed: If the package could not be read and the failure is not retryable.
    """

    baseline = baselineDigest
    if not isinstance(baseline, DigestSnapshot):
        baseline = DigestSnapshot(md5=baselineDigest or "")

    startTime = clock()
    attempts = 0
    lastDigest = None

    while attempts < maxPolls:
        if attempts:
            if clock() - startTime + interval > timeout:
                logging.debug("Verification time budget exhausted")
                break
            sleep(interval)

        attempts += 1
        logging.debug(f"Checking package {packageId} checksum (poll {attempts} of {maxPolls})...")

        try:
            record = client.getPackage(packageId)
        except JamfApiError as e:
            if e.kind is FailureKind.FATAL:
                raise VerificationFailed(packageId, e.message) from e
            logging.warning(f"Poll {attempts} could not read package {packageId}: {e}")
            continue

        snapshot = record.snapshot
        lastDigest = snapshot.displayValue() or None
        if snapshot.isEmpty:
            logging.debug("Checksum not available yet")
            continue

        if changedFields := snapshot.changedFields(baseline):
            logging.info(
                f"Jamf Pro now reports checksum {lastDigest} (after {attempts} polls, "
                f"changed: {', '.join(changedFields)})"
            )
            return VerificationResult(record=record, attempts=attempts)

        logging.debug(f"Checksum still {lastDigest}, waiting for recalculation...")

    logging.error(
        f"Package {packageId} checksum did not change after {attempts} polls"
    )
    raise StaleDigestError(baseline.displayValue(), attempts, lastDigest)
