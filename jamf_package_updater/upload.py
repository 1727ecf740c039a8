"""
Upload retry controller for jamf-package-updater

Uploads are the slowest and least reliable step of an update. Transient
server-side failures are retried a bounded number of times with a growing
delay; client-side failures stop immediately.

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

from jamf_package_updater.errors import FailureKind, JamfApiError, UploadFailed

MAX_ATTEMPTS = 3
RETRY_DELAY = 10
RETRY_BACKOFF = 2


## Upload a payload, retrying transient failures
def uploadWithRetry(
    client,
    packageId,
    path,
    maxAttempts=MAX_ATTEMPTS,
    delay=RETRY_DELAY,
    backoff=RETRY_BACKOFF,
    sleep=time.sleep,
):
    """
    Uploads a payload to an existing package, retrying retryable failures.

    Every attempt re-sends the whole file. A fatal failure (4xx, bad payload,
    unreadable file) ends the loop right away regardless of remaining budget.

    Args:
        client (JamfPackageClient): The Jamf Pro client.
        packageId (str): ID of the package receiving the payload.
        path (Path): The installer to upload.
        maxAttempts (int, optional): Total attempts allowed. Defaults to 3.
        delay (float, optional): Seconds to wait before the first retry. Defaults to 10.
        backoff (float, optional): Multiplier applied to the delay after each retry. Defaults to 2.
        sleep (callable, optional): Used to wait between attempts.

    Returns:
        int: The number of attempts it took.

    Raises:
        UploadFailed: If an attempt failed fatally or every attempt failed.
    """

    for attempt in range(1, maxAttempts + 1):
        logging.info(f"Uploading {path.name} (attempt {attempt} of {maxAttempts})...")

        try:
            client.uploadPayload(packageId, path)
        except JamfApiError as e:
            lastError = e
            failureKind = e.kind
            failureMessage = e.message
        except OSError as e:
            raise UploadFailed(
                FailureKind.FATAL, f"Unable to read {path}: {e}", attempt
            ) from e
        else:
            logging.debug(f"Upload accepted on attempt {attempt}")
            return attempt

        if failureKind is FailureKind.FATAL:
            logging.error(f"Upload attempt {attempt} failed and cannot be retried: {failureMessage}")
            raise UploadFailed(failureKind, failureMessage, attempt) from lastError

        if attempt == maxAttempts:
            break

        waitTime = delay * backoff ** (attempt - 1)
        logging.warning(
            f"Upload attempt {attempt}/{maxAttempts} failed ({failureMessage}), retrying in {waitTime:g}s..."
        )
        sleep(waitTime)

    raise UploadFailed(failureKind, failureMessage, maxAttempts) from lastError
