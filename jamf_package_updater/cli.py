"""
jamf-package-updater command line interface

Replace the payload of an existing Jamf Pro package without changing its ID,
so every policy that deploys it keeps working.

Usage:
    jamf-package-updater auth --client-id ID --client-secret SECRET --url https://org.jamfcloud.com
    jamf-package-updater update ./MyApp-2.3.0.pkg [--name MyApp] [--dryrun]

The `update` command looks up the package by name (the file stem unless
--name is given), skips everything if Jamf Pro already has the same MD5,
lists the policies that reference the package, points the record at the new
file, uploads it (retrying transient failures), triggers a JCDS inventory
refresh and waits until Jamf Pro reports the new checksum.

Exit status is 0 when the package was updated, already current, or a dry run
completed, and a distinct non-zero code for each kind of failure.

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

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from tempfile import NamedTemporaryFile

from jamf_package_updater import __version__, upload, verify
from jamf_package_updater.client import (
    DEFAULT_TIMEOUT,
    DEFAULT_UPLOAD_TIMEOUT,
    JamfPackageClient,
)
from jamf_package_updater.credentials import loadCredentials, storeCredentials
from jamf_package_updater.errors import CredentialsError, UpdaterError
from jamf_package_updater.models import LocalPayload, Outcome
from jamf_package_updater.orchestrator import UpdateOrchestrator, UpdateSettings

## Version
scriptVersion = __version__

INTERRUPTED_EXIT_CODE = 130


## Validate integer inputs for counts and timeouts
def check_positive(value):
    """
    Check if the provided value is a positive integer.

    Args:
        value (str): The value to be checked, expected to be a string representation of an integer.

    Returns:
        int: The integer value if it is positive.

    Raises:
        argparse.ArgumentTypeError: If the value is not a positive integer.
    """
    try:
        ivalue = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("%s is an invalid positive int value" % value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("%s is an invalid positive int value" % value)
    return ivalue


## Validate input for package priority
def check_priority(value):
    try:
        ivalue = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("%s is not a valid priority" % value)
    if not 0 <= ivalue <= 20:
        raise argparse.ArgumentTypeError("Priority must be between 0 and 20 (got %s)" % value)
    return ivalue


def buildParser():
    parser = argparse.ArgumentParser(
        prog="jamf-package-updater",
        description="Simplify package updates in Jamf Pro",
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging for this script",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"{scriptVersion}",
        help="Show script version and exit",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="command")
    subparsers.required = True

    authParser = subparsers.add_parser(
        "auth",
        help="Store Jamf Pro API credentials in the system keyring",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    authParser.add_argument("--client-id", required=True, help="Jamf Pro API Client ID")
    authParser.add_argument(
        "--client-secret", required=True, help="Jamf Pro API Client Secret"
    )
    authParser.add_argument(
        "--url",
        required=True,
        help="URL for the target jamf instance -- protocol prefix not required (ex: org.jamfcloud.com)",
    )

    updateParser = subparsers.add_parser(
        "update",
        help="Replace the payload of an existing package, keeping its ID",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    updateParser.add_argument("path", type=Path, help="Path to a .pkg or .dmg file")
    updateParser.add_argument(
        "--name",
        metavar="Package Name",
        help="Package name to match in Jamf Pro (defaults to the file name without its extension)",
    )
    updateParser.add_argument(
        "--priority",
        type=check_priority,
        metavar="0-20",
        help="Package priority in Jamf Pro. Overrides the existing value.",
    )
    updateParser.add_argument(
        "--dryrun",
        action="store_true",
        help="Look up the package and scan policies, but do not change anything",
    )
    updateParser.add_argument(
        "--pollinterval",
        type=check_positive,
        default=verify.POLL_INTERVAL,
        metavar="seconds",
        help=f"Seconds between checksum verification polls (default: {verify.POLL_INTERVAL})",
    )
    updateParser.add_argument(
        "--maxpolls",
        type=check_positive,
        default=verify.MAX_POLLS,
        metavar="count",
        help=f"Maximum number of checksum verification polls (default: {verify.MAX_POLLS})",
    )
    updateParser.add_argument(
        "--polltimeout",
        type=check_positive,
        default=verify.POLL_TIMEOUT,
        metavar="seconds",
        help=f"Give up on checksum verification after this many seconds (default: {verify.POLL_TIMEOUT})",
    )
    updateParser.add_argument(
        "--timeout",
        type=check_positive,
        default=DEFAULT_TIMEOUT,
        metavar="seconds",
        help=f"Timeout for individual API requests (default: {DEFAULT_TIMEOUT})",
    )
    updateParser.add_argument(
        "--uploadtimeout",
        type=check_positive,
        default=DEFAULT_UPLOAD_TIMEOUT,
        metavar="seconds",
        help=f"Timeout for each upload attempt (default: {DEFAULT_UPLOAD_TIMEOUT})",
    )

    return parser


###############################
#### Logging configuration ####
###############################


def configureLogging(debug=False, logToFile=True):
    """
    Configures the root and jamf SDK loggers.

    Console output always goes to stdout. Unless disabled, a log file named
    jamf-package-updater_<timestamp>.log is also written to the working directory.

    Args:
        debug (bool, optional): Enable debug logging. Defaults to False.
        logToFile (bool, optional): Write a log file as well. Defaults to True.

    Returns:
        str or None: Path of the log file, if one was created.
    """

    ## Configure root logger
    logger = logging.getLogger()
    logger.handlers = []

    ## Configure logging level and format
    logLevel = logging.DEBUG if debug else logging.INFO
    logFormat = logging.Formatter(
        "[%(asctime)s %(filename)s->%(funcName)s():%(lineno)s]%(levelname)s: %(message)s"
        if debug
        else "%(asctime)s [%(levelname)s] %(message)s"
    )

    handlers = [logging.StreamHandler(sys.stdout)]

    ## Local log file
    logFile = None
    if logToFile:
        logFile = NamedTemporaryFile(
            prefix="jamf-package-updater_",
            suffix=f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}.log",
            delete=False,
            dir=Path.cwd(),
        ).name
        handlers.append(logging.FileHandler(str(logFile)))

    logger.setLevel(logLevel)
    for handler in handlers:
        handler.setLevel(logLevel)
        handler.setFormatter(logFormat)
        logger.addHandler(handler)

    ## Configure jamf SDK logging
    jamfLogger = logging.getLogger("jamf_pro_sdk")
    jamfLogger.setLevel(logging.DEBUG if debug else logging.WARNING)
    jamfLogger.handlers = []
    jamfLogger.propagate = False
    for handler in handlers:
        jamfLogger.addHandler(handler)

    return logFile


## Exit with a specified exit code, logging level, and final message
def endRun(exitCode=None, logLevel="info", message=None):
    """
    Terminates the program with a specified exit code and logs a message.

    Args:
        exitCode (int, optional): The exit code to terminate the program with. Defaults to None.
        logLevel (str, optional): The logging level for the message. Defaults to "info".
        message (str, optional): The message to log. Defaults to None.

    Raises:
        SystemExit: Exits the program with the specified exit code.
    """

    logCmd = getattr(logging, logLevel, logging.info)
    if message:
        logCmd(message)
    sys.exit(exitCode)


## Render the outcome of an update run for the operator
def buildSummary(attempt, logFile=None):
    """
    Builds the run summary shown at the end of an update.

    Args:
        attempt (UpdateAttempt): The finished update run.
        logFile (str, optional): Path of the log file for this run.

    Returns:
        str: The summary text.
    """

    scan = attempt.scan
    references = attempt.affectedPolicies

    lines = [
        "",
        "## Run Results:",
        f"- Package: {attempt.packageName}"
        + (f" (ID: {attempt.packageId})" if attempt.packageId else ""),
        f"- Outcome: {attempt.outcome.value}",
    ]

    if attempt.error is not None:
        lines.append(f"- Error: {type(attempt.error).__name__}: {attempt.error}")

    if attempt.localDigest:
        lines.append(f"- Local MD5: {attempt.localDigest}")
    if attempt.packageId:
        lines.append(f"- Previous Jamf Pro checksum: {attempt.baselineDigest or 'unknown'}")
    if attempt.finalDigest:
        lines.append(f"- Current Jamf Pro checksum: {attempt.finalDigest}")

    if scan is not None:
        lines.append(f"- Policies referencing this package: {len(references)}")
        for reference in references:
            lines.append(
                f"    - {reference.policyName} (ID: {reference.policyId}, matched by {reference.matchKind.value})"
            )
        if scanWarning := scan.warning():
            lines.append(f"- Policy scan incomplete: {scanWarning}")

    if attempt.outcome not in (Outcome.SKIPPED, Outcome.DRY_RUN) and attempt.packageId:
        lines.append(f"- Metadata updated: {'yes' if attempt.metadataUpdated else 'no'}")
        lines.append(
            f"- Upload attempts: {attempt.uploadAttempts} (retries: {attempt.retryCountUpload})"
        )
        lines.append(f"- Payload uploaded: {'yes' if attempt.payloadUploaded else 'no'}")
        lines.append(f"- Verification polls: {attempt.verificationAttempts}")

    if attempt.outcome is Outcome.FAILED and attempt.payloadUploaded:
        lines.append(
            "- WARNING: The new payload was uploaded but could not be verified. "
            "The package was NOT rolled back and may be mid-transition; rerun the update to verify it."
        )

    if attempt.outcome is Outcome.UPDATED and references:
        lines.append(
            f"- {len(references)} {'policy' if len(references) == 1 else 'policies'} "
            "will automatically use the new package"
        )

    lines.extend(
        [
            "",
            f"## Run Finished: {datetime.strftime(datetime.now(), '%Y-%m-%d %H:%M:%S')}",
        ]
    )
    if logFile:
        lines.extend(["", f"## Full log available at {logFile}"])

    return "\n".join(lines)


def runAuth(args):
    credentials = storeCredentials(args.client_id, args.client_secret, args.url)
    endRun(0, message=f"Credentials for {credentials.url} stored successfully.")


def runUpdate(args, logFile=None):
    ## Reject unusable payloads before anything touches the network
    payload = LocalPayload.fromPath(args.path)
    logging.info(f"Package name: {args.name or payload.stem}")
    logging.info(f"File: {payload.path}")

    credentials = loadCredentials()
    logging.info(f"Jamf Pro URL: {credentials.url}")

    try:
        client = JamfPackageClient(
            credentials, timeout=args.timeout, uploadTimeout=args.uploadtimeout
        )
    except ValueError as e:
        raise CredentialsError(str(e)) from e

    settings = UpdateSettings(
        dryRun=args.dryrun,
        priority=args.priority,
        uploadAttempts=upload.MAX_ATTEMPTS,
        pollInterval=args.pollinterval,
        maxPolls=args.maxpolls,
        pollTimeout=args.polltimeout,
    )

    attempt = UpdateOrchestrator(client, payload.path, args.name, settings).run()

    endRun(
        attempt.exitCode,
        "info" if attempt.succeeded else "critical",
        buildSummary(attempt, logFile),
    )


## Do the things
def run(argv=None):
    args = buildParser().parse_args(argv)
    logFile = configureLogging(args.debug, logToFile=args.command == "update")

    try:
        if args.command == "auth":
            runAuth(args)
        else:
            runUpdate(args, logFile)
    except UpdaterError as e:
        endRun(e.exitCode, "critical", f"{type(e).__name__}: {e}")
    except KeyboardInterrupt:
        endRun(
            INTERRUPTED_EXIT_CODE,
            "critical",
            "Interrupted! The package may be mid-update; rerun the update to verify its state.",
        )


if __name__ == "__main__":
    run()
