"""
Jamf Pro API client for jamf-package-updater

A thin layer over jamf-pro-sdk covering exactly the calls the package update
needs. Every failure leaves this module as a JamfApiError tagged RETRYABLE or
FATAL, so callers never branch on status codes themselves.

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
from urllib.parse import urlsplit

import requests
from jamf_pro_sdk import JamfProClient, SessionConfig
from jamf_pro_sdk.clients.auth import ApiClientCredentialsProvider

from jamf_package_updater.errors import (
    FailureKind,
    JamfApiError,
    classifyFailure,
    classifyStatus,
)
from jamf_package_updater.models import PackageRecord

DEFAULT_TIMEOUT = 60
DEFAULT_UPLOAD_TIMEOUT = 1800

MD5_KEYS = ("md5", "md5Hash", "md5Checksum", "md5Sum", "MD5")
SIZE_KEYS = ("size", "fileSize", "fileSizeBytes")
HASH_TYPE_KEYS = ("hashType", "checksumType")
HASH_VALUE_KEYS = ("hashValue", "checksum", "hash")

# Never sent on a metadata update: the id is fixed by the URL and checksums are recalculated by Jamf Pro
READ_ONLY_KEYS = {"id", *MD5_KEYS, *HASH_TYPE_KEYS, *HASH_VALUE_KEYS}

LARGE_UPLOAD_BYTES = 1024 ** 3


## Search a JSON document (depth first) for the first non-empty value under any of the given keys
def findFirstValue(document, keys):
    if isinstance(document, dict):
        for key in keys:
            value = document.get(key)
            if value not in (None, ""):
                return value
        for nested in document.values():
            if (found := findFirstValue(nested, keys)) is not None:
                return found
    elif isinstance(document, list):
        for item in document:
            if (found := findFirstValue(item, keys)) is not None:
                return found
    return None


## Pull the MD5 checksum Jamf Pro has on record out of a package document
def extractRemoteDigest(packageData):
    """
    Returns the MD5 checksum recorded for a package, or an empty string.

    Jamf Pro reports the checksum as `md5` on current versions, but older
    responses and JCDS file info nest it under other names. When only the
    generic `hashValue` is present it is used if `hashType` says it is an MD5.
    """
    if (md5 := findFirstValue(packageData, MD5_KEYS)) is not None:
        return str(md5)

    hashType = findFirstValue(packageData, HASH_TYPE_KEYS)
    hashValue = findFirstValue(packageData, HASH_VALUE_KEYS)
    if hashValue is not None and str(hashType or "").upper() == "MD5":
        return str(hashValue)

    return ""


## Build a PackageRecord from a Jamf Pro API package document
def recordFromJson(packageData):
    size = findFirstValue(packageData, SIZE_KEYS)
    try:
        size = int(size) if size is not None else None
    except (TypeError, ValueError):
        logging.debug(f"Ignoring non-numeric package size {size!r}")
        size = None

    return PackageRecord(
        id=str(packageData.get("id")),
        name=packageData.get("packageName", ""),
        filename=packageData.get("fileName", ""),
        remoteDigest=extractRemoteDigest(packageData),
        size=size,
        hashType=str(findFirstValue(packageData, HASH_TYPE_KEYS) or ""),
        hashValue=str(findFirstValue(packageData, HASH_VALUE_KEYS) or ""),
        raw=dict(packageData),
    )


## Split a Jamf Pro URL into the server and port the SDK expects
def parseServer(url):
    """
    Converts a Jamf Pro URL into a (server, port) tuple.

    The protocol prefix is optional, so both "org.jamfcloud.com" and
    "https://org.jamfcloud.com:8443/" are accepted.
    """
    parsed = urlsplit(url if "://" in url else f"https://{url}")
    if not parsed.hostname:
        raise ValueError(f"Unable to parse Jamf Pro URL: {url}")
    return parsed.hostname, parsed.port or 443


class JamfPackageClient:
    """
    The Jamf Pro calls used to update a package in place.

    Two SDK clients are kept: one for regular API calls with a short per-request
    timeout, and one (created on first upload) with a much longer timeout for
    multi-gigabyte payload uploads. The SDK's own transport retries are disabled
    so the only retries are the ones the update workflow makes on purpose.
    """

    def __init__(
        self,
        credentials,
        timeout=DEFAULT_TIMEOUT,
        uploadTimeout=DEFAULT_UPLOAD_TIMEOUT,
    ):
        self.credentials = credentials
        self.server, self.port = parseServer(credentials.url)
        self.timeout = timeout
        self.uploadTimeout = uploadTimeout
        self.jamfClient = self._buildClient(timeout)
        self._uploadClient = None

    def _buildClient(self, timeout):
        return JamfProClient(
            server=self.server,
            port=self.port,
            credentials=ApiClientCredentialsProvider(
                self.credentials.clientId, self.credentials.clientSecret
            ),
            session_config=SessionConfig(
                **{"timeout": timeout, "max_retries": 0, "max_concurrency": 1}
            ),
        )

    @property
    def uploadClient(self):
        if self._uploadClient is None:
            logging.debug(
                f"Creating upload session with a {self.uploadTimeout} second timeout"
            )
            self._uploadClient = self._buildClient(self.uploadTimeout)
        return self._uploadClient

    ## Send a request through the SDK and translate every failure into a JamfApiError
    def _request(self, api, method, resourcePath, action, jamfClient=None, **kwargs):
        """
        Sends a request to the Classic or Pro API.

        Args:
            api (str): "classic" or "pro".
            method (str): HTTP method.
            resourcePath (str): API resource path, without the API prefix.
            action (str): Human readable description used in error messages.
            jamfClient (JamfProClient, optional): Client to send the request with.
            **kwargs: Passed through to the SDK request method.

        Returns:
            requests.Response: The successful response.

        Raises:
            JamfApiError: If the request failed, tagged RETRYABLE or FATAL.
        """

        jamfClient = jamfClient or self.jamfClient
        sendRequest = (
            jamfClient.classic_api_request
            if api == "classic"
            else jamfClient.pro_api_request
        )

        try:
            response = sendRequest(method, resourcePath, **kwargs)
        except requests.exceptions.RequestException as e:
            statusCode = getattr(e.response, "status_code", None)
            detail = (
                f"HTTP {statusCode}: {responseText(e.response)}"
                if statusCode is not None
                else f"{type(e).__name__}: {e}"
            )
            raise JamfApiError(
                f"Failed to {action} ({detail})", classifyFailure(e), statusCode
            ) from e

        if not response.ok:
            raise JamfApiError(
                f"Failed to {action} (HTTP {response.status_code}: {responseText(response)})",
                classifyStatus(response.status_code),
                response.status_code,
            )

        return response

    def _json(self, response, action):
        try:
            return response.json()
        except ValueError as e:
            raise JamfApiError(
                f"Failed to {action} (malformed response: {e})", FailureKind.FATAL
            ) from e

    ## Find a package record by its display name
    def lookupPackage(self, name):
        """
        Looks up a package by name.

        Args:
            name (str): The package name as shown in Jamf Pro.

        Returns:
            PackageRecord or None: The package whose name matches exactly (case included),
                                   or None if there is none.
        """

        logging.debug(f"Searching Jamf Pro for package '{name}'...")
        action = f"search for package '{name}'"
        response = self._request(
            "pro",
            "get",
            "v1/packages",
            action,
            query_params={
                "page": "0",
                "page-size": "100",
                "filter": f'packageName=="{name}"',
            },
        )
        results = self._json(response, action).get("results") or []

        # The RSQL filter ignores case, so "app" also finds "App"
        exactMatches = [p for p in results if p.get("packageName") == name]

        if not exactMatches:
            if results:
                logging.warning(
                    f"No package is named exactly '{name}' (found: "
                    + ", ".join(f"'{p.get('packageName')}'" for p in results)
                    + ")"
                )
            return None

        if len(exactMatches) > 1:
            logging.warning(
                f"{len(exactMatches)} packages are named '{name}', using the first one"
            )

        return recordFromJson(exactMatches[0])

    def getPackage(self, packageId):
        action = f"read package {packageId}"
        response = self._request("pro", "get", f"v1/packages/{packageId}", action)
        return recordFromJson(self._json(response, action))

    ## Update fields on an existing package record without changing its ID
    def updateMetadata(self, packageId, fields, current=None):
        """
        Replaces a package record's metadata in place.

        Jamf Pro expects the full package object on PUT, so the current record
        is used as the base and only the given fields are changed. The `id`
        is never sent in the body; it is fixed by the URL. Checksum fields are
        left out so the old payload's checksum is not written back over the
        one Jamf Pro calculates for the new upload.

        Args:
            packageId (str): ID of the package to update.
            fields (dict): Fields to change (e.g. fileName, size, priority).
            current (dict, optional): The package document as last read from Jamf Pro.
        """

        body = {k: v for k, v in (current or {}).items() if k not in READ_ONLY_KEYS}
        body.update(fields)
        logging.debug(f"Package {packageId} metadata sent: {body}")

        self._request(
            "pro",
            "put",
            f"v1/packages/{packageId}",
            f"update metadata for package {packageId}",
            data=body,
        )

    ## Replace the payload bytes of an existing package
    def uploadPayload(self, packageId, path):
        """
        Uploads a file to an existing package record in a single request.

        The SDK only accepts multipart uploads through `files=`, which has
        requests build the whole request body in memory before sending it. A
        multi-gigabyte .dmg needs that much free memory on the machine running
        the update.

        Args:
            packageId (str): ID of the package to upload to.
            path (Path): The installer to upload.

        Raises:
            JamfApiError: If Jamf Pro did not accept the upload.
            OSError: If the file cannot be read.
        """

        fileSize = path.stat().st_size
        if fileSize >= LARGE_UPLOAD_BYTES:
            logging.warning(
                f"{path.name} is {fileSize / 1024 ** 3:.1f} GiB; the upload is held in memory while it is sent"
            )

        with open(path, "rb") as payloadFile:
            self._request(
                "pro",
                "post",
                f"v1/packages/{packageId}/upload",
                f"upload {path.name} to package {packageId}",
                jamfClient=self.uploadClient,
                files={"file": (path.name, payloadFile, "application/octet-stream")},
            )

    ## Ask JCDS to recalculate checksums for hosted files
    def triggerRefresh(self, packageId):
        logging.debug(f"Requesting JCDS inventory refresh for package {packageId}")
        self._request(
            "pro", "post", "v1/jcds/refresh-inventory", "refresh JCDS inventory"
        )

    def listPolicies(self):
        action = "list policies"
        response = self._request("classic", "get", "policies", action)
        policies = self._json(response, action).get("policies") or []
        return [(int(p.get("id")), p.get("name", "")) for p in policies]

    def getPolicy(self, policyId):
        action = f"fetch policy {policyId}"
        response = self._request("classic", "get", f"policies/id/{policyId}", action)
        return self._json(response, action).get("policy") or {}


def responseText(response, limit=500):
    if response is None:
        return ""
    try:
        text = response.text or ""
    except (AttributeError, ValueError):
        return ""
    return text[:limit]
