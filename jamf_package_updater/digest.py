"""
Digest comparison for jamf-package-updater

Jamf Pro records an MD5 checksum for every package it hosts. If the local
installer hashes to the same value, the package is already up to date and
nothing needs to change.

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
import hashlib
import logging
from dataclasses import dataclass

CHUNK_SIZE = 1024 * 1024

PLACEHOLDER_DIGESTS = {"", "unknown", "none", "null", "pending"}


class DigestComparison(enum.Enum):
    IDENTICAL = "identical"
    DIVERGENT = "divergent"


@dataclass(frozen=True)
class DigestSnapshot:
    """
    The checksum fields Jamf Pro reported for a package at one point in time.

    Depending on the tenant, Jamf Pro records an MD5, a generic hash (usually
    SHA-512) with its type, or both. A recalculation shows up as a change in
    any of them.
    """

    md5: str = ""
    hashType: str = ""
    hashValue: str = ""

    ## List the checksum fields that moved to a new real value since the baseline
    def changedFields(self, baseline):
        changed = []
        for fieldName in ("md5", "hashType", "hashValue"):
            current = getattr(self, fieldName)
            if isPlaceholderDigest(current):
                continue
            if fieldName == "hashType" and isPlaceholderDigest(self.hashValue):
                continue
            if normalizeDigest(current) != normalizeDigest(getattr(baseline, fieldName)):
                changed.append(fieldName)
        return changed

    def differsFrom(self, baseline):
        return bool(self.changedFields(baseline))

    @property
    def isEmpty(self):
        return isPlaceholderDigest(self.md5) and isPlaceholderDigest(self.hashValue)

    def displayValue(self):
        if not isPlaceholderDigest(self.md5):
            return self.md5
        if not isPlaceholderDigest(self.hashValue):
            return f"{self.hashType or 'unknown'} {self.hashValue}".strip()
        return ""


## Hash a local file without reading it into memory all at once
def computeDigest(path, chunkSize=CHUNK_SIZE):
    """
    Computes the MD5 digest of a file, reading it sequentially in chunks.

    Installer images can run to several gigabytes, so the file is never
    loaded in full.

    Args:
        path (Path): The file to hash.
        chunkSize (int, optional): Bytes read per iteration. Defaults to 1 MiB.

    Returns:
        str: The lowercase hex digest.
    """

    logging.debug(f"Computing MD5 digest of {path}...")
    md5 = hashlib.md5()

    with open(path, "rb") as payloadFile:
        for chunk in iter(lambda: payloadFile.read(chunkSize), b""):
            md5.update(chunk)

    localDigest = md5.hexdigest()
    logging.debug(f"Local digest for {path}: {localDigest}")
    return localDigest


def normalizeDigest(value):
    return str(value or "").strip().lower()


## Check whether a reported checksum is a real value or a stand-in
def isPlaceholderDigest(value):
    """
    Returns True if the value cannot be a real checksum.

    Jamf Pro reports an empty string (or nothing at all) while a checksum is
    still being calculated, and some tenants report a run of zeros.
    """
    digest = normalizeDigest(value)
    if digest in PLACEHOLDER_DIGESTS:
        return True
    return set(digest) == {"0"}


## Decide whether the package needs an update at all
def compareDigests(localDigest, remoteDigest):
    """
    Compares the local payload digest with the digest Jamf Pro has on record.

    Args:
        localDigest (str): MD5 of the local installer.
        remoteDigest (str): MD5 reported by Jamf Pro for the package.

    Returns:
        DigestComparison: IDENTICAL if the two match, DIVERGENT otherwise.
                          An empty or placeholder remote digest is always DIVERGENT.
    """

    if isPlaceholderDigest(remoteDigest):
        logging.debug("Jamf Pro has no usable checksum on record for this package")
        return DigestComparison.DIVERGENT

    if normalizeDigest(localDigest) == normalizeDigest(remoteDigest):
        return DigestComparison.IDENTICAL

    return DigestComparison.DIVERGENT
