"""
Policy reference scanner for jamf-package-updater

Before a package is replaced, the operator should know which policies will
start deploying the new payload. This module lists every policy and reports
the ones whose package configuration names the package. It never changes
anything and never stops an update.

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

from jamf_package_updater.errors import JamfApiError
from jamf_package_updater.models import (
    MatchKind,
    PolicyReference,
    PolicyScanResult,
    UnscannablePolicy,
)


## Pull the package entries out of a policy's package configuration
def policyPackages(policyData):
    """
    Returns the list of package entries in a policy's package configuration.

    The Classic API renders a single package as an object rather than a
    one-element list, and some versions wrap entries in a "package" key, so
    all of those shapes are flattened into a list of dicts.
    """
    packageConfig = policyData.get("package_configuration") or {}
    packages = packageConfig.get("packages") or []

    if isinstance(packages, dict):
        packages = packages.get("package", packages)

    if isinstance(packages, dict):
        packages = [packages]

    return [p.get("package", p) for p in packages if isinstance(p, dict)]


## Check whether a policy deploys the target package
def matchPolicy(policyData, packageName, fileName):
    """
    Determines how (if at all) a policy references the target package.

    Only the structured package list is inspected, never free text such as the
    policy name or self service description. Matching is case-sensitive and
    exact. The package entry's name may hold either the display name or the
    file name, so both are checked, file name first.

    Args:
        policyData (dict): The policy document from the Classic API.
        packageName (str): The package display name.
        fileName (str): The package file name.

    Returns:
        MatchKind or None: How the policy matched, or None.
    """

    entryNames = [str(p.get("name", "")) for p in policyPackages(policyData)]

    if fileName and fileName in entryNames:
        return MatchKind.FILENAME

    if packageName and packageName in entryNames:
        return MatchKind.NAME

    return None


## Find every policy that deploys a package
def scanPolicies(client, packageName, fileName):
    """
    Scans all policies for references to a package.

    A policy whose detail cannot be fetched is recorded as unscannable and the
    scan moves on. If the policy list itself cannot be fetched, an empty,
    degraded result is returned. JamfApiError never escapes this function.

    Args:
        client (JamfPackageClient): The Jamf Pro client.
        packageName (str): The package display name.
        fileName (str): The package file name as currently recorded in Jamf Pro.

    Returns:
        PolicyScanResult: References in policy list order, plus unscannable policies.
    """

    scanResult = PolicyScanResult()

    try:
        policyList = client.listPolicies()
    except JamfApiError as e:
        logging.warning(f"Unable to list policies, skipping reference scan: {e}")
        scanResult.listingError = str(e)
        return scanResult

    policyCount = len(policyList)
    logging.info(f"Scanning {policyCount} policies for references to '{packageName}'...")

    for index, (policyId, policyName) in enumerate(policyList, start=1):
        logging.debug(f"Scanning policy {index}/{policyCount}: {policyName} (ID: {policyId})")

        try:
            policyData = client.getPolicy(policyId)
        except JamfApiError as e:
            logging.warning(f"Unable to scan policy {policyName} (ID: {policyId}): {e}")
            scanResult.unscannable.append(UnscannablePolicy(policyId, policyName, str(e)))
            continue

        if matchKind := matchPolicy(policyData, packageName, fileName):
            logging.debug(f"Policy {policyName} references the package by {matchKind.value}")
            scanResult.references.append(PolicyReference(policyId, policyName, matchKind))

    return scanResult
