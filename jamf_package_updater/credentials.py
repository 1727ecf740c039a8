"""
Credential storage for jamf-package-updater

API client credentials come from the environment when all three variables
are set (the CI path), otherwise from the system keyring where the `auth`
command stored them.

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
import os
from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError

from jamf_package_updater.errors import CredentialsError, CredentialsMissing

SERVICE = "jamf-package-updater"

ENV_CLIENT_ID = "JAMF_CLIENT_ID"
ENV_CLIENT_SECRET = "JAMF_CLIENT_SECRET"
ENV_URL = "JAMF_URL"


@dataclass(frozen=True)
class Credentials:
    clientId: str
    clientSecret: str
    url: str

    def __repr__(self):
        return f"Credentials(clientId={self.clientId!r}, clientSecret='***', url={self.url!r})"


## Normalize a Jamf Pro URL
def normalizeUrl(url):
    """Adds an https:// prefix when no protocol is given and strips trailing slashes."""
    url = url.strip().rstrip("/")
    if "://" not in url:
        url = f"https://{url}"
    return url


## Persist API client credentials in the system keyring
def storeCredentials(clientId, clientSecret, url):
    """
    Stores API client credentials in the system keyring.

    Args:
        clientId (str): Jamf Pro API client ID.
        clientSecret (str): Jamf Pro API client secret.
        url (str): Jamf Pro URL (e.g. https://example.jamfcloud.com).

    Returns:
        Credentials: The credentials as stored.

    Raises:
        CredentialsError: If the keyring could not be written.
    """

    credentials = Credentials(clientId, clientSecret, normalizeUrl(url))

    try:
        keyring.set_password(SERVICE, "client_id", credentials.clientId)
        keyring.set_password(SERVICE, "client_secret", credentials.clientSecret)
        keyring.set_password(SERVICE, "url", credentials.url)
    except KeyringError as e:
        raise CredentialsError(f"Failed to store credentials in the keyring: {e}") from e

    logging.debug(f"Stored credentials for {credentials.url} in the keyring")
    return credentials


## Load API client credentials from the environment, falling back to the keyring
def loadCredentials(environ=None):
    """
    Loads API client credentials.

    Environment variables take precedence, but only when all three are set;
    a partial set is ignored in favor of the keyring.

    Args:
        environ (dict, optional): Environment mapping. Defaults to os.environ.

    Returns:
        Credentials: The credentials to authenticate with.

    Raises:
        CredentialsMissing: If neither source has a complete set of credentials.
        CredentialsError: If the keyring could not be read.
    """

    environ = os.environ if environ is None else environ
    envValues = [environ.get(k) for k in (ENV_CLIENT_ID, ENV_CLIENT_SECRET, ENV_URL)]

    if all(envValues):
        logging.debug("Using credentials from environment variables")
        clientId, clientSecret, url = envValues
        return Credentials(clientId, clientSecret, normalizeUrl(url))

    if any(envValues):
        logging.warning(
            f"Ignoring incomplete credentials in the environment; {ENV_CLIENT_ID}, "
            f"{ENV_CLIENT_SECRET} and {ENV_URL} must all be set"
        )

    try:
        keyringValues = [
            keyring.get_password(SERVICE, k) for k in ("client_id", "client_secret", "url")
        ]
    except KeyringError as e:
        raise CredentialsError(f"Failed to read credentials from the keyring: {e}") from e

    if not all(keyringValues):
        raise CredentialsMissing()

    logging.debug("Using credentials from the keyring")
    clientId, clientSecret, url = keyringValues
    return Credentials(clientId, clientSecret, normalizeUrl(url))
