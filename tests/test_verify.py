import pytest

from jamf_package_updater.digest import DigestSnapshot
from jamf_package_updater.errors import RefreshFailed, StaleDigestError, VerificationFailed
from jamf_package_updater.verify import pollForDigestChange, triggerRefresh

from conftest import fatal, retryable


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def poll(client, baseline="D0", **kwargs):
    kwargs.setdefault("interval", 5)
    kwargs.setdefault("maxPolls", 5)
    kwargs.setdefault("timeout", 600)
    clock = kwargs.pop("clock", None) or FakeClock()
    return pollForDigestChange(client, "42", baseline, sleep=clock.sleep, clock=clock, **kwargs)


def test_succeeds_once_digest_changes(makeClient):
    client = makeClient(polledDigests=["D0", "D0", "D1"])

    result = poll(client)

    assert result.attempts == 3
    assert result.digest == "D1"
    assert client.callNames.count("getPackage") == 3


def test_unchanged_digest_is_stale(makeClient):
    client = makeClient(polledDigests=["D0"] * 5)

    with pytest.raises(StaleDigestError) as excinfo:
        poll(client)

    assert excinfo.value.attempts == 5
    assert excinfo.value.baselineDigest == "D0"
    assert excinfo.value.exitCode == 9
    assert client.callNames.count("getPackage") == 5


def test_comparison_ignores_case(makeClient):
    client = makeClient(polledDigests=["d0", "D0 "])

    with pytest.raises(StaleDigestError):
        poll(client, baseline="D0", maxPolls=2)


def test_placeholder_digest_is_not_success(makeClient):
    client = makeClient(polledDigests=["", "unknown", "D1"])

    result = poll(client)

    assert result.attempts == 3
    assert result.digest == "D1"


def test_placeholder_baseline_changes_to_real_digest(makeClient):
    client = makeClient(polledDigests=["", "D1"])

    assert poll(client, baseline="").attempts == 2


def test_sha512_only_record_is_verified_by_hash_value(makeClient):
    client = makeClient(
        polledDigests=[
            {"remoteDigest": "", "hashType": "SHA_512", "hashValue": "aa" * 64},
            {"remoteDigest": "", "hashType": "SHA_512", "hashValue": "bb" * 64},
        ]
    )
    baseline = DigestSnapshot(hashType="SHA_512", hashValue="aa" * 64)

    result = poll(client, baseline=baseline)

    assert result.attempts == 2
    assert result.digest == "SHA_512 " + "bb" * 64


def test_unchanged_sha512_is_stale(makeClient):
    unchanged = {"remoteDigest": "", "hashType": "SHA_512", "hashValue": "aa" * 64}
    client = makeClient(polledDigests=[unchanged] * 3)

    with pytest.raises(StaleDigestError) as excinfo:
        poll(client, baseline=DigestSnapshot(hashType="SHA_512", hashValue="aa" * 64), maxPolls=3)

    assert excinfo.value.lastDigest == "SHA_512 " + "aa" * 64


def test_retryable_read_failure_uses_a_poll(makeClient):
    client = makeClient(polledDigests=[retryable(), "D1"])

    assert poll(client).attempts == 2


def test_fatal_read_failure_stops_verification(makeClient):
    client = makeClient(polledDigests=["D0", fatal("HTTP 404: Not Found")])

    with pytest.raises(VerificationFailed) as excinfo:
        poll(client)

    assert "404" in str(excinfo.value)
    assert client.callNames.count("getPackage") == 2


def test_time_budget_limits_polls(makeClient):
    clock = FakeClock()
    client = makeClient(polledDigests=["D0"] * 100)

    with pytest.raises(StaleDigestError) as excinfo:
        poll(client, interval=10, timeout=25, maxPolls=100, clock=clock)

    assert excinfo.value.attempts == 3
    assert clock.now == 20


def test_waits_between_polls_only(makeClient, sleeps):
    client = makeClient(polledDigests=["D0", "D1"])

    pollForDigestChange(client, "42", "D0", interval=7, maxPolls=5, timeout=600, sleep=sleeps)

    assert sleeps.recorded == [7]


def test_refresh_failure_is_reported(makeClient):
    client = makeClient(refreshError=retryable("HTTP 500: Internal Server Error"))

    with pytest.raises(RefreshFailed) as excinfo:
        triggerRefresh(client, "42")

    assert "500" in str(excinfo.value)
    assert client.callNames == ["triggerRefresh"]
