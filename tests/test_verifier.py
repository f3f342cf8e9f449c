"""Tests for post-write port verification."""

from unittest.mock import MagicMock

import pytest

from port_sync.exceptions import ApiError, VerificationTimeoutError
from port_sync.verifier import PortVerifier


def make_client(pref_ports, runtime_ports=None):
    client = MagicMock()
    client.get_preferences.side_effect = [{"listen_port": p} for p in pref_ports]
    if runtime_ports is None:
        client.runtime_port.return_value = None
    else:
        client.runtime_port.side_effect = runtime_ports
    return client


def test_immediate_match_needs_no_sleep():
    sleep = MagicMock()
    verifier = PortVerifier(make_client([51820]), sleep=sleep)

    assert verifier.verify(51820) == 51820
    assert verifier.attempts == 1
    sleep.assert_not_called()


@pytest.mark.parametrize("n", [2, 3, 5])
def test_match_on_nth_attempt(n):
    sleep = MagicMock()
    ports = [48392] * (n - 1) + [51820]
    verifier = PortVerifier(make_client(ports), max_attempts=5, delay_seconds=2, sleep=sleep)

    assert verifier.verify(51820) == 51820
    assert verifier.attempts == n
    assert sleep.call_count == n - 1
    sleep.assert_called_with(2)


def test_runtime_port_match_counts():
    client = make_client([48392, 48392], runtime_ports=[48392, 51820])
    verifier = PortVerifier(client, sleep=MagicMock())

    assert verifier.verify(51820) == 51820
    assert verifier.attempts == 2


def test_exhaustion_raises_with_last_observed():
    sleep = MagicMock()
    verifier = PortVerifier(make_client([48392] * 5), max_attempts=5, sleep=sleep)

    with pytest.raises(VerificationTimeoutError) as excinfo:
        verifier.verify(51820)

    assert excinfo.value.expected == 51820
    assert excinfo.value.last_observed == 48392
    assert excinfo.value.attempts == 5
    assert sleep.call_count == 4


def test_api_errors_count_as_misses():
    client = MagicMock()
    client.get_preferences.side_effect = [ApiError("timeout"), {"listen_port": 51820}]
    client.runtime_port.return_value = None
    verifier = PortVerifier(client, sleep=MagicMock())

    assert verifier.verify(51820) == 51820
    assert verifier.attempts == 2
