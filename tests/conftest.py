import pytest

from keyble_register.errors import ConnectionFailed
from keyble_register.key_card import KeyCard, encode
from keyble_register.session import LockSession, PairingResult


def make_card_data(address="AA:BB:CC:DD:EE:FF", key=bytes(range(16)), serial="SN12345678"):
    return encode(KeyCard(address=address, key=key, serial=serial))


class FakeSession(LockSession):
    """In-memory lock session recording every call in a shared log."""

    def __init__(self, address, calls, fail_on=None, user_id=3):
        self.address = address
        self.calls = calls
        self.fail_on = fail_on or {}
        self.user_id = user_id
        self.user_key = bytes(range(16, 32))

    def _maybe_fail(self, operation):
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    async def pairing_request(self, card_key):
        self.calls.append(("pairing_request", self.address, card_key))
        self._maybe_fail("pairing_request")
        return PairingResult(user_id=self.user_id, user_key=self.user_key)

    async def set_user_name(self, name):
        self.calls.append(("set_user_name", self.address, name))
        self._maybe_fail("set_user_name")

    async def close(self):
        self.calls.append(("close", self.address))
        self._maybe_fail("close")


class FakeFactory:
    """SessionFactory handing out FakeSessions, with per-address failures."""

    def __init__(self, failures=None):
        self.calls = []
        self.failures = failures or {}

    async def __call__(self, address):
        self.calls.append(("open", address))
        fail_on = self.failures.get(address, {})
        if "open" in fail_on:
            raise fail_on["open"]
        return FakeSession(address, self.calls, fail_on)

    def operations(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def unreachable():
    return ConnectionFailed("Lock not found")
