"""
Error taxonomy for user registration.

Every failure during a run is one of these. None of them are retried; the
registrar closes any open session and aborts the batch.
"""


class RegistrationError(Exception):
    """Base class for all registration failures."""

    kind = "RegistrationError"

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.kind}: {message}" if message else self.kind


class MalformedCredential(RegistrationError, ValueError):
    """Key card data does not match the expected encoding."""
    kind = "MalformedCredential"


class ConnectionFailed(RegistrationError):
    """Lock unreachable or service discovery timed out."""
    kind = "ConnectionFailed"


class PairingRejected(RegistrationError):
    """Lock refused the pairing request (wrong card key or serial mismatch)."""
    kind = "PairingRejected"


class PairingTimeout(RegistrationError, TimeoutError):
    """No pairing answer; the lock is most likely not in pairing mode."""
    kind = "PairingTimeout"


class WriteRejected(RegistrationError):
    """Setting the user name failed after pairing."""
    kind = "WriteRejected"


class TransportFault(RegistrationError):
    """Any other unexpected failure of the BLE transport."""
    kind = "TransportFault"
