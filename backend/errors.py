"""Exceptions raised by the handshake engine."""


class ConnectBoothError(Exception):
    """Base class for all errors raised by this application."""


class NetworkError(ConnectBoothError):
    """Connection refused, timed out or unresolvable. Retryable by the caller."""


class ProtocolError(ConnectBoothError):
    """A receiver answered with malformed JSON or an unexpected status."""

    def __init__(self, message: str, status_text: str = ""):
        super().__init__(message)
        self.status_text = status_text


class IntegrityError(ConnectBoothError):
    """A blob's MAC did not verify. Its plaintext must never be used."""


class MalformedRecord(ConnectBoothError):
    """Decrypted bytes do not parse as a credential record."""


class KeyAgreementError(ConnectBoothError):
    """The peer's Diffie-Hellman public key is missing, malformed or out of range."""


class StateError(ConnectBoothError):
    """The operation is not possible in the current state."""


class NoCredential(StateError):
    """No wake-usable credential has been captured."""


class AlreadyPublishing(StateError):
    """The receiver emulator is already advertising a session."""


class UnreachableReceiver(StateError):
    """No candidate handshake path answered getInfo successfully."""


class RejectedCredential(StateError):
    """The target receiver refused the submitted credential."""

    def __init__(self, message: str, status_text: str = ""):
        super().__init__(message)
        self.status_text = status_text
