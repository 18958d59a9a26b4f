"""Exception hierarchy for the y2beta bot."""


class FatalError(Exception):
    """Unrecoverable error; the process exits with a non-zero status."""


class CredentialStoreError(FatalError):
    """Stored credentials exist but could not be read or written."""


class InvalidPairingCode(FatalError):
    """The operator entered something other than a 6-digit code."""


class PairingSubmissionError(FatalError):
    """The bridge rejected or failed to deliver the pairing code."""


class LoggedOut(FatalError):
    """WhatsApp ended the session with a logout; manual re-pairing needed."""


class BridgeError(Exception):
    """A request to the WhatsApp bridge failed."""


class CompletionError(Exception):
    """The completion endpoint returned a response we could not use."""
