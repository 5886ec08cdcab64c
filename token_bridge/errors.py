"""Exceptions raised by the transfer and attestation orchestrators.

- :py:class:`SubmissionError`: a transaction failed to submit or confirm; never retried by the orchestrator
- :py:class:`InsufficientAmount`: fees eat the whole automatic transfer; fatal for the request
- :py:class:`AttestationTimeout` / :py:class:`VaaNotFound`: the VAA did not appear in time; retry the same call
- :py:class:`InvalidPhase`: the operation is not valid in the current phase; a programming error
- :py:class:`OperationCancelled`: the caller cancelled a wait; phase is unchanged

An unregistered wrapped asset is not an error: lookups return ``None``.
"""


class BridgeError(Exception):
    """Base class for all token bridge errors."""


class SubmissionError(BridgeError):
    """A source or destination transaction failed to submit or confirm."""


class ParseError(BridgeError):
    """A transaction does not carry a recognisable bridge message."""


class InsufficientAmount(BridgeError):
    """The quoted destination amount of an automatic transfer is not positive."""


class UnregisteredToken(BridgeError):
    """The token has no wrapped counterpart on the destination chain yet.

    Run :py:class:`~token_bridge.attestation.TokenAttestation` first.
    """


class AttestationError(BridgeError):
    """A fetched VAA is malformed or does not match the requested message."""


class AttestationUnavailable(BridgeError):
    """The VAA was not available within the requested time window.

    Recoverable by calling the same operation again with a new timeout.
    """


class AttestationTimeout(AttestationUnavailable, TimeoutError):
    """Transfer VAA not available in time."""


class VaaNotFound(AttestationUnavailable):
    """Attestation VAA not available in time."""


class InvalidPhase(BridgeError):
    """The operation is not valid for the current phase."""


class OperationCancelled(BridgeError):
    """The caller cancelled the operation or its deadline passed."""
