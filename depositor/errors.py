# Copyright (C) 2024-2026 The bitcoin-depositor developers
#
# This file is part of bitcoin-depositor
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of bitcoin-depositor, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

from typing import Optional


class DepositorError(Exception):
    """Base class of every error the deposit workflow reports.

    Attributes:
        message -- explanation of the error
        stage -- the workflow stage that failed (key, config, build, exchange,
                 sign, verify); filled in by the workflow when not known at
                 the raise site
    """

    kind = "DepositorError"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        self.stage = stage
        super().__init__(message)

    def describe(self) -> str:
        """One line diagnostic: error [stage] Kind: message"""
        stage = self.stage or "-"
        return f"error [{stage}] {self.kind}: {self.message}"


class InvalidSecretError(DepositorError):
    """The private key is missing, not hex/WIF or not a valid scalar"""

    kind = "InvalidSecret"


class InvalidConfigError(DepositorError):
    """Inconsistent run configuration (amounts, change pairing, outpoint)"""

    kind = "InvalidConfig"


class BadAddressError(DepositorError):
    """An address string could not be parsed"""

    kind = "BadAddress"


class NetworkMismatchError(BadAddressError):
    """A well formed address that belongs to another network"""

    kind = "NetworkMismatch"


class RemoteUnavailableError(DepositorError):
    """The remote signer could not be reached or failed without an answer"""

    kind = "RemoteUnavailable"


class ProtocolError(DepositorError):
    """The remote signer answered with something malformed"""

    kind = "ProtocolError"


class RejectedError(DepositorError):
    """The remote signer returned a structured refusal

    Attributes:
        status -- the HTTP status code of the refusal
    """

    kind = "Rejected"

    def __init__(self, message: str, status: Optional[int] = None, stage: Optional[str] = None):
        self.status = status
        super().__init__(message, stage)


class SigningError(DepositorError):
    """The deposit PSBT could not be signed or finalized"""

    kind = "SigningFailed"


class MissingTapKeySigError(SigningError):
    """Finalization of a key-path input without a Taproot key signature"""

    kind = "MissingTapKeySig"


class ConsensusInvalidError(DepositorError):
    """A transaction failed consensus verification.

    Attributes:
        which -- "deposit" or "spend"
        reason -- why verification failed
    """

    kind = "ConsensusInvalid"

    def __init__(self, which: str, reason: str, stage: Optional[str] = "verify"):
        self.which = which
        self.reason = reason
        super().__init__(f"{which}: {reason}", stage)
