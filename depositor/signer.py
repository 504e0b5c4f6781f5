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

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Optional

import requests

from depositor.constants import DEFAULT_SIGNER_TIMEOUT, SIGNER_PSBT_PATH
from depositor.errors import (
    ProtocolError,
    RejectedError,
    RemoteUnavailableError,
)
from depositor.psbt import PSBT, PSBTError
from depositor.transactions import Transaction


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class SignResponse:
    """The signer's answer to a deposit PSBT.

    deposit_psbt -- the deposit with output 0's script filled in, unsigned
    spend_psbt -- the finalized presigned spend of deposit output 0
    spend_tx -- the transaction extracted from spend_psbt
    """

    deposit_psbt: PSBT
    spend_psbt: PSBT
    spend_tx: Transaction


def signer_url(client_url: str) -> str:
    """Normalizes "host:port" (or a full URL) into the signer's PSBT endpoint"""

    url = client_url.strip().rstrip("/")
    if not url:
        raise ValueError("Signer address is empty")
    if "://" not in url:
        url = "http://" + url
    if not url.endswith(SIGNER_PSBT_PATH):
        url += SIGNER_PSBT_PATH
    return url


class SignerClient:
    """HTTP client of the remote signer service.

    The signer receives the unsigned deposit PSBT and the fallback address
    and answers with the deposit PSBT (output 0's script now set) and a
    presigned spend of that output.

    Attributes
    ----------
    url : str
        the signer's PSBT endpoint (http://host:port/psbt)
    timeout : float
        timeout of the round-trip in seconds
    session : requests.Session
        the HTTP session used for the request

    Methods
    -------
    sign_psbt(psbt, fallback_addr)
        runs the exchange and returns a SignResponse
    """

    def __init__(
        self,
        client_url: str,
        timeout: float = DEFAULT_SIGNER_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = signer_url(client_url)
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def __call__(self, psbt: PSBT, fallback_addr: str) -> SignResponse:
        return self.sign_psbt(psbt, fallback_addr)

    def sign_psbt(self, psbt: PSBT, fallback_addr: str) -> SignResponse:
        """Sends the deposit PSBT and the fallback address to the signer

        Raises
        ------
        RemoteUnavailableError
            connection failure, timeout or a server error without an answer
        RejectedError
            the signer refused with a structured error
        ProtocolError
            the answer is not the expected JSON or its PSBTs are unusable
        """
        body = {"psbt": psbt.to_base64(), "fallback_addr": fallback_addr}
        logger.info("requesting presigned spend from %s", self.url)

        try:
            resp = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise RemoteUnavailableError(f"Signer timed out: {e}") from e
        except requests.ConnectionError as e:
            raise RemoteUnavailableError(f"Signer unreachable: {e}") from e
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"Signer request failed: {e}") from e

        logger.debug("signer answered HTTP %d", resp.status_code)
        payload = self._json(resp)

        if not 200 <= resp.status_code < 300:
            self._raise_for_status(resp.status_code, payload, resp.text)

        if not isinstance(payload, dict):
            raise ProtocolError("Signer response is not a JSON object")

        deposit_psbt = self._decode_psbt(payload, "deposit_psbt")
        spend_psbt = self._decode_psbt(payload, "spend_psbt")

        try:
            spend_tx = spend_psbt.extract_transaction()
        except PSBTError as e:
            raise ProtocolError(f"spend_psbt is not finalized: {e}") from e

        logger.info("received presigned spend %s", spend_tx.get_txid())
        return SignResponse(deposit_psbt, spend_psbt, spend_tx)

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            # requests raises a ValueError subclass for undecodable bodies
            return None

    @staticmethod
    def _raise_for_status(status: int, payload: Any, text: str) -> None:
        if isinstance(payload, dict) and payload.get("error"):
            raise RejectedError(f"Signer refused: {payload['error']}", status=status)
        if status >= 500:
            raise RemoteUnavailableError(f"Signer failed with HTTP {status}")
        raise ProtocolError(f"Unexpected HTTP {status} from signer: {text[:200]}")

    @staticmethod
    def _decode_psbt(payload: dict, field: str) -> PSBT:
        value = payload.get(field)
        if not isinstance(value, str):
            raise ProtocolError(f"Signer response has no {field} string")
        try:
            return PSBT.decode(value)
        except ValueError as e:
            raise ProtocolError(f"Invalid {field}: {e}") from e
