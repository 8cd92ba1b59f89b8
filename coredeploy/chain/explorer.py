"""
ExplorerRegistry - publish verified sources to an Etherscan-compatible explorer.

Flow per unit:
1. Look up the compiler input for the contract (Hardhat build-info)
2. POST module=contract&action=verifysourcecode, receiving a GUID
3. Poll action=checkverifystatus until the explorer passes or fails it

An explorer that reports the contract as already verified counts as a
success: the caller only needs the public source URL.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from web3 import Web3

from coredeploy.chain.artifacts import ArtifactStore
from coredeploy.errors import ConfigError, VerificationError

logger = logging.getLogger(__name__)

ALREADY_VERIFIED = "already verified"
PENDING = "pending in queue"


def _is_already_verified(result: Any) -> bool:
    return ALREADY_VERIFIED in str(result).lower()


def _json_body(response: httpx.Response, name: str) -> dict[str, Any]:
    """Decode an API reply; explorers sometimes answer 200 with an HTML page."""
    try:
        body = response.json()
    except ValueError as e:
        raise VerificationError(name, f"unexpected explorer response: {e}") from e
    if not isinstance(body, dict):
        raise VerificationError(name, f"unexpected explorer response: {body!r}")
    return body


class ExplorerRegistry:
    """
    Registry over the Etherscan verification API.

    Args:
        api_url: Explorer API endpoint (e.g. https://api.arbiscan.io/api)
        base_url: Public explorer URL used for the returned source link
        api_key: Explorer API key
        artifacts: Artifact store providing build-info for each contract
        poll_interval: Seconds between status checks
        max_polls: Status checks before giving up
        transport: Optional httpx transport (tests inject a MockTransport)
    """

    def __init__(
        self,
        api_url: str,
        base_url: Optional[str],
        api_key: Optional[str],
        artifacts: ArtifactStore,
        poll_interval: float = 5.0,
        max_polls: int = 12,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self._base_url = base_url.rstrip("/") if base_url else None
        self._api_key = api_key or ""
        self._artifacts = artifacts
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    def source_url(self, address: str) -> str:
        return f"{self._base_url}/address/{address}#code"

    def _build_submission(self, address: str, metadata: dict[str, Any]) -> dict[str, str]:
        contract_name = metadata["contract_name"]
        try:
            artifact = self._artifacts.load(contract_name)
            build_info = self._artifacts.load_build_info(contract_name)
        except ConfigError as e:
            raise VerificationError(contract_name, str(e)) from e

        constructor_args = ""
        args = metadata.get("constructor_args") or ()
        if args:
            types = artifact.constructor_inputs()
            constructor_args = Web3().codec.encode(types, list(args)).hex()

        version = build_info.get("solcLongVersion") or build_info.get("solcVersion", "")
        return {
            "apikey": self._api_key,
            "module": "contract",
            "action": "verifysourcecode",
            "contractaddress": address,
            "sourceCode": json.dumps(build_info["input"]),
            "codeformat": "solidity-standard-json-input",
            "contractname": f"{artifact.source_name}:{artifact.contract_name}",
            "compilerversion": f"v{version}",
            # Etherscan's parameter name
            "constructorArguements": constructor_args,
        }

    async def publish(self, address: str, metadata: dict[str, Any]) -> str:
        """
        Verify the contract at `address`.

        Args:
            address: Address whose bytecode should be matched
            metadata: contract_name (artifact name) and constructor_args

        Returns:
            Public URL of the verified source page

        Raises:
            VerificationError: On rejection, timeout or transport failure
        """
        name = metadata.get("contract_name", address)
        if not self._base_url:
            raise VerificationError(name, "no explorer base URL configured")
        submission = self._build_submission(address, metadata)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, data=submission)
                response.raise_for_status()
                body = _json_body(response, name)
                if str(body.get("status")) != "1":
                    if _is_already_verified(body.get("result")):
                        logger.info(f"{name} @ {address} is already verified")
                        return self.source_url(address)
                    raise VerificationError(name, str(body.get("result") or body.get("message")))

                guid = body.get("result")
                if not guid:
                    raise VerificationError(name, f"unexpected explorer response: no guid in {body!r}")
                logger.debug(f"{name}: verification submitted (guid {guid})")
                await self._wait_for_verdict(client, name, guid)
        except httpx.HTTPError as e:
            raise VerificationError(name, f"explorer request failed: {e}") from e

        return self.source_url(address)

    async def _wait_for_verdict(self, client: httpx.AsyncClient, name: str, guid: str) -> None:
        params = {"apikey": self._api_key, "module": "contract", "action": "checkverifystatus", "guid": guid}
        for _ in range(self._max_polls):
            await asyncio.sleep(self._poll_interval)
            response = await client.get(self.api_url, params=params)
            response.raise_for_status()
            body = _json_body(response, name)
            result = str(body.get("result", ""))
            if str(body.get("status")) == "1" or _is_already_verified(result):
                return
            if PENDING not in result.lower():
                raise VerificationError(name, result or "verification failed")
        raise VerificationError(name, f"no verdict after {self._max_polls} status checks")
