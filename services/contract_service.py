"""
Soroban contract invocation builder

Produces the opaque, base64 encoded invocation payload that the client signs
and submits. Building never touches the database and never runs inside a
transaction.
"""

import base64
import binascii
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Union

from stellar_sdk import Address, scval
from stellar_sdk import xdr as stellar_xdr

from utils.datetime_helpers import to_iso_utc
from utils.exceptions import DependencyError

logger = logging.getLogger(__name__)


class InvocationBuilder:
    """Interface for anything that can build a contract invocation payload"""

    def build_invocation(self, contract_id: str, method: str, args: Sequence[Any]) -> Union[str, bytes]:
        raise NotImplementedError


class ContractInvocationBuilder(InvocationBuilder):
    """Encodes a Soroban InvokeContractArgs XDR with stellar_sdk"""

    @staticmethod
    def _to_scval(value: Any) -> stellar_xdr.SCVal:
        if value is None:
            return scval.to_void()
        if isinstance(value, bool):
            return scval.to_bool(value)
        if isinstance(value, int):
            return scval.to_int128(value)
        if isinstance(value, datetime):
            return scval.to_string(to_iso_utc(value))
        if isinstance(value, Decimal):
            return scval.to_string(format(value, "f"))
        return scval.to_string(str(value))

    def build_invocation(self, contract_id: str, method: str, args: Sequence[Any]) -> str:
        invocation = stellar_xdr.InvokeContractArgs(
            contract_address=Address(contract_id).to_xdr_sc_address(),
            function_name=stellar_xdr.SCSymbol(method.encode("utf-8")),
            args=[self._to_scval(arg) for arg in args],
        )
        return invocation.to_xdr()


def ensure_base64(payload: Union[str, bytes]) -> str:
    """Return payload as base64 text, encoding raw bytes or non-base64 text"""
    if isinstance(payload, (bytes, bytearray)):
        return base64.b64encode(bytes(payload)).decode("ascii")
    try:
        base64.b64decode(payload, validate=True)
        return payload
    except (binascii.Error, ValueError):
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")


class ContractService:
    """Builds invocation payloads and maps every failure to DependencyError"""

    def __init__(self, builder: Optional[InvocationBuilder] = None):
        self.builder = builder or ContractInvocationBuilder()

    def build(self, contract_id: Optional[str], method: str, args: List[Any]) -> str:
        if not contract_id:
            logger.error(f"❌ CONTRACT_NOT_CONFIGURED: no contract id for {method}")
            raise DependencyError(f"contract for {method} is not configured")

        try:
            payload = self.builder.build_invocation(contract_id, method, args)
        except DependencyError:
            raise
        except Exception as e:
            logger.error(f"❌ INVOCATION_BUILD_FAILED: {method} on {contract_id}: {e}", exc_info=True)
            raise DependencyError(f"failed to build {method} invocation") from e

        if not payload:
            raise DependencyError(f"failed to build {method} invocation")

        logger.debug(f"🧾 INVOCATION_BUILT: {method} on {contract_id}")
        return ensure_base64(payload)
