"""
Brokerage function calls.

Thin helpers over ``functions.invoke`` for the ``alpacaBrokerage`` and
``alpacaTrading`` functions, unwrapping the ``{success, data, error}``
envelope.
"""
from typing import Any, Dict

from gateway.base import Gateway
from workflows.errors import BrokerageError

BROKERAGE_FUNCTION = "alpacaBrokerage"
TRADING_FUNCTION = "alpacaTrading"
TRADABLE_STATUSES = frozenset({"APPROVED", "ACTIVE"})


def invoke_action(gateway: Gateway, function_name: str, action: str, **params: Any) -> Dict[str, Any]:
    """
    Invoke one action and return the whole envelope.

    Raises:
        RemoteCallError: transport failure
        BrokerageError: envelope reports ``success: false``
    """
    payload = {"action": action}
    payload.update(params)
    result = gateway.functions.invoke(function_name, payload)
    envelope = result.data or {}
    if not envelope.get("success"):
        raise BrokerageError(action, envelope.get("error") or f"{action} failed")
    return envelope


def brokerage(gateway: Gateway, action: str, **params: Any) -> Dict[str, Any]:
    return invoke_action(gateway, BROKERAGE_FUNCTION, action, **params)


def trading(gateway: Gateway, action: str, **params: Any) -> Dict[str, Any]:
    return invoke_action(gateway, TRADING_FUNCTION, action, **params)
