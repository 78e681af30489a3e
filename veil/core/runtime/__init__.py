"""Sequential execution runtime"""
from veil.core.runtime.contract import Contract
from veil.core.runtime.chain import Chain, CallFrame, Event, Receipt

__all__ = [
    "Contract",
    "Chain",
    "CallFrame",
    "Event",
    "Receipt",
]
