# app/providers/factory.py
from __future__ import annotations

from typing import Optional

from app.providers.base import PaymentGateway
from settings import settings

_GATEWAY_CACHE: dict[str, PaymentGateway] = {}


def get_gateway(mode: Optional[str] = None) -> PaymentGateway:
    key = (mode or settings.GATEWAY_MODE or "mock").strip().lower()

    if key in _GATEWAY_CACHE:
        return _GATEWAY_CACHE[key]

    if key == "mock":
        from app.providers.mock import MockGateway
        gateway: PaymentGateway = MockGateway()

    elif key == "http":
        from app.providers.gateway import HttpPaymentGateway
        gateway = HttpPaymentGateway()

    else:
        raise ValueError(f"Unsupported GATEWAY_MODE: {key}")

    _GATEWAY_CACHE[key] = gateway
    return gateway


def reset_gateway_cache() -> None:
    _GATEWAY_CACHE.clear()
