"""
services/credits/gateway.py
Razorpay client wrapped in a circuit breaker and an explicit timeout.

The Razorpay SDK is blocking, so calls run in a worker thread. A timeout or
an open breaker surfaces as TransientNetworkError (503); the caller decides
whether to retry.
"""

import asyncio
import logging

import razorpay
from pybreaker import CircuitBreaker, CircuitBreakerError

from config.settings import settings
from shared.utils.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self):
        self.breakers = {}

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=5,  # Open after 5 failures
                reset_timeout=60,  # Try again after 60 seconds
                name=service_name,
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager()


def get_razorpay_client() -> razorpay.Client:
    return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))


async def _call(operation: str, func, *args):
    breaker = circuit_breaker_manager.get_breaker("razorpay")
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(breaker.call, func, *args),
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    except CircuitBreakerError as e:
        logger.error(f"Razorpay circuit open, refusing {operation}")
        raise TransientNetworkError("Payment gateway temporarily unavailable") from e
    except asyncio.TimeoutError as e:
        logger.error(f"Razorpay {operation} timed out after {settings.GATEWAY_TIMEOUT_SECONDS}s")
        raise TransientNetworkError("Payment gateway timed out") from e
    except Exception as e:
        logger.error(f"Razorpay {operation} failed: {e}")
        raise TransientNetworkError("Payment gateway error") from e


async def create_order(amount_paise: int, receipt: str, notes: dict) -> dict:
    """Create a Razorpay order. Returns the gateway's order entity."""
    client = get_razorpay_client()
    return await _call(
        "order.create",
        client.order.create,
        {
            "amount": amount_paise,
            "currency": settings.PAYMENT_CURRENCY,
            "receipt": receipt,
            "notes": notes,
        },
    )
