"""Payment processing.

The checkout only talks to ``PaymentGateway``. ``PaymentSimulator`` is the
stand-in used until a real provider is wired up: it sleeps for a while and
then approves roughly four charges out of five.
"""

import logging
import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from database import utcnow
from errors import ValidationError

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "stripe")

FAILURE_REASONS = [
    "Insufficient funds",
    "Card declined",
    "Invalid card information",
    "Network timeout",
    "Payment gateway error",
]

TIMEOUT_MESSAGE = "Payment gateway timeout"


@dataclass
class PaymentRequest:
    amount: float
    payment_method: str
    currency: str = "USD"
    order_id: Optional[str] = None


class PaymentResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    transaction_id: Optional[str] = None
    amount: float
    currency: str = "USD"
    status: str = Field(..., description="completed, failed or timeout")
    timestamp: str
    message: str
    error_code: Optional[str] = None


def validate_payment_request(request: PaymentRequest) -> None:
    errors: List[Dict[str, str]] = []
    if request.amount is None:
        errors.append({"field": "amount", "message": "amount is required"})
    elif request.amount <= 0:
        errors.append({"field": "amount", "message": "Amount must be greater than 0"})
    if not request.payment_method:
        errors.append({"field": "paymentMethod", "message": "paymentMethod is required"})
    elif request.payment_method not in PAYMENT_METHODS:
        errors.append({"field": "paymentMethod", "message": "Invalid payment method"})
    if errors:
        raise ValidationError("Invalid payment data", errors=errors)


class PaymentGateway(ABC):
    """Charges money. Implementations return a result rather than raising on a decline."""

    @abstractmethod
    def charge(self, request: PaymentRequest) -> PaymentResult:
        raise NotImplementedError


class PaymentSimulator(PaymentGateway):
    def __init__(self, success_rate: float = 0.8, min_delay: float = 1.0, max_delay: float = 3.0,
                 timeout: Optional[float] = None, rng: Optional[random.Random] = None,
                 sleep: Callable[[float], None] = time.sleep):
        if not 0 <= success_rate <= 1:
            raise ValueError("success_rate must be between 0 and 1")
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("delay range must satisfy 0 <= min_delay <= max_delay")
        self.success_rate = success_rate
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.rng = rng or random.Random()
        self.sleep = sleep

    def _token(self, prefix: str) -> str:
        suffix = "".join(self.rng.choice(string.ascii_uppercase + string.digits) for _ in range(9))
        return f"{prefix}-{int(time.time() * 1000)}-{suffix}"

    def charge(self, request: PaymentRequest) -> PaymentResult:
        validate_payment_request(request)
        delay = self.rng.uniform(self.min_delay, self.max_delay)
        base = {
            "amount": request.amount,
            "currency": request.currency or "USD",
        }

        if self.timeout is not None and delay > self.timeout:
            self.sleep(self.timeout)
            logger.warning("Payment for order %s timed out after %.1fs", request.order_id, self.timeout)
            return PaymentResult(success=False, status="timeout", message=TIMEOUT_MESSAGE,
                                 timestamp=utcnow().isoformat(), error_code="ERR-TIMEOUT", **base)

        self.sleep(delay)
        if self.rng.random() < self.success_rate:
            return PaymentResult(
                success=True,
                transaction_id=self._token("TXN"),
                status="completed",
                timestamp=utcnow().isoformat(),
                message="Payment processed successfully",
                **base,
            )
        return PaymentResult(
            success=False,
            transaction_id=self._token("TXN"),
            status="failed",
            timestamp=utcnow().isoformat(),
            message=self.rng.choice(FAILURE_REASONS),
            error_code=f"ERR-{self.rng.randrange(1000):03d}",
            **base,
        )


def generate_receipt(result: PaymentResult, order: Dict[str, Any], email: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not result.success:
        return None
    address = order["shipping_address"]
    return {
        "receipt_number": f"RCP-{int(time.time() * 1000)}",
        "transaction_id": result.transaction_id,
        "order_number": order["order_number"],
        "amount": result.amount,
        "currency": result.currency,
        "payment_method": order["payment_method"],
        "status": result.status,
        "timestamp": result.timestamp,
        "customer": {
            "name": f"{address['first_name']} {address['last_name']}",
            "email": email,
        },
        "items": [
            {
                "name": item["name"],
                "quantity": item["quantity"],
                "price": item["price"],
                "total": round(item["price"] * item["quantity"], 2),
            }
            for item in order["items"]
        ],
        "totals": {
            "subtotal": order["subtotal"],
            "shipping": order["shipping_cost"],
            "tax": order["tax"],
            "total": order["total"],
        },
    }
