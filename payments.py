"""
Payment handoff to the hosted Razorpay checkout.

The browser opens the hosted checkout with the session returned by
``begin_payment`` and reports back through one of three callbacks:
``confirm`` (success), ``fail`` or ``cancel``. Failed and cancelled orders
stay ``pending`` and can be paid again with another ``begin_payment``.
"""
import hashlib
import hmac
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests

from config import Config
from database import now_utc, oid
from errors import PaymentError, PaymentGatewayUnavailable
from logger import logger
from orders import OrderService
from schemas import PaymentOutcome, PaymentSession

PLACEHOLDER_KEY = "your_razorpay_key_id"


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def ensure_payable(order: Dict[str, Any]) -> None:
    if order.get("payment_status") == "completed":
        raise PaymentError("Order is already paid", code="already_paid")
    if order.get("status") != "pending":
        raise PaymentError(f"Order is {order.get('status')} and cannot be paid", code="not_payable")


class RazorpayGateway:
    base_url = "https://api.razorpay.com/v1"

    def __init__(self, key_id: str, key_secret: str, timeout: float = Config.GATEWAY_TIMEOUT):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout

    @classmethod
    def from_config(cls, config=Config) -> Optional["RazorpayGateway"]:
        if not config.RAZORPAY_KEY_ID or config.RAZORPAY_KEY_ID == PLACEHOLDER_KEY:
            return None
        if not config.RAZORPAY_KEY_SECRET:
            return None
        return cls(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, config.GATEWAY_TIMEOUT)

    def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        try:
            response = requests.post(
                f"{self.base_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Razorpay order creation failed for receipt {receipt}: {e}")
            raise PaymentError("Failed to initialize payment. Please try again.")

        if response.status_code != 200:
            try:
                description = response.json().get("error", {}).get("description")
            except ValueError:
                description = None
            logger.error(f"Razorpay rejected order for receipt {receipt}: {response.status_code} {response.text[:200]}")
            raise PaymentError(description or "Failed to initialize payment. Please try again.")
        return response.json()

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        message = f"{gateway_order_id}|{payment_id}".encode()
        expected = hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")


class PaymentHandoff:

    def __init__(self, database, orders: OrderService, gateway: Optional[RazorpayGateway],
                 allow_test_payments: bool = Config.ALLOW_TEST_PAYMENTS,
                 currency: str = Config.CURRENCY, store_name: str = Config.STORE_NAME,
                 clock: Callable[[], datetime] = now_utc):
        self.db = database
        self.orders = orders
        self.gateway = gateway
        self.allow_test_payments = allow_test_payments
        self.currency = currency
        self.store_name = store_name
        self.clock = clock

    def begin_payment(self, order_id: str, user_id: Optional[str] = None) -> PaymentSession:
        order = self.orders.find_order(order_id, user_id)
        ensure_payable(order)

        amount = to_minor_units(order["total_amount"])
        notes = {
            "order_id": order_id,
            "address": f"{order['address']['street']}, {order['address']['city']}",
            "coupon_code": order.get("coupon_code") or "none",
        }

        if self.gateway is None:
            if not self.allow_test_payments:
                logger.error(f"Payment requested for order {order_id} but no gateway is configured")
                raise PaymentGatewayUnavailable("Payments are not available right now")
            transaction_id = f"test_payment_{int(time.time() * 1000)}"
            logger.warning(f"Razorpay not configured, confirming order {order_id} as test payment")
            self.orders.update_order_payment(order_id, transaction_id, "completed")
            return PaymentSession(
                order_id=order_id, gateway="test", amount=amount, currency=self.currency,
                name=self.store_name, description="Order Payment", notes=notes,
                test_mode=True, transaction_id=transaction_id,
            )

        gateway_order = self.gateway.create_order(amount, self.currency, receipt=order_id, notes=notes)
        self.db["order"].update_one(
            {"_id": oid(order_id)},
            {"$set": {"gateway_order_id": gateway_order["id"], "updated_at": self.clock()}},
        )
        logger.info(f"Payment session {gateway_order['id']} opened for order {order_id} ({amount} {self.currency})")
        return PaymentSession(
            order_id=order_id, gateway="razorpay", amount=amount, currency=self.currency,
            key_id=self.gateway.key_id, gateway_order_id=gateway_order["id"],
            name=self.store_name, description="Order Payment", notes=notes,
        )

    def confirm(self, order_id: str, payment_id: str, signature: Optional[str] = None,
                user_id: Optional[str] = None) -> PaymentOutcome:
        order = self.orders.find_order(order_id, user_id)
        if order.get("payment_status") == "completed":
            if order.get("payment_id") == payment_id:
                return PaymentOutcome(order_id=order_id, status="success", transaction_id=payment_id)
            raise PaymentError("Order is already paid", code="already_paid")

        ensure_payable(order)
        if self.gateway is None:
            raise PaymentGatewayUnavailable("Payments are not available right now")
        gateway_order_id = order.get("gateway_order_id")
        if not gateway_order_id or not self.gateway.verify_signature(gateway_order_id, payment_id, signature):
            logger.warning(f"Rejected payment {payment_id} for order {order_id}: bad signature")
            raise PaymentError("Payment verification failed", code="bad_signature")

        try:
            self.orders.update_order_payment(order_id, payment_id, "completed")
        except PaymentError as e:
            # a concurrent confirmation of the same payment got there first
            if e.code != "already_paid" or self.orders.find_order(order_id).get("payment_id") != payment_id:
                raise
        return PaymentOutcome(order_id=order_id, status="success", transaction_id=payment_id)

    def fail(self, order_id: str, reason: str, payment_id: Optional[str] = None,
             user_id: Optional[str] = None) -> PaymentOutcome:
        order = self.orders.find_order(order_id, user_id)
        ensure_payable(order)
        self.orders.update_order_payment(order_id, payment_id, "failed", reason=reason)
        logger.warning(f"Payment failed for order {order_id}: {reason}")
        return PaymentOutcome(order_id=order_id, status="failure", transaction_id=payment_id, reason=reason)

    def cancel(self, order_id: str, user_id: Optional[str] = None) -> PaymentOutcome:
        self.orders.find_order(order_id, user_id)
        logger.info(f"Payment cancelled for order {order_id}, order left pending")
        return PaymentOutcome(order_id=order_id, status="cancelled")
