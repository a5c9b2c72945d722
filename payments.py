"""
Card payments: Stripe payment intents and post-payment settlement.

Settlement records a Payment and removes the cart items it paid for. With
``MONGO_TRANSACTIONS`` enabled both writes run in one transaction. Without
it the writes are issued in sequence; if the cart cleanup fails or removes
fewer items than the payment references, a reconciliation record is written
and ``PartialSettlement`` is raised instead of reporting success.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import stripe
from fastapi import Request
from pymongo.errors import PyMongoError

from auth import ensure_self
from database import Store, to_object_id
from errors import PartialSettlement, StorageError, UpstreamPaymentError
from schemas import Identity, Payment

logger = logging.getLogger(__name__)


def to_minor_units(price: float) -> int:
    """Convert a price in major units (e.g. dollars) to integer cents."""
    return int((Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentProvider:
    def __init__(self, secret_key: Optional[str]):
        self.secret_key = secret_key

    def create_payment_intent(self, amount: int, currency: str) -> dict:
        if not self.secret_key:
            raise UpstreamPaymentError("Payment provider not configured")
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                payment_method_types=["card"],
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe payment intent failed: %s", e)
            raise UpstreamPaymentError(str(e))
        return {"clientSecret": intent.client_secret}


def get_payment_provider(request: Request):
    return request.app.state.payment_provider


def create_payment_intent(provider, price: float, currency: str) -> dict:
    amount = to_minor_units(price)
    return provider.create_payment_intent(amount, currency)


# ===================== Settlement =====================

def _payment_document(payment: Payment, cart_ids: List, menu_ids: List) -> dict:
    doc = payment.model_dump(exclude_none=True)
    # stored as ObjectIds so $lookup against menu._id resolves
    doc["cart_item_ids"] = cart_ids
    doc["menu_item_ids"] = menu_ids
    return doc


def _insert_result(payment_id: Optional[str]) -> dict:
    return {"acknowledged": payment_id is not None, "insertedId": payment_id}


def _delete_result(deleted: Optional[int]) -> dict:
    return {"acknowledged": deleted is not None, "deletedCount": deleted or 0}


def _settle_in_transaction(store: Store, doc: dict, cart_ids: List):
    def callback(session):
        payment_id = store.insert_payment(doc, session=session)
        deleted = store.delete_cart_items_by_ids(cart_ids, session=session)
        return payment_id, deleted

    try:
        return store.run_in_transaction(callback)
    except PyMongoError as e:
        logger.error("Settlement transaction aborted: %s", e)
        raise StorageError(f"Payment not recorded: {e}")


def _settle_sequentially(store: Store, doc: dict, cart_ids: List, retries: int):
    try:
        payment_id = store.insert_payment(doc)
    except PyMongoError as e:
        logger.error("Payment insert failed: %s", e)
        raise StorageError(f"Payment not recorded: {e}")

    deleted = None
    for attempt in range(max(retries, 0) + 1):
        try:
            deleted = store.delete_cart_items_by_ids(cart_ids)
            break
        except PyMongoError as e:
            logger.warning("Cart cleanup for payment %s failed (attempt %d): %s", payment_id, attempt + 1, e)
    return payment_id, deleted


def _record_reconciliation(store: Store, payment_id: str, email: str, cart_ids: List, deleted: Optional[int]) -> Optional[str]:
    record = {
        "payment_id": payment_id,
        "email": email,
        "cart_item_ids": cart_ids,
        "expected_count": len(cart_ids),
        "deleted_count": deleted,
        "reason": "cart cleanup failed" if deleted is None else "cart items missing",
    }
    try:
        return store.insert_reconciliation(record)
    except PyMongoError as e:
        logger.error("Could not record reconciliation for payment %s: %s", payment_id, e)
        return None


def settle_payment(
    store: Store,
    payment: Payment,
    identity: Identity,
    use_transactions: bool = False,
    retries: int = 1,
) -> dict:
    ensure_self(identity, payment.email)

    # dict.fromkeys keeps order while dropping duplicates
    cart_ids = list(dict.fromkeys(to_object_id(i) for i in payment.cart_item_ids))
    menu_ids = [to_object_id(i) for i in payment.menu_item_ids]
    doc = _payment_document(payment, cart_ids, menu_ids)

    if use_transactions:
        payment_id, deleted = _settle_in_transaction(store, doc, cart_ids)
    else:
        payment_id, deleted = _settle_sequentially(store, doc, cart_ids, retries)

    result = {"insertResult": _insert_result(payment_id), "deleteResult": _delete_result(deleted)}
    if deleted is None or deleted < len(cart_ids):
        reconciliation_id = _record_reconciliation(store, payment_id, payment.email, cart_ids, deleted)
        logger.warning(
            "Partial settlement for payment %s: removed %s of %d cart items",
            payment_id, deleted, len(cart_ids),
        )
        raise PartialSettlement(reconciliationId=reconciliation_id, **result)

    logger.info("Settled payment %s for %s", payment_id, payment.email)
    return result
