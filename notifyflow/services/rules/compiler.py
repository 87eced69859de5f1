"""Rule type + trigger condition -> canonical event type and dedupe scope.

This is the only place that knows the authoring vocabulary. Rule writes and
the dispatcher both go through `compile_trigger`, so stored rules can never
carry an event type that disagrees with their type/condition.
"""

from enum import Enum
from typing import NamedTuple


class RuleType(str, Enum):
    PAYMENT = "payment"
    SHIPPING = "shipping"
    ABANDONED_CHECKOUT = "abandoned_checkout"
    POST_SALE = "post_sale"


class PaymentCondition(str, Enum):
    PAYMENT_APPROVED = "payment_approved"
    PIX_GENERATED = "pix_generated"
    BOLETO_GENERATED = "boleto_generated"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_EXPIRED = "payment_expired"


class ShippingCondition(str, Enum):
    POSTED = "posted"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    AWAITING_PICKUP = "awaiting_pickup"
    RETURNING = "returning"
    ISSUE = "issue"
    DELIVERED = "delivered"


class DedupeScope(str, Enum):
    ORDER = "order"
    CUSTOMER = "customer"
    CART = "cart"
    NONE = "none"


class CompiledTrigger(NamedTuple):
    event_type: str
    dedupe_scope: DedupeScope


# Short aliases accepted from older rule payloads.
_CONDITION_ALIASES = {
    "approved": PaymentCondition.PAYMENT_APPROVED.value,
    "declined": PaymentCondition.PAYMENT_DECLINED.value,
    "expired": PaymentCondition.PAYMENT_EXPIRED.value,
}

_EVENT_TYPES: dict[RuleType, tuple[dict[str, str], str]] = {
    RuleType.PAYMENT: (
        {
            PaymentCondition.PAYMENT_APPROVED.value: "order.paid",
            PaymentCondition.PIX_GENERATED.value: "order.pix_generated",
            PaymentCondition.BOLETO_GENERATED.value: "order.boleto_generated",
            PaymentCondition.PAYMENT_DECLINED.value: "order.payment_declined",
            PaymentCondition.PAYMENT_EXPIRED.value: "order.payment_expired",
        },
        "order.paid",
    ),
    RuleType.SHIPPING: (
        {
            ShippingCondition.POSTED.value: "order.shipped",
            ShippingCondition.IN_TRANSIT.value: "order.in_transit",
            ShippingCondition.OUT_FOR_DELIVERY.value: "order.out_for_delivery",
            ShippingCondition.AWAITING_PICKUP.value: "order.awaiting_pickup",
            ShippingCondition.RETURNING.value: "order.returning",
            ShippingCondition.ISSUE.value: "order.shipping_issue",
            ShippingCondition.DELIVERED.value: "order.delivered",
        },
        "order.shipped",
    ),
    RuleType.ABANDONED_CHECKOUT: ({}, "checkout.abandoned"),
    RuleType.POST_SALE: ({}, "customer.first_order"),
}

_DEDUPE_SCOPES: dict[RuleType, DedupeScope] = {
    RuleType.PAYMENT: DedupeScope.ORDER,
    RuleType.SHIPPING: DedupeScope.ORDER,
    RuleType.ABANDONED_CHECKOUT: DedupeScope.CART,
    RuleType.POST_SALE: DedupeScope.CUSTOMER,
}

FALLBACK_EVENT_TYPE = "order.created"


def _rule_type(value: str | RuleType) -> RuleType | None:
    try:
        return RuleType(value)
    except ValueError:
        return None


def dedupe_scope_for(rule_type: str | RuleType) -> DedupeScope:
    parsed = _rule_type(rule_type)
    if parsed is None:
        return DedupeScope.NONE
    return _DEDUPE_SCOPES[parsed]


def compile_trigger(rule_type: str | RuleType, trigger_condition: str | Enum | None) -> CompiledTrigger:
    """Map an authored (type, condition) pair to its canonical trigger.

    Total: unknown conditions fall back to the type's default event and unknown
    types to `order.created`, so saving a rule never fails on vocabulary.
    """

    parsed = _rule_type(rule_type)
    if parsed is None:
        return CompiledTrigger(FALLBACK_EVENT_TYPE, DedupeScope.NONE)

    condition = trigger_condition.value if isinstance(trigger_condition, Enum) else trigger_condition
    condition = _CONDITION_ALIASES.get(condition, condition) if parsed is RuleType.PAYMENT else condition
    by_condition, default_event = _EVENT_TYPES[parsed]
    event_type = by_condition.get(condition or "", default_event)
    return CompiledTrigger(event_type, _DEDUPE_SCOPES[parsed])
