from __future__ import annotations

import logging

from ..models import SubscriptionPlan
from ..tools.paypal import get_paypal_client
from .exceptions import SubscriptionError

logger = logging.getLogger(__name__)


def publish_plan(plan: SubscriptionPlan, client=None) -> SubscriptionPlan:
    """Create the PayPal catalog product and billing plan backing ``plan``."""
    if plan.provider_plan_id:
        return plan

    client = client or get_paypal_client()
    if not plan.provider_product_id:
        product = client.create_product(plan.name, plan.description)
        plan.provider_product_id = str(product.get("id") or "").strip()
        if not plan.provider_product_id:
            raise SubscriptionError("PayPal did not return a product id.", status_code=502)

    provider_plan = client.create_plan(
        product_id=plan.provider_product_id,
        name=plan.name,
        description=plan.description,
        price_cents=plan.price_cents,
        currency=plan.currency,
        interval_months=plan.interval_months,
        trial_days=plan.trial_days,
    )
    plan.provider_plan_id = str(provider_plan.get("id") or "").strip() or None
    if not plan.provider_plan_id:
        raise SubscriptionError("PayPal did not return a plan id.", status_code=502)

    plan.save(update_fields=["provider_product_id", "provider_plan_id", "updated_at"])
    logger.info("Published plan %s as PayPal plan %s.", plan.pk, plan.provider_plan_id)
    return plan
