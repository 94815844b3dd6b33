from .dispatch import (
    BillingDetails,
    Invoice,
    InvoiceLine,
    PurchaseInvoice,
    SubscriptionInvoice,
    build_purchase_invoice,
    build_subscription_invoice,
    issue_invoice,
    issue_purchase_invoice,
    issue_subscription_invoice,
)

__all__ = [
    "BillingDetails",
    "Invoice",
    "InvoiceLine",
    "PurchaseInvoice",
    "SubscriptionInvoice",
    "build_purchase_invoice",
    "build_subscription_invoice",
    "issue_invoice",
    "issue_purchase_invoice",
    "issue_subscription_invoice",
]
