"""Ambassador referral program.

- Visits tagged ``?ref=CODE`` leave a cookie marker
- The marker becomes a durable Referral once the visitor is signed in
- Ambassadors onboard in steps (apply, social proof, Stripe Connect)
- Paid conversions of referred users accrue commissions
"""

from skillstudio.referral.models import Ambassador, Commission, OnboardingStep, Referral
from skillstudio.referral.attribution import attribution_store
from skillstudio.referral.ledger import commission_ledger

__all__ = [
    "Ambassador",
    "Commission",
    "OnboardingStep",
    "Referral",
    "attribution_store",
    "commission_ledger",
]
