"""Stripe: Connect payout accounts and billing webhooks."""
