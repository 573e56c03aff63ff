"""Subscription gate deciding whether an account may receive notifications."""

from typing import Optional

from config import settings


def has_limitations(account, requires_subscription: Optional[bool] = None) -> bool:
    """Return True when the account is held to the free-plan limits.

    Args:
        account: Account row
        requires_subscription: Policy override; defaults to settings.REQUIRES_SUBSCRIPTION

    Returns:
        bool: False when no subscription is required, or the account pays
        (or has been granted the paid version for free)
    """
    if requires_subscription is None:
        requires_subscription = settings.REQUIRES_SUBSCRIPTION

    if not requires_subscription:
        return False
    if account.has_access_to_paid_version_for_free:
        return False
    return not account.subscription_active


def is_allowed(account, requires_subscription: Optional[bool] = None) -> bool:
    """Return True when notifications may be sent on behalf of the account."""
    return not has_limitations(account, requires_subscription)
