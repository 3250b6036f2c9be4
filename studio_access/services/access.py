"""
Access Evaluator - decides whether a principal may view or download content.

Pure functions, no I/O. Callers fetch the ContentUnit from the entitlement
store first. The evaluator is role-agnostic: ownership, allow-listing and
purchases are the only gates.

Evaluation order (first match wins):
1. unit missing                         -> Denied("not found")
2. public and not paid                  -> Granted
3. no principal                         -> RequiresPayment if paid, else RequiresAuthentication
4. principal is the owner               -> Granted
5. principal is allow-listed            -> Granted
6. paid: principal purchased the unit   -> Granted, else RequiresPayment(price)
7. otherwise                            -> Denied("access denied")

Owner and allow-list checks precede the payment check so invited or owned
content is never charged.
"""

from studio_access.models.api import ContentKind
from studio_access.models.domain import (
    ContentUnit,
    Decision,
    Denied,
    Granted,
    Principal,
    RequiresAuthentication,
    RequiresPayment,
)

NOT_FOUND = "not found"
ACCESS_DENIED = "access denied"


def evaluate(unit: ContentUnit | None, principal: Principal | None = None) -> Decision:
    """Decide access to a single content unit."""
    if unit is None:
        return Denied(NOT_FOUND)

    paid = unit.monetization.is_paid

    if unit.is_public and not paid:
        return Granted()

    if principal is None:
        if paid:
            return RequiresPayment(unit.monetization.price)
        return RequiresAuthentication()

    principal_id = principal.principal_id

    if principal_id == unit.owner_id:
        return Granted()

    if principal_id in unit.allow_list:
        return Granted()

    if paid:
        if principal_id in unit.paid_principals:
            return Granted()
        return RequiresPayment(unit.monetization.price)

    return Denied(ACCESS_DENIED)


def evaluate_upload(
    upload: ContentUnit | None,
    principal: Principal | None = None,
    gallery: ContentUnit | None = None,
) -> Decision:
    """
    Decide access to an upload, optionally reached through a gallery.

    A gallery the principal may access grants every upload it contains, even
    when the upload is independently paid. Gallery purchases are never copied
    into the upload's own paid principals; without a gallery the upload is
    evaluated on its own entitlements only.
    """
    if upload is None:
        return Denied(NOT_FOUND)

    if (
        gallery is not None
        and gallery.kind is ContentKind.GALLERY
        and gallery.contains(upload.content_id)
        and isinstance(evaluate(gallery, principal), Granted)
    ):
        return Granted()

    return evaluate(upload, principal)


def is_granted(decision: Decision) -> bool:
    return isinstance(decision, Granted)
