# Overview: Role resolution for identities forwarded by the upstream auth gateway.

"""
Identities are authenticated upstream; this service only decides which role
the core treats a caller as.

Privileged identities come from the PRIVILEGED_EMAILS setting, read once when
the app is created. There is no other source of admin emails.
"""

from __future__ import annotations

from flask import current_app

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_SELLER = "seller"
ROLE_CUSTOMER = "customer"

ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER, ROLE_CUSTOMER)
STAFF_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER)
MANAGER_ROLES = (ROLE_ADMIN, ROLE_MANAGER)


def load_privileged_emails(raw) -> frozenset[str]:
    """Accepts a comma-separated string or any iterable of emails."""
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        raw = raw.split(",")
    return frozenset(str(e).strip().lower() for e in raw if str(e).strip())


def is_privileged(email: str | None) -> bool:
    if not email:
        return False
    return email.strip().lower() in current_app.config.get("PRIVILEGED_EMAILS", frozenset())


def resolve_role(email: str | None, claimed_role: str | None = None) -> str:
    """
    Privileged emails are always admin. Anyone else gets the role the
    gateway asserted, or customer when it asserted nothing recognizable.
    """
    if is_privileged(email):
        return ROLE_ADMIN
    role = (claimed_role or "").strip().lower()
    return role if role in ROLES else ROLE_CUSTOMER
