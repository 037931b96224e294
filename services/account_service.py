"""
User profiles, organizations, team seats and billing.

Identity itself is owned by the external identity service; this module keeps
the profile documents in sync with it and manages the organization a user
audits under.
"""
from typing import Any, Dict, List, Optional, Tuple

from core.config import get_settings
from core.db import DocumentStore, get_store
from core.exceptions import (
    DataNotFoundError,
    PaymentError,
    RateGuardException,
    SeatLimitError,
    ValidationError,
)
from core.logger import log_event, setup_logger
from core.schema import Organization, PaymentTransaction, TeamMember, UserProfile, now_ms

logger = setup_logger(__name__)

USERS = "users"
ORGANIZATIONS = "organizations"
SETTINGS = "settings"
TRANSACTIONS = "transactions"

DEFAULT_USER_SETTINGS: Dict[str, Any] = {
    "preferred_currency": "USD",
    "theme": "dark",
    "notifications": {"email": True},
}

# A member counts as online when seen within this window
ONLINE_WINDOW_MS = 15 * 60 * 1000


def initialize_user_profile(
    uid: str,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    store: Optional[DocumentStore] = None
) -> Tuple[UserProfile, bool]:
    """
    Create the profile on first sign-in, otherwise refresh last_seen.

    Args:
        uid: Identity provider user id
        email: Email from the identity token
        display_name: Display name from the identity token
        store: Document store

    Returns:
        (profile, is_new)
    """
    if not uid:
        raise ValidationError("User id is required")

    store = store or get_store()
    existing = store.get(USERS, uid)

    if existing is None:
        profile = UserProfile(uid=uid, email=email, display_name=display_name or email)
        store.set(USERS, uid, profile.model_dump())
        store.set(SETTINGS, uid, {**DEFAULT_USER_SETTINGS, "created_at": now_ms()})
        logger.info(f"Created profile for new user {uid}")
        return profile, True

    updates: Dict[str, Any] = {"last_seen": now_ms()}
    if email and not existing.get("email"):
        updates["email"] = email
    if display_name and not existing.get("display_name"):
        updates["display_name"] = display_name
    return UserProfile(**store.update(USERS, uid, updates)), False


def sync_user(uid: str, store: Optional[DocumentStore] = None) -> UserProfile:
    """
    Load a user's profile.

    Raises:
        DataNotFoundError: If the user never signed in
    """
    doc = (store or get_store()).get(USERS, uid)
    if doc is None:
        raise DataNotFoundError(f"User not found: {uid}", details={"uid": uid})
    return UserProfile(**doc)


def needs_onboarding(profile: UserProfile) -> bool:
    """Country and tax ID are required before the first audit."""
    return not (profile.country and profile.tax_id)


def mark_intro_seen(uid: str, store: Optional[DocumentStore] = None) -> UserProfile:
    store = store or get_store()
    sync_user(uid, store)
    return UserProfile(**store.update(USERS, uid, {"has_seen_intro": True}))


def create_organization(admin_uid: str, name: str, store: Optional[DocumentStore] = None) -> Organization:
    """
    Create a free-plan organization with the given user as admin.

    Args:
        admin_uid: Creating user
        name: Organization name
        store: Document store

    Returns:
        The stored organization
    """
    settings = get_settings()
    store = store or get_store()

    org = Organization(
        name=name or "My Organization",
        admin_id=admin_uid,
        members=[admin_uid],
        plan="free",
        max_seats=settings.free_plan_max_seats,
        credits=settings.free_plan_credits,
    )
    doc = store.add(ORGANIZATIONS, org.model_dump(exclude={"id"}))
    store.update(USERS, admin_uid, {"org_id": doc["id"], "role": "admin"})

    logger.info(f"Created organization {doc['id']} ({org.name}) for {admin_uid}")
    return Organization(**doc)


def get_organization(org_id: str, store: Optional[DocumentStore] = None) -> Organization:
    """
    Raises:
        DataNotFoundError: If the organization does not exist
    """
    doc = (store or get_store()).get(ORGANIZATIONS, org_id)
    if doc is None:
        raise DataNotFoundError(f"Organization not found: {org_id}", details={"org_id": org_id})
    return Organization(**doc)


def update_compliance_profile(
    uid: str,
    country: Optional[str],
    tax_id: Optional[str],
    company_name: Optional[str] = None,
    store: Optional[DocumentStore] = None
) -> UserProfile:
    """
    Save onboarding details and set up the user's organization.

    Args:
        uid: User id
        country: Country of incorporation
        tax_id: Company tax ID
        company_name: Company name, also used as the organization name
        store: Document store

    Returns:
        Updated profile

    Raises:
        ValidationError: If country or tax ID is missing
    """
    country = (country or "").strip()
    tax_id = (tax_id or "").strip()
    company_name = (company_name or "").strip() or None

    missing = [name for name, value in (("country", country), ("tax_id", tax_id)) if not value]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing}
        )

    store = store or get_store()
    profile = sync_user(uid, store)

    store.update(USERS, uid, {"country": country, "tax_id": tax_id, "company_name": company_name})
    if not profile.org_id:
        create_organization(uid, company_name or f"{profile.display_name or uid}'s Organization", store)

    return sync_user(uid, store)


def add_teammate(owner_uid: str, invitee_uid: str, store: Optional[DocumentStore] = None) -> Organization:
    """
    Add an existing user to the owner's organization.

    The invitee leaves any organization they belonged to before. When they
    were its admin, the next remaining member takes over as admin.

    Args:
        owner_uid: Inviting user (must belong to an organization)
        invitee_uid: User to add
        store: Document store

    Returns:
        The owner's organization after the change

    Raises:
        ValidationError: If the owner has no organization
        DataNotFoundError: If the invitee does not exist
        SeatLimitError: If every seat is taken
    """
    store = store or get_store()
    owner = sync_user(owner_uid, store)
    if not owner.org_id:
        raise ValidationError("Complete onboarding before inviting teammates", details={"uid": owner_uid})

    invitee = sync_user(invitee_uid, store)
    org = get_organization(owner.org_id, store)

    if invitee_uid in org.members:
        return org

    if len(org.members) >= org.max_seats:
        raise SeatLimitError(
            f"Organization has no free seats ({len(org.members)}/{org.max_seats})",
            details={"org_id": org.id, "max_seats": org.max_seats, "plan": org.plan}
        )

    if invitee.org_id and invitee.org_id != org.id:
        previous = store.get(ORGANIZATIONS, invitee.org_id)
        if previous is not None:
            remaining = [m for m in previous.get("members", []) if m != invitee_uid]
            updates: Dict[str, Any] = {"members": remaining}
            if previous.get("admin_id") == invitee_uid:
                successor = next((m for m in remaining if store.get(USERS, m) is not None), None)
                if successor:
                    updates["admin_id"] = successor
                    store.update(USERS, successor, {"role": "admin"})
                    logger.info(f"Organization {invitee.org_id} admin passed from {invitee_uid} to {successor}")
            store.update(ORGANIZATIONS, invitee.org_id, updates)
            logger.info(f"Removed {invitee_uid} from previous organization {invitee.org_id}")

    doc = store.update(ORGANIZATIONS, org.id, {"members": org.members + [invitee_uid]})
    store.update(USERS, invitee_uid, {"org_id": org.id, "role": "member"})

    logger.info(f"Added {invitee_uid} to organization {org.id}")
    return Organization(**doc)


def fetch_team_members(org_id: str, store: Optional[DocumentStore] = None) -> List[TeamMember]:
    """Roster for the team page; members whose profile is gone are skipped."""
    store = store or get_store()
    org = get_organization(org_id, store)
    now = now_ms()

    members = []
    for uid in org.members:
        doc = store.get(USERS, uid)
        if doc is None:
            continue
        profile = UserProfile(**doc)
        online = now - profile.last_seen < ONLINE_WINDOW_MS
        members.append(TeamMember(
            id=uid,
            name=profile.display_name or profile.email or uid,
            role="Manager" if uid == org.admin_id else "Processor",
            status="Online" if online else "Offline",
            activity="Active now" if online else "Away",
        ))
    return members


def process_enterprise_upgrade(
    org_id: str,
    user_id: str,
    subscription_id: str,
    store: Optional[DocumentStore] = None
) -> Organization:
    """
    Record an approved subscription and move the organization to enterprise.

    Args:
        org_id: Organization being upgraded
        user_id: User who approved the payment
        subscription_id: Payment provider subscription id
        store: Document store

    Returns:
        Upgraded organization

    Raises:
        PaymentError: If the subscription id is missing
    """
    if not subscription_id:
        raise PaymentError("Subscription id is required", details={"org_id": org_id})

    store = store or get_store()
    org = get_organization(org_id, store)

    if store.get(TRANSACTIONS, subscription_id) is not None:
        logger.info(f"Subscription {subscription_id} already processed, skipping")
        return org

    payment = PaymentTransaction(id=subscription_id, org_id=org_id, user_id=user_id)
    store.set(TRANSACTIONS, subscription_id, payment.model_dump())

    doc = store.update(ORGANIZATIONS, org_id, {
        "plan": "enterprise",
        "max_seats": get_settings().enterprise_max_seats,
        "subscription_id": subscription_id,
    })

    log_event("plan_upgraded", org_id=org_id, subscription_id=subscription_id, value=payment.total_paid)
    return Organization(**doc)


def decrement_credit(org_id: str, store: Optional[DocumentStore] = None) -> None:
    """
    Spend one audit credit on a free-plan organization.

    Best effort: failures are logged and never undo the audit that was
    already stored.
    """
    store = store or get_store()
    try:
        org = get_organization(org_id, store)
        if org.is_enterprise:
            return
        remaining = store.increment(ORGANIZATIONS, org_id, "credits", -1, floor=0)
        logger.debug(f"Organization {org_id} has {remaining} credits left")
    except RateGuardException as e:
        logger.warning(f"Credit decrement failed for {org_id}: {e.message}")
