"""
Unit tests for profiles, organizations, seats and billing.
"""
import pytest

from core.exceptions import DataNotFoundError, PaymentError, SeatLimitError, ValidationError
from services import account_service


def onboard(uid, store, company="Acme Ltd"):
    account_service.initialize_user_profile(uid, f"{uid}@example.com", uid.title(), store=store)
    return account_service.update_compliance_profile(uid, "US", "12-3456789", company, store=store)


def test_first_sign_in_creates_profile_and_settings(store):
    """New users get a profile and default settings."""
    profile, is_new = account_service.initialize_user_profile("u1", "u1@example.com", "Uma", store=store)

    assert is_new is True
    assert profile.display_name == "Uma"
    assert account_service.needs_onboarding(profile) is True
    settings_doc = store.get("settings", "u1")
    assert settings_doc["preferred_currency"] == "USD"
    assert settings_doc["theme"] == "dark"
    assert settings_doc["notifications"] == {"email": True}


def test_repeat_sign_in_updates_last_seen(store):
    """Existing users are not recreated."""
    first, _ = account_service.initialize_user_profile("u1", "u1@example.com", store=store)
    store.update("users", "u1", {"last_seen": 0})

    again, is_new = account_service.initialize_user_profile("u1", "u1@example.com", store=store)

    assert is_new is False
    assert again.created_at == first.created_at
    assert again.last_seen > 0


def test_sync_unknown_user(store):
    """Unknown users are not found."""
    with pytest.raises(DataNotFoundError):
        account_service.sync_user("ghost", store)


def test_onboarding_requires_country_and_tax_id(store):
    """Blank required fields are rejected."""
    account_service.initialize_user_profile("u1", store=store)
    with pytest.raises(ValidationError) as exc_info:
        account_service.update_compliance_profile("u1", " ", "", "Acme", store=store)
    assert exc_info.value.details["missing"] == ["country", "tax_id"]


def test_onboarding_creates_free_organization(store):
    """Completing onboarding creates a free org with the user as admin."""
    profile = onboard("u1", store)

    assert profile.role == "admin"
    assert account_service.needs_onboarding(profile) is False
    org = account_service.get_organization(profile.org_id, store)
    assert org.name == "Acme Ltd"
    assert org.plan == "free"
    assert org.credits == 5
    assert org.max_seats == 3
    assert org.members == ["u1"]


def test_onboarding_twice_keeps_organization(store):
    """A second submission does not create a new org."""
    first = onboard("u1", store)
    second = account_service.update_compliance_profile("u1", "GB", "GB123", "Acme", store=store)
    assert second.org_id == first.org_id
    assert second.country == "GB"


def test_mark_intro_seen(store):
    account_service.initialize_user_profile("u1", store=store)
    assert account_service.mark_intro_seen("u1", store).has_seen_intro is True


def test_add_teammate_moves_user_between_orgs(store):
    """Joining a new org removes the user from the old one."""
    owner = onboard("owner", store)
    other = onboard("mover", store, company="Old Co")

    org = account_service.add_teammate("owner", "mover", store)

    assert org.members == ["owner", "mover"]
    assert account_service.sync_user("mover", store).org_id == owner.org_id
    assert account_service.get_organization(other.org_id, store).members == []


def test_moving_admin_hands_over_previous_org(store):
    """The old organization's admin role passes to a remaining member."""
    onboard("owner", store)
    old = onboard("lead", store, company="Old Co")
    account_service.initialize_user_profile("clerk", store=store)
    account_service.add_teammate("lead", "clerk", store)

    account_service.add_teammate("owner", "lead", store)

    previous = account_service.get_organization(old.org_id, store)
    assert previous.members == ["clerk"]
    assert previous.admin_id == "clerk"
    assert account_service.sync_user("clerk", store).role == "admin"
    assert account_service.sync_user("lead", store).role == "member"
    roster = account_service.fetch_team_members(old.org_id, store)
    assert [(m.id, m.role) for m in roster] == [("clerk", "Manager")]


def test_add_teammate_is_idempotent(store):
    """Adding an existing member changes nothing."""
    onboard("owner", store)
    account_service.initialize_user_profile("mate", store=store)

    account_service.add_teammate("owner", "mate", store)
    org = account_service.add_teammate("owner", "mate", store)
    assert org.members == ["owner", "mate"]


def test_seat_limit(store):
    """Free plan has three seats."""
    onboard("owner", store)
    for uid in ("m1", "m2", "m3"):
        account_service.initialize_user_profile(uid, store=store)

    account_service.add_teammate("owner", "m1", store)
    account_service.add_teammate("owner", "m2", store)
    with pytest.raises(SeatLimitError):
        account_service.add_teammate("owner", "m3", store)


def test_add_teammate_requires_owner_org(store):
    """Owners must finish onboarding first."""
    account_service.initialize_user_profile("owner", store=store)
    account_service.initialize_user_profile("mate", store=store)
    with pytest.raises(ValidationError):
        account_service.add_teammate("owner", "mate", store)


def test_fetch_team_members(store):
    """Admin is the Manager, everyone else a Processor."""
    profile = onboard("owner", store)
    account_service.initialize_user_profile("mate", "mate@example.com", store=store)
    account_service.add_teammate("owner", "mate", store)

    members = account_service.fetch_team_members(profile.org_id, store)

    assert [(m.id, m.role) for m in members] == [("owner", "Manager"), ("mate", "Processor")]
    assert members[0].status == "Online"


def test_enterprise_upgrade_is_idempotent(store):
    """Repeated approval callbacks do not record a second payment."""
    profile = onboard("owner", store)

    org = account_service.process_enterprise_upgrade(profile.org_id, "owner", "I-SUB123", store)
    assert org.plan == "enterprise"
    assert org.max_seats == 50
    assert store.get("transactions", "I-SUB123")["total_paid"] == 231.00

    store.update("organizations", profile.org_id, {"max_seats": 60})
    again = account_service.process_enterprise_upgrade(profile.org_id, "owner", "I-SUB123", store)
    assert again.max_seats == 60
    assert len(store.query("transactions")) == 1


def test_enterprise_upgrade_requires_subscription(store):
    profile = onboard("owner", store)
    with pytest.raises(PaymentError):
        account_service.process_enterprise_upgrade(profile.org_id, "owner", "", store)


def test_decrement_credit(store):
    """Free plans lose a credit and clamp at zero."""
    profile = onboard("owner", store)
    store.update("organizations", profile.org_id, {"credits": 1})

    account_service.decrement_credit(profile.org_id, store)
    account_service.decrement_credit(profile.org_id, store)

    assert account_service.get_organization(profile.org_id, store).credits == 0


def test_decrement_credit_skips_enterprise(store):
    profile = onboard("owner", store)
    account_service.process_enterprise_upgrade(profile.org_id, "owner", "I-SUB", store)

    account_service.decrement_credit(profile.org_id, store)
    assert account_service.get_organization(profile.org_id, store).credits == 5


def test_decrement_credit_swallows_failures(store):
    """Unknown orgs are logged, not raised."""
    account_service.decrement_credit("missing-org", store)
