"""
Master policy for the directory tables.

Single source of truth for who may do what on every table. Loading it is
idempotent: the whole rule set is replaced in one swap, so running it twice
leaves exactly the same registry.

Conventions:
- admin checks use the Subject's pre-resolved ``is_admin`` (``adminOnly``),
  never a lookup into the admin list from inside a rule
- "the user's own email" checks use the email claim (``emailMatch``), never
  a read from the identity store
- rows scoped by provider use the bundled ``provider_owner`` custom predicate
  (registered in ``predicates.py``)
- "FOR ALL" rules are expanded to one rule per operation with the same name
"""

from typing import Any

from rowguard.services.policy.types import Operation

CREATE = Operation.CREATE.value
READ = Operation.READ.value
UPDATE = Operation.UPDATE.value
DELETE = Operation.DELETE.value


def _rule(resource_type: str, operation: str, name: str, kind: str, **params: Any) -> dict:
    return {
        "resourceType": resource_type,
        "operation": operation,
        "name": name,
        "ruleKind": kind,
        "params": params,
    }


def _for_all(resource_type: str, name: str, kind: str, **params: Any) -> list[dict]:
    return [_rule(resource_type, op, name, kind, **params) for op in (CREATE, READ, UPDATE, DELETE)]


def _owner(resource_type: str, operation: str, name: str, field: str = "owner_user_id") -> dict:
    return _rule(resource_type, operation, name, "ownerMatch", field=field)


def _admin(resource_type: str, operation: str, name: str) -> dict:
    return _rule(resource_type, operation, name, "adminOnly")


def _public(resource_type: str, operation: str, name: str, **where: Any) -> dict:
    if where:
        return _rule(resource_type, operation, name, "publicRead", where=where)
    return _rule(resource_type, operation, name, "publicRead")


MASTER_RULES: list[dict] = [
    # providers: everyone reads, owners and admins manage
    _public("providers", READ, "providers_select_all"),
    _owner("providers", CREATE, "providers_insert_auth"),
    _owner("providers", UPDATE, "providers_update_owner"),
    _admin("providers", UPDATE, "providers_update_admin"),
    _owner("providers", DELETE, "providers_delete_owner"),
    _admin("providers", DELETE, "providers_delete_admin"),
    # provider_job_posts: approved (or unmoderated) posts are public
    _public("provider_job_posts", READ, "job_posts_select_approved", status=["approved", None]),
    _owner("provider_job_posts", READ, "job_posts_select_owner"),
    _admin("provider_job_posts", READ, "job_posts_select_admin"),
    _owner("provider_job_posts", CREATE, "job_posts_insert_auth"),
    _owner("provider_job_posts", UPDATE, "job_posts_update_owner"),
    _admin("provider_job_posts", UPDATE, "job_posts_update_admin"),
    _owner("provider_job_posts", DELETE, "job_posts_delete_owner"),
    _admin("provider_job_posts", DELETE, "job_posts_delete_admin"),
    # provider_change_requests
    _owner("provider_change_requests", READ, "change_requests_select_owner"),
    _admin("provider_change_requests", READ, "change_requests_select_admin"),
    _owner("provider_change_requests", CREATE, "change_requests_insert_auth"),
    _owner("provider_change_requests", UPDATE, "change_requests_update_owner"),
    _admin("provider_change_requests", UPDATE, "change_requests_update_admin"),
    _owner("provider_change_requests", DELETE, "change_requests_delete_owner"),
    _admin("provider_change_requests", DELETE, "change_requests_delete_admin"),
    # business_applications: anyone may apply, applicants see their own
    _public("business_applications", CREATE, "applications_insert_public"),
    _rule("business_applications", READ, "applications_select_owner", "emailMatch", field="email"),
    _admin("business_applications", READ, "applications_select_admin"),
    _admin("business_applications", UPDATE, "applications_update_admin"),
    _rule("business_applications", DELETE, "applications_delete_owner", "emailMatch", field="email"),
    _admin("business_applications", DELETE, "applications_delete_admin"),
    # calendar_events
    _public("calendar_events", READ, "events_select_all"),
    _owner("calendar_events", CREATE, "events_insert_auth", field="created_by_user_id"),
    _owner("calendar_events", UPDATE, "events_update_owner", field="created_by_user_id"),
    _admin("calendar_events", UPDATE, "events_update_admin"),
    _owner("calendar_events", DELETE, "events_delete_owner", field="created_by_user_id"),
    _admin("calendar_events", DELETE, "events_delete_admin"),
    # booking_events: customers by email, provider owners by provider
    _rule("booking_events", CREATE, "booking_events_insert_auth", "authenticated"),
    _rule(
        "booking_events", READ, "booking_events_select_customer", "emailMatch", field="customer_email"
    ),
    _rule(
        "booking_events",
        READ,
        "booking_events_select_provider_owner",
        "custom",
        predicate="provider_owner",
    ),
    _admin("booking_events", READ, "booking_events_select_admin"),
    _rule(
        "booking_events",
        UPDATE,
        "booking_events_update_provider_owner",
        "custom",
        predicate="provider_owner",
    ),
    _admin("booking_events", UPDATE, "booking_events_update_admin"),
    _admin("booking_events", DELETE, "booking_events_delete_admin"),
    # bookings
    _owner("bookings", READ, "bookings_select_owner", field="user_id"),
    _admin("bookings", READ, "bookings_select_admin"),
    _owner("bookings", CREATE, "bookings_insert_auth", field="user_id"),
    _owner("bookings", UPDATE, "bookings_update_owner", field="user_id"),
    _admin("bookings", UPDATE, "bookings_update_admin"),
    _owner("bookings", DELETE, "bookings_delete_owner", field="user_id"),
    _admin("bookings", DELETE, "bookings_delete_admin"),
    # blog_posts
    _public("blog_posts", READ, "blog_select_all"),
    _admin("blog_posts", CREATE, "blog_insert_admin"),
    _admin("blog_posts", UPDATE, "blog_update_admin"),
    _admin("blog_posts", DELETE, "blog_delete_admin"),
    # contact_leads: public submit, admins manage
    _public("contact_leads", CREATE, "contact_insert_public"),
    _admin("contact_leads", READ, "contact_select_admin"),
    _admin("contact_leads", UPDATE, "contact_update_admin"),
    _admin("contact_leads", DELETE, "contact_delete_admin"),
    # funnel_responses
    _public("funnel_responses", CREATE, "funnel_insert_public"),
    _rule("funnel_responses", READ, "funnel_select_owner", "emailMatch", field="user_email"),
    _admin("funnel_responses", READ, "funnel_select_admin"),
    _admin("funnel_responses", UPDATE, "funnel_update_admin"),
    _admin("funnel_responses", DELETE, "funnel_delete_admin"),
    # profiles: keyed by the user's own id
    _owner("profiles", READ, "profiles_select_own", field="id"),
    _admin("profiles", READ, "profiles_select_admin"),
    _owner("profiles", CREATE, "profiles_insert_own", field="id"),
    _owner("profiles", UPDATE, "profiles_update_own", field="id"),
    _admin("profiles", UPDATE, "profiles_update_admin"),
    _admin("profiles", DELETE, "profiles_delete_admin"),
    # user_notifications
    _owner("user_notifications", READ, "notifications_select_own", field="user_id"),
    _admin("user_notifications", READ, "notifications_select_admin"),
    _owner("user_notifications", CREATE, "notifications_insert_own", field="user_id"),
    _admin("user_notifications", CREATE, "notifications_insert_admin"),
    _owner("user_notifications", UPDATE, "notifications_update_own", field="user_id"),
    _admin("user_notifications", UPDATE, "notifications_update_admin"),
    _owner("user_notifications", DELETE, "notifications_delete_own", field="user_id"),
    _admin("user_notifications", DELETE, "notifications_delete_admin"),
    # categories
    _public("categories", READ, "categories_select_all"),
    _admin("categories", CREATE, "categories_insert_admin"),
    _admin("categories", UPDATE, "categories_update_admin"),
    _admin("categories", DELETE, "categories_delete_admin"),
    # user-owned join tables
    *_for_all("saved_providers", "saved_providers_all_own", "ownerMatch", field="user_id"),
    _public("event_votes", READ, "event_votes_select_all"),
    *_for_all("event_votes", "event_votes_all_own", "ownerMatch", field="user_id"),
    _owner("event_flags", READ, "event_flags_select_own", field="user_id"),
    _admin("event_flags", READ, "event_flags_select_admin"),
    *_for_all("event_flags", "event_flags_all_own", "ownerMatch", field="user_id"),
    *_for_all("user_saved_events", "saved_events_all_own", "ownerMatch", field="user_id"),
    *_for_all("coupon_redemptions", "coupons_all_own", "ownerMatch", field="user_id"),
    *_for_all("dismissed_notifications", "dismissed_all_own", "ownerMatch", field="user_id"),
    # admin-only tables
    *_for_all("admin_emails", "admin_emails_all_admin", "adminOnly"),
    *_for_all("admin_audit_log", "audit_log_all_admin", "adminOnly"),
    *_for_all("providers_backup", "backup_all_admin", "adminOnly"),
]

MASTER_POLICY: dict[str, Any] = {
    "resources": sorted({rule["resourceType"] for rule in MASTER_RULES}),
    "permissive": [],
    "rules": MASTER_RULES,
}
