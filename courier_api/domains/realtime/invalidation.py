from courier_api.domains.realtime.feed import EVENT_TYPES


# Read-model cache keys shared by the rider, customer, business and admin views.
PENDING = "pending-requests"
ACTIVE = "my-active-deliveries"
COMPLETED = "my-completed-deliveries"
ADMIN_ORDERS = "admin-orders"
ADMIN_RIDER_REQUESTS = "admin-rider-requests"
BUSINESS_ORDERS = "business-orders"
CUSTOMER_ORDERS = "customer-orders"
ACTIVE_ORDERS = "active-orders"
ADMIN_STATS = "admin-stats"
RIDER_PROFILE = "rider-profile"
ONLINE_RIDERS = "online-riders"
RIDER_PAYMENTS = "rider-payments"
ALL_RIDER_PAYMENTS = "all-rider-payments"
EARNINGS_SUMMARY = "rider-earnings-summary"
NOTIFICATIONS = "notifications"

_DELIVERY_VIEWS = frozenset({PENDING, ACTIVE, COMPLETED, ACTIVE_ORDERS, ADMIN_STATS})

_BY_TABLE: dict[str, frozenset[str]] = {
    "orders": _DELIVERY_VIEWS | {ADMIN_ORDERS, BUSINESS_ORDERS, CUSTOMER_ORDERS},
    "rider_requests": _DELIVERY_VIEWS | {ADMIN_RIDER_REQUESTS, CUSTOMER_ORDERS},
    "rider_payments": frozenset({RIDER_PAYMENTS, ALL_RIDER_PAYMENTS, EARNINGS_SUMMARY, ADMIN_STATS}),
    "riders": frozenset({RIDER_PROFILE, ONLINE_RIDERS}),
    "notifications": frozenset({NOTIFICATIONS}),
}

# (table, event) -> cache keys to drop. Deleting a rider also drops admin stats.
INVALIDATION_TABLE: dict[tuple[str, str], frozenset[str]] = {
    (table, event): keys for table, keys in _BY_TABLE.items() for event in EVENT_TYPES
}
INVALIDATION_TABLE[("riders", "DELETE")] = _BY_TABLE["riders"] | {ADMIN_STATS}

# Keys to drop after the caller's own mutation, before any change event arrives.
MUTATION_INVALIDATIONS: dict[str, frozenset[str]] = {
    "claim": frozenset({PENDING, ACTIVE, RIDER_PAYMENTS, ADMIN_ORDERS, BUSINESS_ORDERS, ACTIVE_ORDERS}),
    "claim_failed": frozenset({PENDING}),
    "transition": frozenset(
        {
            PENDING,
            ACTIVE,
            COMPLETED,
            ADMIN_ORDERS,
            BUSINESS_ORDERS,
            ACTIVE_ORDERS,
            RIDER_PAYMENTS,
            EARNINGS_SUMMARY,
            ALL_RIDER_PAYMENTS,
            ADMIN_STATS,
        }
    ),
    "presence": frozenset({RIDER_PROFILE, ONLINE_RIDERS}),
}


def tables() -> list[str]:
    return sorted(_BY_TABLE)


def keys_for(table: str, event: str) -> frozenset[str]:
    return INVALIDATION_TABLE.get((table, event), frozenset())
