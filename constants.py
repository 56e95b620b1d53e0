# Storage namespaces
ORDERS_PREFIX = "orders"
DRAFTS_PREFIX = "tmp"
ORDER_RECORD_NAME = "order.json"
NOTIFICATION_RECORD_NAME = "notification.json"

# Notification outcomes (recorded in the order's audit trail)
NOTIFICATION_SENT = "sent"
NOTIFICATION_FAILED = "failed"
NOTIFICATION_SKIPPED = "skipped"

NOTIFICATION_STATUSES = frozenset({
    NOTIFICATION_SENT,
    NOTIFICATION_FAILED,
    NOTIFICATION_SKIPPED,
})

# Units accepted on the wire, normalised to "ft" / "in"
UNIT_FEET = "ft"
UNIT_INCHES = "in"
UNIT_ALIASES = {
    "ft": UNIT_FEET,
    "feet": UNIT_FEET,
    "foot": UNIT_FEET,
    "in": UNIT_INCHES,
    "inch": UNIT_INCHES,
    "inches": UNIT_INCHES,
}

# Add-on names (also the keys of PriceBreakdown.add_on_costs)
ADDON_HEMS = "hems"
ADDON_GROMMETS = "grommets"
ADDON_LAMINATION = "lamination"
ADDON_DOUBLE_SIDED = "double_sided"
ADDON_POLE_POCKETS = "pole_pockets"

ALL_ADDONS = frozenset({
    ADDON_HEMS,
    ADDON_GROMMETS,
    ADDON_LAMINATION,
    ADDON_DOUBLE_SIDED,
    ADDON_POLE_POCKETS,
})

POLE_POCKET_SIDES = ("top", "bottom", "left", "right")

# Signed URL lifetimes (seconds)
DEFAULT_UPLOAD_URL_TTL = 15 * 60
DEFAULT_DOWNLOAD_URL_TTL = 7 * 24 * 60 * 60

# Order numbers: <PREFIX>-<YYYYMMDD>-<4 x [A-Z0-9]>
ORDER_NO_SUFFIX_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ORDER_NO_SUFFIX_LENGTH = 4
ORDER_NO_MAX_ATTEMPTS = 5
