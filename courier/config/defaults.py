"""Default status vocabulary for fulfillment tracking."""

# Upstream status names that drifted from the vocabulary the client renders.
DEFAULT_STATUS_ALIASES: dict[str, str] = {
    "AWAITING_PICKUP": "DRIVER_PICKUP",
    "IN_PROGRESS": "IN_TRANSIT",
}

# Durable status an assignment/acceptance event settles on when it carries none.
ASSIGNMENT_STATUS = "AWAITING_PICKUP"

# Immediate acknowledgment shown before the assignment settles.
DRIVER_FOUND_STATUS = "DRIVER_FOUND"
