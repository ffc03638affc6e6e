"""
API Endpoint URL Constants

This module defines the URL paths served by the station app and the paths
called on collaborator services.

These URLs are relative paths and are prefixed by the mount point of the
app, or by the collaborator base URL from `constants`.
"""

# -------------------------------
# Dispatch
# -------------------------------
URL_DISPATCH = "/dispatch"
URL_DISPATCH_STATUS = "/dispatch/status"
URL_DISPATCH_EVENT = "/dispatch/event"
URL_PASSENGER_DROP = "/dispatch/passenger_drop"
URL_PERMIT = "/dispatch/permit"
URL_PERMIT_RETRY = "/dispatch/permit/retry"
URL_PAYMENT = "/dispatch/payment"
URL_DEPARTURE_ORDER = "/dispatch/departure_order"
URL_DEPARTURE = "/dispatch/departure"
URL_EXIT = "/dispatch/exit"
URL_CANCEL = "/dispatch/cancel"

# -------------------------------
# Collaborators
# -------------------------------
URL_FLEET_SNAPSHOT = "/fleet/snapshot"
URL_INVOICE = "/invoice"
