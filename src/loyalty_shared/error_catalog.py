"""
Centralized catalog of the controlled errors raised by the loyalty services.
Used for documentation and for the error payloads of the API.
"""

ERROR_CATALOG = {
    "VALID_001": {
        "title": "Invalid Input",
        "description": "A required field is missing or an amount is zero, negative or of the wrong sign.",
        "http_code": 400,
        "solution": "Correct the request payload and retry.",
    },
    "NOTFOUND_001": {
        "title": "Resource Not Found",
        "description": "The referenced customer, order, rider or wallet transaction does not exist.",
        "http_code": 404,
        "solution": "Verify the identifier.",
    },
    "WALLET_001": {
        "title": "Insufficient Wallet Balance",
        "description": "The movement would leave the customer's wallet balance below zero.",
        "http_code": 402,
        "solution": "Top up the wallet or choose another payment method.",
    },
    "WALLET_002": {
        "title": "Undo Window Expired",
        "description": "Top-ups can only be undone within 5 minutes of being recorded.",
        "http_code": 409,
        "solution": "Record a manual adjustment instead.",
    },
    "ORDER_001": {
        "title": "Invalid Status Transition",
        "description": "The requested order action is not allowed from the order's current status.",
        "http_code": 409,
        "solution": "Reload the order and apply the next valid action.",
    },
    "ORDER_002": {
        "title": "Messaging Unavailable",
        "description": (
            "Order messages are enabled 10 minutes after checkout and only while the order "
            "is pending, accepted or preparing."
        ),
        "http_code": 409,
        "solution": "Wait for the messaging window or contact the branch directly.",
    },
    "PAYMENT_001": {
        "title": "Payment Failed",
        "description": "The wallet debit or credit could not be completed.",
        "http_code": 402,
        "solution": "Retry when the failure is marked retryable; otherwise use another payment method.",
    },
    "REF_001": {
        "title": "Missing Linked Entity",
        "description": "A referenced address, rider or menu item is missing, inactive or belongs elsewhere.",
        "http_code": 422,
        "solution": "Select an existing, active entity.",
    },
    "SYSTEM_001": {
        "title": "Internal Error",
        "description": "Unhandled exception on the server.",
        "http_code": 500,
        "solution": "Check the service logs.",
    },
}


def describe_error(code: str) -> dict:
    """Return the catalog entry for ``code``, falling back to the internal error entry."""
    return ERROR_CATALOG.get(code, ERROR_CATALOG["SYSTEM_001"])
