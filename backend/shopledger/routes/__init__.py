from ..validation import ConflictError


def conflict_response(e: ConflictError):
    """409 body shared by every blueprint; details only when there are some."""
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return body, 409
