"""Domain exceptions raised by services.

`ValueError` is used for plain validation failures; the two classes below
cover the remaining cases controllers need to tell apart. `main.py`
translates all three into JSON error responses.
"""


class NotFoundError(LookupError):
    """The requested record does not exist or is not visible to the caller."""


class PermissionDenied(PermissionError):
    """The caller is authenticated but not allowed to perform the action."""
