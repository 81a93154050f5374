"""Exceptions raised at the message store boundary."""


class StoreError(RuntimeError):
    """A store call failed: transport error, 5xx or an unexpected status."""


class AuthorizationError(StoreError):
    """The store rejected our credentials, or we have none."""


class MalformedResponseError(StoreError):
    """The store answered, but not in the shape we expect."""
