"""Exception hierarchy for the upload queue."""


class QueueError(Exception):
    """Base class for all upload queue errors."""


class StoreError(QueueError):
    """The local queue store could not read or persist an item.

    Raised for disk-full, corruption, locked database and similar
    environment problems. Never swallowed by the sync engine.
    """


class DeliveryError(QueueError):
    """A single delivery attempt failed.

    Uploaders may raise this instead of returning a failed UploadResult.
    The sync engine converts it into queue state and never lets it escape.
    """

    permanent = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientDeliveryFailure(DeliveryError):
    """Network error, timeout or server-side failure. Retried on the next drain."""


class PermanentRejection(DeliveryError):
    """The remote store refused the item (e.g. malformed destination)."""

    permanent = True
