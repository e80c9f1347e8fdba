"""Error taxonomy shared by the data-access components."""

from typing import Optional


class MovieTrendsError(RuntimeError):
    pass


class TransientRemoteError(MovieTrendsError):
    """A network, HTTP or storage failure that is worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RetryExhausted(MovieTrendsError):
    """Raised by the backoff executor once every attempt has failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


class NotFound(MovieTrendsError):
    pass


class DocumentNotFound(NotFound):
    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document {document_id} not found in {collection}")
        self.collection = collection
        self.document_id = document_id


class ReconciliationPartialFailure(MovieTrendsError):
    """A reconciliation pass stopped partway; the counts cover completed work."""

    def __init__(self, duplicate_groups_found: int, records_removed: int, cause: BaseException):
        super().__init__(
            f"Reconciliation stopped after {duplicate_groups_found} groups "
            f"and {records_removed} removals: {cause}"
        )
        self.duplicate_groups_found = duplicate_groups_found
        self.records_removed = records_removed
        self.cause = cause


class AlreadySaved(MovieTrendsError):
    def __init__(self, movie_id: int):
        super().__init__(f"Movie {movie_id} is already saved")
        self.movie_id = movie_id
