"""Race-safe fetch controller that screens use to load remote data.

Every call to ``fetch`` gets a new request id. A result (or terminal error) is
committed only if its request id is still the current one and the controller
has been neither reset nor closed since the call was issued, so the final
state always reflects the last issued call regardless of completion order.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .backoff import BackoffExecutor
from .models import FetchState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FetchController(Generic[T]):
    """Loading/error/staleness view over one async fetch function."""

    def __init__(
        self,
        fetch_function: Callable[[], Awaitable[T]],
        *,
        executor: Optional[BackoffExecutor] = None,
        retries: int = 0,
        auto_fetch: bool = False,
        on_success: Optional[Callable[[T], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        label: str = "Fetch",
    ):
        self._fetch_function = fetch_function
        self.executor = executor or BackoffExecutor(retry_on=(Exception,))
        self.retries = retries
        self.label = label
        self._on_success = on_success
        self._on_error = on_error

        self.state: FetchState[T] = FetchState()
        # Bumped by reset() so requests issued before it can never commit
        self._generation = 0
        self._closed = False
        self._auto_task: Optional[asyncio.Task] = None

        if auto_fetch:
            logger.debug(f"{label} - auto-fetching on construction")
            self._auto_task = asyncio.get_running_loop().create_task(self.fetch())

    # State

    @property
    def data(self) -> Optional[T]:
        return self.state.data

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def error(self) -> Optional[BaseException]:
        return self.state.error

    @property
    def is_stale(self) -> bool:
        return self.state.is_stale

    @property
    def request_id(self) -> int:
        return self.state.request_id

    # Computed views

    @property
    def has_data(self) -> bool:
        return self.state.data is not None

    @property
    def has_error(self) -> bool:
        return self.state.error is not None

    @property
    def is_empty(self) -> bool:
        return not self.state.loading and self.state.error is None and self.state.data is None

    @property
    def is_success(self) -> bool:
        return not self.state.loading and self.state.error is None and self.state.data is not None

    @property
    def is_error(self) -> bool:
        return not self.state.loading and self.state.error is not None

    @property
    def is_idle(self) -> bool:
        return self.is_empty

    @property
    def closed(self) -> bool:
        return self._closed

    # Actions

    def _is_current(self, request_id: int, generation: int) -> bool:
        return (
            not self._closed
            and generation == self._generation
            and request_id == self.state.request_id
        )

    async def fetch(self) -> Optional[T]:
        """
        Issue a new logical request and commit its outcome if still current.

        Returns:
            The committed data, or None when the request failed or was superseded
        """
        self.state.request_id += 1
        request_id = self.state.request_id
        generation = self._generation

        self.state.loading = True
        self.state.error = None
        self.state.is_stale = False

        try:
            result = await self.executor.execute(
                self._fetch_function, self.retries, self.label
            )

        except asyncio.CancelledError:
            if self._is_current(request_id, generation):
                self.state.loading = False
            raise

        except Exception as e:
            if not self._is_current(request_id, generation):
                logger.debug(f"{self.label} - dropped failure of superseded request {request_id}")
                return None

            self.state.error = e
            self.state.loading = False
            self.state.is_stale = self.state.data is not None
            logger.error(f"{self.label} - request {request_id} failed: {e}")
            self._notify(self._on_error, e)
            return None

        if not self._is_current(request_id, generation):
            logger.debug(f"{self.label} - dropped result of superseded request {request_id}")
            return None

        self.state.data = result
        self.state.loading = False
        self.state.error = None
        self.state.is_stale = False
        logger.debug(f"{self.label} - request {request_id} committed")
        self._notify(self._on_success, result)
        return result

    async def refetch(self) -> Optional[T]:
        """Manual refetch; the latest call always wins."""
        logger.debug(f"{self.label} - manual refetch triggered")
        return await self.fetch()

    def reset(self) -> None:
        """Discard all state and rewind the request counter."""
        logger.debug(f"{self.label} - resetting fetch state")
        self._generation += 1
        self.state = FetchState()

    def mark_stale(self) -> None:
        """Flag the current data as stale without touching data or error."""
        self.state.is_stale = True

    def close(self) -> None:
        """Tear down; results arriving afterwards are dropped."""
        self._closed = True
        if self._auto_task is not None and not self._auto_task.done():
            self._auto_task.cancel()

    def _notify(self, callback, value) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception(f"{self.label} - callback failed")


def movie_fetch_controller(
    fetch_function: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
    retry_delay: float = 1.5,
    **kwargs,
) -> FetchController[T]:
    """Controller with the retry defaults used for catalog screens."""
    kwargs.setdefault("label", "MovieFetch")
    return FetchController(
        fetch_function,
        executor=BackoffExecutor(base_delay=retry_delay, retry_on=(Exception,)),
        retries=retries,
        **kwargs,
    )
