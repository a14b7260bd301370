"""
Push-based entity streams.

An EntityStream is a lazy sequence of values delivered to subscribers through
callbacks. Nothing runs until subscribe() is called and every subscription
runs its own copy of the pipeline. Values pushed synchronously while
subscribing reach the subscriber before subscribe() returns, which is how
cells replay their current value to late subscribers.

Streams can also be consumed with ``async for`` or ``await stream.first()``.
"""

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    TypeVar,
    Union,
)

from entitystore.exceptions import EmptyStreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Teardown = Union["Subscription", Callable[[], None], None]

_NEXT = "next"
_ERROR = "error"
_COMPLETE = "complete"


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


def _run_teardown(teardown: Teardown) -> None:
    if isinstance(teardown, Subscription):
        teardown.unsubscribe()
    elif teardown is not None:
        teardown()


class Subscription:
    """Handle returned by EntityStream.subscribe(); unsubscribing stops delivery."""

    def __init__(self) -> None:
        self._closed = False
        self._teardowns: List[Teardown] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, teardown: Teardown) -> None:
        """Register cleanup; runs immediately if already unsubscribed."""
        if teardown is None:
            return
        if self._closed:
            _run_teardown(teardown)
            return
        self._teardowns.append(teardown)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        teardowns, self._teardowns = self._teardowns, []
        for teardown in teardowns:
            _run_teardown(teardown)


class Observer(Generic[T]):
    """
    Wraps subscriber callbacks.

    Stops delivering after an error, completion or unsubscribe. An exception
    raised by the on_next callback is routed to on_error.
    """

    __slots__ = ("_on_next", "_on_error", "_on_complete", "_subscription", "_stopped")

    def __init__(
        self,
        subscription: Subscription,
        on_next: Optional[Callable[[T], Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        on_complete: Optional[Callable[[], Any]] = None,
    ):
        self._subscription = subscription
        self._on_next = on_next
        self._on_error = on_error
        self._on_complete = on_complete
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped or self._subscription.closed

    def on_next(self, value: T) -> None:
        if self.stopped or self._on_next is None:
            return
        try:
            self._on_next(value)
        except Exception as e:
            self.on_error(e)

    def on_error(self, error: BaseException) -> None:
        if self.stopped:
            return
        self._stopped = True
        try:
            if self._on_error is not None:
                self._on_error(error)
            else:
                logger.error(f"Unhandled error in entity stream: {error!s}", exc_info=error)
        finally:
            self._subscription.unsubscribe()

    def on_complete(self) -> None:
        if self.stopped:
            return
        self._stopped = True
        try:
            if self._on_complete is not None:
                self._on_complete()
        finally:
            self._subscription.unsubscribe()


class EntityStream(Generic[T]):
    """
    Lazy push sequence of values.

    ``subscribe_fn`` receives an Observer and returns a teardown (a callable,
    a Subscription or None) that is run when the subscription ends.
    """

    def __init__(self, subscribe_fn: Callable[[Observer[T]], Teardown]):
        self._subscribe_fn = subscribe_fn

    def subscribe(
        self,
        on_next: Optional[Callable[[T], Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        on_complete: Optional[Callable[[], Any]] = None,
    ) -> Subscription:
        """Start the stream, delivering values to the given callbacks."""
        subscription = Subscription()
        observer = Observer(subscription, on_next, on_error, on_complete)
        try:
            teardown = self._subscribe_fn(observer)
        except Exception as e:
            observer.on_error(e)
            return subscription
        subscription.add(teardown)
        return subscription

    # --- Constructors ---

    @classmethod
    def of(cls, *values: T) -> "EntityStream[T]":
        """Stream that emits the given values synchronously, then completes."""
        def subscribe_fn(observer: Observer[T]) -> None:
            for value in values:
                observer.on_next(value)
            observer.on_complete()
        return cls(subscribe_fn)

    @classmethod
    def empty(cls) -> "EntityStream[T]":
        return cls.of()

    @classmethod
    def never(cls) -> "EntityStream[T]":
        return cls(lambda observer: None)

    @classmethod
    def from_awaitable(cls, awaitable: Awaitable[T]) -> "EntityStream[T]":
        """
        Stream over a single awaitable result.

        The awaitable is scheduled on first subscription and shared by later
        subscriptions. Unsubscribing does not cancel it, and a failure nobody
        is subscribed to any more is discarded.
        """
        futures: List[asyncio.Future] = []

        def subscribe_fn(observer: Observer[T]) -> Callable[[], None]:
            if not futures:
                shared = asyncio.ensure_future(awaitable)
                shared.add_done_callback(_retrieve_exception)
                futures.append(shared)
            future = futures[0]

            def on_done(fut: asyncio.Future) -> None:
                if fut.cancelled():
                    observer.on_error(asyncio.CancelledError())
                    return
                error = fut.exception()
                if error is not None:
                    observer.on_error(error)
                else:
                    observer.on_next(fut.result())
                    observer.on_complete()

            future.add_done_callback(on_done)
            return lambda: future.remove_done_callback(on_done)

        return cls(subscribe_fn)

    @classmethod
    def from_async_iterable(cls, iterable: AsyncIterable) -> "EntityStream[T]":
        """Stream over an async iterable, pumped by a task per subscription."""
        def subscribe_fn(observer: Observer[T]) -> Callable[[], None]:
            finished = False

            async def pump() -> None:
                nonlocal finished
                try:
                    async for value in iterable:
                        observer.on_next(value)
                except Exception as e:
                    finished = True
                    observer.on_error(e)
                else:
                    finished = True
                    observer.on_complete()

            task = asyncio.ensure_future(pump())

            def cancel() -> None:
                if not finished:
                    task.cancel()

            return cancel

        return cls(subscribe_fn)

    # --- Operators ---

    def filter(self, predicate: Callable[[T], bool]) -> "EntityStream[T]":
        def subscribe_fn(observer: Observer[T]) -> Subscription:
            def on_next(value: T) -> None:
                if predicate(value):
                    observer.on_next(value)
            return self.subscribe(on_next, observer.on_error, observer.on_complete)
        return EntityStream(subscribe_fn)

    def map(self, transform: Callable[[T], R]) -> "EntityStream[R]":
        def subscribe_fn(observer: Observer[R]) -> Subscription:
            return self.subscribe(
                lambda value: observer.on_next(transform(value)),
                observer.on_error,
                observer.on_complete,
            )
        return EntityStream(subscribe_fn)

    def take_first(self) -> "EntityStream[T]":
        """Emit only the first value, then complete."""
        def subscribe_fn(observer: Observer[T]) -> Subscription:
            def on_next(value: T) -> None:
                observer.on_next(value)
                observer.on_complete()
            return self.subscribe(on_next, observer.on_error, observer.on_complete)
        return EntityStream(subscribe_fn)

    def distinct_until_changed(self) -> "EntityStream[T]":
        """Drop values identical (``is``) to the previously emitted one."""
        def subscribe_fn(observer: Observer[T]) -> Subscription:
            last: List[Any] = []

            def on_next(value: T) -> None:
                if last and last[0] is value:
                    return
                last[:] = [value]
                observer.on_next(value)

            return self.subscribe(on_next, observer.on_error, observer.on_complete)
        return EntityStream(subscribe_fn)

    def switch_map(self, project: Callable[[T], "EntityStream[R]"]) -> "EntityStream[R]":
        """Map each value to a stream, following only the most recent one."""
        def subscribe_fn(observer: Observer[R]) -> Callable[[], None]:
            current: Optional[Subscription] = None
            generation = 0
            inner_active = False
            outer_done = False

            def on_next(value: T) -> None:
                nonlocal current, generation, inner_active
                if current is not None:
                    current.unsubscribe()
                generation += 1
                token = generation
                inner_active = True

                def on_inner_complete() -> None:
                    nonlocal inner_active
                    if token != generation:
                        return
                    inner_active = False
                    if outer_done:
                        observer.on_complete()

                current = project(value).subscribe(
                    observer.on_next, observer.on_error, on_inner_complete
                )

            def on_outer_complete() -> None:
                nonlocal outer_done
                outer_done = True
                if not inner_active:
                    observer.on_complete()

            outer = self.subscribe(on_next, observer.on_error, on_outer_complete)

            def teardown() -> None:
                outer.unsubscribe()
                if current is not None:
                    current.unsubscribe()

            return teardown

        return EntityStream(subscribe_fn)

    # --- Async consumption ---

    async def first(self) -> T:
        """Wait for the first value; raises the stream's error, or EmptyStreamError."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def on_next(value: T) -> None:
            if not future.done():
                future.set_result(value)

        def on_error(error: BaseException) -> None:
            if not future.done():
                future.set_exception(error)

        def on_complete() -> None:
            if not future.done():
                future.set_exception(EmptyStreamError("Stream completed without a value"))

        subscription = self.take_first().subscribe(on_next, on_error, on_complete)
        try:
            return await future
        finally:
            subscription.unsubscribe()

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        queue: asyncio.Queue = asyncio.Queue()
        subscription = self.subscribe(
            lambda value: queue.put_nowait((_NEXT, value)),
            lambda error: queue.put_nowait((_ERROR, error)),
            lambda: queue.put_nowait((_COMPLETE, None)),
        )
        try:
            while True:
                kind, payload = await queue.get()
                if kind == _ERROR:
                    raise payload
                if kind == _COMPLETE:
                    return
                yield payload
        finally:
            subscription.unsubscribe()


def is_async_source(value: Any) -> bool:
    """Check whether a value is an awaitable or a stream rather than a bare value."""
    return (
        isinstance(value, EntityStream)
        or inspect.isawaitable(value)
        or isinstance(value, AsyncIterable)
    )


def to_stream(source: Any) -> EntityStream:
    """Normalize a bare value, awaitable, async iterable or stream into an EntityStream."""
    if isinstance(source, EntityStream):
        return source
    if inspect.isawaitable(source):
        return EntityStream.from_awaitable(source)
    if isinstance(source, AsyncIterable):
        return EntityStream.from_async_iterable(source)
    return EntityStream.of(source)
