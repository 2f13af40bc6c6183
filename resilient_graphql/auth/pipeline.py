"""
Authenticated request pipeline.

Wraps a raw request function with credential attachment, error translation,
expiry detection and a single replay after the credential was refreshed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar

from .barrier import RefreshBarrier
from .options import AuthenticationOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

Variables = Optional[Dict[str, Any]]
ErrorTranslator = Callable[[BaseException], Optional[BaseException]]
RefreshAction = Callable[[], Awaitable[Any]]


@dataclass
class RequestContext:
    """Per-attempt request context handed to the request executor."""

    headers: Dict[str, str] = field(default_factory=dict)


RawRequest = Callable[[Variables, RequestContext], Awaitable[T]]


async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    """Invoke an optional sync or async hook, logging its failures."""
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Error in instrumentation hook {getattr(hook, '__name__', hook)}: {e}")


class AuthenticatedRequestPipeline:
    """
    Coordinates credentials for every query and mutation of one client.

    Each physical attempt gets its own ``RequestContext`` built from the
    default headers, so concurrent calls never share header state. When an
    authenticated attempt fails with an error the expiry predicate accepts,
    the call joins the ``RefreshBarrier``. Only the first caller triggers
    the refresh action; every caller then replays its request exactly once
    with a freshly obtained credential.

    The refresh action is either ``refresh_credential``, a coroutine whose
    outcome resolves the barrier, or the ``on_credential_expired`` callback
    for applications that run their own refresh flow and report back through
    ``RefreshBarrier.signal_success`` / ``signal_failure``.

    Example:
        ```python
        pipeline = AuthenticatedRequestPipeline(
            authentication=HeaderAuthentication(
                is_token_expired=lambda e: isinstance(e, TokenExpired),
                get_access_token=token_store.get,
            ),
            refresh_credential=token_store.refresh,
        )

        get_user = pipeline.wrap(
            execute_get_user,
            operation_type="query",
            operation_name="user",
            authenticated=True,
        )
        user = await get_user({"id": "42"})
        ```
    """

    def __init__(
        self,
        authentication: AuthenticationOptions,
        barrier: Optional[RefreshBarrier] = None,
        default_headers: Optional[Dict[str, str]] = None,
        translate_error: Optional[ErrorTranslator] = None,
        refresh_credential: Optional[RefreshAction] = None,
        on_credential_expired: Optional[Callable[[], Any]] = None,
        on_request: Optional[Callable[[str, str], Any]] = None,
        on_success: Optional[Callable[[str, str, float], Any]] = None,
        on_error: Optional[Callable[[str, str, float, BaseException], Any]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            authentication: Credential transport mode and expiry predicate
            barrier: Refresh barrier, shared by every call of the client
            default_headers: Headers copied into every request context
            translate_error: Maps transport errors to domain errors
            refresh_credential: Coroutine function that refreshes the credential
            on_credential_expired: Called once per refresh cycle
            on_request: Called before every attempt with (type, name)
            on_success: Called after a successful attempt with (type, name, ms)
            on_error: Called after a failed attempt with (type, name, ms, error)
        """
        self.authentication = authentication
        self.barrier = barrier or RefreshBarrier()
        self.default_headers = dict(default_headers or {})
        self.translate_error = translate_error
        self.refresh_credential = refresh_credential
        self.on_credential_expired = on_credential_expired
        self.on_request = on_request
        self.on_success = on_success
        self.on_error = on_error

        self._refresh_tasks: Set[asyncio.Task[None]] = set()

    def new_context(self) -> RequestContext:
        """Create an isolated request context from the default headers."""
        return RequestContext(headers=dict(self.default_headers))

    async def attempt(
        self,
        request: RawRequest[T],
        variables: Variables,
        operation_type: str,
        operation_name: str,
        authenticated: bool = False,
    ) -> T:
        """
        Run one physical attempt of a request.

        Raises:
            MissingCredentialError: If authentication is required and no
                credential is available
            Exception: The translated request error
        """
        context = self.new_context()
        if authenticated:
            await self.authentication.authorize(context.headers)

        await _call_hook(self.on_request, operation_type, operation_name)
        start = time.perf_counter()

        try:
            result = await request(variables, context)
        except Exception as e:
            translated = self.translate_error(e) if self.translate_error else None
            error = translated or e
            elapsed_ms = (time.perf_counter() - start) * 1000
            await _call_hook(self.on_error, operation_type, operation_name, elapsed_ms, error)
            if error is e:
                raise
            raise error from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        await _call_hook(self.on_success, operation_type, operation_name, elapsed_ms)
        return result

    def wrap(
        self,
        request: RawRequest[T],
        operation_type: str,
        operation_name: str,
        authenticated: bool = False,
    ) -> Callable[..., Awaitable[T]]:
        """
        Wrap a raw request function.

        Args:
            request: Coroutine function taking (variables, context)
            operation_type: "query" or "mutation", reported to hooks
            operation_name: Operation name, reported to hooks
            authenticated: Whether to attach a credential and refresh it on
                expiry

        Returns:
            Coroutine function taking the request variables
        """
        pipeline = self

        async def call(variables: Variables = None) -> T:
            generation = pipeline.barrier.generation
            try:
                return await pipeline.attempt(
                    request, variables, operation_type, operation_name, authenticated
                )
            except Exception as e:
                if not authenticated or not pipeline.authentication.is_token_expired(e):
                    raise
                logger.info(f"Credential expired during {operation_type} {operation_name}")

            await pipeline.wait_for_refresh(generation)
            return await pipeline.attempt(
                request, variables, operation_type, operation_name, authenticated
            )

        call.__name__ = operation_name
        call.__qualname__ = operation_name
        return call

    async def wait_for_refresh(self, started_generation: int) -> None:
        """
        Wait until the credential has been refreshed.

        If a refresh completed after the failed attempt started, the
        credential is already fresh and no new refresh is started.

        Args:
            started_generation: Barrier generation seen when the attempt began

        Raises:
            Exception: Whatever error the refresh failed with
        """
        if self.barrier.generation != started_generation and not self.barrier.is_pending:
            logger.debug("Credential was refreshed while the request was in flight")
            return

        waiter, initiator = self.barrier.acquire_or_join()
        if initiator:
            await self._start_refresh()
        await asyncio.shield(waiter)

    async def _start_refresh(self) -> None:
        """Trigger the refresh action for a new cycle."""
        await _call_hook(self.on_credential_expired)

        if self.refresh_credential is None:
            return

        task = asyncio.create_task(self._run_refresh(), name=f"credential-refresh-{id(self)}")
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _run_refresh(self) -> None:
        """Run the configured refresh coroutine and resolve the barrier."""
        assert self.refresh_credential is not None
        try:
            await self.refresh_credential()
        except Exception as e:
            logger.warning(f"Credential refresh failed: {e}")
            self.barrier.signal_failure(e)
        else:
            self.barrier.signal_success()
