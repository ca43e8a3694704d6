"""
취소 토큰

잡 실행마다 하나씩 발급되며, 핸들러는 이 토큰을 관찰해 협조적으로 중단합니다.
토큰이 발동해도 핸들러를 강제로 중단하지는 않습니다.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from common.exception import JoblineError

logger = logging.getLogger(__name__)


class JobCancelledError(JoblineError):
    """취소 토큰 발동 (사유 미지정)"""
    def __init__(self, message: str = "Job execution was cancelled"):
        super().__init__(message, code="cancelled", retryable=True)


class CancellationToken:
    """
    협조적 취소 토큰

    cancel()은 최초 1회만 유효하며 첫 번째 사유가 유지됩니다.
    사유는 예외 객체이며 sleep()/run()/raise_if_cancelled()에서 그대로 raise됩니다.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: BaseException | None = None
        self._callbacks: list[Callable[[BaseException], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def cancel(self, reason: BaseException | str | None = None) -> bool:
        """
        토큰 발동

        Args:
            reason: 취소 사유 (예외 또는 메시지)

        Returns:
            이번 호출로 발동되었으면 True, 이미 발동된 상태면 False
        """
        if self._event.is_set():
            return False

        if reason is None:
            reason = JobCancelledError()
        elif not isinstance(reason, BaseException):
            reason = JobCancelledError(str(reason))

        self._reason = reason
        self._event.set()

        for callback in self._callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Cancellation callback failed: {e}", exc_info=True)
        self._callbacks.clear()
        return True

    def add_callback(self, callback: Callable[[BaseException], Any]) -> None:
        """발동 시 호출할 콜백 등록 (이미 발동된 경우 즉시 호출)"""
        if self._event.is_set():
            callback(self._reason)
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise self._reason

    async def wait(self) -> BaseException:
        """발동될 때까지 대기 후 사유 반환"""
        await self._event.wait()
        return self._reason

    async def sleep(self, seconds: float) -> None:
        """
        인터럽트 가능한 sleep

        Raises:
            취소 사유 예외: sleep 도중 또는 이전에 토큰이 발동된 경우
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise self._reason

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        """
        awaitable을 실행하되 토큰이 먼저 발동되면 취소하고 사유를 raise

        Returns:
            awaitable의 결과
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task.done() and not task.cancelled():
            return task.result()
        if not self._event.is_set():
            raise asyncio.CancelledError()

        try:
            await task
        except asyncio.CancelledError:
            pass
        raise self._reason
