"""
미들웨어 체인 모듈

이름이 붙은 미들웨어 목록과 두 가지 합성 방식을 제공합니다.

- 실행 미들웨어 (워커): 양파(onion) 모델. 각 미들웨어가 next() 전후로 코드를 실행
- 인큐 미들웨어 (클라이언트): 선형 체인. 잡을 변경해 넘기거나 None을 반환해 드롭

사용 예:
    chain = MiddlewareChain()
    chain.add("timing", timing_middleware)
    execute = compose_execution(chain.entries(), handler)
    result = await execute(ctx)
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterator, TypeVar

from common.exception import MiddlewareNotFoundError, NextCalledMultipleTimesError

__all__ = [
    'MiddlewareEntry',
    'MiddlewareChain',
    'compose_execution',
    'compose_enqueue',
    'maybe_await',
]

T = TypeVar("T")

NextFunction = Callable[[], Awaitable[Any]]
ExecutionMiddleware = Callable[[Any, NextFunction], Awaitable[Any]]
EnqueueNext = Callable[[Any], Awaitable[Any]]
EnqueueMiddleware = Callable[[Any, EnqueueNext], Awaitable[Any]]


async def maybe_await(value: Any) -> Any:
    """코루틴/awaitable이면 await, 아니면 그대로 반환 (동기 핸들러 지원)"""
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class MiddlewareEntry(Generic[T]):
    """체인에 등록된 미들웨어 (이름 + 함수)"""
    name: str
    fn: T


class MiddlewareChain(Generic[T]):
    """
    이름 기반 미들웨어 체인

    등록 순서가 실행 순서입니다. 이름 중복은 허용하지만
    이름 기반 연산(insert_before/after, remove, has)은 첫 번째 항목만 대상으로 합니다.
    """

    def __init__(self):
        self._chain: list[MiddlewareEntry[T]] = []

    def add(self, name: str, fn: T) -> "MiddlewareChain[T]":
        """체인 끝에 추가"""
        self._chain.append(MiddlewareEntry(name, fn))
        return self

    def prepend(self, name: str, fn: T) -> "MiddlewareChain[T]":
        """체인 맨 앞에 추가"""
        self._chain.insert(0, MiddlewareEntry(name, fn))
        return self

    def insert_before(self, existing_name: str, name: str, fn: T) -> "MiddlewareChain[T]":
        """
        기존 미들웨어 바로 앞에 추가

        Raises:
            MiddlewareNotFoundError: existing_name이 체인에 없는 경우
        """
        index = self._require(existing_name)
        self._chain.insert(index, MiddlewareEntry(name, fn))
        return self

    def insert_after(self, existing_name: str, name: str, fn: T) -> "MiddlewareChain[T]":
        """
        기존 미들웨어 바로 뒤에 추가

        Raises:
            MiddlewareNotFoundError: existing_name이 체인에 없는 경우
        """
        index = self._require(existing_name)
        self._chain.insert(index + 1, MiddlewareEntry(name, fn))
        return self

    def remove(self, name: str) -> "MiddlewareChain[T]":
        """이름으로 제거 (없으면 무시)"""
        index = self._index_of(name)
        if index != -1:
            del self._chain[index]
        return self

    def has(self, name: str) -> bool:
        """이름으로 존재 여부 확인"""
        return self._index_of(name) != -1

    def entries(self) -> list[MiddlewareEntry[T]]:
        """현재 순서의 미들웨어 목록 (복사본)"""
        return list(self._chain)

    def names(self) -> list[str]:
        return [entry.name for entry in self._chain]

    def clear(self) -> None:
        """전체 제거"""
        self._chain.clear()

    def __len__(self) -> int:
        return len(self._chain)

    def __iter__(self) -> Iterator[MiddlewareEntry[T]]:
        return iter(list(self._chain))

    def _index_of(self, name: str) -> int:
        for i, entry in enumerate(self._chain):
            if entry.name == name:
                return i
        return -1

    def _require(self, name: str) -> int:
        index = self._index_of(name)
        if index == -1:
            raise MiddlewareNotFoundError(name)
        return index


class _DispatchState:
    """호출 1회분의 dispatch 최고 인덱스 (next() 중복 호출 감지용)"""
    __slots__ = ("high_water",)

    def __init__(self):
        self.high_water = -1

    def advance(self, i: int) -> None:
        if i <= self.high_water:
            raise NextCalledMultipleTimesError()
        self.high_water = i


def compose_execution(
    middlewares: list[MiddlewareEntry[ExecutionMiddleware]],
    handler: Callable[[Any], Any],
) -> Callable[[Any], Awaitable[Any]]:
    """
    실행 미들웨어를 하나의 핸들러로 합성 (onion 모델)

    진입은 등록 순서, 탈출은 역순입니다. 미들웨어가 next()를 호출하지 않으면
    이후 체인과 핸들러는 실행되지 않습니다.

    Args:
        middlewares: 체인 항목 목록 (MiddlewareChain.entries())
        handler: 최종 잡 핸들러 (ctx -> result)

    Returns:
        ctx를 받아 결과를 반환하는 코루틴 함수
    """
    middlewares = list(middlewares)

    async def execute(ctx: Any) -> Any:
        state = _DispatchState()

        async def dispatch(i: int) -> Any:
            state.advance(i)
            if i >= len(middlewares):
                return await maybe_await(handler(ctx))
            return await maybe_await(middlewares[i].fn(ctx, lambda: dispatch(i + 1)))

        return await dispatch(0)

    return execute


def compose_enqueue(
    middlewares: list[MiddlewareEntry[EnqueueMiddleware]],
    final_enqueue: Callable[[Any], Awaitable[Any]],
) -> Callable[[Any], Awaitable[Any]]:
    """
    인큐 미들웨어를 하나의 함수로 합성 (선형 체인)

    각 미들웨어는 (job, next)를 받아 next(job)에 (변경된) 잡을 넘깁니다.
    None을 반환하면 잡이 드롭되어 이후 미들웨어와 final_enqueue가 실행되지 않습니다.
    """
    middlewares = list(middlewares)

    async def enqueue(job: Any) -> Any:
        state = _DispatchState()

        async def dispatch(i: int, current: Any) -> Any:
            state.advance(i)
            if i >= len(middlewares):
                return await final_enqueue(current)
            return await maybe_await(
                middlewares[i].fn(current, lambda next_job: dispatch(i + 1, next_job))
            )

        return await dispatch(0, job)

    return enqueue
