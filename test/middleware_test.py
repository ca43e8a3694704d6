"""
미들웨어 체인 테스트

테스트 항목:
1. 체인 구조 연산 (add/prepend/insert_before/insert_after/remove/has/clear)
2. 실행 합성 순서 (before 1..k → handler → after k..1)
3. next() 중복 호출 감지
4. short-circuit (next 미호출)
5. 인큐 합성 (변경/드롭)

실행: python -m pytest test/middleware_test.py -v
"""

import sys
from pathlib import Path

import pytest

# 프로젝트 루트 경로 추가
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.exception import MiddlewareNotFoundError, NextCalledMultipleTimesError
from common.middleware import MiddlewareChain, compose_enqueue, compose_execution


def _noop(ctx, next):
    return next()


# ============================================================
# Chain Structure Tests
# ============================================================

class TestMiddlewareChain:
    """체인 구조 연산 테스트"""

    def test_add_keeps_insertion_order(self):
        chain = MiddlewareChain()
        chain.add("a", _noop).add("b", _noop).add("c", _noop)

        assert chain.names() == ["a", "b", "c"]
        assert len(chain) == 3

    def test_prepend(self):
        chain = MiddlewareChain().add("a", _noop)
        chain.prepend("first", _noop)

        assert chain.names() == ["first", "a"]

    def test_insert_before_and_after(self):
        chain = MiddlewareChain().add("a", _noop).add("c", _noop)
        chain.insert_before("c", "b", _noop)
        chain.insert_after("c", "d", _noop)

        assert chain.names() == ["a", "b", "c", "d"]

    def test_insert_with_missing_anchor_raises(self):
        """기준 미들웨어가 없으면 MiddlewareNotFoundError"""
        chain = MiddlewareChain().add("a", _noop)

        with pytest.raises(MiddlewareNotFoundError) as exc_info:
            chain.insert_before("missing", "b", _noop)
        assert "missing" in str(exc_info.value)

        with pytest.raises(MiddlewareNotFoundError):
            chain.insert_after("missing", "b", _noop)
        assert chain.names() == ["a"]

    def test_remove_and_has(self):
        chain = MiddlewareChain().add("a", _noop).add("b", _noop)

        chain.remove("a")
        assert not chain.has("a")
        assert chain.has("b")

        # 없는 이름 제거는 무시
        chain.remove("zzz")
        assert chain.names() == ["b"]

    def test_duplicate_names_address_first_match(self):
        """중복 이름은 허용되며 이름 기반 연산은 첫 번째 항목만 대상"""
        first, second = (lambda c, n: n()), (lambda c, n: n())
        chain = MiddlewareChain().add("dup", first).add("dup", second)

        chain.remove("dup")

        entries = chain.entries()
        assert len(entries) == 1
        assert entries[0].fn is second

    def test_entries_returns_copy(self):
        chain = MiddlewareChain().add("a", _noop)
        entries = chain.entries()
        entries.clear()

        assert chain.names() == ["a"]

    def test_clear(self):
        chain = MiddlewareChain().add("a", _noop).add("b", _noop)
        chain.clear()

        assert len(chain) == 0
        assert chain.names() == []


# ============================================================
# Execution Composition Tests
# ============================================================

class TestComposeExecution:
    """onion 합성 테스트"""

    @pytest.mark.asyncio
    async def test_onion_order(self):
        """진입은 등록 순서, 탈출은 역순"""
        calls = []

        def make(name):
            async def middleware(ctx, next):
                calls.append(f"before:{name}")
                result = await next()
                calls.append(f"after:{name}")
                return result
            return middleware

        async def handler(ctx):
            calls.append("handler")
            return "done"

        chain = MiddlewareChain()
        for name in ("1", "2", "3"):
            chain.add(name, make(name))

        result = await compose_execution(chain.entries(), handler)({})

        assert result == "done"
        assert calls == [
            "before:1", "before:2", "before:3",
            "handler",
            "after:3", "after:2", "after:1",
        ]

    @pytest.mark.asyncio
    async def test_empty_chain_calls_handler(self):
        execute = compose_execution([], lambda ctx: ctx["value"] * 2)

        assert await execute({"value": 21}) == 42

    @pytest.mark.asyncio
    async def test_next_called_twice_raises(self):
        """next() 두 번 호출 시 에러, 핸들러는 한 번만 실행"""
        handler_calls = 0

        async def handler(ctx):
            nonlocal handler_calls
            handler_calls += 1

        async def twice(ctx, next):
            await next()
            await next()

        chain = MiddlewareChain().add("twice", twice)

        with pytest.raises(NextCalledMultipleTimesError, match="next\\(\\) called multiple times"):
            await compose_execution(chain.entries(), handler)({})
        assert handler_calls == 1

    @pytest.mark.asyncio
    async def test_guard_is_per_invocation(self):
        """같은 합성 함수를 여러 번 호출해도 각 호출은 독립"""
        chain = MiddlewareChain().add("pass", lambda ctx, next: next())
        execute = compose_execution(chain.entries(), lambda ctx: ctx)

        assert await execute(1) == 1
        assert await execute(2) == 2

    @pytest.mark.asyncio
    async def test_short_circuit(self):
        """next()를 호출하지 않으면 이후 체인과 핸들러는 실행되지 않음"""
        calls = []

        async def gate(ctx, next):
            calls.append("gate")
            return "blocked"

        async def later(ctx, next):
            calls.append("later")
            return await next()

        def handler(ctx):
            calls.append("handler")

        chain = MiddlewareChain().add("gate", gate).add("later", later)
        result = await compose_execution(chain.entries(), handler)({})

        assert result == "blocked"
        assert calls == ["gate"]

    @pytest.mark.asyncio
    async def test_error_propagates_through_chain(self):
        seen = []

        async def observer(ctx, next):
            try:
                return await next()
            except ValueError as e:
                seen.append(str(e))
                raise

        async def handler(ctx):
            raise ValueError("boom")

        chain = MiddlewareChain().add("observer", observer)

        with pytest.raises(ValueError, match="boom"):
            await compose_execution(chain.entries(), handler)({})
        assert seen == ["boom"]


# ============================================================
# Enqueue Composition Tests
# ============================================================

class TestComposeEnqueue:
    """선형 인큐 합성 테스트"""

    @pytest.mark.asyncio
    async def test_middleware_can_mutate_job(self):
        async def add_tag(job, next):
            return await next({**job, "tags": ["a"]})

        async def upper(job, next):
            return await next({**job, "type": job["type"].upper()})

        sent = []

        async def final(job):
            sent.append(job)
            return {"id": "1", **job}

        chain = MiddlewareChain().add("tag", add_tag).add("upper", upper)
        result = await compose_enqueue(chain.entries(), final)({"type": "email.send"})

        assert sent == [{"type": "EMAIL.SEND", "tags": ["a"]}]
        assert result["id"] == "1"

    @pytest.mark.asyncio
    async def test_returning_none_drops_job(self):
        """None 반환 시 이후 미들웨어와 최종 인큐가 실행되지 않음"""
        later_calls = []
        final_calls = []

        async def drop(job, next):
            return None

        async def later(job, next):
            later_calls.append(job)
            return await next(job)

        async def final(job):
            final_calls.append(job)
            return job

        chain = MiddlewareChain().add("drop", drop).add("later", later)
        result = await compose_enqueue(chain.entries(), final)({"type": "a.b"})

        assert result is None
        assert later_calls == []
        assert final_calls == []

    @pytest.mark.asyncio
    async def test_next_called_twice_raises(self):
        async def twice(job, next):
            await next(job)
            return await next(job)

        async def final(job):
            return job

        chain = MiddlewareChain().add("twice", twice)

        with pytest.raises(NextCalledMultipleTimesError):
            await compose_enqueue(chain.entries(), final)({"type": "a.b"})
