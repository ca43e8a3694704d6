"""샘플 핸들러 - 테스트용"""

import logging

from worker.model import JobContext

logger = logging.getLogger(__name__)


async def echo(ctx: JobContext) -> dict:
    """받은 args를 그대로 반환"""
    logger.info(f"Echo handler executed: id={ctx.job.id}, args={ctx.args}")
    return {"echo": ctx.args[0] if len(ctx.args) == 1 else ctx.args}


async def sleep(ctx: JobContext) -> dict:
    """args[0]초 동안 대기 (취소 토큰 관찰)"""
    seconds = float(ctx.args[0]) if ctx.args else 1.0
    await ctx.token.sleep(seconds)
    return {"slept": seconds}


async def report(ctx: JobContext, dc) -> dict:
    """durable 샘플: 리포트 ID와 생성 시각은 재시도에도 유지됨"""
    report_id = dc.random(8)
    created_at = dc.now()
    rows = await dc.side_effect("count-rows", lambda: len(ctx.args))
    await ctx.progress(50, "rows counted", {"rows": rows})
    await dc.checkpoint(1, {"report_id": report_id})
    await dc.complete()
    return {"report_id": report_id, "created_at": created_at.isoformat(), "rows": rows}


def setup(worker) -> None:
    worker.register("sample.echo", echo)
    worker.register("sample.sleep", sleep)
    worker.register_durable("sample.report", report)
