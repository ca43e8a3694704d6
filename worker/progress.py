"""
잡 진행률 보고

오래 걸리는 잡이 실행 도중 진행률(0~100)과 부분 결과를 코디네이터에 보고합니다.

사용 예:
    @worker.handler("data.import")
    async def import_rows(ctx):
        for i, row in enumerate(rows):
            await process(row)
            await ctx.progress(round(i / len(rows) * 100), f"Processed {i} rows")
"""

import logging
from typing import Any

from transport.base import BaseTransport

logger = logging.getLogger(__name__)


async def report_progress(
    transport: BaseTransport,
    job_id: str,
    percentage: float,
    message: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """
    진행률 보고

    Raises:
        ValueError: percentage가 0~100 범위 밖이거나 job_id가 비어 있는 경우
        TransportError: 전송 실패
    """
    if not 0 <= percentage <= 100:
        raise ValueError(f"Percentage must be between 0 and 100, got {percentage}")
    if not job_id:
        raise ValueError("job_id is required for progress reporting")

    body: dict[str, Any] = {"job_id": job_id, "percentage": percentage}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data

    await transport.request("POST", "/workers/progress", body)
    logger.debug(f"Progress reported: job_id={job_id}, percentage={percentage}")
