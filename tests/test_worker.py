import pytest

pytestmark = pytest.mark.asyncio


async def test_run_expire_holds_activates_due_promotions(make_account, make_promotion):
    from viewswap.models.promotion import Promotion
    from viewswap.worker.cron import run_expire_holds
    await make_account("owner", 100)
    p = await make_promotion("owner")
    assert await run_expire_holds() == 1
    assert (await Promotion.get(p.id)).status == "active"
    assert await run_expire_holds() == 0


async def test_failed_job_is_recorded(db):
    from viewswap.models.failed_job import FailedJob
    from viewswap.worker.tasks import _run_with_dlq

    async def boom():
        raise RuntimeError("mongo went away")

    with pytest.raises(RuntimeError):
        await _run_with_dlq({"job_id": "job-1", "job_try": 2}, "expire_holds", {}, boom())
    failed = await FailedJob.find_one(FailedJob.job_id == "job-1")
    assert failed.job_name == "expire_holds"
    assert failed.job_try == 2
    assert failed.error_type == "RuntimeError"
    assert "mongo went away" in failed.error
