"""Celery tasks for workflow execution.

``dispatch_due_executions`` is the beat tick: one scheduler cycle over every
due execution. ``process_execution`` is enqueued right after an execution is
created (trigger, manual run, retry) so the first steps run without waiting
for the next tick. Both are safe to run concurrently; the scheduler's claim
keeps one interpreter per execution.
"""

import asyncio

import structlog

from worker.celery_app import celery_app

logger = structlog.get_logger(__name__)


# ─── Async bodies (run inside the task's own event loop) ─────────

async def _run_cycle() -> dict:
    from db.worker_session import worker_session_factory
    from workflow.scheduler import ExecutionScheduler

    async with worker_session_factory() as factory:
        report = await ExecutionScheduler(factory).run_cycle()
    return report.to_dict()


async def _process_one(execution_id: str) -> dict:
    from db.worker_session import worker_session_factory
    from workflow.scheduler import ExecutionScheduler

    async with worker_session_factory() as factory:
        report = await ExecutionScheduler(factory).process_execution(execution_id)
    return report.to_dict()


def _run(coro) -> dict:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ─── Tasks ───────────────────────────────────────────────────────

@celery_app.task(
    name="worker.tasks.workflow.dispatch_due_executions",
    queue="workflows",
)
def dispatch_due_executions():
    """Run one dispatch cycle."""
    result = _run(_run_cycle())
    if result.get("claimed"):
        logger.info("Dispatch cycle", **result)
    return result


@celery_app.task(
    name="worker.tasks.workflow.process_execution",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    queue="workflows",
)
def process_execution(self, execution_id: str):
    """Run one freshly created or retried execution until it waits, ends or fails.

    A lost claim is not an error: the beat cycle or another worker already has it.
    """
    logger.info("Processing execution", execution_id=execution_id)
    result = _run(_process_one(execution_id))
    if result.get("errors"):
        logger.warning("Execution processing hit errors, leaving it to the beat cycle",
                       execution_id=execution_id, **result)
    return result
