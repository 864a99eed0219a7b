import asyncio
from typing import Any, Coroutine


async def gather_or_cancel(
    *coroutines: Coroutine[Any, Any, Any]
) -> list[Any]:
    """
    Run the coroutines concurrently and return their results in order.
    The first failure cancels the pending ones and is raised unwrapped.
    """
    try:
        async with asyncio.TaskGroup() as task_group:
            tasks = [
                task_group.create_task(coroutine) for coroutine in coroutines
            ]
    except ExceptionGroup as excp_group:
        raise excp_group.exceptions[0]
    return [task.result() for task in tasks]
