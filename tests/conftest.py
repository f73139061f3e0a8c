import asyncio

import pytest
import pytest_asyncio


# Producer tasks (of `IteratorPool` and `EventIterator`) and the tasks of
# `parallel_map` must not outlive the stream they serve.
# Give cancelled tasks a few loop cycles to wind down, then complain
# about anything that is still running.
@pytest_asyncio.fixture(autouse=True)
async def no_leaked_tasks():
    yield
    me = asyncio.current_task()
    for _ in range(20):
        pending = [t for t in asyncio.all_tasks() if t is not me and not t.done()]
        if not pending:
            return
        await asyncio.sleep(0.01)
    pytest.fail(f'tasks still running after the test: {pending}')
