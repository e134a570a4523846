import asyncio


async def parallel_map(fn, keys, loop=None):
    """Run ``fn(key)`` for every key in worker threads and join them all.

    Returns ``(results, failures)``: two dicts keyed like the input, one
    holding return values and one holding the exception each failed key
    raised. A failing key never cancels or hides the others.
    """
    keys = list(keys)
    if not keys:
        return {}, {}
    loop = loop or asyncio.get_running_loop()
    outcomes = await asyncio.gather(
        *(loop.run_in_executor(None, fn, key) for key in keys),
        return_exceptions=True,
    )
    results = {}
    failures = {}
    for key, outcome in zip(keys, outcomes):
        if isinstance(outcome, Exception):
            failures[key] = outcome
        else:
            results[key] = outcome
    return results, failures


async def bounded_map(fn, items, limit, loop=None):
    """Run ``fn(item)`` in worker threads with at most ``limit`` in flight.

    Results come back in input order. Exceptions propagate, so ``fn`` is
    expected to capture its own per-item failures.
    """
    loop = loop or asyncio.get_running_loop()
    semaphore = asyncio.Semaphore(max(1, int(limit)))

    async def run(item):
        async with semaphore:
            return await loop.run_in_executor(None, fn, item)

    return await asyncio.gather(*(run(item) for item in items))
