import asyncio

from wonderelo.errors import AuthError, NetworkError, PollTimeoutError, ServerError
from wonderelo.poller import StatusPoller


class Gate:
    """fetch() that hangs until the test resolves the matching future."""

    def __init__(self):
        self.futures = []

    async def fetch(self):
        future = asyncio.get_running_loop().create_future()
        self.futures.append(future)
        return await future


async def no_wait(seconds):
    await asyncio.sleep(0)


def test_newer_response_wins_over_older_one():
    async def scenario():
        gate, applied = Gate(), []
        poller = StatusPoller(gate.fetch, applied.append)
        first = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0)
        second = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0)

        gate.futures[1].set_result("confirmed")
        assert await second == "confirmed"
        gate.futures[0].set_result("registered")
        assert await first is None
        return applied

    assert asyncio.run(scenario()) == ["confirmed"]


def test_invalidate_drops_in_flight_response():
    async def scenario():
        gate, applied = Gate(), []
        poller = StatusPoller(gate.fetch, applied.append)
        in_flight = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0)
        poller.invalidate()
        gate.futures[0].set_result("registered")
        await in_flight

        later = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0)
        gate.futures[1].set_result("confirmed")
        await later
        return applied

    assert asyncio.run(scenario()) == ["confirmed"]


def test_pending_results_exhaust_budget():
    timeouts, results = [], []

    async def fetch():
        return "waiting"

    async def scenario():
        poller = StatusPoller(
            fetch,
            results.append,
            max_attempts=3,
            is_pending=lambda result: True,
            on_timeout=timeouts.append,
            sleep=no_wait,
        )
        await poller.start()
        return poller

    poller = asyncio.run(scenario())
    assert results == ["waiting"] * 3
    assert len(timeouts) == 1
    assert isinstance(timeouts[0], PollTimeoutError)
    assert poller.finished


def test_progress_resets_the_budget():
    answers = iter(["waiting", "waiting", "matched", "waiting", "waiting", "done"])
    timeouts = []

    async def fetch():
        return next(answers)

    async def scenario():
        poller = StatusPoller(
            fetch,
            lambda result: None,
            max_attempts=3,
            is_pending=lambda result: result == "waiting",
            is_final=lambda result: result == "done",
            on_timeout=timeouts.append,
            sleep=no_wait,
        )
        await poller.start()

    asyncio.run(scenario())
    assert timeouts == []


def test_failures_back_off_then_time_out():
    delays, errors, timeouts = [], [], []

    async def fetch():
        raise NetworkError()

    async def record_sleep(seconds):
        delays.append(seconds)

    async def scenario():
        poller = StatusPoller(
            fetch,
            lambda result: None,
            interval=1.0,
            max_attempts=4,
            on_error=errors.append,
            on_timeout=timeouts.append,
            sleep=record_sleep,
        )
        await poller.start()

    asyncio.run(scenario())
    assert delays == [1.0, 2.0, 4.0]
    assert len(errors) == 4
    assert len(timeouts) == 1


def test_auth_error_stops_polling():
    calls = []

    async def fetch():
        calls.append(1)
        raise AuthError(status=401)

    async def scenario():
        poller = StatusPoller(fetch, lambda result: None, max_attempts=10, sleep=no_wait)
        await poller.start()
        return poller

    poller = asyncio.run(scenario())
    assert calls == [1]
    assert poller.finished


def test_final_callback_fires_once():
    finals = []

    async def fetch():
        return "completed"

    async def scenario():
        poller = StatusPoller(
            fetch,
            lambda result: None,
            is_final=lambda result: result == "completed",
            on_final=finals.append,
            sleep=no_wait,
        )
        await poller.start()
        # a late manual poll after the end changes nothing
        assert await poller.poll_once() is None

    asyncio.run(scenario())
    assert finals == ["completed"]


def test_start_is_idempotent_and_stop_cancels():
    calls = []

    async def fetch():
        calls.append(1)
        return "matched"

    async def scenario():
        poller = StatusPoller(fetch, lambda result: None, sleep=no_wait)
        first = poller.start()
        assert poller.start() is first
        await asyncio.sleep(0.01)
        await poller.stop()
        assert first.cancelled()
        assert not poller.running
        seen = len(calls)
        await asyncio.sleep(0.01)
        return seen

    seen = asyncio.run(scenario())
    assert seen == len(calls)
    assert seen > 0


def test_unexpected_exception_counts_as_failure():
    errors, timeouts = [], []

    async def fetch():
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    async def scenario():
        poller = StatusPoller(
            fetch,
            lambda result: None,
            max_attempts=2,
            on_error=errors.append,
            on_timeout=timeouts.append,
            sleep=no_wait,
        )
        task = poller.start()
        await task
        return poller, task

    poller, task = asyncio.run(scenario())
    assert task.exception() is None
    assert poller.finished
    assert [type(e) for e in errors] == [ServerError, ServerError]
    assert len(timeouts) == 1
