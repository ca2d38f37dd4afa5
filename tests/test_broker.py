from __future__ import annotations

import asyncio
import threading
import time

import pytest

from hostbridge.broker.core import CommandBroker
from hostbridge.broker.models import BrokerResponse
from hostbridge.broker.queue import PendingCommandQueue


def _answer(broker: CommandBroker, context: str, **fields) -> BrokerResponse:
    command = broker.poll(context)
    assert command is not None, f"nothing queued for {context}"
    response = BrokerResponse(id=command.id, success=True, context=context, **fields)
    broker.deliver(response)
    return response


def test_unanswered_command_times_out_and_cleans_up() -> None:
    broker = CommandBroker()

    async def scenario():
        started = time.monotonic()
        response = await broker.submit("noop", {}, timeout=0.05)
        return response, time.monotonic() - started

    response, elapsed = asyncio.run(scenario())

    assert response.success is False
    assert "noop" in response.error
    assert "Timeout after" in response.error
    assert 0.04 <= elapsed < 1.0
    assert len(broker.correlations) == 0
    assert len(broker.queue) == 0


def test_round_trip_returns_host_result() -> None:
    broker = CommandBroker()

    async def scenario():
        task = asyncio.create_task(broker.submit("echo", {"value": 7}, timeout=2))
        await asyncio.sleep(0)
        command = broker.poll("Edit")
        assert command is not None
        assert command.payload["value"] == 7
        broker.deliver(
            BrokerResponse(
                id=command.id, success=True, result=command.payload["value"], context="Edit"
            )
        )
        return await task

    response = asyncio.run(scenario())
    assert response.success is True
    assert response.result == 7
    assert response.context == "Edit"
    assert broker.status()["pendingResponses"] == 0


def test_concurrent_callers_each_get_their_own_response() -> None:
    broker = CommandBroker()

    async def scenario():
        tasks = [
            asyncio.create_task(broker.submit("echo", {"n": n}, timeout=2))
            for n in range(10)
        ]
        await asyncio.sleep(0)
        claimed = []
        while (command := broker.poll("Edit")) is not None:
            claimed.append(command)
        # answer in reverse order to prove correlation is by id
        for command in reversed(claimed):
            broker.deliver(
                BrokerResponse(id=command.id, success=True, result=command.payload["n"])
            )
        return await asyncio.gather(*tasks)

    responses = asyncio.run(scenario())
    assert [response.result for response in responses] == list(range(10))
    assert len({response.id for response in responses}) == 10


def test_late_and_duplicate_responses_are_ignored() -> None:
    broker = CommandBroker()

    async def scenario():
        task = asyncio.create_task(broker.submit("noop", timeout=2))
        await asyncio.sleep(0)
        command = broker.poll("Edit")
        first = broker.deliver(BrokerResponse(id=command.id, success=True, result=1))
        second = broker.deliver(BrokerResponse(id=command.id, success=True, result=2))
        return first, second, await task

    first, second, response = asyncio.run(scenario())
    assert (first, second) == (True, False)
    assert response.result == 1
    assert broker.deliver(BrokerResponse(id="unknown", success=True)) is False
    assert broker.debug_snapshot()["orphanResponses"] == 2


def test_response_after_timeout_is_dropped() -> None:
    broker = CommandBroker()

    async def scenario():
        task = asyncio.create_task(broker.submit("slow", timeout=0.05))
        await asyncio.sleep(0)
        command = broker.poll("Edit")
        response = await task
        return command, response

    command, response = asyncio.run(scenario())
    assert response.success is False
    assert broker.deliver(BrokerResponse(id=command.id, success=True)) is False


def test_mode_flip_while_waiting() -> None:
    broker = CommandBroker()

    async def scenario():
        first = asyncio.create_task(broker.submit("execute", timeout=2))
        await asyncio.sleep(0)
        broker.report_mode(True, source="caller")
        second = asyncio.create_task(broker.submit("execute", timeout=2))
        await asyncio.sleep(0)

        assert broker.is_playing is True
        server_command = broker.poll("Server")
        edit_command = broker.poll("Edit")
        assert server_command.target_context == "Server"
        assert edit_command.target_context == "Edit"
        broker.deliver(BrokerResponse(id=edit_command.id, success=True, result="e"))
        broker.deliver(BrokerResponse(id=server_command.id, success=True, result="s"))
        return await first, await second

    first, second = asyncio.run(scenario())
    assert first.result == "e"
    assert second.result == "s"


def test_edit_only_action_stays_on_edit_while_active() -> None:
    broker = CommandBroker()
    broker.report_mode(True)

    async def scenario():
        task = asyncio.create_task(broker.submit("reload", timeout=2))
        await asyncio.sleep(0)
        assert broker.poll("Server") is None
        _answer(broker, "Edit", result="reloaded")
        return await task

    assert asyncio.run(scenario()).result == "reloaded"


def test_explicit_target_context_bypasses_routing() -> None:
    broker = CommandBroker()

    async def scenario():
        task = asyncio.create_task(
            broker.submit("execute", timeout=2, target_context="client")
        )
        await asyncio.sleep(0)
        assert broker.poll("Edit") is None
        _answer(broker, "Client", result="from client")
        return await task

    assert asyncio.run(scenario()).result == "from client"


def test_cancelled_caller_withdraws_command() -> None:
    broker = CommandBroker()

    async def scenario():
        task = asyncio.create_task(broker.submit("noop", timeout=5))
        await asyncio.sleep(0)
        assert len(broker.queue) == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert len(broker.queue) == 0
    assert len(broker.correlations) == 0


def test_deliver_from_another_thread() -> None:
    broker = CommandBroker()

    def _host() -> None:
        deadline = time.monotonic() + 2
        while time.monotonic() < deadline:
            command = broker.poll("Edit")
            if command is not None:
                broker.deliver(
                    BrokerResponse(id=command.id, success=True, result="threaded")
                )
                return
            time.sleep(0.005)

    thread = threading.Thread(target=_host)
    thread.start()
    response = broker.submit_blocking("noop", timeout=2)
    thread.join()

    assert response.success is True
    assert response.result == "threaded"


def test_queue_age_limit_defers_to_the_call_deadline() -> None:
    queue = PendingCommandQueue(max_age=0.01, sweep_interval=0.0)
    broker = CommandBroker(queue=queue)

    async def scenario():
        task = asyncio.create_task(broker.submit("noop", timeout=1.0))
        await asyncio.sleep(0.1)
        claimed = broker.poll("Edit")
        assert claimed is not None
        broker.deliver(BrokerResponse(id=claimed.id, success=True, result="late"))
        return await task

    assert asyncio.run(scenario()).result == "late"
    assert queue.stale_dropped == 0


def test_stale_drop_leaves_the_caller_waiting() -> None:
    offset = {"seconds": 0.0}
    queue = PendingCommandQueue(
        max_age=1.0,
        clock=lambda: time.time() + offset["seconds"],
        sweep_interval=0.0,
    )
    broker = CommandBroker(queue=queue)

    async def scenario():
        task = asyncio.create_task(broker.submit("noop", timeout=0.2))
        await asyncio.sleep(0)
        offset["seconds"] = 60.0
        assert broker.poll("Edit") is None
        assert queue.stale_dropped == 1
        still_waiting = len(broker.correlations)
        return still_waiting, await task

    still_waiting, response = asyncio.run(scenario())
    assert still_waiting == 1
    assert response.success is False
    assert "Timeout after" in response.error
    assert len(broker.correlations) == 0


def test_command_ids_are_unique() -> None:
    broker = CommandBroker()

    async def scenario():
        tasks = [
            asyncio.create_task(broker.submit("noop", timeout=0.05)) for _ in range(50)
        ]
        await asyncio.sleep(0)
        ids = broker.queue.ids()
        await asyncio.gather(*tasks)
        return ids

    ids = asyncio.run(scenario())
    assert len(ids) == 50
    assert len(set(ids)) == 50


def test_invalid_arguments_are_rejected() -> None:
    broker = CommandBroker()
    with pytest.raises(ValueError):
        asyncio.run(broker.submit("", timeout=1))
    with pytest.raises(ValueError):
        asyncio.run(broker.submit("noop", timeout=0))
    with pytest.raises(ValueError):
        CommandBroker(default_timeout=0)


def test_status_and_debug_views() -> None:
    broker = CommandBroker()

    async def scenario():
        task = asyncio.create_task(broker.submit("execute", timeout=2))
        await asyncio.sleep(0)
        status = broker.status()
        debug = broker.debug_snapshot()
        _answer(broker, "Edit")
        await task
        return status, debug

    status, debug = asyncio.run(scenario())
    assert status["status"] == "running"
    assert status["pendingCommands"] == 1
    assert status["pendingResponses"] == 1
    assert status["pendingCommandIds"] == status["pendingResponseIds"]
    assert debug["gameIsPlaying"] is False
    assert debug["pendingCommands"][0]["action"] == "execute"
    assert debug["routing"]["active_preferred"] == ["execute"]
