from __future__ import annotations

import asyncio

import pytest

from polycode_mcp.host import THREAD_EVENTS, ExecutionHostError, thread_channel
from polycode_mcp.host.fake import FakeExecutionHost
from polycode_mcp.models import Thread
from polycode_mcp.threads import ThreadSessionController


class Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_controller(*threads: Thread) -> tuple[FakeExecutionHost, ThreadSessionController, Clock]:
    host = FakeExecutionHost()
    for thread in threads:
        host.threads[thread.id] = thread
    clock = Clock()
    return host, ThreadSessionController(host, clock=clock), clock


def test_fetch_merges_status_and_usage() -> None:
    host, controller, _ = make_controller(
        Thread(id="t1", project_id="p", status="running", input_tokens=10, output_tokens=5, context_window=200),
        Thread(id="t2", project_id="p"),
        Thread(id="t3", project_id="p", archived=True, has_messages=True),
    )

    asyncio.run(controller.fetch("p"))

    assert [t.id for t in controller.threads("p")] == ["t1", "t2"]
    assert controller.archived_count("p") == 1
    assert controller.status("t1") == "running"
    assert controller.run_started_at("t1") == 100.0
    assert controller.usage("t1").input_tokens == 10
    assert controller.usage("t2") is None
    assert sorted(controller.subscribed_thread_ids()) == ["t1", "t2"]
    assert host.listener_count(thread_channel("status", "t1")) == 1


def test_archive_without_messages_deletes_thread() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> str:
        await controller.fetch("p")
        controller.set_draft("t1", "unsent")
        controller.add_usage("t1", 3, 4, 50)
        return await controller.archive("t1", "p")

    outcome = asyncio.run(scenario())

    assert outcome == "deleted"
    assert controller.threads("p") == ()
    assert controller.archived_threads("p") == ()
    assert controller.archived_count("p") == 0
    assert controller.draft("t1") == ""
    assert controller.usage("t1") is None
    assert host.listener_count(thread_channel("status", "t1")) == 0


def test_archive_with_messages_moves_thread_to_archived() -> None:
    host, controller, _ = make_controller(
        Thread(id="t1", project_id="p", has_messages=True),
        Thread(id="t0", project_id="p", archived=True, has_messages=True),
    )

    async def scenario() -> str:
        await controller.fetch("p")
        await controller.fetch_archived("p")
        controller.queue_message("t1", "later")
        controller.set_plan_mode("t1", True)
        controller.set_draft("t1", "keep me")
        return await controller.archive("t1", "p")

    outcome = asyncio.run(scenario())

    assert outcome == "archived"
    archived = controller.archived_threads("p")
    assert [t.id for t in archived] == ["t1", "t0"]
    assert archived[0].archived is True
    assert controller.archived_count("p") == 2
    assert controller.queued_message("t1") is None
    assert controller.plan_mode("t1") is False
    assert controller.draft("t1") == "keep me"
    assert "t1" not in controller.statuses()


def test_unarchive_restores_thread_and_never_goes_negative() -> None:
    host, controller, _ = make_controller(
        Thread(id="t1", project_id="p", archived=True, has_messages=True, status="error"),
    )

    async def scenario() -> None:
        await controller.fetch_archived("p")
        await controller.unarchive("t1", "p")
        await controller.unarchive("t1", "p")

    asyncio.run(scenario())

    assert [t.id for t in controller.threads("p")] == ["t1"]
    assert controller.threads("p")[0].archived is False
    assert controller.archived_count("p") == 0
    assert controller.status("t1") == "error"


def test_send_is_optimistic_and_push_wins() -> None:
    host, controller, clock = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> None:
        await controller.fetch("p")
        await controller.send("t1", "hello")

    asyncio.run(scenario())

    assert controller.status("t1") == "running"
    assert controller.run_started_at("t1") == 100.0
    assert controller.threads("p")[0].has_messages is True

    host.push_thread("status", "t1", "idle")

    assert controller.status("t1") == "idle"
    assert controller.run_started_at("t1") is None


def test_send_restamps_run_start_but_status_push_does_not() -> None:
    host, controller, clock = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> None:
        await controller.fetch("p")
        await controller.send("t1", "one")
        clock.now = 150.0
        host.push_thread("status", "t1", "running")
        assert controller.run_started_at("t1") == 100.0
        await controller.send("t1", "two")

    asyncio.run(scenario())

    assert controller.run_started_at("t1") == 150.0


def test_complete_without_status_falls_back_to_idle() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"), Thread(id="t2", project_id="p"))

    async def scenario() -> None:
        await controller.fetch("p")
        await controller.send("t1", "hi")

    asyncio.run(scenario())
    host.push_thread("status", "t2", "error")

    host.push_thread("complete", "t1")
    host.push_thread("complete", "t2")

    assert controller.status("t1") == "idle"
    assert controller.status("t2") == "error"


def test_failed_send_keeps_optimistic_status() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))
    host.fail("send_message")

    async def scenario() -> None:
        await controller.fetch("p")
        await controller.send("t1", "hi")

    with pytest.raises(ExecutionHostError):
        asyncio.run(scenario())

    assert controller.status("t1") == "running"


def test_send_queued_clears_queue_only_on_success() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))
    controller.queue_message("t1", "next step", plan_mode=True)
    host.fail("send_message")

    with pytest.raises(ExecutionHostError):
        asyncio.run(controller.send_queued("t1"))
    assert controller.queued_message("t1").content == "next step"

    host.failures.clear()
    assert asyncio.run(controller.send_queued("t1")) is True
    assert controller.queued_message("t1") is None
    _, content, options = host.calls("send_message")[-1]
    assert content == "next step"
    assert options.plan_mode is True
    assert asyncio.run(controller.send_queued("t1")) is False


def test_create_copies_wsl_from_selected_thread_at_location() -> None:
    host, controller, _ = make_controller(
        Thread(id="t1", project_id="p", location_id="win", use_wsl=True, wsl_distro="Ubuntu"),
        Thread(id="t2", project_id="p", location_id="mac"),
    )

    async def scenario() -> Thread:
        await controller.fetch("p")
        controller.select("t2")
        return await controller.create("p", "New thread", "win")

    thread = asyncio.run(scenario())

    assert thread.use_wsl is True
    assert thread.wsl_distro == "Ubuntu"
    assert host.calls("set_thread_wsl") == [(thread.id, True, "Ubuntu")]
    assert controller.threads("p")[0].id == thread.id
    assert controller.selected_thread_id == thread.id
    assert controller.status(thread.id) == "idle"
    assert thread.id in controller.subscribed_thread_ids()


def test_usage_push_accumulates_tokens() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))
    asyncio.run(controller.fetch("p"))

    host.push_thread("usage", "t1", {"input_tokens": 100, "output_tokens": 20, "context_window": 1000})
    host.push_thread("usage", "t1", {"input_tokens": 50, "output_tokens": 5, "context_window": 1200})

    usage = controller.usage("t1")
    assert (usage.input_tokens, usage.output_tokens, usage.context_window) == (150, 25, 1200)


def test_title_and_pid_pushes_update_thread() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p", name="Untitled"))
    asyncio.run(controller.fetch("p"))

    host.push_thread("title", "t1", "Fix login bug")
    host.push_thread("pid", "t1", 4242)

    assert controller.find("t1").name == "Fix login bug"
    assert controller.pid("t1") == 4242


def test_plan_flow_and_questions() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> None:
        await controller.fetch("p")
        host.push_thread("status", "t1", "plan_pending")
        await controller.reject_plan("t1")
        assert controller.status("t1") == "plan_pending"
        await controller.approve_plan("t1")
        assert controller.status("t1") == "running"
        host.push_thread("status", "t1", "question_pending")
        await controller.answer_question("t1", {"Which db?": "sqlite"})

    asyncio.run(scenario())

    assert controller.status("t1") == "running"
    assert host.calls("answer_question") == [("t1", {"Which db?": "sqlite"}, {}, "")]


def test_remove_sweeps_thread_state() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> None:
        await controller.fetch("p")
        controller.select("t1")
        controller.queue_message("t1", "x")
        await controller.send("t1", "hi")
        controller.set_draft("t1", "half typed")
        controller.add_usage("t1", 10, 5, 100)
        await controller.remove("t1", "p")

    asyncio.run(scenario())

    assert controller.threads("p") == ()
    assert controller.selected_thread_id is None
    assert controller.queued_message("t1") is None
    assert controller.run_started_at("t1") is None
    assert controller.usage("t1") is None
    assert controller.draft("t1") == ""
    assert controller.subscribed_thread_ids() == []


def test_attribute_requests_update_local_thread() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> None:
        await controller.fetch("p")
        await controller.rename("t1", "Renamed")
        await controller.set_provider_and_model("t1", "codex", "gpt-5")

    asyncio.run(scenario())

    thread = controller.find("t1")
    assert (thread.name, thread.provider, thread.model) == ("Renamed", "codex", "gpt-5")
    assert host.threads["t1"].model == "gpt-5"


def test_close_releases_all_listeners() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))

    async def scenario() -> None:
        async with controller:
            await controller.fetch("p")
            assert host.channels()

    asyncio.run(scenario())

    assert host.channels() == []


def test_active_thread_listens_on_every_thread_event() -> None:
    host, controller, _ = make_controller(Thread(id="t1", project_id="p"))

    asyncio.run(controller.fetch("p"))

    for event in THREAD_EVENTS:
        assert host.listener_count(thread_channel(event, "t1")) == 1
