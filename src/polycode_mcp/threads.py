"""Agent conversation sessions: status, usage, queueing and archival."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import ExitStack
from typing import Callable

from .host.protocol import THREAD_EVENTS, ExecutionHostError, ThreadHost, thread_channel
from .models import (
    ARCHIVE_OUTCOMES,
    THREAD_STATUSES,
    Question,
    QueuedMessage,
    SendOptions,
    Thread,
    TokenUsage,
)
from .status import RUNNING, InstanceStatusMachine
from .subscriptions import SubscriptionManager, Unsubscribe

logger = logging.getLogger(__name__)

EMPTY_THREADS: tuple[Thread, ...] = ()


class ThreadSessionController:
    """Owns every per-thread map and keeps them in step with the execution host.

    User intent is applied locally first (``send`` flips the thread to
    ``running`` before the request goes out) and the host's pushed status
    overrides it whenever it arrives. Request failures are logged and
    re-raised; optimistic state is left for the host to correct.
    """

    def __init__(self, host: ThreadHost, *, clock: Callable[[], float] | None = None) -> None:
        self._host = host
        self._clock = clock or time.time
        self._active: dict[str, list[Thread]] = {}
        self._archived: dict[str, list[Thread]] = {}
        self._archived_count: dict[str, int] = {}
        self._status = InstanceStatusMachine(
            statuses=THREAD_STATUSES,
            on_transition=self._on_transition,
            name="threads",
        )
        self._run_started_at: dict[str, float] = {}
        self._usage: dict[str, TokenUsage] = {}
        self._pid: dict[str, int | None] = {}
        self._queued: dict[str, QueuedMessage] = {}
        self._drafts: dict[str, str] = {}
        self._plan_mode: dict[str, bool] = {}
        self._subscriptions = SubscriptionManager(self._open_listeners, name="threads")
        self.selected_thread_id: str | None = None
        self.show_archived = False

    # selectors

    def threads(self, project_id: str) -> tuple[Thread, ...]:
        return tuple(self._active.get(project_id, EMPTY_THREADS))

    def archived_threads(self, project_id: str) -> tuple[Thread, ...]:
        return tuple(self._archived.get(project_id, EMPTY_THREADS))

    def archived_count(self, project_id: str) -> int:
        return self._archived_count.get(project_id, 0)

    def find(self, thread_id: str) -> Thread | None:
        for threads in self._active.values():
            for thread in threads:
                if thread.id == thread_id:
                    return thread
        return None

    def status(self, thread_id: str) -> str:
        return self._status.get(thread_id)

    def statuses(self):
        return self._status.snapshot()

    def run_started_at(self, thread_id: str) -> float | None:
        return self._run_started_at.get(thread_id)

    def usage(self, thread_id: str) -> TokenUsage | None:
        return self._usage.get(thread_id)

    def pid(self, thread_id: str) -> int | None:
        return self._pid.get(thread_id)

    def queued_message(self, thread_id: str) -> QueuedMessage | None:
        return self._queued.get(thread_id)

    def draft(self, thread_id: str) -> str:
        return self._drafts.get(thread_id, "")

    def plan_mode(self, thread_id: str) -> bool:
        return self._plan_mode.get(thread_id, False)

    def subscribed_thread_ids(self) -> list[str]:
        return self._subscriptions.keys()

    # loading

    async def fetch(self, project_id: str) -> None:
        threads, count = await asyncio.gather(
            self._call("list_threads", self._host.list_threads(project_id), project_id=project_id),
            self._call(
                "archived_thread_count",
                self._host.archived_thread_count(project_id),
                project_id=project_id,
            ),
        )
        self._active[project_id] = list(threads)
        self._archived_count[project_id] = count
        for thread in threads:
            self._status.seed(thread.id, thread.status)
            if thread.input_tokens > 0 or thread.output_tokens > 0:
                self._usage[thread.id] = TokenUsage(
                    input_tokens=thread.input_tokens,
                    output_tokens=thread.output_tokens,
                    context_window=thread.context_window,
                )
        self._sync_subscriptions()
        logger.info(
            "Fetched threads",
            extra={"project_id": project_id, "active": len(threads), "archived": count},
        )

    async def fetch_archived(self, project_id: str) -> None:
        threads = await self._call(
            "list_archived_threads",
            self._host.list_archived_threads(project_id),
            project_id=project_id,
        )
        self._archived[project_id] = list(threads)
        self._archived_count[project_id] = len(threads)

    async def toggle_show_archived(self, project_id: str) -> bool:
        self.show_archived = not self.show_archived
        if self.show_archived:
            await self.fetch_archived(project_id)
        return self.show_archived

    # lifecycle

    async def create(self, project_id: str, name: str, location_id: str) -> Thread:
        thread = await self._call(
            "create_thread",
            self._host.create_thread(project_id, name, location_id),
            project_id=project_id,
        )

        source = self._wsl_source(project_id, location_id)
        if source is not None and (
            thread.use_wsl != source.use_wsl or thread.wsl_distro != source.wsl_distro
        ):
            await self._call(
                "set_thread_wsl",
                self._host.set_thread_wsl(thread.id, source.use_wsl, source.wsl_distro),
                thread_id=thread.id,
            )
            thread = thread.model_copy(
                update={"use_wsl": source.use_wsl, "wsl_distro": source.wsl_distro}
            )

        self._active[project_id] = [thread, *self._active.get(project_id, [])]
        self._status.seed(thread.id, "idle")
        self.selected_thread_id = thread.id
        self._sync_subscriptions()
        logger.info(
            "Created thread",
            extra={"project_id": project_id, "thread_id": thread.id, "location_id": location_id},
        )
        return thread

    def _wsl_source(self, project_id: str, location_id: str) -> Thread | None:
        threads = self._active.get(project_id, [])
        selected = next((t for t in threads if t.id == self.selected_thread_id), None)
        if selected is not None and selected.location_id == location_id:
            return selected
        return next((t for t in threads if t.location_id == location_id), None)

    async def remove(self, thread_id: str, project_id: str) -> None:
        await self._call("delete_thread", self._host.delete_thread(thread_id), thread_id=thread_id)
        self._drop_from(self._active, project_id, thread_id)
        self._drop_from(self._archived, project_id, thread_id)
        self._forget(thread_id, deleted=True)
        self._sync_subscriptions()

    async def archive(self, thread_id: str, project_id: str) -> str:
        outcome = await self._call(
            "archive_thread", self._host.archive_thread(thread_id), thread_id=thread_id
        )
        if outcome not in ARCHIVE_OUTCOMES:
            raise ExecutionHostError(
                f"Unexpected archive outcome {outcome!r} for thread '{thread_id}'"
            )

        thread = self._drop_from(self._active, project_id, thread_id)
        self._forget(thread_id, deleted=outcome == "deleted")

        if outcome == "deleted":
            self._drop_from(self._archived, project_id, thread_id)
        else:
            archived = self._archived.setdefault(project_id, [])
            if thread is not None and all(t.id != thread_id for t in archived):
                archived.insert(0, thread.model_copy(update={"archived": True}))
            self._archived_count[project_id] = self._archived_count.get(project_id, 0) + 1

        self._sync_subscriptions()
        logger.info(
            "Archived thread",
            extra={"project_id": project_id, "thread_id": thread_id, "outcome": outcome},
        )
        return outcome

    async def unarchive(self, thread_id: str, project_id: str) -> None:
        await self._call(
            "unarchive_thread", self._host.unarchive_thread(thread_id), thread_id=thread_id
        )
        thread = self._drop_from(self._archived, project_id, thread_id)
        self._archived_count[project_id] = max(0, self._archived_count.get(project_id, 0) - 1)
        if thread is not None:
            restored = thread.model_copy(update={"archived": False})
            self._active[project_id] = [restored, *self._active.get(project_id, [])]
            self._status.seed(thread_id, restored.status)
        self._sync_subscriptions()

    def select(self, thread_id: str | None) -> None:
        self.selected_thread_id = thread_id

    # status

    def set_status(self, thread_id: str, status: str) -> None:
        """Apply an authoritative status pushed by the host."""

        self._status.apply(thread_id, status)

    def complete(self, thread_id: str) -> bool:
        return self._status.complete(thread_id)

    def _on_transition(self, thread_id: str, previous: str, current: str) -> None:
        if current == RUNNING:
            self._run_started_at.setdefault(thread_id, self._clock())
        else:
            self._run_started_at.pop(thread_id, None)

    def _mark_running(self, thread_id: str) -> None:
        self._status.mark_running(thread_id)
        self._run_started_at[thread_id] = self._clock()

    async def start(self, thread_id: str) -> None:
        self._status.mark_running(thread_id)
        await self._call("start_thread", self._host.start_thread(thread_id), thread_id=thread_id)

    async def stop(self, thread_id: str) -> None:
        await self._call("stop_thread", self._host.stop_thread(thread_id), thread_id=thread_id)

    async def send(
        self,
        thread_id: str,
        content: str,
        options: SendOptions | None = None,
    ) -> None:
        self._mark_running(thread_id)
        self._update_thread(thread_id, has_messages=True)
        await self._call(
            "send_message",
            self._host.send_message(thread_id, content, options or SendOptions()),
            thread_id=thread_id,
        )

    async def send_queued(self, thread_id: str) -> bool:
        queued = self._queued.get(thread_id)
        if queued is None:
            return False
        await self.send(thread_id, queued.content, SendOptions(plan_mode=queued.plan_mode))
        if self._queued.get(thread_id) is queued:
            self.clear_queue(thread_id)
        return True

    async def approve_plan(self, thread_id: str) -> None:
        self._mark_running(thread_id)
        await self._call("approve_plan", self._host.approve_plan(thread_id), thread_id=thread_id)

    async def reject_plan(self, thread_id: str) -> None:
        await self._call("reject_plan", self._host.reject_plan(thread_id), thread_id=thread_id)

    async def get_questions(self, thread_id: str) -> list[Question]:
        return await self._call(
            "get_questions", self._host.get_questions(thread_id), thread_id=thread_id
        )

    async def answer_question(
        self,
        thread_id: str,
        answers: dict[str, str],
        question_comments: dict[str, str] | None = None,
        general_comment: str = "",
    ) -> None:
        self._mark_running(thread_id)
        await self._call(
            "answer_question",
            self._host.answer_question(thread_id, answers, question_comments or {}, general_comment),
            thread_id=thread_id,
        )

    # attributes

    def set_name(self, thread_id: str, name: str) -> None:
        self._update_thread(thread_id, name=name)

    async def rename(self, thread_id: str, name: str) -> None:
        await self._call("rename_thread", self._host.rename_thread(thread_id, name), thread_id=thread_id)
        self._update_thread(thread_id, name=name)

    async def set_model(self, thread_id: str, model: str) -> None:
        await self._call(
            "set_thread_model", self._host.set_thread_model(thread_id, model), thread_id=thread_id
        )
        self._update_thread(thread_id, model=model)

    async def set_provider_and_model(self, thread_id: str, provider: str, model: str) -> None:
        await self._call(
            "set_thread_provider_and_model",
            self._host.set_thread_provider_and_model(thread_id, provider, model),
            thread_id=thread_id,
        )
        self._update_thread(thread_id, provider=provider, model=model)

    async def set_wsl(self, thread_id: str, use_wsl: bool, wsl_distro: str | None) -> None:
        await self._call(
            "set_thread_wsl",
            self._host.set_thread_wsl(thread_id, use_wsl, wsl_distro),
            thread_id=thread_id,
        )
        self._update_thread(thread_id, use_wsl=use_wsl, wsl_distro=wsl_distro)

    def set_draft(self, thread_id: str, draft: str) -> None:
        self._drafts[thread_id] = draft

    def set_plan_mode(self, thread_id: str, plan_mode: bool) -> None:
        self._plan_mode[thread_id] = plan_mode

    def queue_message(self, thread_id: str, content: str, plan_mode: bool = False) -> None:
        self._queued[thread_id] = QueuedMessage(content=content, plan_mode=plan_mode)

    def clear_queue(self, thread_id: str) -> None:
        self._queued.pop(thread_id, None)

    def add_usage(
        self,
        thread_id: str,
        input_tokens: int,
        output_tokens: int,
        context_window: int,
    ) -> TokenUsage:
        previous = self._usage.get(thread_id) or TokenUsage()
        usage = self._usage[thread_id] = TokenUsage(
            input_tokens=previous.input_tokens + input_tokens,
            output_tokens=previous.output_tokens + output_tokens,
            context_window=context_window,
        )
        return usage

    def set_pid(self, thread_id: str, pid: int | None) -> None:
        self._pid[thread_id] = pid

    async def fetch_pid(self, thread_id: str) -> int | None:
        pid = await self._call(
            "get_thread_pid", self._host.get_thread_pid(thread_id), thread_id=thread_id
        )
        self._pid[thread_id] = pid
        return pid

    # push events

    def _open_listeners(self, thread_id: str) -> Unsubscribe:
        handlers = {
            "status": lambda status: self.set_status(thread_id, status),
            "title": lambda name: self.set_name(thread_id, name),
            "complete": lambda *_: self.complete(thread_id),
            "usage": lambda usage: self.add_usage(
                thread_id,
                int(usage.get("input_tokens", 0)),
                int(usage.get("output_tokens", 0)),
                int(usage.get("context_window", 0)),
            ),
            "pid": lambda pid: self.set_pid(thread_id, pid),
        }
        with ExitStack() as stack:
            for event in THREAD_EVENTS:
                stack.callback(
                    self._host.subscribe(thread_channel(event, thread_id), handlers[event])
                )
            return stack.pop_all().close

    def _sync_subscriptions(self) -> None:
        desired: list[str] = []
        for threads in self._active.values():
            desired.extend(thread.id for thread in threads)
        self._subscriptions.sync(desired)

    def close(self) -> None:
        self._subscriptions.close()

    async def __aenter__(self) -> "ThreadSessionController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    # helpers

    def _update_thread(self, thread_id: str, **changes) -> None:
        for mapping in (self._active, self._archived):
            for project_id, threads in mapping.items():
                mapping[project_id] = [
                    t.model_copy(update=changes) if t.id == thread_id else t for t in threads
                ]

    @staticmethod
    def _drop_from(mapping: dict[str, list[Thread]], project_id: str, thread_id: str) -> Thread | None:
        threads = mapping.get(project_id, [])
        dropped = next((t for t in threads if t.id == thread_id), None)
        if dropped is not None:
            mapping[project_id] = [t for t in threads if t.id != thread_id]
        return dropped

    def _forget(self, thread_id: str, *, deleted: bool = False) -> None:
        """Drop session state for a thread leaving the active list.

        Usage totals and the draft survive archiving; a deleted thread loses both.
        """

        self._status.discard(thread_id)
        self._queued.pop(thread_id, None)
        self._plan_mode.pop(thread_id, None)
        self._run_started_at.pop(thread_id, None)
        self._pid.pop(thread_id, None)
        if deleted:
            self._usage.pop(thread_id, None)
            self._drafts.pop(thread_id, None)
        if self.selected_thread_id == thread_id:
            self.selected_thread_id = None

    async def _call(self, verb: str, request, **context):
        try:
            return await request
        except Exception:
            logger.exception("Thread host request failed", extra={"verb": verb, **context})
            raise


__all__ = ["EMPTY_THREADS", "ThreadSessionController"]
