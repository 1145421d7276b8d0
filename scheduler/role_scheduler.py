"""Bounded-concurrency scheduling of persona request tasks."""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Callable

from agents.mentions import extract_mentioned_personas
from agents.personas import PersonaRegistry
from pipeline.tool_loop import ToolExecutionLoop
from schemas.messages import ConversationMessage
from schemas.tasks import RoleRequestTask, TaskOutcome, TaskStatus
from .cancellation import TaskCancelled

logger = logging.getLogger(__name__)

MessageHandler = Callable[[RoleRequestTask, ConversationMessage], None]
ErrorHandler = Callable[[RoleRequestTask, Exception], None]
ContentsHandler = Callable[[RoleRequestTask, List[ConversationMessage]], None]
IdleHandler = Callable[[], None]
DispatchHandler = Callable[[RoleRequestTask], None]


class TaskHandle:
    """Caller-side view of a scheduled task."""

    def __init__(self, task: RoleRequestTask, future: asyncio.Future):
        self.task = task
        self._future = future

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def persona(self) -> str:
        return self.task.persona

    @property
    def cancelled(self) -> bool:
        return self.task.cancelled

    def done(self) -> bool:
        return self._future.done()

    async def result(self) -> TaskOutcome:
        """Wait for the terminal outcome of the task."""
        return await self._future

    def _resolve(self, outcome: TaskOutcome):
        if not self._future.done():
            self._future.set_result(outcome)


class RoleRequestScheduler:
    """
    Dispatches persona request tasks with a concurrency ceiling.

    Tasks wait in a FIFO queue until a slot is free. A request with the same
    trigger and persona as a queued or running task is dropped in favour of
    the existing one. A new request for a persona supersedes (cancels) the
    persona's older tasks. Cancelled running tasks keep their slot until
    their in-flight call drains, and none of their output is delivered.

    When a completed task's replies @mention other personas, one task per
    mentioned persona is scheduled on the conversation extended by the
    task's output. The idle handler runs whenever a task ends and nothing is
    left running or queued.
    The dispatch handler runs as each task starts, including fan-out tasks.
    """

    def __init__(
        self,
        loop: ToolExecutionLoop,
        personas: PersonaRegistry,
        max_concurrent: int = 3,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_contents_updated: Optional[ContentsHandler] = None,
        on_idle: Optional[IdleHandler] = None,
        on_dispatch: Optional[DispatchHandler] = None
    ):
        """
        Initialize scheduler.

        Args:
            loop: Tool execution loop that runs each task
            personas: Persona registry, for mention resolution
            max_concurrent: Maximum number of running tasks (default: 3)
            on_message: Receives every message a live task emits
            on_error: Receives failures; a failure never affects other tasks
            on_contents_updated: Receives cleaned history after attachment expiry
            on_idle: Called when nothing is running or queued anymore
            on_dispatch: Called as each task leaves the queue and starts running
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.loop = loop
        self.personas = personas
        self.max_concurrent = max_concurrent
        self.on_message = on_message
        self.on_error = on_error
        self.on_contents_updated = on_contents_updated
        self.on_idle = on_idle
        self.on_dispatch = on_dispatch

        self._queue: Deque[TaskHandle] = deque()
        self._running: Dict[str, TaskHandle] = {}
        self._scheduled: Dict[str, TaskHandle] = {}  # dedupe_key -> handle
        self._workers: Dict[str, asyncio.Task] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    def is_idle(self) -> bool:
        return not self._running and not self._queue

    def active_personas(self) -> List[str]:
        """Display names of personas with live (not cancelled) work, sorted."""
        keys = {h.persona for h in list(self._running.values()) + list(self._queue) if not h.cancelled}
        names = []
        for key in keys:
            persona = self.personas.get(key)
            names.append(persona.name if persona else key)
        return sorted(names)

    def schedule(
        self,
        persona: str,
        trigger_id: Optional[str] = None,
        snapshot: Optional[List[ConversationMessage]] = None,
        parent_task_id: Optional[str] = None
    ) -> TaskHandle:
        """
        Schedule a request for a persona.

        Must be called from the event loop thread.

        Args:
            persona: Persona key
            trigger_id: Identifier of the triggering message, for deduplication
            snapshot: Conversation the persona responds to
            parent_task_id: Task whose reply mentioned the persona

        Returns:
            Handle of the new task, or of the existing task for a duplicate
        """
        if trigger_id is not None:
            existing = self._scheduled.get(f"{trigger_id}:{persona}")
            if existing is not None:
                logger.info(f"Dropping duplicate request {trigger_id}:{persona}")
                return existing

        self.cancel(persona)

        task = RoleRequestTask(
            persona=persona,
            trigger_id=trigger_id,
            parent_task_id=parent_task_id,
            snapshot=list(snapshot or [])
        )
        handle = TaskHandle(task, asyncio.get_running_loop().create_future())

        if task.dedupe_key:
            self._scheduled[task.dedupe_key] = handle
        self._queue.append(handle)
        self._idle.clear()
        logger.info(f"Queued task {task.id} for {persona}")

        self._pump()
        return handle

    def cancel(self, persona: str) -> int:
        """
        Cancel every queued and running task of a persona.

        Returns:
            Number of tasks cancelled
        """
        count = 0

        retained: Deque[TaskHandle] = deque()
        for handle in self._queue:
            if handle.persona != persona:
                retained.append(handle)
                continue
            self._cancel_task(handle, "superseded")
            handle._resolve(self._outcome(handle.task, TaskStatus.CANCELLED))
            count += 1
        self._queue = retained

        for handle in self._running.values():
            if handle.persona == persona and not handle.cancelled:
                self._cancel_task(handle, "superseded")
                count += 1

        if count:
            logger.info(f"Cancelled {count} task(s) for {persona}")
        return count

    def cancel_all(self) -> int:
        personas = {h.persona for h in list(self._queue) + list(self._running.values())}
        return sum(self.cancel(persona) for persona in personas)

    async def wait_idle(self):
        """Wait until nothing is running or queued."""
        await self._idle.wait()

    def _cancel_task(self, handle: TaskHandle, reason: str):
        handle.task.cancellation.cancel(reason)
        handle.task.status = TaskStatus.CANCELLED
        key = handle.task.dedupe_key
        if key and self._scheduled.get(key) is handle:
            del self._scheduled[key]

    def _pump(self):
        while len(self._running) < self.max_concurrent and self._queue:
            handle = self._queue.popleft()
            if handle.cancelled:
                continue
            self._running[handle.id] = handle
            handle.task.status = TaskStatus.RUNNING
            if self.on_dispatch:
                self.on_dispatch(handle.task)
            self._workers[handle.id] = asyncio.create_task(self._execute(handle))

    async def _execute(self, handle: TaskHandle):
        task = handle.task
        emitted: List[ConversationMessage] = []

        def deliver(message: ConversationMessage):
            if task.cancelled:
                return
            emitted.append(message)
            if self.on_message:
                self.on_message(task, message)

        def contents_updated(cleaned: List[ConversationMessage]):
            if self.on_contents_updated and not task.cancelled:
                self.on_contents_updated(task, cleaned)

        outcome = self._outcome(task, TaskStatus.CANCELLED)
        try:
            result = await self.loop.run(
                task.snapshot,
                task.persona,
                token=task.token,
                on_message=deliver,
                on_contents_updated=contents_updated
            )
            if not task.cancelled:
                outcome = self._outcome(task, TaskStatus.COMPLETED, emitted)
                self._fan_out(task, result.replies, emitted)
        except TaskCancelled:
            logger.info(f"Task {task.id} for {task.persona} cancelled")
        except Exception as e:
            if task.cancelled:
                logger.info(f"Discarding failure of cancelled task {task.id}: {e}")
            else:
                logger.error(f"Role request failed for {task.persona}: {e}")
                outcome = self._outcome(task, TaskStatus.FAILED, emitted, error=e)
                if self.on_error:
                    self.on_error(task, e)
        finally:
            task.status = outcome.status
            self._running.pop(task.id, None)
            self._workers.pop(task.id, None)
            key = task.dedupe_key
            if key and self._scheduled.get(key) is handle:
                del self._scheduled[key]
            handle._resolve(outcome)

            self._pump()
            if self.is_idle():
                self._idle.set()
                if self.on_idle:
                    self.on_idle()

    def _fan_out(
        self,
        task: RoleRequestTask,
        replies: List[ConversationMessage],
        emitted: List[ConversationMessage]
    ):
        parts = [part for reply in replies for part in reply.parts]
        mentioned = [
            key for key in extract_mentioned_personas(parts, self.personas.mention_map())
            if key != task.persona
        ]
        if not mentioned:
            return

        trigger_id = str(replies[-1].timestamp)
        snapshot = task.snapshot + emitted
        logger.info(f"{task.persona} mentioned {mentioned}, scheduling follow-up tasks")
        for key in mentioned:
            self.schedule(key, trigger_id=trigger_id, snapshot=snapshot, parent_task_id=task.id)

    @staticmethod
    def _outcome(
        task: RoleRequestTask,
        status: TaskStatus,
        messages: Optional[List[ConversationMessage]] = None,
        error: Optional[Exception] = None
    ) -> TaskOutcome:
        return TaskOutcome(
            task_id=task.id,
            persona=task.persona,
            status=status,
            messages=list(messages or []),
            error=error
        )
