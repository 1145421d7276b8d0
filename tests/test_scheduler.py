"""Tests for the role request scheduler."""

import asyncio

import pytest

from agents.personas import PersonaRegistry
from llm.errors import ApiError
from scheduler.role_scheduler import RoleRequestScheduler
from schemas.tasks import TaskStatus
from fakes import FakeLoop, user_message


class TestRoleRequestScheduler:
    """Test dedup, supersession, ceiling and mention fan-out."""

    def setup_method(self):
        """Set up test fixtures."""
        self.personas = PersonaRegistry.from_yaml()
        self.snapshot = [user_message("Hello everyone", timestamp=100)]
        self.delivered = []
        self.errors = []
        self.idle_calls = 0

    def make_scheduler(self, loop, max_concurrent=3):
        def on_idle():
            self.idle_calls += 1

        return RoleRequestScheduler(
            loop=loop,
            personas=self.personas,
            max_concurrent=max_concurrent,
            on_message=lambda task, message: self.delivered.append((task.persona, message)),
            on_error=lambda task, error: self.errors.append((task.persona, error)),
            on_idle=on_idle
        )

    def test_runs_task_and_notifies_idle(self):
        """Test a single task from schedule to idle."""
        async def scenario():
            loop = FakeLoop(self.personas)
            scheduler = self.make_scheduler(loop)
            handle = scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            await scheduler.wait_idle()
            return await handle.result()

        outcome = asyncio.run(scenario())

        assert outcome.status == TaskStatus.COMPLETED
        assert len(outcome.messages) == 1
        assert self.delivered[0][0] == "general"
        assert self.idle_calls == 1

    def test_duplicate_trigger_returns_existing_handle(self):
        """Test that the same trigger and persona is scheduled only once."""
        async def scenario():
            loop = FakeLoop(self.personas)
            gate = loop.gate("general")
            scheduler = self.make_scheduler(loop)
            first = scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            second = scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            gate.set()
            await scheduler.wait_idle()
            return first, second, loop

        first, second, loop = asyncio.run(scenario())

        assert first is second
        assert not first.cancelled
        assert len(loop.calls) == 1

    def test_new_trigger_supersedes_older_task(self):
        """Test that a newer request cancels the persona's older task."""
        async def scenario():
            loop = FakeLoop(self.personas)
            gate = loop.gate("general")
            scheduler = self.make_scheduler(loop)
            old = scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            await asyncio.sleep(0)
            new = scheduler.schedule("general", trigger_id="200", snapshot=self.snapshot)
            gate.set()
            await scheduler.wait_idle()
            return await old.result(), await new.result()

        old_outcome, new_outcome = asyncio.run(scenario())

        assert old_outcome.status == TaskStatus.CANCELLED
        assert old_outcome.messages == []
        assert new_outcome.status == TaskStatus.COMPLETED
        # Only the surviving task's reply was delivered
        assert len(self.delivered) == 1

    def test_queued_task_superseded_never_runs(self):
        """Test that a superseded queued task never reaches the loop."""
        async def scenario():
            loop = FakeLoop(self.personas)
            gate = loop.gate("searcher")
            scheduler = self.make_scheduler(loop, max_concurrent=1)
            scheduler.schedule("searcher", trigger_id="1", snapshot=self.snapshot)
            queued = scheduler.schedule("general", trigger_id="1", snapshot=self.snapshot)
            scheduler.schedule("general", trigger_id="2", snapshot=self.snapshot)
            cancelled_outcome = await queued.result()
            gate.set()
            await scheduler.wait_idle()
            return cancelled_outcome, loop

        cancelled_outcome, loop = asyncio.run(scenario())

        assert cancelled_outcome.status == TaskStatus.CANCELLED
        assert [call["persona"] for call in loop.calls] == ["searcher", "general"]

    def test_concurrency_ceiling(self):
        """Test that at most N tasks run at once."""
        async def scenario():
            loop = FakeLoop(self.personas)
            gates = [loop.gate(key) for key in ("general", "searcher", "editor", "memory_manager")]
            scheduler = self.make_scheduler(loop, max_concurrent=3)
            for key in ("general", "searcher", "editor", "memory_manager"):
                scheduler.schedule(key, trigger_id="100", snapshot=self.snapshot)
            await asyncio.sleep(0)
            counts = (scheduler.running_count, scheduler.queued_count)
            for gate in gates:
                gate.set()
            await scheduler.wait_idle()
            return counts, loop

        counts, loop = asyncio.run(scenario())

        assert counts == (3, 1)
        assert loop.max_active == 3
        assert len(loop.calls) == 4

    def test_cancelled_running_task_keeps_its_slot(self):
        """Test that a cancelled task holds its slot until its call drains."""
        async def scenario():
            loop = FakeLoop(self.personas)
            gate = loop.gate("general")
            scheduler = self.make_scheduler(loop, max_concurrent=1)
            scheduler.schedule("general", trigger_id="1", snapshot=self.snapshot)
            await asyncio.sleep(0)
            scheduler.cancel("general")
            scheduler.schedule("searcher", trigger_id="1", snapshot=self.snapshot)
            await asyncio.sleep(0)
            while_draining = (scheduler.running_count, scheduler.queued_count)
            gate.set()
            await scheduler.wait_idle()
            return while_draining

        assert asyncio.run(scenario()) == (1, 1)
        assert [persona for persona, _ in self.delivered] == ["searcher"]

    def test_mention_fan_out(self):
        """Test that @Belinda @Charlie schedules one task each."""
        async def scenario():
            loop = FakeLoop(self.personas, replies={
                "general": "Let me ask @Belinda and @Charlie about this. @belinda please hurry.",
            })
            scheduler = self.make_scheduler(loop)
            scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            await scheduler.wait_idle()
            return loop

        loop = asyncio.run(scenario())

        personas = [call["persona"] for call in loop.calls]
        assert personas == ["general", "searcher", "editor"]
        # Fan-out snapshots include the mentioning reply
        for call in loop.calls[1:]:
            assert call["history"][-1].persona_name == "Adrien"
            assert len(call["history"]) == 2
        assert self.idle_calls == 1

    def test_dispatch_hook_runs_for_every_started_task(self):
        """Test that fan-out tasks are reported on dispatch like direct ones."""
        dispatched = []

        async def scenario():
            loop = FakeLoop(self.personas, replies={"general": "@Belinda please help"})
            scheduler = RoleRequestScheduler(
                loop=loop,
                personas=self.personas,
                on_dispatch=lambda task: dispatched.append(task.persona)
            )
            scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            await scheduler.wait_idle()

        asyncio.run(scenario())
        assert dispatched == ["general", "searcher"]

    def test_superseded_queued_task_is_never_dispatched(self):
        dispatched = []

        async def scenario():
            loop = FakeLoop(self.personas)
            gate = loop.gate("searcher")
            scheduler = RoleRequestScheduler(
                loop=loop,
                personas=self.personas,
                max_concurrent=1,
                on_dispatch=lambda task: dispatched.append(task.trigger_id)
            )
            scheduler.schedule("searcher", trigger_id="1", snapshot=self.snapshot)
            scheduler.schedule("general", trigger_id="1", snapshot=self.snapshot)
            scheduler.schedule("general", trigger_id="2", snapshot=self.snapshot)
            gate.set()
            await scheduler.wait_idle()

        asyncio.run(scenario())
        assert dispatched == ["1", "2"]

    def test_self_mention_does_not_fan_out(self):
        """Test that a persona mentioning itself is not rescheduled."""
        async def scenario():
            loop = FakeLoop(self.personas, replies={"general": "I am @Adrien."})
            scheduler = self.make_scheduler(loop)
            scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            await scheduler.wait_idle()
            return loop

        loop = asyncio.run(scenario())
        assert len(loop.calls) == 1

    def test_failure_is_isolated(self):
        """Test that one failing task does not affect its siblings."""
        async def scenario():
            loop = FakeLoop(self.personas)
            loop.errors["searcher"] = ApiError("boom", status=500)
            scheduler = self.make_scheduler(loop)
            failed = scheduler.schedule("searcher", trigger_id="100", snapshot=self.snapshot)
            ok = scheduler.schedule("general", trigger_id="100", snapshot=self.snapshot)
            await scheduler.wait_idle()
            return await failed.result(), await ok.result()

        failed, ok = asyncio.run(scenario())

        assert failed.status == TaskStatus.FAILED
        assert isinstance(failed.error, ApiError)
        assert ok.status == TaskStatus.COMPLETED
        assert [persona for persona, _ in self.errors] == ["searcher"]
        assert self.idle_calls == 1

    def test_active_personas(self):
        """Test the display names of personas with live work."""
        async def scenario():
            loop = FakeLoop(self.personas)
            gate = loop.gate("general")
            scheduler = self.make_scheduler(loop)
            scheduler.schedule("general", trigger_id="1", snapshot=self.snapshot)
            names = scheduler.active_personas()
            gate.set()
            await scheduler.wait_idle()
            return names, scheduler.active_personas()

        busy, idle = asyncio.run(scenario())
        assert busy == ["Adrien"]
        assert idle == []

    def test_rejects_zero_ceiling(self):
        """Test that the ceiling must be positive."""
        with pytest.raises(ValueError):
            RoleRequestScheduler(loop=FakeLoop(self.personas), personas=self.personas, max_concurrent=0)
