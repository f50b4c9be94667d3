"""Tests for the owner-scoped notification channel."""

import asyncio

import pytest

from expense_tracker.models.events import ChangeEventBuilder
from expense_tracker.notifications import NotificationChannel


class TestNotificationChannel:

    def test_publish_without_subscribers(self, channel):
        event = ChangeEventBuilder.expense_created("uid-alice", "exp-1")
        assert channel.publish(event) == 0

    def test_only_owner_receives(self, channel):
        alice = channel.subscribe("uid-alice")
        bob = channel.subscribe("uid-bob")

        delivered = channel.publish(ChangeEventBuilder.expense_created("uid-alice", "exp-1"))

        assert delivered == 1
        assert alice.get_nowait().entity_id == "exp-1"
        assert bob.get_nowait() is None

    def test_every_session_of_owner_receives(self, channel):
        tab_one = channel.subscribe("uid-alice")
        tab_two = channel.subscribe("uid-alice")

        assert channel.publish(ChangeEventBuilder.budget_reset("uid-alice")) == 2
        assert tab_one.pending == 1
        assert tab_two.pending == 1

    def test_full_queue_drops_instead_of_blocking(self):
        channel = NotificationChannel(max_queue_size=2)
        subscription = channel.subscribe("uid-alice")

        results = [
            channel.publish(ChangeEventBuilder.expense_created("uid-alice", f"exp-{n}"))
            for n in range(3)
        ]

        assert results == [1, 1, 0]
        assert subscription.dropped == 1
        assert subscription.pending == 2

    def test_close_unsubscribes(self, channel):
        with channel.subscribe("uid-alice") as subscription:
            assert channel.subscriber_count("uid-alice") == 1

        assert subscription.closed
        assert channel.subscriber_count("uid-alice") == 0
        assert channel.publish(ChangeEventBuilder.budget_reset("uid-alice")) == 0

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_reader(self, channel):
        subscription = channel.subscribe("uid-alice")

        reader = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        subscription.close()

        assert await asyncio.wait_for(reader, timeout=1) is None

    @pytest.mark.asyncio
    async def test_async_iteration(self, channel):
        subscription = channel.subscribe("uid-alice")
        channel.publish(ChangeEventBuilder.expense_created("uid-alice", "exp-1"))
        channel.publish(ChangeEventBuilder.expense_deleted("uid-alice", "exp-1"))
        subscription.close()

        actions = [event.action.value async for event in subscription]

        assert actions == ["created", "deleted"]
