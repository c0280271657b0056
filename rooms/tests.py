import asyncio
from datetime import timedelta
from unittest import mock

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.apps import apps
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIClient

from .coordinator import NOT_IN_ROOM, RoomCoordinator
from .lifespan import lifespan
from .models import Call, CallStatus, Member, Message, Room
from .presence import CallTracker, Presence, PresenceTable
from .routing import websocket_urlpatterns
from .store import RoomStore
from .sweeper import ReclamationSweeper
from .transport import RELAY_EVENT, ChannelLayerTransport


class RecordingTransport:
    def __init__(self):
        self.sent = []

    async def send(self, connection_id, event, payload):
        self.sent.append((connection_id, event, payload))

    def received(self, connection_id, event=None):
        return [
            payload for conn, name, payload in self.sent
            if conn == connection_id and (event is None or name == event)
        ]

    def events(self, connection_id):
        return [name for conn, name, _ in self.sent if conn == connection_id]

    def clear(self):
        self.sent = []


@database_sync_to_async
def get_member(room_code, username):
    return Member.objects.get(room_id=room_code, username=username)


@database_sync_to_async
def count(queryset):
    return queryset.count()


class PresenceTableTests(SimpleTestCase):
    def setUp(self):
        self.presence = PresenceTable()
        self.presence.register('c1', Presence('abc123', 'u1', 'alice'))
        self.presence.register('c2', Presence('abc123', 'u2', 'bob'))
        self.presence.register('c3', Presence('other', 'u3', 'carol'))

    def test_connections_in_room_excludes_actor(self):
        self.assertEqual(self.presence.connections_in('abc123', exclude='c1'), ['c2'])
        self.assertEqual(sorted(self.presence.connections_in('abc123')), ['c1', 'c2'])

    def test_register_returns_replaced_entry(self):
        previous = self.presence.register('c1', Presence('other', 'u1', 'alice'))
        self.assertEqual(previous.room_code, 'abc123')
        self.assertEqual(self.presence.connections_in('abc123'), ['c2'])

    def test_remove(self):
        self.assertEqual(self.presence.remove('c2').username, 'bob')
        self.assertIsNone(self.presence.remove('c2'))
        self.assertNotIn('c2', self.presence)
        self.assertEqual(len(self.presence), 2)


class CallTrackerTests(SimpleTestCase):
    def test_last_offer_wins(self):
        calls = CallTracker()
        calls.start('abc123', 'audio', 'u1')
        calls.start('abc123', 'video', 'u2')
        self.assertEqual(calls.get('abc123').initiator_id, 'u2')
        self.assertEqual(calls.get('abc123').call_type, 'video')

    def test_clear(self):
        calls = CallTracker()
        calls.start('abc123', 'audio', 'u1')
        calls.clear('abc123')
        self.assertIsNone(calls.get('abc123'))
        self.assertIsNone(calls.clear('abc123'))


class RoomStoreTests(TransactionTestCase):
    def setUp(self):
        self.store = RoomStore()

    async def test_create_room_recovers_from_duplicate(self):
        first = await self.store.create_room('dup')
        second = await self.store.create_room('dup')
        self.assertEqual(first.id, second.id)
        self.assertEqual(await count(Room.objects.filter(code='dup')), 1)

    async def test_create_member_recovers_from_duplicate(self):
        await self.store.get_or_create_room('abc123')
        first, created = await self.store.create_member('abc123', 'alice', 'c1')
        second, previous = await self.store.create_member('abc123', 'alice', 'c2')
        self.assertEqual(first.id, second.id)
        self.assertIsNone(created)
        self.assertEqual(previous.connection_id, 'c1')
        member = await get_member('abc123', 'alice')
        self.assertEqual(member.connection_id, 'c2')

    async def test_revert_member_restores_previous_state(self):
        await self.store.get_or_create_room('abc123')
        member, _ = await self.store.upsert_member('abc123', 'alice', 'c1')
        await self.store.mark_offline(member.id, 'c1')
        before = await get_member('abc123', 'alice')

        _, previous = await self.store.upsert_member('abc123', 'alice', 'c2')
        self.assertEqual(await self.store.revert_member(member.id, 'c2', previous), 1)

        after = await get_member('abc123', 'alice')
        self.assertEqual(after.connection_id, 'c1')
        self.assertFalse(after.is_online)
        self.assertEqual(after.last_seen, before.last_seen)

    async def test_revert_member_leaves_newer_connection_alone(self):
        await self.store.get_or_create_room('abc123')
        member, previous = await self.store.upsert_member('abc123', 'alice', 'c1')
        await self.store.upsert_member('abc123', 'alice', 'c2')

        self.assertEqual(await self.store.revert_member(member.id, 'c1', previous), 0)
        self.assertEqual((await get_member('abc123', 'alice')).connection_id, 'c2')

    async def test_mark_offline_requires_current_connection(self):
        await self.store.get_or_create_room('abc123')
        member, _ = await self.store.upsert_member('abc123', 'alice', 'c1')
        self.assertEqual(await self.store.mark_offline(member.id, 'stale'), 0)
        self.assertEqual(await self.store.mark_offline(member.id, 'c1'), 1)
        member = await get_member('abc123', 'alice')
        self.assertFalse(member.is_online)

    async def test_end_active_call_only_ends_most_recent(self):
        await self.store.get_or_create_room('abc123')
        older = await self.store.start_call('abc123', 'audio', None, 'alice')
        newer = await self.store.start_call('abc123', 'video', None, 'bob')
        self.assertEqual(await self.store.end_active_call('abc123'), 1)
        self.assertEqual(await count(Call.objects.filter(pk=older.pk, status=CallStatus.ACTIVE)), 1)
        self.assertEqual(await count(Call.objects.filter(pk=newer.pk, status=CallStatus.ENDED)), 1)

    async def test_end_active_call_without_calls(self):
        await self.store.get_or_create_room('abc123')
        self.assertEqual(await self.store.end_active_call('abc123'), 0)

    async def test_recent_calls_capped_at_ten(self):
        await self.store.get_or_create_room('abc123')
        for i in range(12):
            await self.store.start_call('abc123', 'audio', None, f'user{i}')
        calls = await self.store.recent_calls('abc123')
        self.assertEqual(len(calls), 10)
        self.assertEqual(calls[0].initiator_name, 'user11')


class RoomCoordinatorTests(TransactionTestCase):
    def setUp(self):
        self.transport = RecordingTransport()
        self.store = RoomStore()
        self.coordinator = RoomCoordinator(
            store=self.store,
            presence=PresenceTable(),
            calls=CallTracker(),
            transport=self.transport,
        )

    async def test_rejoin_reuses_user_id(self):
        first = await self.coordinator.join('c1', 'abc123', 'alice')
        await self.coordinator.disconnect('c1')
        second = await self.coordinator.join('c2', 'abc123', 'alice')
        self.assertEqual(first, second)
        self.assertEqual(await count(Member.objects.filter(room_id='abc123')), 1)

    async def test_disconnect_keeps_row_and_rejoin_brings_it_online(self):
        user_id = await self.coordinator.join('c1', 'abc123', 'alice')
        await self.coordinator.disconnect('c1')

        member = await get_member('abc123', 'alice')
        self.assertFalse(member.is_online)
        self.assertNotIn('c1', self.coordinator.presence)

        await self.coordinator.join('c2', 'abc123', 'alice')
        member = await get_member('abc123', 'alice')
        self.assertTrue(member.is_online)
        self.assertEqual(str(member.id), user_id)
        self.assertEqual(member.connection_id, 'c2')

    async def test_snapshot_contents(self):
        await self.coordinator.join('c1', 'abc123', 'zed')
        await self.coordinator.join('c2', 'abc123', 'amy')
        for body in ('one', 'two', 'three'):
            await self.coordinator.send_message('c1', body)
        await self.coordinator.disconnect('c2')

        user_id = await self.coordinator.join('c3', 'abc123', 'bob')

        snapshot = self.transport.received('c3', 'room-joined')[0]
        self.assertEqual(snapshot['roomCode'], 'abc123')
        self.assertEqual(snapshot['userId'], user_id)
        self.assertEqual([u['username'] for u in snapshot['users']], ['bob', 'zed', 'amy'])
        self.assertEqual([u['isOnline'] for u in snapshot['users']], [True, True, False])
        self.assertEqual([m['message'] for m in snapshot['messages']], ['one', 'two', 'three'])
        ids = [m['id'] for m in snapshot['messages']]
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(snapshot['callHistory'], [])

    async def test_join_notifies_others_only(self):
        await self.coordinator.join('c1', 'abc123', 'alice')
        self.transport.clear()
        bob_id = await self.coordinator.join('c2', 'abc123', 'bob')

        notice = self.transport.received('c1', 'user-joined')[0]
        self.assertEqual(notice['userId'], bob_id)
        self.assertEqual(notice['username'], 'bob')
        self.assertEqual({u['username'] for u in notice['users']}, {'alice', 'bob'})
        self.assertEqual(self.transport.events('c2'), ['room-joined'])

    async def test_concurrent_joins_create_one_room(self):
        await asyncio.gather(
            self.coordinator.join('c1', 'fresh', 'alice'),
            self.coordinator.join('c2', 'fresh', 'bob'),
        )
        self.assertEqual(await count(Room.objects.filter(code='fresh')), 1)
        self.assertEqual(self.transport.received('c1', 'error'), [])
        self.assertEqual(self.transport.received('c2', 'error'), [])
        self.assertEqual(await count(Member.objects.filter(room_id='fresh')), 2)

    async def test_join_failure_leaves_no_presence(self):
        await self.coordinator.join('c1', 'abc123', 'alice')
        self.transport.clear()

        failing = mock.AsyncMock(side_effect=DatabaseError("disk I/O error"))
        with mock.patch.object(self.store, 'list_messages', new=failing):
            result = await self.coordinator.join('c2', 'abc123', 'bob')

        self.assertIsNone(result)
        self.assertNotIn('c2', self.coordinator.presence)
        self.assertEqual(self.transport.received('c2', 'error'), [{'message': "Failed to join room"}])
        self.assertEqual(self.transport.received('c1'), [])
        self.assertEqual(await count(Member.objects.filter(username='bob')), 0)

    async def test_failed_rejoin_leaves_member_row_unchanged(self):
        await self.coordinator.join('c1', 'abc123', 'alice')
        before = await get_member('abc123', 'alice')

        failing = mock.AsyncMock(side_effect=DatabaseError("disk I/O error"))
        with mock.patch.object(self.store, 'list_messages', new=failing):
            await self.coordinator.join('c2', 'abc123', 'alice')

        after = await get_member('abc123', 'alice')
        self.assertEqual(after.connection_id, 'c1')
        self.assertTrue(after.is_online)
        self.assertEqual(after.last_seen, before.last_seen)

        await self.coordinator.disconnect('c1')
        await self.coordinator.disconnect('c2')
        self.assertFalse((await get_member('abc123', 'alice')).is_online)

    async def test_switching_room_on_same_connection_leaves_old_room(self):
        alice_id = await self.coordinator.join('c1', 'room-a', 'alice')
        await self.coordinator.join('b', 'room-a', 'bob')
        self.transport.clear()

        await self.coordinator.join('c1', 'room-b', 'alice')

        self.assertEqual(self.transport.events('b'), ['user-left', 'user-typing-stop'])
        self.assertEqual(self.transport.received('b', 'user-left')[0], {'userId': alice_id, 'username': 'alice'})
        self.assertFalse((await get_member('room-a', 'alice')).is_online)
        self.assertTrue((await get_member('room-b', 'alice')).is_online)

        await self.coordinator.disconnect('c1')
        self.assertFalse((await get_member('room-b', 'alice')).is_online)
        self.assertEqual(self.transport.events('b'), ['user-left', 'user-typing-stop'])

    async def test_switching_username_on_same_connection(self):
        await self.coordinator.join('c1', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        await self.coordinator.join('c1', 'abc123', 'alicia')

        self.assertEqual(self.transport.events('b'), ['user-joined', 'user-left', 'user-typing-stop'])
        self.assertFalse((await get_member('abc123', 'alice')).is_online)
        self.assertTrue((await get_member('abc123', 'alicia')).is_online)

    async def test_repeated_join_on_same_connection_keeps_member_online(self):
        await self.coordinator.join('c1', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        await self.coordinator.join('c1', 'abc123', 'alice')

        self.assertEqual(self.transport.events('b'), ['user-joined'])
        self.assertTrue((await get_member('abc123', 'alice')).is_online)

    async def test_join_failure_restores_previous_room(self):
        await self.coordinator.join('c1', 'abc123', 'alice')

        failing = mock.AsyncMock(side_effect=DatabaseError("disk I/O error"))
        with mock.patch.object(self.store, 'recent_calls', new=failing):
            await self.coordinator.join('c1', 'elsewhere', 'alice')

        self.assertEqual(self.coordinator.presence.get('c1').room_code, 'abc123')

    async def test_end_to_end_chat_and_end_call(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        bob_id = await self.coordinator.join('b', 'abc123', 'bob')
        self.assertEqual(self.transport.received('a', 'user-joined')[0]['userId'], bob_id)

        await self.coordinator.send_message('a', 'hi')
        for connection_id in ('a', 'b'):
            message = self.transport.received(connection_id, 'new-message')[0]
            self.assertEqual(message['message'], 'hi')
            self.assertEqual(message['username'], 'alice')
            self.assertEqual(message['message_type'], 'text')
            self.assertIsInstance(message['id'], int)

        await self.coordinator.end_call('a')
        self.assertEqual(await count(Call.objects.all()), 0)
        self.assertEqual(self.transport.received('a', 'call-ended'), [])
        notice = self.transport.received('b', 'call-ended')[0]
        self.assertEqual(notice['username'], 'alice')

    async def test_message_ids_ascend(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        first = await self.coordinator.send_message('a', 'one')
        second = await self.coordinator.send_message('a', 'two')
        self.assertLess(first.id, second.id)

    async def test_send_message_not_broadcast_when_persistence_fails(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')

        failing = mock.AsyncMock(side_effect=DatabaseError("disk I/O error"))
        with mock.patch.object(self.store, 'create_message', new=failing):
            await self.coordinator.send_message('a', 'hi')

        self.assertEqual(self.transport.received('a', 'new-message'), [])
        self.assertEqual(self.transport.received('b', 'new-message'), [])
        self.assertEqual(self.transport.received('a', 'error'), [{'message': "Failed to send message"}])
        self.assertEqual(await count(Message.objects.all()), 0)

    async def test_send_message_without_room(self):
        await self.coordinator.send_message('ghost', 'hi')
        self.assertEqual(self.transport.sent, [('ghost', 'error', {'message': NOT_IN_ROOM})])

    async def test_custom_message_kind(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        message = await self.coordinator.send_message('a', 'ping.png', 'image')
        self.assertEqual(message.kind, 'image')

    async def test_stale_disconnect_does_not_clobber_reconnect(self):
        await self.coordinator.join('old', 'abc123', 'alice')
        await self.coordinator.join('new', 'abc123', 'alice')

        await self.coordinator.disconnect('old')

        member = await get_member('abc123', 'alice')
        self.assertTrue(member.is_online)
        self.assertEqual(member.connection_id, 'new')
        self.assertIn('new', self.coordinator.presence)

    async def test_disconnect_notifies_others(self):
        alice_id = await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        await self.coordinator.disconnect('a')

        self.assertEqual(self.transport.events('b'), ['user-left', 'user-typing-stop'])
        self.assertEqual(self.transport.received('b', 'user-left')[0], {'userId': alice_id, 'username': 'alice'})
        self.assertEqual(self.transport.received('a'), [])
        self.assertEqual(await count(Member.objects.filter(username='alice')), 1)

    async def test_disconnect_survives_store_failure(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        failing = mock.AsyncMock(side_effect=DatabaseError("database is locked"))
        with mock.patch.object(self.store, 'mark_offline', new=failing):
            await self.coordinator.disconnect('a')

        self.assertEqual(self.transport.events('b'), ['user-left', 'user-typing-stop'])
        self.assertNotIn('a', self.coordinator.presence)

    async def test_disconnect_without_presence_is_noop(self):
        await self.coordinator.disconnect('ghost')
        self.assertEqual(self.transport.sent, [])

    async def test_typing_goes_to_others(self):
        alice_id = await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        await self.coordinator.typing_start('a')
        await self.coordinator.typing_stop('a')
        await self.coordinator.typing_start('ghost')

        self.assertEqual(self.transport.received('b'), [
            {'userId': alice_id, 'username': 'alice'},
            {'userId': alice_id},
        ])
        self.assertEqual(self.transport.received('a'), [])

    async def test_offer_tracks_call_and_relays(self):
        alice_id = await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        await self.coordinator.offer('a', {'type': 'offer', 'sdp': 'v=0'}, 'video')

        self.assertEqual(self.coordinator.calls.get('abc123').initiator_id, alice_id)
        self.assertEqual(self.transport.received('b', 'offer'), [{
            'offer': {'type': 'offer', 'sdp': 'v=0'},
            'from': alice_id,
            'username': 'alice',
            'callType': 'video',
        }])
        self.assertEqual(self.transport.received('a'), [])

    async def test_signaling_without_presence_is_noop(self):
        await self.coordinator.offer('ghost', {'sdp': 'v=0'}, 'audio')
        await self.coordinator.answer('ghost', {'sdp': 'v=0'})
        await self.coordinator.ice_candidate('ghost', {'candidate': 'x'})
        await self.coordinator.end_call('ghost')
        self.assertEqual(self.transport.sent, [])
        self.assertIsNone(self.coordinator.calls.get('abc123'))

    async def test_answer_and_candidate_relay(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        bob_id = await self.coordinator.join('b', 'abc123', 'bob')
        await self.coordinator.offer('a', {'sdp': 'offer'}, 'audio')
        self.transport.clear()

        await self.coordinator.answer('b', {'sdp': 'answer'})
        await self.coordinator.ice_candidate('b', {'candidate': 'candidate:1'})

        self.assertEqual(self.transport.received('a'), [
            {'answer': {'sdp': 'answer'}, 'from': bob_id},
            {'candidate': {'candidate': 'candidate:1'}, 'from': bob_id},
        ])
        self.assertEqual(self.transport.received('b'), [])
        self.assertIsNotNone(self.coordinator.calls.get('abc123'))

    async def test_call_lifecycle(self):
        alice_id = await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        await self.coordinator.offer('a', {'sdp': 'offer'}, 'video')
        await self.coordinator.call_started('a', 'video')

        call = await database_sync_to_async(Call.objects.get)(room_id='abc123')
        self.assertEqual(call.status, CallStatus.ACTIVE)
        self.assertEqual(str(call.initiator_id), alice_id)
        self.assertEqual(call.initiator_name, 'alice')

        await self.coordinator.end_call('b')

        call = await database_sync_to_async(Call.objects.get)(room_id='abc123')
        self.assertEqual(call.status, CallStatus.ENDED)
        self.assertIsNotNone(call.ended_at)
        self.assertIsNone(self.coordinator.calls.get('abc123'))
        self.assertEqual(len(self.transport.received('a', 'call-ended')), 1)

    async def test_call_started_failure_is_swallowed(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        self.transport.clear()

        failing = mock.AsyncMock(side_effect=DatabaseError("disk I/O error"))
        with mock.patch.object(self.store, 'start_call', new=failing):
            await self.coordinator.call_started('a', 'audio')

        self.assertEqual(self.transport.sent, [])

    async def test_end_call_broadcasts_despite_store_failure(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')

        failing = mock.AsyncMock(side_effect=DatabaseError("disk I/O error"))
        with mock.patch.object(self.store, 'end_active_call', new=failing):
            await self.coordinator.end_call('a')

        self.assertEqual(len(self.transport.received('b', 'call-ended')), 1)

    async def test_heartbeat_replies_to_sender_only(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        self.transport.clear()

        await self.coordinator.heartbeat('a')

        self.assertEqual(self.transport.events('a'), ['heartbeat-ack'])
        self.assertEqual(self.transport.received('b'), [])

    async def test_broadcast_continues_past_failed_recipient(self):
        await self.coordinator.join('a', 'abc123', 'alice')
        await self.coordinator.join('b', 'abc123', 'bob')
        await self.coordinator.join('c', 'abc123', 'carol')
        self.transport.clear()

        record = self.transport.send

        async def flaky_send(connection_id, event, payload):
            if connection_id == 'b':
                raise RuntimeError("channel full")
            await record(connection_id, event, payload)

        with mock.patch.object(self.transport, 'send', new=flaky_send):
            await self.coordinator.send_message('a', 'hi')

        self.assertEqual(len(self.transport.received('a', 'new-message')), 1)
        self.assertEqual(len(self.transport.received('c', 'new-message')), 1)


class ReclamationSweeperTests(TransactionTestCase):
    @database_sync_to_async
    def make_members(self):
        Room.objects.create(code='abc123')
        long_ago = timezone.now() - timedelta(hours=2)
        Member.objects.create(room_id='abc123', username='stale', is_online=False, last_seen=long_ago)
        Member.objects.create(room_id='abc123', username='recent', is_online=False, last_seen=timezone.now())
        Member.objects.create(room_id='abc123', username='online', is_online=True, last_seen=long_ago)

    async def test_removes_only_long_offline_members(self):
        await self.make_members()
        sweeper = ReclamationSweeper(RoomStore(), interval_s=300, retention_s=3600)

        self.assertEqual(await sweeper.run_once(), 1)

        remaining = await database_sync_to_async(
            lambda: sorted(Member.objects.values_list('username', flat=True))
        )()
        self.assertEqual(remaining, ['online', 'recent'])


class ReclamationSweeperScheduleTests(SimpleTestCase):
    async def test_skips_when_previous_run_in_flight(self):
        sweeper = ReclamationSweeper(RoomStore())
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_purge(retention_s):
            started.set()
            await release.wait()
            return 3

        with mock.patch.object(sweeper.store, 'purge_offline_members', new=slow_purge):
            first = asyncio.create_task(sweeper.run_once())
            await started.wait()
            self.assertIsNone(await sweeper.run_once())
            release.set()
            self.assertEqual(await first, 3)

    async def test_loop_survives_errors_and_stops(self):
        sweeper = ReclamationSweeper(RoomStore(), interval_s=0.01)
        calls = []

        async def flaky_purge(retention_s):
            calls.append(retention_s)
            if len(calls) == 1:
                raise DatabaseError("database is locked")
            return 0

        with mock.patch.object(sweeper.store, 'purge_offline_members', new=flaky_purge):
            await sweeper.start()
            self.assertTrue(sweeper.is_running)
            for _ in range(200):
                if len(calls) >= 2:
                    break
                await asyncio.sleep(0.01)
            await sweeper.stop()

        self.assertGreaterEqual(len(calls), 2)
        self.assertFalse(sweeper.is_running)

    async def test_lifespan_starts_and_stops_sweeper(self):
        sweeper = mock.Mock(start=mock.AsyncMock(), stop=mock.AsyncMock())
        inbox = [{'type': 'lifespan.startup'}, {'type': 'lifespan.shutdown'}]
        outbox = []

        async def receive():
            return inbox.pop(0)

        async def send(message):
            outbox.append(message['type'])

        with mock.patch.object(apps.get_app_config('rooms'), 'sweeper', sweeper):
            await lifespan({'type': 'lifespan'}, receive, send)

        sweeper.start.assert_awaited_once()
        sweeper.stop.assert_awaited_once()
        self.assertEqual(outbox, ['lifespan.startup.complete', 'lifespan.shutdown.complete'])


class ChannelLayerTransportTests(SimpleTestCase):
    async def test_send_wraps_event_for_consumer(self):
        layer = get_channel_layer()
        channel = await layer.new_channel()

        await ChannelLayerTransport().send(channel, 'heartbeat-ack', {'timestamp': 'now'})

        message = await layer.receive(channel)
        self.assertEqual(message, {
            'type': RELAY_EVENT,
            'event': 'heartbeat-ack',
            'payload': {'timestamp': 'now'},
        })


class RoomConsumerTests(TransactionTestCase):
    def setUp(self):
        config = apps.get_app_config('rooms')
        config.coordinator = config.build_coordinator()
        self.application = URLRouter(websocket_urlpatterns)

    async def connect(self):
        communicator = WebsocketCommunicator(self.application, '/ws/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def join(self, communicator, username, room_code='abc123'):
        await communicator.send_json_to({'type': 'join-room', 'roomCode': room_code, 'username': username})
        response = await communicator.receive_json_from()
        self.assertEqual(response['type'], 'room-joined')
        return response

    async def test_room_session(self):
        alice = await self.connect()
        bob = await self.connect()

        await self.join(alice, 'alice')
        bob_snapshot = await self.join(bob, 'bob')
        joined = await alice.receive_json_from()
        self.assertEqual(joined['type'], 'user-joined')
        self.assertEqual(joined['userId'], bob_snapshot['userId'])

        await alice.send_json_to({'type': 'send-message', 'message': 'hi'})
        for communicator in (alice, bob):
            message = await communicator.receive_json_from()
            self.assertEqual(message['type'], 'new-message')
            self.assertEqual(message['message'], 'hi')
            self.assertEqual(message['username'], 'alice')

        await bob.send_json_to({'type': 'offer', 'offer': {'sdp': 'v=0'}, 'callType': 'video'})
        offer = await alice.receive_json_from()
        self.assertEqual(offer, {
            'type': 'offer',
            'offer': {'sdp': 'v=0'},
            'from': bob_snapshot['userId'],
            'username': 'bob',
            'callType': 'video',
        })

        await alice.send_json_to({'type': 'answer', 'answer': {'sdp': 'answer'}})
        self.assertEqual((await bob.receive_json_from())['type'], 'answer')

        await alice.send_json_to({'type': 'ice-candidate', 'candidate': {'candidate': 'c1'}})
        self.assertEqual((await bob.receive_json_from())['candidate'], {'candidate': 'c1'})

        await bob.send_json_to({'type': 'heartbeat'})
        self.assertEqual((await bob.receive_json_from())['type'], 'heartbeat-ack')

        await bob.disconnect()
        left = await alice.receive_json_from()
        self.assertEqual(left, {'type': 'user-left', 'userId': bob_snapshot['userId'], 'username': 'bob'})
        self.assertEqual((await alice.receive_json_from())['type'], 'user-typing-stop')

        member = await get_member('abc123', 'bob')
        self.assertFalse(member.is_online)
        await alice.disconnect()

    async def test_invalid_json(self):
        communicator = await self.connect()
        await communicator.send_to(text_data='{not json')
        self.assertEqual(await communicator.receive_json_from(), {'type': 'error', 'message': "Invalid JSON format"})
        await communicator.disconnect()

    async def test_unknown_type(self):
        communicator = await self.connect()
        await communicator.send_json_to({'type': 'teleport'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'error', 'message': "Unknown message type"})
        await communicator.disconnect()

    async def test_join_requires_username(self):
        communicator = await self.connect()
        await communicator.send_json_to({'type': 'join-room', 'roomCode': 'abc123', 'username': '   '})
        response = await communicator.receive_json_from()
        self.assertEqual(response['type'], 'error')
        self.assertTrue(response['message'].startswith('username'))
        self.assertEqual(await count(Room.objects.all()), 0)
        await communicator.disconnect()

    async def test_send_message_before_join(self):
        communicator = await self.connect()
        await communicator.send_json_to({'type': 'send-message', 'message': 'hi'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'error', 'message': NOT_IN_ROOM})
        await communicator.disconnect()

    async def test_oversized_call_type_rejected(self):
        communicator = await self.connect()
        await self.join(communicator, 'alice')

        await communicator.send_json_to({'type': 'call-started', 'callType': 'v' * 40})
        response = await communicator.receive_json_from()
        self.assertEqual(response['type'], 'error')
        self.assertTrue(response['message'].startswith('callType'))

        await communicator.send_json_to({'type': 'offer', 'offer': {'sdp': 'v=0'}, 'callType': 'v' * 40})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')

        await communicator.send_json_to({'type': 'call-started', 'callType': 'video'})
        await communicator.send_json_to({'type': 'heartbeat'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'heartbeat-ack')

        calls = await database_sync_to_async(lambda: list(Call.objects.values_list('call_type', flat=True)))()
        self.assertEqual(calls, ['video'])
        self.assertIsNone(apps.get_app_config('rooms').coordinator.calls.get('abc123'))
        await communicator.disconnect()

    async def test_empty_message_rejected(self):
        communicator = await self.connect()
        await self.join(communicator, 'alice')
        await communicator.send_json_to({'type': 'send-message', 'message': ''})
        response = await communicator.receive_json_from()
        self.assertEqual(response['type'], 'error')
        self.assertEqual(await count(Message.objects.all()), 0)
        await communicator.disconnect()


class RoomViewTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_room_detail(self):
        Room.objects.create(code='abc123')
        Member.objects.create(room_id='abc123', username='zed', is_online=True)
        Member.objects.create(room_id='abc123', username='amy', is_online=False)
        Call.objects.create(room_id='abc123', call_type='audio', initiator_name='zed')

        response = self.client.get('/api/rooms/abc123/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['code'], 'abc123')
        self.assertEqual([u['username'] for u in response.data['users']], ['zed', 'amy'])
        self.assertEqual(response.data['callHistory'][0]['call_type'], 'audio')

    def test_unknown_room(self):
        self.assertEqual(self.client.get('/api/rooms/nope/').status_code, 404)

    def test_webrtc_config(self):
        response = self.client.get('/api/config/')
        self.assertEqual(response.status_code, 200)
        self.assertIn('iceServers', response.data)

    def test_health(self):
        self.assertEqual(self.client.get('/api/health/').data, {'status': 'ok'})
