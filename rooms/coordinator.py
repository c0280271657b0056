import logging

from django.utils import timezone

from .presence import CallTracker, Presence, PresenceTable
from .serializers import CallSerializer, MemberPresenceSerializer, MemberSerializer, MessageSerializer
from .store import RoomStore

logger = logging.getLogger(__name__)

NOT_IN_ROOM = "Not joined to any room"


class RoomCoordinator:
    """
    Handles one inbound event per call and fans results out to the room.

    Presence and call state are owned by the caller and passed in, so a
    coordinator can be built per process or per shard. Outbound events go
    through ``transport.send(connection_id, event, payload)``; audiences
    are resolved here from the presence table, not by the transport.
    """

    def __init__(self, store=None, presence=None, calls=None, transport=None):
        self.store = store or RoomStore()
        self.presence = presence or PresenceTable()
        self.calls = calls or CallTracker()
        self.transport = transport

    # Audience helpers

    async def emit(self, connection_id, event, payload):
        await self.transport.send(connection_id, event, payload)

    async def broadcast(self, room_code, event, payload, exclude=None):
        """Send to every live connection in the room, minus ``exclude``."""
        for connection_id in self.presence.connections_in(room_code, exclude=exclude):
            try:
                await self.transport.send(connection_id, event, payload)
            except Exception as e:
                logger.warning(f"Error sending {event} to {connection_id} in room {room_code}: {e}")

    async def send_error(self, connection_id, message):
        await self.emit(connection_id, 'error', {'message': message})

    # Membership

    async def join(self, connection_id, room_code, username):
        member = None
        previous_state = None
        previous = None
        registered = False
        try:
            await self.store.get_or_create_room(room_code)
            member, previous_state = await self.store.upsert_member(room_code, username, connection_id)
            user_id = str(member.id)

            previous = self.presence.register(connection_id, Presence(room_code, user_id, username))
            registered = True

            members = await self.store.list_members(room_code)
            messages = await self.store.list_messages(room_code)
            calls = await self.store.recent_calls(room_code)
        except Exception as e:
            logger.error(f"Error joining room {room_code} as {username}: {e}")
            if registered:
                self._restore_presence(connection_id, previous)
            if member is not None:
                await self._revert_member(member, connection_id, previous_state)
            await self.send_error(connection_id, "Failed to join room")
            return None

        await self.emit(connection_id, 'room-joined', {
            'roomCode': room_code,
            'userId': user_id,
            'users': MemberSerializer(members, many=True).data,
            'messages': MessageSerializer(messages, many=True).data,
            'callHistory': CallSerializer(calls, many=True).data,
        })
        await self.broadcast(room_code, 'user-joined', {
            'userId': user_id,
            'username': username,
            'users': MemberPresenceSerializer(members, many=True).data,
        }, exclude=connection_id)

        # Same connection switching room or username: the old identity leaves
        if previous is not None and previous.user_id != user_id:
            await self._leave(connection_id, previous)

        logger.info(f"User {username} {'joined' if previous_state is None else 'rejoined'} room {room_code}")
        return user_id

    def _restore_presence(self, connection_id, previous):
        if previous is None:
            self.presence.remove(connection_id)
        else:
            self.presence.register(connection_id, previous)

    async def _revert_member(self, member, connection_id, previous_state):
        try:
            await self.store.revert_member(member.id, connection_id, previous_state)
        except Exception as e:
            logger.error(f"Error reverting {member.username} in room {member.room_id}: {e}")

    async def _leave(self, connection_id, presence):
        """Take ``presence`` offline and tell the rest of its room."""
        try:
            changed = await self.store.mark_offline(presence.user_id, connection_id)
            if not changed:
                logger.debug(f"User {presence.username} already superseded by a newer connection")
        except Exception as e:
            logger.error(f"Error marking {presence.username} offline in room {presence.room_code}: {e}")

        await self.broadcast(presence.room_code, 'user-left', {
            'userId': presence.user_id,
            'username': presence.username,
        }, exclude=connection_id)
        # They may have dropped mid-typing
        await self.broadcast(presence.room_code, 'user-typing-stop', {
            'userId': presence.user_id,
        }, exclude=connection_id)
        logger.info(f"User {presence.username} left room {presence.room_code}")

    async def disconnect(self, connection_id):
        presence = self.presence.get(connection_id)
        if presence is None:
            return
        await self._leave(connection_id, presence)
        self.presence.remove(connection_id)

    async def heartbeat(self, connection_id):
        await self.emit(connection_id, 'heartbeat-ack', {'timestamp': timezone.now().isoformat()})

    # Chat

    async def send_message(self, connection_id, body, kind='text'):
        presence = self.presence.get(connection_id)
        if presence is None:
            await self.send_error(connection_id, NOT_IN_ROOM)
            return None

        try:
            message = await self.store.create_message(
                presence.room_code, presence.user_id, presence.username, body, kind,
            )
        except Exception as e:
            logger.error(f"Error sending message in room {presence.room_code}: {e}")
            await self.send_error(connection_id, "Failed to send message")
            return None

        await self.broadcast(presence.room_code, 'new-message', MessageSerializer(message).data)
        return message

    async def typing_start(self, connection_id):
        presence = self.presence.get(connection_id)
        if presence:
            await self.broadcast(presence.room_code, 'user-typing-start', {
                'userId': presence.user_id,
                'username': presence.username,
            }, exclude=connection_id)

    async def typing_stop(self, connection_id):
        presence = self.presence.get(connection_id)
        if presence:
            await self.broadcast(presence.room_code, 'user-typing-stop', {
                'userId': presence.user_id,
            }, exclude=connection_id)

    # Signaling

    async def offer(self, connection_id, offer, call_type=None):
        presence = self.presence.get(connection_id)
        if presence is None:
            return
        self.calls.start(presence.room_code, call_type, presence.user_id)
        await self.broadcast(presence.room_code, 'offer', {
            'offer': offer,
            'from': presence.user_id,
            'username': presence.username,
            'callType': call_type,
        }, exclude=connection_id)

    async def answer(self, connection_id, answer):
        presence = self.presence.get(connection_id)
        if presence:
            await self.broadcast(presence.room_code, 'answer', {
                'answer': answer,
                'from': presence.user_id,
            }, exclude=connection_id)

    async def ice_candidate(self, connection_id, candidate):
        presence = self.presence.get(connection_id)
        if presence:
            await self.broadcast(presence.room_code, 'ice-candidate', {
                'candidate': candidate,
                'from': presence.user_id,
            }, exclude=connection_id)

    # Call bookkeeping

    async def call_started(self, connection_id, call_type=None):
        presence = self.presence.get(connection_id)
        if presence is None:
            return
        try:
            await self.store.start_call(presence.room_code, call_type, presence.user_id, presence.username)
            logger.info(f"{call_type or 'Unknown'} call started by {presence.username} in room {presence.room_code}")
        except Exception as e:
            logger.error(f"Error logging call in room {presence.room_code}: {e}")

    async def end_call(self, connection_id):
        presence = self.presence.get(connection_id)
        if presence is None:
            return

        self.calls.clear(presence.room_code)
        try:
            await self.store.end_active_call(presence.room_code)
        except Exception as e:
            logger.error(f"Error ending call in room {presence.room_code}: {e}")

        await self.broadcast(presence.room_code, 'call-ended', {
            'from': presence.user_id,
            'username': presence.username,
        }, exclude=connection_id)
