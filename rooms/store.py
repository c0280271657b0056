import logging
from collections import namedtuple
from datetime import timedelta

from channels.db import database_sync_to_async
from django.db import IntegrityError, transaction
from django.utils import timezone

from .models import CALL_HISTORY_LIMIT, Call, CallStatus, Member, Message, Room

logger = logging.getLogger(__name__)

# A member row's presence columns as they were before a join touched them
MemberState = namedtuple('MemberState', ['connection_id', 'is_online', 'last_seen'])


class RoomStore:
    """
    Async access to the durable tables.

    Lookups and inserts are separate round-trips, so two joins can race
    between them. The unique constraints on room code and (room, username)
    settle those races: an insert that loses is answered by re-reading the
    row the winner wrote.
    """

    @database_sync_to_async
    def find_room(self, code):
        return Room.objects.filter(code=code).first()

    @database_sync_to_async
    def create_room(self, code):
        try:
            with transaction.atomic():
                return Room.objects.create(code=code)
        except IntegrityError:
            logger.debug(f"Room {code} created concurrently, re-reading")
            return Room.objects.get(code=code)

    async def get_or_create_room(self, code):
        room = await self.find_room(code)
        if room is None:
            room = await self.create_room(code)
        return room

    @database_sync_to_async
    def find_member(self, room_code, username):
        return Member.objects.filter(room_id=room_code, username=username).first()

    @database_sync_to_async
    def create_member(self, room_code, username, connection_id):
        """
        Insert a member, or reclaim the row a concurrent join inserted first.
        Returns ``(member, previous)``; ``previous`` is None for a fresh row.
        """
        try:
            with transaction.atomic():
                member = Member.objects.create(
                    room_id=room_code,
                    username=username,
                    connection_id=connection_id,
                    is_online=True,
                    last_seen=timezone.now(),
                )
                return member, None
        except IntegrityError:
            logger.debug(f"Member {username} created concurrently in room {room_code}, re-reading")
            member = Member.objects.get(room_id=room_code, username=username)
            return member, self._bring_online(member, connection_id)

    @database_sync_to_async
    def reconnect_member(self, member, connection_id):
        return member, self._bring_online(member, connection_id)

    def _bring_online(self, member, connection_id):
        previous = MemberState(member.connection_id, member.is_online, member.last_seen)
        member.connection_id = connection_id
        member.is_online = True
        member.last_seen = timezone.now()
        Member.objects.filter(pk=member.pk).update(
            connection_id=member.connection_id,
            is_online=True,
            last_seen=member.last_seen,
        )
        return previous

    async def upsert_member(self, room_code, username, connection_id):
        """
        Return ``(member, previous)``. ``previous`` holds the row's state
        before this call, or None if the row was just inserted. The member
        id is stable across rejoins.
        """
        member = await self.find_member(room_code, username)
        if member is not None:
            return await self.reconnect_member(member, connection_id)
        return await self.create_member(room_code, username, connection_id)

    @database_sync_to_async
    def revert_member(self, member_id, connection_id, previous):
        """
        Undo ``upsert_member`` for a join that failed part way. Only touches
        the row while ``connection_id`` is still the one on record.
        """
        rows = Member.objects.filter(pk=member_id, connection_id=connection_id)
        if previous is None:
            deleted, _ = rows.delete()
            return deleted
        return rows.update(
            connection_id=previous.connection_id,
            is_online=previous.is_online,
            last_seen=previous.last_seen,
        )

    @database_sync_to_async
    def mark_offline(self, member_id, connection_id):
        """
        Take a member offline, but only while ``connection_id`` is still the
        one on record. A newer connection for the same member wins.
        """
        return Member.objects.filter(
            pk=member_id,
            connection_id=connection_id,
            is_online=True,
        ).update(is_online=False, last_seen=timezone.now())

    @database_sync_to_async
    def list_members(self, room_code):
        return list(Member.objects.roster(room_code))

    @database_sync_to_async
    def list_messages(self, room_code):
        return list(Message.objects.history(room_code))

    @database_sync_to_async
    def recent_calls(self, room_code, limit=CALL_HISTORY_LIMIT):
        return list(Call.objects.recent(room_code, limit))

    @database_sync_to_async
    def create_message(self, room_code, user_id, username, body, kind='text'):
        return Message.objects.create(
            room_id=room_code,
            user_id=user_id,
            username=username,
            body=body,
            kind=kind,
        )

    @database_sync_to_async
    def start_call(self, room_code, call_type, initiator_id, initiator_name):
        return Call.objects.create(
            room_id=room_code,
            call_type=call_type or '',
            initiator_id=initiator_id,
            initiator_name=initiator_name,
        )

    @database_sync_to_async
    def end_active_call(self, room_code):
        """End the most recent active call in the room. Returns rows changed."""
        call = Call.objects.active(room_code).order_by('-started_at', '-id').first()
        if call is None:
            return 0
        return Call.objects.filter(pk=call.pk, status=CallStatus.ACTIVE).update(
            status=CallStatus.ENDED,
            ended_at=timezone.now(),
        )

    @database_sync_to_async
    def purge_offline_members(self, retention_seconds):
        cutoff = timezone.now() - timedelta(seconds=retention_seconds)
        deleted, _ = Member.objects.filter(is_online=False, last_seen__lt=cutoff).delete()
        return deleted
