import uuid

from django.db import models
from django.utils import timezone

CALL_HISTORY_LIMIT = 10


class Room(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'rooms'

    def __str__(self):
        return self.code


class MemberQuerySet(models.QuerySet):
    def roster(self, room_code):
        """Members of a room, online first, then alphabetical."""
        return self.filter(room_id=room_code).order_by('-is_online', 'username')


class Member(models.Model):
    """A username inside a room. Survives disconnects until swept."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    room = models.ForeignKey(
        Room,
        to_field='code',
        db_column='room_code',
        on_delete=models.CASCADE,
        related_name='members',
    )
    username = models.CharField(max_length=64)
    connection_id = models.CharField(max_length=255, blank=True, default='')
    joined_at = models.DateTimeField(auto_now_add=True)
    is_online = models.BooleanField(default=True, db_index=True)
    last_seen = models.DateTimeField(default=timezone.now)

    objects = MemberQuerySet.as_manager()

    class Meta:
        db_table = 'users'
        constraints = [
            models.UniqueConstraint(fields=['room', 'username'], name='unique_username_per_room'),
        ]

    def __str__(self):
        return f"{self.username}@{self.room_id}"


class MessageQuerySet(models.QuerySet):
    def history(self, room_code):
        return self.filter(room_id=room_code).order_by('created_at', 'id')


class Message(models.Model):
    room = models.ForeignKey(
        Room,
        to_field='code',
        db_column='room_code',
        on_delete=models.CASCADE,
        related_name='messages',
    )
    # Plain column: messages outlive the members that wrote them
    user_id = models.UUIDField()
    username = models.CharField(max_length=64)
    body = models.TextField(db_column='message')
    kind = models.CharField(max_length=32, default='text', db_column='message_type')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    objects = MessageQuerySet.as_manager()

    class Meta:
        db_table = 'messages'


class CallStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    ENDED = 'ended', 'Ended'


class CallQuerySet(models.QuerySet):
    def recent(self, room_code, limit=CALL_HISTORY_LIMIT):
        return self.filter(room_id=room_code).order_by('-started_at', '-id')[:limit]

    def active(self, room_code):
        return self.filter(room_id=room_code, status=CallStatus.ACTIVE)


class Call(models.Model):
    room = models.ForeignKey(
        Room,
        to_field='code',
        db_column='room_code',
        on_delete=models.CASCADE,
        related_name='calls',
    )
    call_type = models.CharField(max_length=32, blank=True, default='')
    initiator_id = models.UUIDField(null=True)
    initiator_name = models.CharField(max_length=64, blank=True, default='')
    status = models.CharField(max_length=8, choices=CallStatus.choices, default=CallStatus.ACTIVE)
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)

    objects = CallQuerySet.as_manager()

    class Meta:
        db_table = 'calls'
