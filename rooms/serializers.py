from rest_framework import serializers

from .models import Call, Member, Message


class MemberSerializer(serializers.ModelSerializer):
    isOnline = serializers.BooleanField(source='is_online')
    lastSeen = serializers.DateTimeField(source='last_seen')

    class Meta:
        model = Member
        fields = ['id', 'username', 'isOnline', 'lastSeen']


class MemberPresenceSerializer(serializers.ModelSerializer):
    isOnline = serializers.BooleanField(source='is_online')

    class Meta:
        model = Member
        fields = ['id', 'username', 'isOnline']


class MessageSerializer(serializers.ModelSerializer):
    # room_id holds the code (to_field), so no extra query is made
    room_code = serializers.CharField(source='room_id')
    message = serializers.CharField(source='body')
    message_type = serializers.CharField(source='kind')

    class Meta:
        model = Message
        fields = ['id', 'room_code', 'user_id', 'username', 'message', 'message_type', 'created_at']


class CallSerializer(serializers.ModelSerializer):
    room_code = serializers.CharField(source='room_id')

    class Meta:
        model = Call
        fields = [
            'id', 'room_code', 'call_type', 'initiator_id', 'initiator_name',
            'status', 'started_at', 'ended_at',
        ]


# Inbound frames

class JoinRoomSerializer(serializers.Serializer):
    roomCode = serializers.CharField(max_length=64)
    username = serializers.CharField(max_length=64)


class SendMessageSerializer(serializers.Serializer):
    message = serializers.CharField(trim_whitespace=False)
    messageType = serializers.CharField(max_length=32, default='text')


class CallTypeSerializer(serializers.Serializer):
    callType = serializers.CharField(max_length=32, allow_blank=True, allow_null=True, default=None)


def first_error(errors):
    """Flatten serializer errors into a single human readable line."""
    field, messages = next(iter(errors.items()))
    return f"{field}: {messages[0]}"
