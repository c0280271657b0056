import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer
from django.apps import apps

from .serializers import CallTypeSerializer, JoinRoomSerializer, SendMessageSerializer, first_error

logger = logging.getLogger(__name__)


class RoomConsumer(AsyncWebsocketConsumer):
    """
    WebSocket consumer for room chat and call signaling.
    Decodes client frames and hands them to the room coordinator; the
    connection id the coordinator sees is this consumer's channel name.
    """

    async def connect(self):
        """Accept the socket; room membership starts with a join-room frame"""
        self.coordinator = apps.get_app_config('rooms').coordinator
        await self.accept()
        logger.info(f"WebSocket connected: {self.channel_name}")

    async def disconnect(self, close_code):
        """Mark the member offline and tell the room"""
        logger.info(f"WebSocket disconnected: {self.channel_name}, code: {close_code}")
        try:
            await self.coordinator.disconnect(self.channel_name)
        except Exception as e:
            logger.error(f"Disconnect error: {e}")

    async def receive(self, text_data=None, bytes_data=None):
        """Handle incoming WebSocket messages"""
        try:
            data = json.loads(text_data or '')
            if not isinstance(data, dict):
                await self.send_error("Invalid JSON format")
                return
            event_type = data.get('type')
            logger.debug(f"Received {event_type} from {self.channel_name}")

            handler = {
                'join-room': self.handle_join,
                'send-message': self.handle_send_message,
                'typing-start': self.handle_typing_start,
                'typing-stop': self.handle_typing_stop,
                'offer': self.handle_offer,
                'answer': self.handle_answer,
                'ice-candidate': self.handle_ice_candidate,
                'call-started': self.handle_call_started,
                'end-call': self.handle_end_call,
                'heartbeat': self.handle_heartbeat,
            }.get(event_type)

            if handler:
                await handler(data)
            else:
                logger.warning(f"Unknown message type: {event_type}")
                await self.send_error("Unknown message type")

        except json.JSONDecodeError:
            logger.error("Invalid JSON received")
            await self.send_error("Invalid JSON format")
        except Exception as e:
            logger.error(f"Message handling error: {e}")
            await self.send_error("Internal server error")

    async def handle_join(self, data):
        serializer = JoinRoomSerializer(data=data)
        if not serializer.is_valid():
            await self.send_error(first_error(serializer.errors))
            return
        await self.coordinator.join(
            self.channel_name,
            serializer.validated_data['roomCode'],
            serializer.validated_data['username'],
        )

    async def handle_send_message(self, data):
        serializer = SendMessageSerializer(data=data)
        if not serializer.is_valid():
            await self.send_error(first_error(serializer.errors))
            return
        await self.coordinator.send_message(
            self.channel_name,
            serializer.validated_data['message'],
            serializer.validated_data['messageType'],
        )

    async def handle_typing_start(self, data):
        await self.coordinator.typing_start(self.channel_name)

    async def handle_typing_stop(self, data):
        await self.coordinator.typing_stop(self.channel_name)

    async def handle_offer(self, data):
        call_type = await self.validate_call_type(data)
        if call_type is not False:
            await self.coordinator.offer(self.channel_name, data.get('offer'), call_type)

    async def handle_answer(self, data):
        await self.coordinator.answer(self.channel_name, data.get('answer'))

    async def handle_ice_candidate(self, data):
        await self.coordinator.ice_candidate(self.channel_name, data.get('candidate'))

    async def handle_call_started(self, data):
        call_type = await self.validate_call_type(data)
        if call_type is not False:
            await self.coordinator.call_started(self.channel_name, call_type)

    async def validate_call_type(self, data):
        """Return the frame's callType, or False after reporting it as invalid"""
        serializer = CallTypeSerializer(data=data)
        if not serializer.is_valid():
            await self.send_error(first_error(serializer.errors))
            return False
        return serializer.validated_data['callType']

    async def handle_end_call(self, data):
        await self.coordinator.end_call(self.channel_name)

    async def handle_heartbeat(self, data):
        await self.coordinator.heartbeat(self.channel_name)

    async def send_error(self, message):
        """Send error message to client"""
        await self.send(text_data=json.dumps({
            'type': 'error',
            'message': message
        }))

    # Channel layer handlers

    async def relay_event(self, event):
        """Write a coordinator event out as a websocket frame"""
        await self.send(text_data=json.dumps({
            'type': event['event'],
            **event['payload'],
        }))
