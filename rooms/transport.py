import logging

from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

RELAY_EVENT = 'relay.event'


class ChannelLayerTransport:
    """Delivers coordinator events to consumers through the channel layer.

    A connection id is the consumer's channel name; the consumer turns
    ``relay.event`` messages into websocket frames.
    """

    def __init__(self, alias='default'):
        self.alias = alias
        self._layer = None

    @property
    def channel_layer(self):
        if self._layer is None:
            self._layer = get_channel_layer(self.alias)
        return self._layer

    async def send(self, connection_id, event, payload):
        logger.debug(f"Sending {event} to {connection_id}")
        await self.channel_layer.send(connection_id, {
            'type': RELAY_EVENT,
            'event': event,
            'payload': payload,
        })
