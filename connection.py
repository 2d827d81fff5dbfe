"""WhatsApp session connection manager.

The device session (pairing, encryption, the WhatsApp socket) is held by a
bridge process. The bot talks to it over a WebSocket using JSON frames:

    bot -> bridge   {"type": "hello", "token": ...}
                    {"type": "send", "requestId": ..., "jid": ..., "content": {"text": ...}}
                    {"type": "presence", "presence": "available"}
    bridge -> bot   {"type": "event", "event": "<name>", "data": ...}
                    {"type": "response", "requestId": ..., "ok": bool, "error": ...}
                    {"type": "me", "id": "<number>:<device>@s.whatsapp.net"}

Event names follow the client library: connection.update, messages.upsert,
messages.update, group-participants.update, groups.update.

Inbound events are handled one at a time, in arrival order, by a single
worker task so the reader stays free to receive send acknowledgements.
"""

import asyncio
import base64
import contextlib
import io
import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import qrcode
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

import admin
from config import settings
from dispatcher import CommandDispatcher, IncomingMessage
from formatting import format_datetime_full, format_jid
from logger_config import setup_logger

logger = setup_logger(__name__, 'connection.log')

# Disconnect status codes reported by the client library
LOGGED_OUT = 401
CONNECTION_CLOSED = 428

JID_SUFFIX = '@s.whatsapp.net'
GROUP_SUFFIX = '@g.us'
BROADCAST_SUFFIX = '@broadcast'

# Events whose payload is a single object
DICT_EVENTS = ('connection.update', 'messages.upsert', 'group-participants.update')

CAPTIONED_TYPES = {
    'imageMessage': 'image',
    'videoMessage': 'video',
    'documentMessage': 'document',
}


class BridgeError(Exception):
    """Base exception for bridge communication errors."""


class BridgeNotConnectedError(BridgeError):
    """Raised when sending while no WhatsApp session is open."""


class BridgeProtocolError(BridgeError):
    """Raised when the bridge rejects a command."""


@dataclass
class CloseInfo:
    status_code: Optional[int]
    message: str = 'unknown reason'


def qr_to_data_url(qr: str) -> str:
    """Render a pairing QR string as a PNG data URL for web display."""
    image = qrcode.make(qr)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
    return f"data:image/png;base64,{encoded}"


def print_qr_terminal(qr: str) -> None:
    code = qrcode.QRCode(border=1)
    code.add_data(qr)
    code.print_ascii(invert=True)


def is_broadcast_jid(jid: str) -> bool:
    return jid.endswith(BROADCAST_SUFFIX)


def normalize_jid(jid: str) -> str:
    """Drop the device part of a JID: '880...:12@s.whatsapp.net' -> '880...@s.whatsapp.net'."""
    user, _, server = jid.partition('@')
    return f"{user.split(':')[0]}@{server}" if server else jid


def extract_text(content: Dict[str, Any]) -> Optional[tuple]:
    """Return (text, message_type) for supported message content, else None."""
    if content.get('conversation'):
        return content['conversation'], 'conversation'
    if content.get('extendedTextMessage') is not None:
        return content['extendedTextMessage'].get('text') or '', 'extendedText'
    for key, message_type in CAPTIONED_TYPES.items():
        if content.get(key) is not None:
            return content[key].get('caption') or '', message_type
    return None


def build_incoming(raw: Dict[str, Any]) -> Optional[IncomingMessage]:
    """Turn one raw upserted message into an IncomingMessage.

    Returns None for messages the bot ignores: empty content, its own
    messages, status broadcasts and unsupported content types.
    """
    content = raw.get('message')
    if not content:
        return None

    key = raw.get('key') or {}
    if key.get('fromMe'):
        return None

    jid = key.get('remoteJid') or ''
    if not jid:
        return None
    if is_broadcast_jid(jid):
        logger.debug('Skipping broadcast message')
        return None

    push_name = raw.get('pushName') or 'User'
    extracted = extract_text(content)
    if extracted is None:
        first_type = next(iter(content), 'unknown')
        logger.info(f"Unhandled message type from {push_name}: {first_type}")
        return None

    text, message_type = extracted
    return IncomingMessage(
        jid=jid,
        sender=key.get('participant') or jid,
        text=text,
        push_name=push_name,
        is_group=jid.endswith(GROUP_SUFFIX),
        message_type=message_type,
    )


class ConnectionManager:
    """Owns the bridge session: connect, pair, reconnect, route events."""

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        dispatcher: Optional[CommandDispatcher] = None,
        on_qr: Optional[Callable[[str], None]] = None,
        on_status_change: Optional[Callable[[str], None]] = None,
        on_connected: Optional[Callable[[], None]] = None,
        on_disconnected: Optional[Callable[[], None]] = None,
        max_retries: Optional[int] = None,
    ):
        self.url = url or settings.BRIDGE_URL
        self.token = token if token is not None else settings.BRIDGE_TOKEN
        self.dispatcher = dispatcher or CommandDispatcher(self, is_connected=lambda: self.connected)
        self.on_qr = on_qr
        self.on_status_change = on_status_change
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self.max_retries = settings.MAX_RETRIES if max_retries is None else max_retries

        self.status = 'stopped'
        self.connected = False
        self.retries = 0
        self.latest_qr: Optional[str] = None
        self.bot_jid: Optional[str] = None

        self._ws: Any = None
        self._running = False
        self._pending: Dict[str, asyncio.Future] = {}
        self._send_lock = asyncio.Lock()
        self._events: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None
        self._close: Optional[CloseInfo] = None

    # -- lifecycle ----------------------------------------------------------

    def _set_status(self, status: str) -> None:
        self.status = status
        if self.on_status_change:
            self.on_status_change(status)

    async def run(self) -> None:
        """Connect and keep reconnecting until stopped, logged out or out of retries."""
        self._running = True
        self._stopped = asyncio.Event()
        self._events = asyncio.Queue()
        self._worker = asyncio.create_task(self._event_worker())
        logger.info(f"🤖 Initializing {settings.BOT_NAME} WhatsApp Bot...")
        self._set_status('initializing')

        try:
            while self._running:
                close = await self._session()
                if not self._running:
                    break
                delay = self.next_reconnect_delay(close)
                if delay is None:
                    break
                # stop() cuts the backoff short
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stopped.wait(), timeout=delay)
        finally:
            self._running = False
            if self._worker:
                self._worker.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._worker
                self._worker = None

    async def stop(self) -> None:
        self._running = False
        self.connected = False
        if self._stopped is not None:
            self._stopped.set()
        if self._ws is not None:
            await self._ws.close()
        self._fail_pending('Connection manager stopped')

    async def _session(self) -> CloseInfo:
        """Run one bridge connection until it closes."""
        self._close = None
        try:
            async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
                self._ws = ws
                if not self._running:
                    return CloseInfo(None, 'stopped')
                await ws.send(json.dumps({'type': 'hello', 'token': self.token}))
                logger.info(f"Connected to bridge at {self.url}")
                async for raw in ws:
                    await self.handle_frame(raw)
                    if self._close is not None:
                        return self._close
            return CloseInfo(None, 'bridge connection lost')
        except asyncio.CancelledError:
            raise
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.warning(f"Bridge connection error: {e}")
            return CloseInfo(None, str(e) or e.__class__.__name__)
        finally:
            self._ws = None
            self.connected = False
            self._fail_pending('Bridge connection closed')

    def next_reconnect_delay(self, close: CloseInfo) -> Optional[float]:
        """Apply the reconnect policy to a closed session.

        Returns the seconds to wait before reconnecting, or None to stop.
        """
        self.connected = False
        should_reconnect = close.status_code != LOGGED_OUT

        logger.warning(f"⚠️ Connection closed: {close.message}")
        logger.info(f"Reconnectable: {should_reconnect}")

        if self.on_disconnected:
            self.on_disconnected()
        self._set_status('disconnected')

        if close.status_code == CONNECTION_CLOSED:
            self.retries = 0

        if should_reconnect and self.retries < self.max_retries:
            self.retries += 1
            delay_ms = min(
                settings.RECONNECT_BASE_MS * (2 ** self.retries),
                settings.RECONNECT_MAX_MS
            )
            logger.info(
                f"🔄 Reconnecting in {delay_ms / 1000:g} seconds... "
                f"(Attempt {self.retries}/{self.max_retries})"
            )
            return delay_ms / 1000

        if not should_reconnect:
            logger.error('❌ Cannot reconnect - logged out. Please scan QR code again.')
            logger.info('💡 Reset the bridge auth state to pair again.')
        else:
            logger.error(f"❌ Max reconnection attempts ({self.max_retries}) reached. Restart the bot.")
        return None

    # -- inbound frames -----------------------------------------------------

    async def handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning('Invalid JSON from bridge')
            return
        if not isinstance(frame, dict):
            logger.warning('Invalid bridge frame shape')
            return

        frame_type = frame.get('type')
        try:
            if frame_type == 'response':
                self._resolve_pending(frame)
            elif frame_type == 'me':
                self.bot_jid = normalize_jid(str(frame.get('id') or ''))
            elif frame_type == 'event':
                self._handle_event(frame.get('event'), frame.get('data'))
            else:
                logger.debug(f"Ignoring bridge frame type {frame_type!r}")
        except Exception as e:
            # A bad frame must not take down the reader
            logger.error(f"Error handling bridge {frame_type!r} frame: {e}", exc_info=True)

    def _handle_event(self, event: str, data: Any) -> None:
        if event in DICT_EVENTS and not isinstance(data, dict):
            logger.warning(f"Ignoring {event} event with {type(data).__name__} payload")
            return

        if event == 'connection.update':
            self._handle_connection_update(data)
        elif event == 'messages.upsert':
            self._enqueue(lambda: self.process_upsert(data))
        elif event == 'group-participants.update':
            self._enqueue(lambda: self.process_group_participants(data))
        elif event == 'groups.update':
            if not isinstance(data, list):
                logger.warning(f"Ignoring groups.update event with {type(data).__name__} payload")
                return
            for update in data:
                if isinstance(update, dict):
                    logger.info(f"Group {update.get('id')} updated: {update.get('subject') or 'Unknown change'}")
        elif event == 'messages.update':
            pass
        else:
            logger.debug(f"Unhandled bridge event {event!r}")

    def _handle_connection_update(self, update: Dict[str, Any]) -> None:
        qr = update.get('qr')
        if qr:
            self._handle_qr(qr)

        connection = update.get('connection')
        if connection == 'close':
            last = update.get('lastDisconnect') or {}
            self.connected = False
            self._close = CloseInfo(last.get('statusCode'), last.get('message') or 'unknown reason')
        elif connection == 'connecting':
            logger.info('🔗 Connecting to WhatsApp...')
            self._set_status('connecting')
        elif connection == 'open':
            self.connected = True
            self.retries = 0
            self.latest_qr = None
            logger.info('✅ Connected to WhatsApp successfully!')
            if self.on_connected:
                self.on_connected()
            self._set_status('connected')
            self._enqueue(self.announce_online)

    def _handle_qr(self, qr: str) -> None:
        logger.info('📲 QR code generated for pairing')
        self._set_status('qr_ready')
        try:
            print_qr_terminal(qr)
        except (OSError, ValueError) as e:
            logger.debug(f"Could not print QR to terminal: {e}")
        try:
            self.latest_qr = qr_to_data_url(qr)
        except Exception as e:
            logger.error(f"Error generating QR data URL: {e}")
            self.latest_qr = qr
        if self.on_qr:
            self.on_qr(self.latest_qr)

    # -- sequential event handling ------------------------------------------

    def _enqueue(self, job: Callable[[], Awaitable[None]]) -> None:
        if self._events is None:
            logger.warning('Event received before the manager started; dropping it')
            return
        self._events.put_nowait(job)

    async def _event_worker(self) -> None:
        while True:
            job = await self._events.get()
            try:
                await job()
            except Exception as e:
                logger.error(f"Error in event handler: {e}", exc_info=True)

    async def process_upsert(self, upsert: Dict[str, Any]) -> None:
        if upsert.get('type') != 'notify':
            return

        for raw in upsert.get('messages') or []:
            if not isinstance(raw, dict):
                continue
            message = build_incoming(raw)
            if message is None:
                continue

            timestamp = datetime.now(settings.tz).strftime('%H:%M:%S')
            prefix = f"[GROUP:{message.jid.split('@')[0][-4:]}]" if message.is_group else '[PRIVATE]'
            shown = message.text or f"[{message.message_type}]"
            logger.info(f"{prefix} 📩 [{timestamp}] {message.push_name}: {shown}")

            if message.text.strip():
                message.text = message.text.strip()
                try:
                    await self.dispatcher.handle(message)
                except Exception as e:
                    logger.error(f"Error in message handler: {e}", exc_info=True)

    async def process_group_participants(self, update: Dict[str, Any]) -> None:
        await self.dispatcher.handle_group_participants_update(
            update.get('id') or '',
            list(update.get('participants') or []),
            update.get('action') or '',
            self.bot_jid,
        )

    async def announce_online(self) -> None:
        """Presence update, startup message to the creator, then admin notices."""
        try:
            await self._send_frame({'type': 'presence', 'presence': 'available'})
        except BridgeError as e:
            logger.warning(f"Could not update presence: {e}")
        await self.send_startup_message()
        await self.notify_admins()

    async def send_startup_message(self) -> None:
        now = datetime.now(settings.tz)
        text = (
            f"🤖 *{settings.BOT_NAME} Bot Started*\n\n"
            f"• Time: {format_datetime_full(now)}\n"
            "• Status: Connected & Online\n"
            f"• Server: {settings.SERVER_URL or 'Local Development'}\n"
            f"• Timezone: {settings.TIMEZONE}\n\n"
            "Send *!help* to see available commands."
        )
        try:
            await self.send_text(settings.CREATOR_JID, text)
            logger.info('📤 Startup message sent to creator')
        except BridgeError as e:
            logger.warning(f"Could not send startup message to creator: {e}")

    async def notify_admins(self) -> None:
        text = (
            f"🤖 *{settings.BOT_NAME} Bot is Now Online*\n\n"
            "The bot has been restarted and is now connected.\n"
            "Send *!help* to see available commands.\n\n"
            "_Automated notification_"
        )
        recipients = [settings.CREATOR_JID]
        recipients += [jid for jid in admin.get_admin_list().admins if jid != settings.CREATOR_JID]
        for jid in recipients:
            try:
                await self.send_text(jid, text)
                logger.info(f"📤 Notified admin: {format_jid(jid)}")
            except BridgeError as e:
                logger.warning(f"Could not notify admin {format_jid(jid)}: {e}")

    # -- outbound -----------------------------------------------------------

    async def send_text(self, jid: str, text: str) -> None:
        """Send a text message and wait for the bridge to acknowledge it."""
        if not self.connected:
            raise BridgeNotConnectedError('Bot is not connected')
        await self._send_frame(
            {'type': 'send', 'jid': jid, 'content': {'text': text}},
            wait=True,
        )

    async def _send_frame(self, frame: Dict[str, Any], wait: bool = False) -> Dict[str, Any]:
        if self._ws is None:
            raise BridgeNotConnectedError('Bridge websocket not connected')

        if not wait:
            try:
                async with self._send_lock:
                    await self._ws.send(json.dumps(frame))
            except ConnectionClosed as e:
                raise BridgeNotConnectedError(f"Bridge connection closed: {e}") from e
            return {}

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            async with self._send_lock:
                await self._ws.send(json.dumps({**frame, 'requestId': request_id}))
            return await asyncio.wait_for(future, timeout=settings.BRIDGE_SEND_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise BridgeError(f"Bridge did not acknowledge {frame.get('type')} in time") from e
        except ConnectionClosed as e:
            raise BridgeNotConnectedError(f"Bridge connection closed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    def _resolve_pending(self, frame: Dict[str, Any]) -> None:
        future = self._pending.get(frame.get('requestId'))
        if future is None or future.done():
            return
        if frame.get('ok'):
            future.set_result(frame)
        else:
            future.set_exception(BridgeProtocolError(str(frame.get('error') or 'Bridge command failed')))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(BridgeNotConnectedError(reason))
        self._pending.clear()
