import aiohttp
import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence, Tuple

from gitsmith.domain.exceptions import TransportException
from gitsmith.domain.models import Message, PublishOutcome, RelayFilter
from gitsmith.infrastructure.acl import MessageTranslator

logger = logging.getLogger(__name__)

# Lets websocket connections settle before the first frame is sent
CONNECT_DELAY = 0.3
# Pause between consecutive messages on one connection
INTER_MESSAGE_DELAY = 0.1
PUBLISH_TIMEOUT = 10.0
RECEIVE_TIMEOUT = 5.0
QUEUE_POLL_INTERVAL = 0.1
SESSION_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=10)


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    return str(error) or type(error).__name__


def _decode_frame(data: Any) -> Optional[List[Any]]:
    try:
        frame = json.loads(data)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-JSON relay frame: {data!r}")
        return None
    if isinstance(frame, list) and frame and isinstance(frame[0], str):
        return frame
    return None


class RelayClient:
    """
    Client for publishing to and reading from a set of relays over websockets.

    Every relay is handled independently: one relay failing or timing out never
    fails the others, and receive operations return whatever arrived before
    their deadline.
    """

    def __init__(
        self,
        connect_delay: float = CONNECT_DELAY,
        publish_timeout: float = PUBLISH_TIMEOUT,
        receive_timeout: float = RECEIVE_TIMEOUT,
        inter_message_delay: float = INTER_MESSAGE_DELAY,
    ):
        self.connect_delay = connect_delay
        self.publish_timeout = publish_timeout
        self.receive_timeout = receive_timeout
        self.inter_message_delay = inter_message_delay

    @asynccontextmanager
    async def _session_scope(self, session: Optional[aiohttp.ClientSession]):
        if session is not None:
            yield session
            return
        async with aiohttp.ClientSession(timeout=SESSION_TIMEOUT) as owned:
            yield owned

    async def publish(
        self,
        message: Message,
        endpoints: Sequence[str],
        session: Optional[aiohttp.ClientSession] = None,
    ) -> PublishOutcome:
        outcomes = await self.publish_all([message], endpoints, session)
        return outcomes[0]

    async def publish_all(
        self,
        messages: Sequence[Message],
        endpoints: Sequence[str],
        session: Optional[aiohttp.ClientSession] = None,
    ) -> List[PublishOutcome]:
        """
        Publishes messages in order to every endpoint, one connection per endpoint.

        Returns:
            One PublishOutcome per message, listing the relays that accepted it
            and the (relay, reason) pairs that did not.
        """
        if not messages:
            return []
        endpoints = list(dict.fromkeys(endpoints))

        async with self._session_scope(session) as active_session:
            per_endpoint = await asyncio.gather(
                *(self._publish_to_endpoint(active_session, messages, endpoint) for endpoint in endpoints)
            )

        outcomes = []
        for index, message in enumerate(messages):
            succeeded = [endpoint for endpoint, reasons in zip(endpoints, per_endpoint) if reasons[index] is None]
            failed = [
                (endpoint, reasons[index])
                for endpoint, reasons in zip(endpoints, per_endpoint)
                if reasons[index] is not None
            ]
            outcome = PublishOutcome(message_id=message.id, succeeded=succeeded, failed=failed)
            if not outcome.ok:
                logger.error(f"Message {message.id} was rejected by every relay: {failed}")
            elif failed:
                logger.warning(
                    f"Message {message.id} accepted by {len(succeeded)}/{len(endpoints)} relays. Failures: {failed}"
                )
            else:
                logger.info(f"Message {message.id} accepted by {len(succeeded)} relay(s).")
            outcomes.append(outcome)
        return outcomes

    async def _publish_to_endpoint(
        self, session: aiohttp.ClientSession, messages: Sequence[Message], endpoint: str,
    ) -> List[Optional[str]]:
        """Returns one entry per message: None on acceptance, otherwise the failure reason."""
        reasons: List[Optional[str]] = []
        try:
            async with session.ws_connect(endpoint) as ws:
                await asyncio.sleep(self.connect_delay)
                for index, message in enumerate(messages):
                    if index:
                        await asyncio.sleep(self.inter_message_delay)
                    await ws.send_json(["EVENT", message.to_wire()])
                    try:
                        reasons.append(await asyncio.wait_for(self._await_ok(ws, message.id), self.publish_timeout))
                    except asyncio.TimeoutError:
                        logger.warning(f"[{endpoint}] No OK for {message.id} within {self.publish_timeout}s.")
                        reasons.append("timed out waiting for OK")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            reason = _describe(e)
            logger.warning(f"[{endpoint}] Publish failed: {reason}")
            reasons.extend([reason] * (len(messages) - len(reasons)))
        return reasons

    @staticmethod
    async def _await_ok(ws: aiohttp.ClientWebSocketResponse, message_id: str) -> Optional[str]:
        async for ws_message in ws:
            if ws_message.type != aiohttp.WSMsgType.TEXT:
                continue
            frame = _decode_frame(ws_message.data)
            if frame is None:
                continue
            if frame[0] == "OK" and len(frame) > 2 and frame[1] == message_id:
                if frame[2] is True:
                    return None
                return str(frame[3]) if len(frame) > 3 and frame[3] else "rejected"
            if frame[0] == "NOTICE":
                logger.info(f"Relay notice: {frame[1:]}")
        return "connection closed before OK"

    async def subscribe(
        self,
        relay_filter: RelayFilter,
        endpoints: Sequence[str],
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> AsyncIterator[Message]:
        """
        Yields verified messages matching the filter from all endpoints.

        Stops when every endpoint has finished sending stored events or the
        timeout elapses, whichever comes first. Duplicates across relays are
        yielded once.
        """
        async for message in self._stream(relay_filter, endpoints, timeout, session, []):
            yield message

    async def collect(
        self,
        relay_filter: RelayFilter,
        endpoints: Sequence[str],
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> List[Message]:
        """
        Drains a subscription into a list. A timeout yields the partial list.

        Raises:
            TransportException: if no endpoint is given or none could be reached.
        """
        endpoints = list(dict.fromkeys(endpoints))
        failures: List[Tuple[str, str]] = []
        messages = [message async for message in self._stream(relay_filter, endpoints, timeout, session, failures)]
        if len(failures) == len(endpoints) and not messages:
            raise TransportException(failures)
        return messages

    async def _stream(
        self,
        relay_filter: RelayFilter,
        endpoints: Sequence[str],
        timeout: Optional[float],
        session: Optional[aiohttp.ClientSession],
        failures: List[Tuple[str, str]],
    ) -> AsyncIterator[Message]:
        endpoints = list(dict.fromkeys(endpoints))
        timeout = self.receive_timeout if timeout is None else timeout
        subscription_id = uuid.uuid4().hex[:16]
        queue: asyncio.Queue = asyncio.Queue()

        async with self._session_scope(session) as active_session:
            tasks = [
                asyncio.create_task(
                    self._read_endpoint(active_session, endpoint, subscription_id, relay_filter, queue, failures)
                )
                for endpoint in endpoints
            ]
            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout
            seen = set()
            try:
                while True:
                    if queue.empty() and all(task.done() for task in tasks):
                        break
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        logger.debug(f"Subscription {subscription_id} reached its {timeout}s deadline.")
                        break
                    try:
                        raw_event = await asyncio.wait_for(queue.get(), min(remaining, QUEUE_POLL_INTERVAL))
                    except asyncio.TimeoutError:
                        continue

                    try:
                        message = MessageTranslator.to_domain(raw_event)
                    except ValueError as e:
                        logger.warning(f"Dropping invalid event: {e}")
                        continue
                    if message.id in seen or not relay_filter.matches(message):
                        continue
                    seen.add(message.id)
                    yield message
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

    async def _read_endpoint(
        self,
        session: aiohttp.ClientSession,
        endpoint: str,
        subscription_id: str,
        relay_filter: RelayFilter,
        queue: asyncio.Queue,
        failures: List[Tuple[str, str]],
    ) -> None:
        try:
            async with session.ws_connect(endpoint) as ws:
                await asyncio.sleep(self.connect_delay)
                await ws.send_json(["REQ", subscription_id, relay_filter.to_wire()])
                async for ws_message in ws:
                    if ws_message.type != aiohttp.WSMsgType.TEXT:
                        continue
                    frame = _decode_frame(ws_message.data)
                    if frame is None or len(frame) < 2:
                        continue
                    if frame[0] == "EVENT" and len(frame) > 2 and frame[1] == subscription_id:
                        await queue.put(frame[2])
                    elif frame[0] == "EOSE" and frame[1] == subscription_id:
                        await ws.send_json(["CLOSE", subscription_id])
                        break
                    elif frame[0] == "CLOSED" and frame[1] == subscription_id:
                        logger.warning(f"[{endpoint}] Subscription closed by relay: {frame[2:]}")
                        break
                    elif frame[0] == "NOTICE":
                        logger.info(f"[{endpoint}] Relay notice: {frame[1:]}")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            reason = _describe(e)
            logger.warning(f"[{endpoint}] Subscription failed: {reason}")
            failures.append((endpoint, reason))
