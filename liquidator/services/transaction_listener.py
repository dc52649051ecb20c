"""
Transaction Stream Listener
Holds a transactionSubscribe websocket for the tracked mint and reconnects forever
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from liquidator.core.config import FeedConfig
from liquidator.core.errors import FeedTransportError
from liquidator.core.logger import get_logger
from liquidator.core.metrics import get_metrics
from liquidator.services.buy_detector import BuyDetector, BuyEvent
from liquidator.services.notifications import (
    Subscribed,
    TransactionNotification,
    Unknown,
    parse_notification,
)


logger = get_logger(__name__)
metrics = get_metrics()


BuyCallback = Callable[[BuyEvent], Awaitable[None]]


class TransactionStreamListener:
    """
    Long-lived feed subscription

    On socket error or close the socket is dropped, the listener waits a
    fixed reconnect delay and resubscribes with identical parameters. There
    is no retry cap; only stop() ends the loop.

    on_buy is awaited inline for each qualifying event and must only enqueue.

    Usage:
        listener = TransactionStreamListener(feed_config, tracked_mint, detector, run_queue.submit)
        await listener.run()
    """

    def __init__(
        self,
        config: FeedConfig,
        tracked_mint: str,
        detector: BuyDetector,
        on_buy: BuyCallback,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.config = config
        self.tracked_mint = tracked_mint
        self.detector = detector
        self.on_buy = on_buy
        self._connect = connect
        self._sleep = sleep

        self._running = False
        self._websocket = None
        self.connection_attempts = 0
        self.reconnections = 0
        self.subscription_id: Optional[Any] = None

    def subscription_request(self) -> Dict[str, Any]:
        """The transactionSubscribe request; identical on every connection"""
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "transactionSubscribe",
            "params": [
                {"accountInclude": [self.tracked_mint]},
                {"commitment": self.config.commitment}
            ]
        }

    async def run(self) -> None:
        """Connect, subscribe and process messages until stop()"""
        self._running = True
        logger.info(
            "feed_listener_started",
            endpoint=self.config.websocket_url,
            mint=self.tracked_mint,
            commitment=self.config.commitment
        )

        while self._running:
            try:
                await self._connect_and_stream()
                logger.warning("feed_connection_closed")
            except asyncio.CancelledError:
                raise
            except (websockets.exceptions.WebSocketException, OSError,
                    asyncio.TimeoutError, FeedTransportError) as e:
                metrics.increment_counter("feed_errors")
                logger.error(
                    "feed_connection_error",
                    error=str(e),
                    error_type=type(e).__name__
                )
            finally:
                await self._close_socket()

            if not self._running:
                break

            self.reconnections += 1
            metrics.increment_counter("feed_reconnections")
            logger.info(
                "feed_reconnecting",
                delay_s=self.config.reconnect_delay_s,
                attempt=self.reconnections
            )
            await self._sleep(self.config.reconnect_delay_s)

        logger.info("feed_listener_stopped")

    async def stop(self) -> None:
        self._running = False
        await self._close_socket()

    async def _connect_and_stream(self) -> None:
        self.connection_attempts += 1
        async with self._connect(
            self.config.websocket_url,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=10,
            max_size=2**22
        ) as websocket:
            self._websocket = websocket
            logger.info("feed_connected", endpoint=self.config.websocket_url)

            await websocket.send(json.dumps(self.subscription_request()))

            async for message in websocket:
                if not self._running:
                    break
                await self.handle_message(message)

    async def handle_message(self, message: Any) -> Optional[BuyEvent]:
        """Parse one feed message and forward a qualifying buy"""
        metrics.increment_counter("feed_messages")
        notification = parse_notification(message)

        if isinstance(notification, Subscribed):
            self.subscription_id = notification.subscription_id
            logger.info("feed_subscribed", subscription_id=notification.subscription_id)
            return None

        if isinstance(notification, Unknown):
            if notification.reason.startswith("error_response"):
                # a rejected subscription leaves the socket open but silent
                raise FeedTransportError(
                    "Feed returned an error response",
                    context={"reason": notification.reason}
                )
            logger.debug("feed_message_ignored", reason=notification.reason)
            return None

        if not isinstance(notification, TransactionNotification):
            return None

        event = self.detector.detect(notification)
        if event is not None:
            await self.on_buy(event)
        return event

    async def _close_socket(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is None:
            return
        try:
            await websocket.close()
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.debug("feed_close_error", error=str(e))
