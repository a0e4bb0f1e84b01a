"""BLE GATT transport implementation.

Runs in the central role: scans for peripherals advertising the chat service,
connects to each one, subscribes to the chat characteristic for inbound text,
and writes outbound text to every connected peripheral. All bleak calls run
on a private asyncio loop owned by a daemon thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any

from peerlink.core.model import Readiness
from peerlink.core.readiness import ReadinessTracker
from peerlink.transports.base import ReceiveCallback, decode_payload, encode_payload

LOGGER = logging.getLogger(__name__)

BLE_PEER_LABEL = "BluetoothPeer"


class BLEGATTTransport:
    def __init__(
        self,
        *,
        service_uuid: str = "c0de1000-feed-feed-feed-c0dec0ffee01",
        char_uuid: str = "c0de1001-feed-feed-feed-c0dec0ffee01",
        scan_interval_s: float = 5.0,
        timeout_s: float = 5.0,
        name: str = "ble",
    ) -> None:
        self.name = name
        self.service_uuid = service_uuid
        self.char_uuid = char_uuid
        self.scan_interval_s = scan_interval_s
        self.timeout_s = timeout_s
        self._tracker = ReadinessTracker(name)
        self._callback: ReceiveCallback | None = None
        self._callback_lock = threading.Lock()
        # address -> (client, label); mutated only on the loop thread
        self._clients: dict[str, tuple[Any, str]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: concurrent.futures.Future[None] | None = None

    @property
    def readiness(self) -> Readiness:
        return self._tracker.state

    @property
    def tracker(self) -> ReadinessTracker:
        return self._tracker

    def on_receive(self, callback: ReceiveCallback | None) -> None:
        with self._callback_lock:
            self._callback = callback

    def start(self) -> None:
        self._tracker.transition(Readiness.INITIALIZING)
        try:
            from bleak import BleakClient, BleakScanner  # type: ignore
        except Exception as exc:
            self._tracker.fail(f"BLE transport requires 'bleak': {exc}")
            return

        loop = asyncio.new_event_loop()
        threading.Thread(target=loop.run_forever, name=f"{self.name}-loop", daemon=True).start()
        self._loop = loop
        self._task = asyncio.run_coroutine_threadsafe(self._run(BleakScanner, BleakClient), loop)

    def send(self, body: str) -> bool:
        data = encode_payload(body)
        loop = self._loop
        if loop is None or not self._clients:
            LOGGER.debug("[%s] No connected peripherals", self.name)
            return False

        future = asyncio.run_coroutine_threadsafe(self._write_all(data), loop)
        try:
            return future.result(timeout=self.timeout_s)
        except concurrent.futures.TimeoutError:
            future.cancel()
            LOGGER.info("[%s] Write timed out after %.1fs", self.name, self.timeout_s)
            return False

    def close(self) -> None:
        loop = self._loop
        if loop is None:
            return
        if self._task is not None:
            self._task.cancel()
        try:
            asyncio.run_coroutine_threadsafe(self._disconnect_all(), loop).result(timeout=self.timeout_s)
        except (concurrent.futures.TimeoutError, concurrent.futures.CancelledError):
            LOGGER.debug("[%s] Disconnect did not finish cleanly", self.name)
        loop.call_soon_threadsafe(loop.stop)
        self._loop = None

    async def _run(self, scanner_cls: Any, client_cls: Any) -> None:
        first_scan = True
        while True:
            try:
                devices = await scanner_cls.discover(
                    timeout=self.scan_interval_s,
                    service_uuids=[self.service_uuid],
                )
            except Exception as exc:
                if first_scan:
                    self._tracker.fail(f"BLE scan failed: {exc}")
                    return
                LOGGER.warning("[%s] BLE scan failed: %s", self.name, exc)
                await asyncio.sleep(self.scan_interval_s)
                continue

            if first_scan:
                first_scan = False
                self._tracker.transition(Readiness.READY)
            for device in devices:
                if device.address not in self._clients:
                    await self._connect(client_cls, device)
            self._tracker.update_peer_count(len(self._clients))

    async def _connect(self, client_cls: Any, device: Any) -> None:
        label = device.name or BLE_PEER_LABEL

        def _on_disconnect(_: Any) -> None:
            self._clients.pop(device.address, None)
            LOGGER.info("[%s] Peripheral %s disconnected", self.name, label)
            self._tracker.update_peer_count(len(self._clients))

        def _on_notify(_: Any, data: bytearray) -> None:
            text = decode_payload(bytes(data))
            if text is None:
                LOGGER.debug("[%s] Dropping undecodable notification from %s", self.name, label)
                return
            self._deliver(label, text)

        client = client_cls(device, disconnected_callback=_on_disconnect, timeout=self.timeout_s)
        try:
            await client.connect()
            await client.start_notify(self.char_uuid, _on_notify)
        except Exception as exc:
            LOGGER.info("[%s] Could not connect to %s: %s", self.name, label, exc)
            try:
                await client.disconnect()
            except Exception:
                pass
            return
        self._clients[device.address] = (client, label)
        LOGGER.info("[%s] Connected to peripheral %s", self.name, label)

    async def _write_all(self, data: bytes) -> bool:
        sent = False
        for client, label in list(self._clients.values()):
            try:
                await client.write_gatt_char(self.char_uuid, data, response=True)
                sent = True
            except Exception as exc:
                LOGGER.info("[%s] BLE write to %s failed: %s", self.name, label, exc)
        return sent

    async def _disconnect_all(self) -> None:
        for client, _ in list(self._clients.values()):
            try:
                await client.disconnect()
            except Exception as exc:
                LOGGER.debug("[%s] Disconnect failed: %s", self.name, exc)
        self._clients.clear()

    def _deliver(self, sender: str, text: str) -> None:
        with self._callback_lock:
            callback = self._callback
        if callback is None:
            return
        try:
            callback(sender, text)
        except Exception:
            LOGGER.exception("[%s] Receive callback failed", self.name)
