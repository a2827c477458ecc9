"""
ZKTeco terminal adapter built on pyzk.

pyzk is a blocking socket client, so every call is pushed to a worker thread
with ``asyncio.to_thread`` to keep the event loop free.
"""
import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from zk import ZK

logger = logging.getLogger(__name__)


class ZKDeviceConnection:
    """
    ``DeviceConnection`` backed by ``zk.ZK``.

    Rows are returned as plain dicts (``uid``, ``user_id``, ``timestamp``,
    ``status``, ``punch``). Filtering by date range happens in the sync client.
    """

    def __init__(self, password: int = 0, force_udp: bool = False, ommit_ping: bool = True) -> None:
        self.password = password
        self.force_udp = force_udp
        self.ommit_ping = ommit_ping
        self._conn = None

    async def connect(self, ip: str, port: int, timeout_ms: int) -> None:
        timeout_s = max(1, int(round(timeout_ms / 1000)))
        zk = ZK(
            ip,
            port=port,
            timeout=timeout_s,
            password=self.password,
            force_udp=self.force_udp,
            ommit_ping=self.ommit_ping,
        )
        self._conn = await asyncio.to_thread(zk.connect)
        logger.debug("Connected to terminal %s:%s", ip, port)

    async def fetch_punches(self, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        if self._conn is None:
            raise ConnectionError("Device connection is not open")
        conn = self._conn

        def _read() -> List[Dict[str, Any]]:
            # Freeze the terminal while the log buffer is read
            conn.disable_device()
            try:
                logs = conn.get_attendance() or []
            finally:
                conn.enable_device()
            return [_attendance_to_row(log) for log in logs]

        return await asyncio.to_thread(_read)

    async def disconnect(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await asyncio.to_thread(conn.disconnect)


def _attendance_to_row(log) -> Dict[str, Any]:
    timestamp: Optional[datetime] = getattr(log, "timestamp", None)
    return {
        "uid": getattr(log, "uid", None),
        "user_id": getattr(log, "user_id", None),
        "timestamp": timestamp,
        "status": getattr(log, "status", None),
        "punch": getattr(log, "punch", None),
    }
