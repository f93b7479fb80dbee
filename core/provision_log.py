from datetime import datetime
from typing import Callable

from core.logger import log_event

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class ProvisionLog:
    """
    Append-only, timestamped per-VM log kept next to the VM on its host
    (<base>/<vm_name>/ProvisionLog.txt).

    Nothing is written until `open()` is called, which happens right after
    the VM directory has been created.
    """

    def __init__(self, session, path: str, clock: Callable[[], datetime] = datetime.now) -> None:
        self.session = session
        self.path = path
        self.clock = clock
        self.is_open = False

    def open(self) -> None:
        self.is_open = True

    async def write(self, message: str) -> None:
        log_event(f"[provision] {self.session.host}: {message}")
        if not self.is_open:
            return
        line = f"{self.clock().strftime(TIMESTAMP_FORMAT)} - {message}\n"
        await self.session.append_text(self.path, line)
