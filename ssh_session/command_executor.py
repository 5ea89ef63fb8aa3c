"""Parallel command execution over the channels of one SSH session."""
import logging
import time
from collections import deque
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from .constants import DEFAULT_COMMAND_TIMEOUT, DEFAULT_NODATA_TIMEOUT, DEFAULT_PARALLEL, SshStatus
from .datastructures import ChannelId, CommandResult, CommandStatus, RemoteCommand, Slot, Stream
from .errors import ChannelError, CommandTimeoutError, ConfigError, SessionError

if TYPE_CHECKING:
    from .session import Session


def dispatch_result(command: RemoteCommand, result: CommandResult) -> None:
    """Hand a final result to the command's callback.

    Called exactly once per command. A callback that raises is logged; it must
    not stop the remaining commands.
    """
    logger = logging.getLogger('ssh_session.command_executor.dispatch')
    try:
        command.callback(result)
    except Exception as e:
        logger.warning(f"Callback for {command.command[:100]!r} raised: {e}", exc_info=True)


class CommandScheduler:
    """Runs commands on up to ``parallel`` channels at a time.

    Everything happens on the calling thread: channels are opened, polled,
    drained and closed in a single loop. The only wait is the readiness poll,
    bounded by ``select_wait`` so the timers stay current even when no
    channel produces output.
    """

    READ_SIZE = 4096
    SELECT_WAIT = 1.0

    def __init__(self, session: "Session", parallel: int = DEFAULT_PARALLEL,
                 timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 timeout_nodata: float = DEFAULT_NODATA_TIMEOUT,
                 select_wait: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        if isinstance(parallel, bool) or not isinstance(parallel, int) or parallel < 1:
            raise ConfigError(f"parallel must be a positive integer, got {parallel!r}")
        self.session = session
        self.parallel = parallel
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_COMMAND_TIMEOUT
        self.timeout_nodata = timeout_nodata if timeout_nodata and timeout_nodata > 0 else DEFAULT_NODATA_TIMEOUT
        self.select_wait = select_wait if select_wait is not None else self.SELECT_WAIT
        self.clock = clock
        self.logger = logging.getLogger('ssh_session.command_executor')
        self.slots: Dict[ChannelId, Slot] = {}

    def run(self, commands: Iterable[RemoteCommand]) -> None:
        logger = self.logger.getChild('run')
        pending = deque(commands)
        total = len(pending)
        logger.info(f"[EXEC_START] {total} commands, parallel={self.parallel}, "
                    f"timeout={self.timeout}s, timeout_nodata={self.timeout_nodata}s")

        self.slots = {}
        self.session._slots = self.slots
        started = self.clock()
        last_tick = started
        cycles = 0
        try:
            while True:
                while len(self.slots) < self.parallel and pending:
                    self._admit(pending.popleft())

                if not self.slots:
                    break

                cycles += 1
                self._poll_and_drain()
                self._complete_finished()

                now = self.clock()
                elapsed = max(0.0, now - last_tick)
                last_tick = now
                self._account_timeouts(elapsed)

                for slot in self.slots.values():
                    slot.received = False
        finally:
            self.session._slots = None

        logger.info(f"[EXEC_DONE] {total} commands, cycles={cycles}, duration={self.clock() - started:.2f}s")

    # Admission ----------------------------------------------------------------

    def _admit(self, command: RemoteCommand) -> None:
        logger = self.logger.getChild('admit')
        try:
            channel = self.session.open_channel()
        except SessionError as e:
            logger.warning(f"[CHAN_FAIL] {command.command[:100]!r}: {e}")
            self._dispatch_failure(command, ChannelError(str(e)))
            return

        try:
            channel.request_exec(command.command)
        except SessionError as e:
            logger.warning(f"[EXEC_FAIL] {channel.id}: {e}")
            self.session.close_channel(channel.id)
            self._dispatch_failure(command, ChannelError(str(e)))
            return

        timeout = command.timeout if command.timeout and command.timeout > 0 else self.timeout
        timeout_nodata = (command.timeout_nodata if command.timeout_nodata and command.timeout_nodata > 0
                          else self.timeout_nodata)
        self.slots[channel.id] = Slot(
            channel=channel,
            command=command,
            timeout=float(timeout),
            timeout_nodata=float(timeout_nodata),
        )
        logger.debug(f"[EXEC_ADMIT] {channel.id}: {command.command[:100]!r} ({len(self.slots)}/{self.parallel} slots)")

    # Readiness and draining ---------------------------------------------------

    def _poll_and_drain(self) -> None:
        logger = self.logger.getChild('poll')
        channels = [slot.channel for slot in self.slots.values()]
        try:
            ready: List[ChannelId] = self.session._transport.select_read(channels, self.select_wait)
        except SessionError as e:
            logger.error(f"[POLL_FAIL] readiness wait failed, failing {len(self.slots)} active commands: {e}")
            for channel_id in list(self.slots):
                self._finish(channel_id, CommandStatus.CHANNEL_ERROR, error=ChannelError(str(e)))
            return

        for channel_id in ready:
            if channel_id in self.slots:
                self._drain(channel_id)

    def _read_stream(self, slot: Slot, stream: Stream, buffer: bytearray) -> int:
        count = 0
        while True:
            chunk = slot.channel.read(stream, self.READ_SIZE)
            if chunk:
                buffer.extend(chunk)
                count += len(chunk)
            if len(chunk) < self.READ_SIZE:
                return count

    def _drain(self, channel_id: ChannelId) -> None:
        slot = self.slots[channel_id]
        try:
            received = self._read_stream(slot, Stream.STDOUT, slot.stdout)
            received += self._read_stream(slot, Stream.STDERR, slot.stderr)
        except ChannelError as e:
            self.logger.getChild('drain').warning(f"[READ_FAIL] {channel_id}: {e}")
            self._finish(channel_id, CommandStatus.CHANNEL_ERROR, error=e)
            return
        if received:
            slot.received = True

    # Completion ---------------------------------------------------------------

    def _complete_finished(self) -> None:
        for channel_id, slot in list(self.slots.items()):
            if slot.channel.is_eof():
                exit_code = slot.channel.exit_status()
                self._finish(channel_id, CommandStatus.COMPLETED, exit_code=exit_code)

    def _account_timeouts(self, elapsed: float) -> None:
        logger = self.logger.getChild('timeout')
        for channel_id, slot in list(self.slots.items()):
            slot.timeout_counter -= elapsed
            if not slot.received:
                slot.timeout_nodata_counter -= elapsed

            if slot.timeout_counter <= 0:
                error = CommandTimeoutError(f"Command timed out after {slot.timeout:g} seconds", reason="overall")
            elif slot.timeout_nodata_counter <= 0:
                error = CommandTimeoutError(
                    f"Command produced no output for {slot.timeout_nodata:g} seconds", reason="nodata"
                )
            else:
                continue

            logger.warning(f"[EXEC_TIMEOUT] {channel_id}: {error}")
            self._finish(channel_id, CommandStatus.TIMED_OUT, error=error)

    def _finish(self, channel_id: ChannelId, status: CommandStatus,
                exit_code: Optional[int] = None, error: Optional[Exception] = None) -> None:
        """Close the channel, drop it from both tables, then fire the callback."""
        slot = self.slots.pop(channel_id)
        self.session.close_channel(channel_id)

        code = {
            CommandStatus.COMPLETED: SshStatus.OK,
            CommandStatus.TIMED_OUT: SshStatus.AGAIN,
        }.get(status, SshStatus.ERROR)

        result = CommandResult(
            command=slot.command.command,
            status=status,
            code=code,
            stdout=slot.stdout.decode('utf-8', errors='replace'),
            stderr=slot.stderr.decode('utf-8', errors='replace'),
            userdata=slot.command.userdata,
            exit_code=exit_code if status == CommandStatus.COMPLETED else None,
            error=error,
            session=self.session,
            start_time=slot.start_time,
            end_time=datetime.now(),
        )
        self.logger.getChild('finish').info(
            f"[EXEC_END] {channel_id}: status={status.value}, exit_code={result.exit_code}, "
            f"stdout={len(slot.stdout)}B, stderr={len(slot.stderr)}B"
        )
        dispatch_result(slot.command, result)

    def _dispatch_failure(self, command: RemoteCommand, error: ChannelError) -> None:
        now = datetime.now()
        dispatch_result(command, CommandResult(
            command=command.command,
            status=CommandStatus.CHANNEL_ERROR,
            code=SshStatus.ERROR,
            stdout="",
            stderr="",
            userdata=command.userdata,
            error=error,
            session=self.session,
            start_time=now,
            end_time=now,
        ))
