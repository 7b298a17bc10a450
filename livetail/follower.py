"""
ソースの追跡（tail -f 相当）

ソース1つにつき Follower を1つ作り、伸び続けるソースをバイトチャンクの
非同期イテレータとして取り出す。戦略は起動時に1度だけ決める:

- 標準入力: EOFまで読む（追跡・再試行なし）
- OSの follow コマンド（tail -F）があればサブプロセスに任せる
- 無ければファイルを直接開いてポーリングする
"""

from __future__ import annotations

import abc
import asyncio
import atexit
import logging
import os
import shutil
import sys
from typing import IO, AsyncIterator, Optional

from livetail.errors import SourceUnavailableError
from livetail.source import Source
from livetail.splitter import SOURCE_RESET, Chunk


CHUNK_SIZE = 64 * 1024
DEFAULT_POLL_INTERVAL = 0.5
TERMINATE_TIMEOUT_SECONDS = 2.0

logger = logging.getLogger(__name__)


class Follower(abc.ABC):
    """ソースを伸び続けるバイト列として読み出す共通インターフェース。"""

    def __init__(self, source: Source) -> None:
        self.source = source

    @abc.abstractmethod
    async def open(self) -> None:
        """
        ソースを開く。

        開けない場合は SourceUnavailableError（起動時の致命的エラー）。
        """

    @abc.abstractmethod
    def chunks(self) -> AsyncIterator[Chunk]:
        """
        読み取ったバイトチャンクを順に返す。

        ソースが差し替わった箇所では SOURCE_RESET を挟む。
        """

    async def close(self) -> None:
        """追跡を止めて資源を解放する。"""


class StdinFollower(Follower):
    """標準入力をEOFまで読む。"""

    def __init__(self, source: Source, stream: Optional[IO[bytes]] = None) -> None:
        super().__init__(source)
        self._stream = stream
        self._reader: Optional[asyncio.StreamReader] = None
        self._transport: Optional[asyncio.BaseTransport] = None

    async def open(self) -> None:
        stream = self._stream
        if stream is None:
            if sys.stdin is None:
                raise SourceUnavailableError(str(self.source), "standard input is closed")
            stream = sys.stdin.buffer
        self._stream = stream

        # パイプ/ソケットはイベントループで読む。通常ファイル等はスレッド読みに落とす
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=CHUNK_SIZE)
        protocol = asyncio.StreamReaderProtocol(reader)
        try:
            self._transport, _ = await loop.connect_read_pipe(lambda: protocol, stream)
        except (ValueError, OSError):
            self._reader = None
            return
        self._reader = reader

    async def chunks(self) -> AsyncIterator[bytes]:
        if self._stream is None:
            raise RuntimeError("follower is not opened")
        while True:
            if self._reader is not None:
                data = await self._reader.read(CHUNK_SIZE)
            else:
                data = await asyncio.to_thread(self._stream.read, CHUNK_SIZE)
            if not data:
                logger.info("standard input reached end of stream")
                return
            yield data

    async def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class CommandFollower(Follower):
    """
    OSの follow コマンド（tail -F）をサブプロセスとして起動する。

    ローテーション/truncate への追従は tail 側に任せる。
    stderr はログに流すが、truncate 通知は想定内なのでDEBUGに留める。
    """

    def __init__(self, source: Source, seed_lines: int, command: str = "tail") -> None:
        super().__init__(source)
        self.seed_lines = int(seed_lines)
        self.command = command
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._closing = False

    def build_args(self) -> list[str]:
        # OpenBSD の tail には -F が無い
        follow_opt = "-f" if sys.platform.startswith("openbsd") else "-F"
        return [self.command, "-n", str(self.seed_lines), follow_opt, self.source.identifier]

    async def open(self) -> None:
        # tail -F は存在しないファイルでも待ち続けるので、起動時に自前で確認する
        try:
            with open(self.source.identifier, "rb"):
                pass
        except OSError as exc:
            raise SourceUnavailableError(str(self.source), exc.strerror or str(exc)) from exc

        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.build_args(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SourceUnavailableError(str(self.source), f"cannot spawn '{self.command}': {exc}") from exc

        self._stderr_task = asyncio.create_task(self._drain_stderr())
        atexit.register(self._terminate_at_exit)
        logger.info("following %s with '%s' (pid=%s)", self.source, " ".join(self.build_args()), self._proc.pid)

    async def chunks(self) -> AsyncIterator[bytes]:
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise RuntimeError("follower is not opened")
        while True:
            data = await proc.stdout.read(CHUNK_SIZE)
            if not data:
                break
            yield data
        returncode = await proc.wait()
        if not self._closing:
            logger.warning("follow command for %s exited (returncode=%s)", self.source, returncode)

    async def _drain_stderr(self) -> None:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return
        async for raw in proc.stderr:
            text = raw.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            if "file truncated" in text:
                logger.debug("%s: %s", self.source, text)
                continue
            logger.warning("%s: %s", self.source, text)

    def _terminate_at_exit(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            pass

    async def close(self) -> None:
        self._closing = True
        atexit.unregister(self._terminate_at_exit)
        proc = self._proc
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=TERMINATE_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None


class PollingFollower(Follower):
    """
    ファイルを直接開き、start バイト目から追記分をポーリングで読む。

    サイズ縮小は truncate、inode変化はローテーションとみなして先頭から読み直す。
    読み直す前には SOURCE_RESET を返す。一時的な読み取りエラーの後は同じ位置から続ける。
    起動後にファイルが消えた場合はログを出して再出現を待つ。
    """

    def __init__(self, source: Source, start: int = 0, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        super().__init__(source)
        self.start = max(0, int(start))
        self.poll_interval = float(poll_interval)
        self._fh: Optional[IO[bytes]] = None
        self._inode: Optional[int] = None
        self._offset = 0
        self._missing = False

    @property
    def offset(self) -> int:
        return self._offset

    async def open(self) -> None:
        try:
            fh = open(self.source.identifier, "rb")
        except OSError as exc:
            raise SourceUnavailableError(str(self.source), exc.strerror or str(exc)) from exc
        st = os.fstat(fh.fileno())
        self._offset = min(self.start, st.st_size)
        fh.seek(self._offset)
        self._fh = fh
        self._inode = st.st_ino
        logger.info("polling %s from byte %d (interval=%.2fs)", self.source, self._offset, self.poll_interval)

    async def chunks(self) -> AsyncIterator[Chunk]:
        while True:
            data = self._read_available()
            if data:
                yield data
                continue
            await asyncio.sleep(self.poll_interval)
            if self._check_rotation():
                yield SOURCE_RESET

    def _read_available(self) -> bytes:
        if self._fh is None:
            return b""
        try:
            data = self._fh.read(CHUNK_SIZE)
        except OSError as exc:
            # inode と offset は残し、次回は同じ位置から再開する
            logger.warning("read error on %s, will retry: %s", self.source, exc)
            self._close_handle()
            return b""
        self._offset += len(data)
        return data

    def _check_rotation(self) -> bool:
        """ファイルの状態を確認する。先頭から読み直すことになったら True。"""
        path = self.source.identifier
        try:
            st = os.stat(path)
        except OSError as exc:
            if not self._missing:
                logger.warning("%s is unavailable, waiting for it to reappear: %s", self.source, exc)
                self._missing = True
            return False

        if self._missing:
            logger.info("%s reappeared", self.source)
            self._missing = False

        if st.st_ino != self._inode:
            logger.info("%s was replaced, reading from the beginning", self.source)
            return self._reopen(0)
        if st.st_size < self._offset:
            logger.debug("%s: file truncated", self.source)
            if self._fh is None:
                return self._reopen(0)
            self._fh.seek(0)
            self._offset = 0
            return True
        if self._fh is None:
            self._reopen(self._offset)
        return False

    def _reopen(self, offset: int) -> bool:
        self._close_handle()
        try:
            fh = open(self.source.identifier, "rb")
        except OSError as exc:
            logger.warning("cannot reopen %s, will retry: %s", self.source, exc)
            return False
        fh.seek(offset)
        self._fh = fh
        self._inode = os.fstat(fh.fileno()).st_ino
        self._offset = offset
        return True

    def _close_handle(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            finally:
                self._fh = None

    async def close(self) -> None:
        self._close_handle()


def has_follow_command(command: str) -> bool:
    """follow コマンドがPATH上にあるか（起動時の能力判定）。"""
    return bool(command) and shutil.which(command) is not None


def create_follower(
    source: Source,
    *,
    seed_lines: int,
    follow_command: str = "tail",
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Follower:
    """ソース1つに対する Follower を選んで生成する。"""
    if source.is_stdin:
        return StdinFollower(source)
    if has_follow_command(follow_command):
        return CommandFollower(source, seed_lines=seed_lines, command=follow_command)
    return PollingFollower(source, start=seed_lines, poll_interval=poll_interval)
