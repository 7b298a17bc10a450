"""
Fan-out Hub

SourceSet 1つにつき Hub を1つ持ち、HistoryBuffer と購読者（Observer）集合を所有する。
接続時は履歴をリプレイしてからライブ配信へ切り替える。
on_line / attach / detach は同じロックで直列化するため、
リプレイとライブの境目で行の欠落・重複は起きない。
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Set

from livetail.errors import ObserverDeliveryFailure
from livetail.follower import DEFAULT_POLL_INTERVAL, Follower, create_follower
from livetail.history import HistoryBuffer
from livetail.source import Source, SourceSet
from livetail.splitter import split_lines


Sink = Callable[[str], Awaitable[None]]
FollowerFactory = Callable[[Source], Follower]

INBOX_SIZE = 1000
DEFAULT_MAX_PENDING_LINES = 10_000

logger = logging.getLogger(__name__)
_observer_ids = itertools.count(1)


class Observer:
    """
    接続中の購読者1つ。

    Hubから受け取った行を専用のoutboxに積み、配送タスクがsinkへ順に送る。
    接続ごとに新規作成され、切断後に再利用されることはない。
    """

    def __init__(self, hub: "FanoutHub", sink: Sink, *, pending_limit: int) -> None:
        self.id = next(_observer_ids)
        self._hub = hub
        self._sink = sink
        self._pending_limit = pending_limit
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None
        self._detached = asyncio.Event()
        self.closed = False
        self.delivered = 0

    def __repr__(self) -> str:
        return f"<Observer id={self.id} hub={self._hub.fingerprint[:8]} closed={self.closed}>"

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def offer(self, line: str) -> bool:
        """行を積む。滞留上限を超える場合は積まずに False を返す。"""
        if self.closed:
            return False
        if self._outbox.qsize() >= self._pending_limit:
            return False
        self._outbox.put_nowait(line)
        return True

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._deliver_loop())

    def _mark_closed(self) -> None:
        # Hubのロック内から呼ばれる。配送タスクは番兵で終わらせる
        self.closed = True
        self._outbox.put_nowait(None)
        self._detached.set()

    async def wait_detached(self) -> None:
        """Hubから外されるまで待つ。配送失敗や滞留超過で外された場合も含む。"""
        await self._detached.wait()

    async def aclose(self) -> None:
        """Hubから外し、送信中のものは破棄して配送タスクを止める。"""
        self._hub.detach(self)
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _deliver_loop(self) -> None:
        while True:
            line = await self._outbox.get()
            if line is None:
                return
            try:
                await self._sink(line)
            except Exception as exc:  # noqa: BLE001
                # 1購読者の失敗は他へ波及させない
                failure = ObserverDeliveryFailure(f"delivery to observer {self.id} failed: {exc!r}")
                logger.info("%s, detaching", failure)
                self._hub.detach(self)
                return
            self.delivered += 1


class FanoutHub:
    """
    SourceSet 1つ分の追跡パイプラインと配信先を束ねる。

    ソースごとに Follower -> split_lines -> inbox のタスクを1つ走らせ、
    配送タスクが inbox から到着順に取り出して on_line() を呼ぶ。
    """

    def __init__(
        self,
        source_set: SourceSet,
        *,
        history_capacity: int,
        seed_lines: int = 10,
        keep_empty_lines: bool = True,
        follow_command: str = "tail",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_pending_lines: int = DEFAULT_MAX_PENDING_LINES,
        follower_factory: Optional[FollowerFactory] = None,
    ) -> None:
        if max_pending_lines < 1:
            raise ValueError(f"max_pending_lines must be >= 1 (got {max_pending_lines})")
        self.source_set = source_set
        self.history = HistoryBuffer(history_capacity)
        self.keep_empty_lines = keep_empty_lines
        self.max_pending_lines = int(max_pending_lines)
        self.seed_lines = int(seed_lines)
        self.follow_command = follow_command
        self.poll_interval = float(poll_interval)
        self._follower_factory: FollowerFactory = follower_factory or self._create_follower
        self._lock = threading.Lock()
        self._observers: Set[Observer] = set()
        self._followers: List[Follower] = []
        self._inbox: Optional[asyncio.Queue[str]] = None
        self._pump_tasks: List[asyncio.Task[None]] = []
        self._dispatch_task: Optional[asyncio.Task[None]] = None

    @property
    def fingerprint(self) -> str:
        return self.source_set.fingerprint

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    @property
    def running(self) -> bool:
        return self._dispatch_task is not None

    async def start(self) -> None:
        """
        全ソースを開いて追跡を開始する。

        1つでも開けなければ SourceUnavailableError を送出し、開いた分は閉じる。
        """
        if self._dispatch_task is not None:
            return
        followers: List[Follower] = []
        try:
            for source in self.source_set:
                follower = self._follower_factory(source)
                await follower.open()
                followers.append(follower)
        except BaseException:
            for follower in followers:
                await follower.close()
            raise

        loop = asyncio.get_running_loop()
        self._followers = followers
        self._inbox = asyncio.Queue(maxsize=INBOX_SIZE)
        self._pump_tasks = [loop.create_task(self._pump(f)) for f in followers]
        self._dispatch_task = loop.create_task(self._dispatch_loop())
        logger.info("hub %s started (sources=%s, history=%d)", self.fingerprint, self.source_set.label, self.history.capacity)

    async def stop(self) -> None:
        """追跡タスクを止め、Followerを閉じ、全購読者を外す。"""
        tasks = list(self._pump_tasks)
        if self._dispatch_task is not None:
            tasks.append(self._dispatch_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pump_tasks = []
        self._dispatch_task = None

        for follower in self._followers:
            try:
                await follower.close()
            except Exception:  # noqa: BLE001
                logger.exception("failed to close follower for %s", follower.source)
        self._followers = []

        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            await observer.aclose()
        logger.info("hub %s stopped", self.fingerprint)

    def attach(self, sink: Sink) -> Observer:
        """
        購読者を登録する。

        履歴のスナップショットを積んでからライブ集合に加えるまでをロック内で行う。
        """
        with self._lock:
            snapshot = self.history.snapshot()
            observer = Observer(self, sink, pending_limit=len(snapshot) + self.max_pending_lines)
            for line in snapshot:
                observer.offer(line)
            self._observers.add(observer)
        observer.start()
        logger.debug("observer %d attached to %s (replay=%d)", observer.id, self.fingerprint, len(snapshot))
        return observer

    def detach(self, observer: Observer) -> None:
        """購読者を外す。既に外れていても何もしない。"""
        with self._lock:
            if observer not in self._observers:
                return
            self._observers.discard(observer)
            observer._mark_closed()
        logger.debug("observer %d detached from %s", observer.id, self.fingerprint)

    def on_line(self, line: str) -> None:
        """1行を履歴に追加し、接続中の全購読者へ積む。"""
        with self._lock:
            self.history.append(line)
            overflowed = [observer for observer in self._observers if not observer.offer(line)]
        for observer in overflowed:
            logger.warning("observer %d exceeded %d pending lines, detaching", observer.id, self.max_pending_lines)
            self.detach(observer)

    def _create_follower(self, source: Source) -> Follower:
        return create_follower(
            source,
            seed_lines=self.seed_lines,
            follow_command=self.follow_command,
            poll_interval=self.poll_interval,
        )

    async def _pump(self, follower: Follower) -> None:
        inbox = self._inbox
        if inbox is None:  # pragma: no cover
            return
        try:
            async for line in split_lines(follower.chunks(), keep_empty_lines=self.keep_empty_lines):
                await inbox.put(line)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("following %s failed", follower.source)
            return
        logger.info("source %s ended", follower.source)

    async def _dispatch_loop(self) -> None:
        inbox = self._inbox
        if inbox is None:  # pragma: no cover
            return
        while True:
            line = await inbox.get()
            self.on_line(line)


class HubRegistry:
    """fingerprint -> Hub の対応表。名前空間の解決に使う。"""

    def __init__(self) -> None:
        self._hubs: Dict[str, FanoutHub] = {}

    def register(self, hub: FanoutHub) -> None:
        if hub.fingerprint in self._hubs:
            raise ValueError(f"hub already registered for namespace {hub.fingerprint}")
        self._hubs[hub.fingerprint] = hub

    def get(self, fingerprint: str) -> Optional[FanoutHub]:
        return self._hubs.get(fingerprint)

    def __iter__(self) -> Iterator[FanoutHub]:
        return iter(list(self._hubs.values()))

    def __len__(self) -> int:
        return len(self._hubs)

    async def start_all(self) -> None:
        started: List[FanoutHub] = []
        try:
            for hub in self:
                await hub.start()
                started.append(hub)
        except BaseException:
            for hub in started:
                await hub.stop()
            raise

    async def stop_all(self) -> None:
        for hub in self:
            await hub.stop()
