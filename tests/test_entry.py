"""
Tests for FileEntry reloads, ETags and content access.
"""

import hashlib
import os

import pytest
from unittest.mock import AsyncMock, Mock

from livedirectory.aio.core import (
    CacheLedger,
    FileEntry,
    FileSnapshot,
    FileStats,
    strong_etag,
    weak_etag,
)
from livedirectory.config import RetryConfig
from livedirectory.errors import PathIOError, PathNotFoundError


def make_entry(path, ledger=None, retry=None) -> FileEntry:
    if ledger is None:
        ledger = CacheLedger()
    return FileEntry('/' + path.name, str(path), ledger, retry=retry)


class TestEtags:
    """Test ETag formats."""

    def test_strong_etag_hashes_content_then_stats(self):
        stats = FileStats(size=5, mtime_ns=300, ctime_ns=200)
        expected = hashlib.md5(b'hello' + b'5,200,300').hexdigest()
        assert strong_etag(b'hello', stats) == '"%s"' % expected

    def test_strong_etag_changes_with_metadata(self):
        before = FileStats(size=5, mtime_ns=300, ctime_ns=200)
        after = FileStats(size=5, mtime_ns=400, ctime_ns=200)
        assert strong_etag(b'hello', before) != strong_etag(b'hello', after)
        assert strong_etag(b'hello', before) == strong_etag(b'hello', before)

    def test_weak_etag_hashes_size_ctime_mtime(self):
        stats = FileStats(size=12, mtime_ns=300, ctime_ns=200)
        expected = hashlib.md5(b'12,200,300').hexdigest()
        assert weak_etag(stats) == 'W/"%s"' % expected

    def test_snapshot_requires_content_iff_cached(self):
        stats = FileStats(1, 1, 1)
        with pytest.raises(ValueError):
            FileSnapshot(stats, '"x"', cached=True, content=None)
        with pytest.raises(ValueError):
            FileSnapshot(stats, 'W/"x"', cached=False, content=b'x')


class TestReload:
    """Test reload() caching decisions."""

    @pytest.mark.asyncio
    async def test_small_file_is_cached(self, tmp_path):
        path = tmp_path / 'a.js'
        path.write_bytes(b'console.log(1)')
        ledger = CacheLedger()
        entry = make_entry(path, ledger)

        etag, cached = await entry.reload()

        assert cached is True
        assert etag == strong_etag(b'console.log(1)', entry.stats)
        assert entry.content() == b'console.log(1)'
        assert '/a.js' in ledger
        assert entry.stats.size == 14
        assert entry.last_update is not None

    @pytest.mark.asyncio
    async def test_file_beyond_count_is_streamed(self, tmp_path):
        first, second = tmp_path / 'first.txt', tmp_path / 'second.txt'
        first.write_bytes(b'one')
        second.write_bytes(b'two')
        ledger = CacheLedger(max_file_count=1)

        await make_entry(first, ledger).reload()
        entry = make_entry(second, ledger)
        etag, cached = await entry.reload()

        assert cached is False
        assert etag == weak_etag(entry.stats)
        assert entry.snapshot.is_weak
        handle = entry.content()
        try:
            assert handle.read() == b'two'
        finally:
            handle.close()

    @pytest.mark.asyncio
    async def test_oversized_file_is_streamed(self, tmp_path):
        path = tmp_path / 'big.bin'
        path.write_bytes(b'x' * 64)
        ledger = CacheLedger(max_file_size=10)
        entry = make_entry(path, ledger)

        _, cached = await entry.reload()

        assert not cached
        assert ledger.count() == 0
        assert await entry.read() == b'x' * 64

    @pytest.mark.asyncio
    async def test_allow_cache_false(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'abc')
        ledger = CacheLedger()
        entry = make_entry(path, ledger)

        _, cached = await entry.reload(allow_cache=False)

        assert not cached
        assert '/a.txt' not in ledger

    @pytest.mark.asyncio
    async def test_growth_between_stat_and_read(self, tmp_path):
        """Stats claiming a small size must not cache a file that grew."""
        path = tmp_path / 'growing.log'
        path.write_bytes(b'0123456789')
        ledger = CacheLedger(max_file_size=5)
        entry = make_entry(path, ledger)

        _, cached = await entry.reload(FileStats(size=3, mtime_ns=1, ctime_ns=1))

        assert not cached
        assert '/growing.log' not in ledger
        assert entry.stats.size == 10

    @pytest.mark.asyncio
    async def test_reload_keeps_identity(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'v1')
        entry = make_entry(path)
        await entry.reload()
        first = entry.snapshot

        path.write_bytes(b'version 2')
        await entry.reload()

        assert entry.snapshot is not first
        assert entry.content() == b'version 2'
        assert entry.relative_path == '/a.txt'
        # The old snapshot is unchanged
        assert first.content == b'v1'

    @pytest.mark.asyncio
    async def test_touch_changes_strong_etag(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'x' * 50)
        entry = make_entry(path)
        etag, cached = await entry.reload()
        assert cached is True

        stat = os.stat(path)
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
        new_etag, cached = await entry.reload()

        assert cached is True
        assert new_etag != etag
        assert not new_etag.startswith('W/')

    @pytest.mark.asyncio
    async def test_unchanged_file_keeps_strong_etag(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'same')
        entry = make_entry(path)
        etag, _ = await entry.reload()

        new_etag, _ = await entry.reload()

        assert new_etag == etag

    @pytest.mark.asyncio
    async def test_touch_changes_weak_etag(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'same')
        entry = make_entry(path, CacheLedger(max_file_count=0))
        etag, _ = await entry.reload()

        os.utime(path, ns=(1_000_000_000, 1_000_000_000))
        new_etag, _ = await entry.reload()

        assert new_etag != etag

    @pytest.mark.asyncio
    async def test_cached_file_outgrowing_limit(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'small')
        ledger = CacheLedger(max_file_size=10)
        entry = make_entry(path, ledger)
        await entry.reload()
        assert entry.cached

        path.write_bytes(b'now far too large')
        _, cached = await entry.reload()

        assert not cached
        assert '/a.txt' not in ledger


class TestReloadErrors:
    """Test failures during reload."""

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        ledger = CacheLedger()
        entry = FileEntry('/gone.txt', str(tmp_path / 'gone.txt'), ledger)

        with pytest.raises(PathNotFoundError):
            await entry.reload()
        assert entry.snapshot is None
        assert ledger.count() == 0

    @pytest.mark.asyncio
    async def test_vanished_before_read_releases_slot(self, tmp_path):
        ledger = CacheLedger()
        entry = FileEntry('/gone.txt', str(tmp_path / 'gone.txt'), ledger)

        with pytest.raises(PathNotFoundError):
            await entry.reload(FileStats(size=4, mtime_ns=1, ctime_ns=1))
        assert '/gone.txt' not in ledger

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_last_snapshot(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'good')
        ledger = CacheLedger()
        entry = make_entry(path, ledger)
        await entry.reload()
        good = entry.snapshot

        path.unlink()
        with pytest.raises(PathNotFoundError):
            await entry.reload(FileStats(size=4, mtime_ns=2, ctime_ns=2))

        assert entry.snapshot is good
        assert '/a.txt' in ledger

    @pytest.mark.asyncio
    async def test_directory_is_rejected(self, tmp_path):
        entry = FileEntry('/', str(tmp_path), CacheLedger())
        with pytest.raises(PathIOError):
            await entry.reload()

    @pytest.mark.asyncio
    async def test_detached_entry_refuses_reload(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'x')
        entry = make_entry(path)
        await entry.reload()

        entry.detach()

        assert not entry.alive
        with pytest.raises(PathNotFoundError):
            await entry.reload()
        # The last snapshot stays readable
        assert entry.content() == b'x'

    def test_content_of_missing_uncached_file(self, tmp_path):
        entry = FileEntry('/gone', str(tmp_path / 'gone'), CacheLedger())
        with pytest.raises(PathNotFoundError):
            entry.content()

    @pytest.mark.asyncio
    async def test_io_error_is_wrapped(self, tmp_path):
        entry = make_entry(tmp_path / 'a.txt')
        entry._run = AsyncMock(side_effect=PermissionError(13, 'denied'))

        with pytest.raises(PathIOError) as info:
            await entry.reload()
        assert isinstance(info.value.cause, PermissionError)
        assert info.value.operation == 'stat'


class TestRetryOnEmptyRead:
    """Test the opt-in retry for reads racing a writer."""

    @pytest.mark.asyncio
    async def test_empty_read_is_retried(self, tmp_path):
        stats = FileStats(size=4, mtime_ns=1, ctime_ns=1)
        entry = make_entry(tmp_path / 'a.txt', retry=RetryConfig(max_attempts=2, delay=0))
        entry._read = AsyncMock(side_effect=[(stats, b''), (stats, b'data')])

        _, cached = await entry.reload(stats)

        assert cached
        assert entry.content() == b'data'
        assert entry._read.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_gives_up(self, tmp_path):
        stats = FileStats(size=4, mtime_ns=1, ctime_ns=1)
        entry = make_entry(tmp_path / 'a.txt', retry=RetryConfig(max_attempts=2, delay=0))
        entry._read = AsyncMock(return_value=(stats, b''))

        await entry.reload(stats)

        assert entry._read.await_count == 3
        assert entry.content() == b''

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, tmp_path):
        stats = FileStats(size=4, mtime_ns=1, ctime_ns=1)
        entry = make_entry(tmp_path / 'a.txt')
        entry._read = AsyncMock(return_value=(stats, b''))

        await entry.reload(stats)

        assert entry._read.await_count == 1


class TestListenersAndAccessors:
    """Test reload listeners and naming helpers."""

    @pytest.mark.asyncio
    async def test_listener_called_with_snapshot(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'x')
        entry = make_entry(path)
        listener = Mock()
        entry.on_reload(listener)

        await entry.reload()

        listener.assert_called_once_with(entry, entry.snapshot)

    @pytest.mark.asyncio
    async def test_remove_listener(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'x')
        entry = make_entry(path)
        listener = Mock()
        remove = entry.on_reload(listener)
        remove()

        await entry.reload()

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_reload(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'x')
        entry = make_entry(path)
        entry.on_reload(Mock(side_effect=RuntimeError('boom')))
        after = Mock()
        entry.on_reload(after)

        etag, _ = await entry.reload()

        assert etag == strong_etag(b'x', entry.stats)
        after.assert_called_once()

    def test_name_and_extension(self):
        entry = FileEntry('/css/site.min.css', '/srv/css/site.min.css', CacheLedger())
        assert entry.name == 'site.min.css'
        assert entry.extension == 'css'

    def test_unloaded_entry(self):
        entry = FileEntry('/a', '/srv/a', CacheLedger())
        assert not entry.loaded
        assert entry.etag is None
        assert entry.stats is None
        assert not entry.cached
        assert 'FileEntry' in repr(entry)

    @pytest.mark.asyncio
    async def test_read_uncached(self, tmp_path):
        path = tmp_path / 'a.txt'
        path.write_bytes(b'streamed')
        entry = make_entry(path, CacheLedger(max_file_count=0))
        await entry.reload()

        assert await entry.read() == b'streamed'
        handle = entry.content()
        try:
            assert not isinstance(handle, bytes)
        finally:
            handle.close()
