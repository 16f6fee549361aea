"""Shared pytest configuration for LiveDirectory tests."""

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: drives a real filesystem watcher")


@pytest.fixture
def tree(tmp_path):
    """Small directory tree used across tests.

    Layout:
        a.js          (12 bytes)
        b.html        (15 bytes)
        sub/c.css     (10 bytes)
        sub/deep/d.txt
        .git/config
    """
    (tmp_path / 'a.js').write_bytes(b'console.log1')
    (tmp_path / 'b.html').write_bytes(b'<html></html>\n\n')
    (tmp_path / 'sub').mkdir()
    (tmp_path / 'sub' / 'c.css').write_bytes(b'body{x:1}\n')
    (tmp_path / 'sub' / 'deep').mkdir()
    (tmp_path / 'sub' / 'deep' / 'd.txt').write_bytes(b'deep')
    (tmp_path / '.git').mkdir()
    (tmp_path / '.git' / 'config').write_bytes(b'[core]')
    return tmp_path
