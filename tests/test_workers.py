"""Test the QThread workers by running them synchronously."""

from unittest.mock import MagicMock

import pytest

pytest.importorskip("PyQt6.QtCore")

from appstore_models import BatchResult, UpdateVerdict, KIND_PLUGIN, STATE_NEEDS_UPDATE
from workers import RefreshWorker, UpdateCheckWorker, PatchInstallWorker


def collect(signal):
    received = []
    signal.connect(lambda *args: received.append(args))
    return received


def test_refresh_worker_emits_result():
    appstore = MagicMock()
    appstore.refresh_cache.return_value = {'success': True, 'message': 'Cached 2 plugins.'}
    worker = RefreshWorker(appstore, 'plugin')
    results = collect(worker.finished)
    messages = collect(worker.progress)

    worker.run()

    appstore.refresh_cache.assert_called_once_with('plugin')
    assert results == [({'success': True, 'message': 'Cached 2 plugins.'},)]
    assert messages == [("Refreshing AppStore cache...",)]


def test_refresh_worker_reports_crash():
    appstore = MagicMock()
    appstore.refresh_cache.side_effect = RuntimeError("disk gone")
    worker = RefreshWorker(appstore)
    results = collect(worker.finished)

    worker.run()

    assert results == [({'success': False, 'error': 'disk gone'},)]


def test_update_check_worker_relays_progress():
    result = BatchResult(kind=KIND_PLUGIN)
    result.verdicts['foo.koplugin'] = UpdateVerdict(key='foo.koplugin', kind=KIND_PLUGIN, state=STATE_NEEDS_UPDATE)

    def check_updates(kind, should_cancel=None, progress=None):
        assert not should_cancel()
        progress('foo.koplugin', 0, 1)
        return result

    appstore = MagicMock()
    appstore.check_updates.side_effect = check_updates
    worker = UpdateCheckWorker(appstore, KIND_PLUGIN)
    finished = collect(worker.finished)
    progress = collect(worker.progress)
    log = collect(worker.log)

    worker.run()

    assert finished == [(result,)]
    assert progress == [("Checking foo.koplugin...", 0, 1)]
    assert log == [("[1/1] Checking foo.koplugin...",),
                   ("1 update(s) available, 0 failed, 0 unmatched",)]


def test_update_check_worker_cancel():
    def check_updates(kind, should_cancel=None, progress=None):
        return BatchResult(kind=kind, cancelled=should_cancel())

    appstore = MagicMock()
    appstore.check_updates.side_effect = check_updates
    worker = UpdateCheckWorker(appstore, KIND_PLUGIN)
    log = collect(worker.log)

    worker.cancel()
    worker.run()

    assert worker.is_cancelled()
    assert log[0] == ("Update check cancelled by user",)


def test_update_check_worker_failure():
    appstore = MagicMock()
    appstore.check_updates.side_effect = RuntimeError("boom")
    worker = UpdateCheckWorker(appstore, KIND_PLUGIN)
    failed = collect(worker.failed)
    finished = collect(worker.finished)

    worker.run()

    assert failed == [("boom",)]
    assert finished == []


@pytest.mark.parametrize("outcome, expected", [
    ({'success': True, 'message': 'Installed patch "2-foo.lua".'}, (True, 'Installed patch "2-foo.lua".')),
    ({'success': False, 'error': 'Download failed: HTTP 404'}, (False, 'Download failed: HTTP 404')),
])
def test_patch_install_worker(outcome, expected):
    appstore = MagicMock()
    appstore.install_patch_from_repo.return_value = outcome
    patch = MagicMock()
    patch.filename = '2-foo.lua'
    worker = PatchInstallWorker(appstore, MagicMock(), patch)
    finished = collect(worker.finished)

    worker.run()

    assert finished == [expected]
