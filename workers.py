"""
AppStore Workers
QThread workers that run catalog refreshes, update checks and patch installs off the UI thread
"""

import logging

from PyQt6.QtCore import QThread, pyqtSignal

logger = logging.getLogger(__name__)


class RefreshWorker(QThread):
    """Thread worker for catalog cache refresh.

    Signals:
        finished(result) - Refresh result dict from AppStore.refresh_cache
        progress(message) - Status update
    """
    finished = pyqtSignal(dict)
    progress = pyqtSignal(str)

    def __init__(self, appstore, kind=None):
        """Initialize refresh worker.

        Args:
            appstore: AppStore - Service instance
            kind: Optional str - 'plugin', 'patch' or 'all'
        """
        super().__init__()
        self.appstore = appstore
        self.kind = kind

    def run(self):
        try:
            self.progress.emit("Refreshing AppStore cache...")
            result = self.appstore.refresh_cache(self.kind)
        except Exception as e:
            logger.exception("Refresh worker crashed")
            result = {'success': False, 'error': str(e)}
        self.finished.emit(result)


class UpdateCheckWorker(QThread):
    """Worker thread for batch update checks"""
    finished = pyqtSignal(object)  # BatchResult
    failed = pyqtSignal(str)
    progress = pyqtSignal(str, int, int)
    log = pyqtSignal(str)

    def __init__(self, appstore, kind):
        """Initialize update check worker.

        Args:
            appstore: AppStore - Service instance
            kind: str - 'plugin' or 'patch'
        """
        super().__init__()
        self.appstore = appstore
        self.kind = kind
        self._is_cancelled = False

    def cancel(self):
        """Request cancellation; the check in flight completes first."""
        self._is_cancelled = True

    def is_cancelled(self):
        return self._is_cancelled

    def _on_progress(self, key, idx, total):
        self.progress.emit(f"Checking {key}...", idx, total)
        self.log.emit(f"[{idx + 1}/{total}] Checking {key}...")

    def run(self):
        """Execute the batch check.

        Emits: progress(message, index, total), log(message), finished(result) or failed(error)
        """
        try:
            result = self.appstore.check_updates(self.kind, should_cancel=self.is_cancelled,
                                                 progress=self._on_progress)
        except Exception as e:
            logger.exception("Update check worker crashed")
            self.failed.emit(str(e))
            return

        if result.cancelled:
            self.log.emit("Update check cancelled by user")
        summary = result.summary
        self.log.emit(
            f"{summary['updates']} update(s) available, {summary['failed']} failed, "
            f"{summary['unmatched']} unmatched"
        )
        self.finished.emit(result)


class PatchInstallWorker(QThread):
    finished = pyqtSignal(bool, str)
    progress = pyqtSignal(str)

    def __init__(self, appstore, repo, patch):
        """Initialize patch install worker.

        Args:
            appstore: AppStore - Service instance
            repo: CatalogEntry - Patch repository
            patch: PatchFileEntry - Patch file to install
        """
        super().__init__()
        self.appstore = appstore
        self.repo = repo
        self.patch = patch

    def run(self):
        try:
            self.progress.emit(f"Downloading patch {self.patch.filename}...")
            result = self.appstore.install_patch_from_repo(self.repo, self.patch)
            if result['success']:
                self.finished.emit(True, result['message'])
            else:
                self.finished.emit(False, result['error'])
        except Exception as e:
            logger.exception("Patch install worker crashed")
            self.finished.emit(False, str(e))
