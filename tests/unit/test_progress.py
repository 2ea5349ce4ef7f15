from __future__ import annotations

from unittest.mock import Mock, patch

from otm_importer.services.progress import ProgressTracker, is_tty_enabled


def test_is_tty_enabled_returns_stdout_isatty():
    with patch("sys.stdout.isatty", return_value=True):
        assert is_tty_enabled() is True
    with patch("sys.stdout.isatty", return_value=False):
        assert is_tty_enabled() is False


class TestProgressTracker:
    def test_init_with_tty_enabled(self):
        with patch("otm_importer.services.progress.is_tty_enabled", return_value=True), \
             patch("otm_importer.services.progress.tqdm") as mock_tqdm:
            tracker = ProgressTracker(120)
            assert tracker.enabled is True
            mock_tqdm.assert_called_once_with(
                total=120,
                desc="Writing results",
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )

    def test_disabled_without_tty(self):
        with patch("otm_importer.services.progress.is_tty_enabled", return_value=False):
            tracker = ProgressTracker(5)
            assert tracker.enabled is False
            assert tracker.pbar is None
            tracker.advance(5)
            tracker.set_postfix(chunk=1)
            tracker.close()
            assert tracker.written == 5

    def test_disabled_for_zero_rows(self):
        with patch("otm_importer.services.progress.is_tty_enabled", return_value=True), \
             patch("otm_importer.services.progress.tqdm") as mock_tqdm:
            tracker = ProgressTracker(0)
            assert tracker.enabled is False
            mock_tqdm.assert_not_called()

    def test_advance_and_close_drive_the_bar(self):
        mock_pbar = Mock()
        with patch("otm_importer.services.progress.is_tty_enabled", return_value=True), \
             patch("otm_importer.services.progress.tqdm", return_value=mock_pbar):
            with ProgressTracker(10, description="Saving") as tracker:
                tracker.advance(4)
                tracker.advance(6)
                tracker.set_postfix(chunk=2)
            mock_pbar.update.assert_any_call(4)
            mock_pbar.update.assert_any_call(6)
            mock_pbar.set_postfix.assert_called_once_with(chunk=2)
            mock_pbar.close.assert_called_once()
            assert tracker.pbar is None
            assert tracker.written == 10
