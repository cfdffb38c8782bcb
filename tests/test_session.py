"""
Test module for download sessions and outcomes.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from stm32isp.exceptions import DownloadCancelledException, HandshakeFailedException
from stm32isp.session import DownloadOutcome, DownloadSession, close_quietly, run_download


class TestDownloadSession(unittest.TestCase):

    def test_progress(self):
        progress = []
        session = DownloadSession(on_progress=lambda written, total: progress.append((written, total)))
        session.start(300)
        session.advance(256)
        session.advance(44)
        self.assertEqual(progress, [(256, 300), (300, 300)])
        self.assertEqual(session.bytes_written, 300)

    def test_checkpoint(self):
        session = DownloadSession()
        session.checkpoint()
        self.assertFalse(session.cancel_requested)
        session.cancel()
        self.assertTrue(session.cancel_requested)
        with self.assertRaises(DownloadCancelledException):
            session.checkpoint()


class TestRunDownload(unittest.TestCase):

    def test_completed_closes_link(self):
        link = MagicMock()
        operation = MagicMock()
        session = DownloadSession()
        self.assertEqual(run_download(operation, session, link), DownloadOutcome.COMPLETED)
        operation.assert_called_once_with(session)
        link.close.assert_called_once_with()

    def test_failed_keeps_error(self):
        link = MagicMock()
        error = HandshakeFailedException(10)
        session = DownloadSession()
        outcome = run_download(MagicMock(side_effect=error), session, link)
        self.assertEqual(outcome, DownloadOutcome.FAILED)
        self.assertIs(session.error, error)
        link.close.assert_called_once_with()

    def test_cancelled(self):
        link = MagicMock()
        session = DownloadSession()
        outcome = run_download(MagicMock(side_effect=DownloadCancelledException(256, 1000)), session, link)
        self.assertEqual(outcome, DownloadOutcome.CANCELLED)
        self.assertIsNone(session.error)
        link.close.assert_called_once_with()

    def test_close_error_swallowed(self):
        link = MagicMock()
        link.close.side_effect = OSError('already closed')
        session = DownloadSession()
        outcome = run_download(MagicMock(side_effect=HandshakeFailedException()), session, link)
        self.assertEqual(outcome, DownloadOutcome.FAILED)

    def test_unrelated_errors_propagate_after_close(self):
        link = MagicMock()
        with self.assertRaises(KeyError):
            run_download(MagicMock(side_effect=KeyError('bug')), DownloadSession(), link)
        link.close.assert_called_once_with()

    def test_close_quietly_none(self):
        close_quietly(None)


if __name__ == '__main__':
    unittest.main()
