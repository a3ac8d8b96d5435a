"""Unit tests for bookscraper.main module."""

import logging
import os
import unittest
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from bookscraper.config import ConfigError
from bookscraper.exporter import ExportError
from bookscraper.isbn import parse_isbn
from bookscraper.main import (
    EXIT_INTERRUPTED, build_config, build_parser, main, print_summary,
)
from bookscraper.models import Author, Book, Site, Title
from bookscraper.runner import RunResult
from bookscraper.scheduler import BatchResult


def _sample_result(cancelled=False) -> RunResult:
    book = Book(
        site=Site.LABIRINT,
        source="https://www.labirint.ru/books/801841/",
        isbn=parse_isbn("978-5-17-090000-8"),
        title=Title("Война и мир"),
        authors=(Author("Лев Толстой"),),
    )
    labirint = BatchResult(Site.LABIRINT, succeeded=1, failed=2, skipped_no_isbn=1, books=[book])
    igraslov = BatchResult(Site.IGRA_SLOV, failed=1, exhausted=True)
    return RunResult(batches=[labirint, igraslov], cancelled=cancelled)


class TestBuildParser(unittest.TestCase):

    def test_defaults(self):
        args = build_parser().parse_args([])
        self.assertIsNone(args.stores)
        self.assertIsNone(args.concurrent_tasks)
        self.assertIsNone(args.books_per_store)
        self.assertIsNone(args.strict_isbn)
        self.assertEqual(args.format, "csv")
        self.assertEqual(args.output_dir, "output")

    def test_all_flags(self):
        args = build_parser().parse_args([
            "--stores", "labirint", "igra_slov",
            "--concurrent-tasks", "5",
            "--books-per-store", "100",
            "--max-attempts", "4",
            "--strict-isbn",
            "--format", "json",
            "--output-dir", "results",
        ])
        self.assertEqual(args.stores, ["labirint", "igra_slov"])
        self.assertEqual(args.concurrent_tasks, 5)
        self.assertEqual(args.books_per_store, 100)
        self.assertEqual(args.max_attempts, 4)
        self.assertTrue(args.strict_isbn)
        self.assertEqual(args.format, "json")
        self.assertEqual(args.output_dir, "results")

    def test_invalid_format_rejected(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--format", "xml"])

    def test_concurrent_tasks_requires_int(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--concurrent-tasks", "abc"])


@patch.dict(os.environ, {}, clear=True)
class TestBuildConfig(unittest.TestCase):

    def test_flags_override_environment(self):
        os.environ["BOOKSCRAPER_CONCURRENT_TASKS"] = "8"
        os.environ["BOOKSCRAPER_BOOKS_PER_STORE"] = "30"
        args = build_parser().parse_args(["--concurrent-tasks", "2", "--stores", "igra-slov"])
        config = build_config(args)
        self.assertEqual(config.concurrent_tasks, 2)
        self.assertEqual(config.books_per_store, 30)
        self.assertEqual(config.sites, (Site.IGRA_SLOV,))

    def test_invalid_values(self):
        for argv in (["--concurrent-tasks", "0"], ["--books-per-store", "-5"],
                     ["--stores", "ozon"]):
            with self.subTest(argv=argv):
                with self.assertRaises(ConfigError):
                    build_config(build_parser().parse_args(argv))


class TestPrintSummary(unittest.TestCase):

    @patch("sys.stdout", new_callable=StringIO)
    def test_summary_content(self, mock_stdout):
        print_summary(_sample_result())
        output = mock_stdout.getvalue()
        self.assertIn("labirint: 1 books, 2 failed, 1 without ISBN", output)
        self.assertIn("igra_slov: 0 books, 1 failed, 0 without ISBN (candidates exhausted)", output)
        self.assertIn("Total: 1 books, 3 failed, 1 without ISBN", output)
        self.assertNotIn("interrupted", output)

    @patch("sys.stdout", new_callable=StringIO)
    def test_summary_cancelled(self, mock_stdout):
        print_summary(_sample_result(cancelled=True))
        self.assertIn("interrupted", mock_stdout.getvalue())

    @patch("sys.stdout", new_callable=StringIO)
    def test_summary_empty(self, mock_stdout):
        print_summary(RunResult())
        self.assertIn("Total: 0 books, 0 failed, 0 without ISBN", mock_stdout.getvalue())


@patch.dict(os.environ, {}, clear=True)
@patch("bookscraper.main._install_signal_handlers")
@patch("bookscraper.main.setup_logging")
class TestMain(unittest.TestCase):

    def setUp(self):
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    @patch("bookscraper.main.print_summary")
    @patch("bookscraper.main.export_csv")
    @patch("bookscraper.main.run")
    def test_runs_and_exports_csv(self, mock_run, mock_export, mock_summary, *_):
        result = _sample_result()
        mock_run.return_value = result
        mock_export.return_value = Path("output/books.csv")

        main(["--stores", "labirint", "--books-per-store", "10"])

        config = mock_run.call_args.args[0]
        self.assertEqual(config.sites, (Site.LABIRINT,))
        self.assertEqual(config.books_per_store, 10)
        mock_export.assert_called_once_with(result.books, "output")
        mock_summary.assert_called_once_with(result)

    @patch("bookscraper.main.print_summary")
    @patch("bookscraper.main.export_json")
    @patch("bookscraper.main.run")
    def test_json_format(self, mock_run, mock_export, *_):
        mock_run.return_value = _sample_result()
        mock_export.return_value = Path("custom_dir/books.json")

        main(["--format", "json", "--output-dir", "custom_dir"])

        args, _kwargs = mock_export.call_args
        self.assertEqual(args[1], "custom_dir")

    @patch("bookscraper.main.run")
    def test_config_error_exits_1_before_run(self, mock_run, *_):
        with self.assertRaises(SystemExit) as ctx:
            main(["--concurrent-tasks", "0"])
        self.assertEqual(ctx.exception.code, 1)
        mock_run.assert_not_called()

    @patch("bookscraper.main.run")
    def test_unknown_store_exits_1(self, mock_run, *_):
        with self.assertRaises(SystemExit) as ctx:
            main(["--stores", "ozon"])
        self.assertEqual(ctx.exception.code, 1)
        mock_run.assert_not_called()

    @patch("bookscraper.main.run")
    def test_runner_config_error_exits_1(self, mock_run, *_):
        mock_run.side_effect = ConfigError("no parser for store")
        with self.assertRaises(SystemExit) as ctx:
            main([])
        self.assertEqual(ctx.exception.code, 1)

    @patch("bookscraper.main.print_summary")
    @patch("bookscraper.main.export_csv")
    @patch("bookscraper.main.run")
    def test_export_error_exits_1(self, mock_run, mock_export, mock_summary, *_):
        mock_run.return_value = _sample_result()
        mock_export.side_effect = ExportError(Path("x.csv"), "Permission denied")

        with self.assertRaises(SystemExit) as ctx:
            main([])
        self.assertEqual(ctx.exception.code, 1)
        mock_summary.assert_not_called()

    @patch("bookscraper.main.print_summary")
    @patch("bookscraper.main.export_csv")
    @patch("bookscraper.main.run")
    def test_empty_result_still_exported(self, mock_run, mock_export, mock_summary, *_):
        mock_run.return_value = RunResult()
        mock_export.return_value = Path("output/books.csv")

        main([])
        mock_export.assert_called_once_with([], "output")
        mock_summary.assert_called_once()

    @patch("bookscraper.main.print_summary")
    @patch("bookscraper.main.export_csv")
    @patch("bookscraper.main.run")
    def test_cancelled_run_exports_and_exits_130(self, mock_run, mock_export, *_):
        mock_run.return_value = _sample_result(cancelled=True)
        mock_export.return_value = Path("output/books.csv")

        with self.assertRaises(SystemExit) as ctx:
            main([])
        self.assertEqual(ctx.exception.code, EXIT_INTERRUPTED)
        mock_export.assert_called_once()

    @patch("bookscraper.main.print_summary")
    @patch("bookscraper.main.export_csv")
    @patch("bookscraper.main.run")
    def test_cancel_event_shared_with_signal_handlers(
        self, mock_run, mock_export, mock_summary, mock_setup_logging, mock_signals,
    ):
        mock_run.return_value = RunResult()
        mock_export.return_value = Path("output/books.csv")

        main(["--log-level", "debug"])

        event = mock_signals.call_args.args[0]
        self.assertIs(mock_run.call_args.kwargs["cancel_event"], event)
        self.assertEqual(mock_setup_logging.call_args.args[0], logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
