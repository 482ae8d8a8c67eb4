"""Tests for the command line entry point and service wiring."""

import asyncio
import csv
import os
import signal
from datetime import datetime

import pytest

from income_export.clients.binance_income import PageResult
from income_export.config.settings import ExportSettings
from income_export.errors import UsageError
from income_export.main import (
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE,
    IncomeExportService,
    main,
    parse_args,
    parse_date,
    run_export,
)

from conftest import T0, T1, make_page, make_record


def stub_client_factory(feeds):
    """Client factory serving one terminal page per account."""

    class StubClient:
        def __init__(self, config, page_limit=1000):
            self.config = config
            self.page_limit = page_limit
            self.calls = []

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            return None

        async def fetch_page(self, account, start_time, end_time, page_number=0):
            self.calls.append((account.name, start_time, end_time))
            return PageResult(records=feeds[account.name])

    return StubClient


@pytest.mark.unit
class TestArguments:
    """Test command line parsing."""

    def test_parse_args(self):
        assert parse_args(['--from', '2024-01-01', '--to', '2024-01-02']) == (T0, T1)

    def test_equals_form(self):
        assert parse_args(['--from=2024-01-01', '--to=2024-01-02']) == (T0, T1)

    @pytest.mark.parametrize("argv", [
        [],
        ['--from', '2024-01-01'],
        ['--from', '2024-01-01', '--to', '2024-01-02', 'extra'],
        ['--from', '2024-01-01', '--to', '2024-01-02', '--o', 'out'],
        ['--from', '2024-01-01', '--from', '2023-01-01', '--to', '2024-01-02'],
        ['--from', 'yesterday', '--to', '2024-01-02'],
        ['--from', '2024-01-02', '--to', '2024-01-01'],
        ['--help'],
    ])
    def test_usage_errors(self, argv):
        with pytest.raises(UsageError):
            parse_args(argv)

    def test_parse_date_variants(self):
        assert parse_date('2024-01-01') == T0
        assert parse_date('2024-01-01T00:00:00Z') == T0
        assert parse_date('2024-01-01T02:00:00+02:00') == T0
        assert parse_date('20240101') == T0

    def test_parse_date_slash_forms(self):
        assert parse_date('2024/01/01') == T0
        assert parse_date('2024/01/02') == T1

        local_morning = datetime(2024, 1, 1, 8, 30).astimezone()
        assert parse_date('2024/01/01 08:30') == int(local_morning.timestamp() * 1000)

    def test_naive_datetime_is_local_time(self):
        local_midnight = datetime(2024, 1, 1).astimezone()
        assert parse_date('2024-01-01T00:00:00') == int(local_midnight.timestamp() * 1000)

    @pytest.mark.parametrize("value", ['yesterday', '2024/13/01', '01/02/2024', ''])
    def test_parse_date_rejects(self, value):
        with pytest.raises(UsageError):
            parse_date(value)

    def test_main_usage_error_exits_before_configuration(self, capsys, monkeypatch):
        monkeypatch.setenv("CONFIG_FILE", "does-not-exist.yaml")

        assert main(['--from', '2024-01-01']) == EXIT_USAGE
        assert "use: --from <date from> --to <date to>" in capsys.readouterr().err

    def test_main_configuration_error(self, capsys, monkeypatch):
        monkeypatch.setenv("CONFIG_FILE", "does-not-exist.yaml")

        assert main(['--from', '2024-01-01', '--to', '2024-01-02']) == EXIT_ERROR
        assert "configuration error" in capsys.readouterr().err

    def test_main_without_accounts(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("accounts: []\n")
        monkeypatch.setenv("CONFIG_FILE", str(config_file))
        monkeypatch.setattr("income_export.main.setup_logging", lambda *args, **kwargs: None)

        assert main(['--from', '2024-01-01', '--to', '2024-01-02']) == EXIT_ERROR


@pytest.mark.integration
class TestIncomeExportService:
    """Test the full fetch, aggregate and write flow with a stub client."""

    async def test_two_accounts_produce_two_report_triples(self, tmp_path, account, second_account):
        feeds = {
            "main": [make_record(T0 + 1000, income="1"), make_record(T0 + 2000, income="2")],
            "sub": [make_record(T0 + 3000, income="3", income_type="COMMISSION"),
                    make_record(T0 + 4000, income="4", income_type="TRANSFER")],
        }
        settings = ExportSettings(
            accounts=[account, second_account],
            report={'output_dir': str(tmp_path), 'timezone': 'UTC'},
        )
        service = IncomeExportService(settings, client_factory=stub_client_factory(feeds))

        result = await service.run(T0, T1)

        assert result == feeds
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "main_20240101_20240102_cons.csv",
            "main_20240101_20240102_excel.csv",
            "main_20240101_20240102_raw.csv",
            "sub_20240101_20240102_cons.csv",
            "sub_20240101_20240102_excel.csv",
            "sub_20240101_20240102_raw.csv",
        ]

        with open(tmp_path / "main_20240101_20240102_cons.csv", newline='') as f:
            cons = list(csv.DictReader(f))
        assert [(r['incomeType'], r['income']) for r in cons] == [("FUNDING_FEE", "3")]

        with open(tmp_path / "sub_20240101_20240102_excel.csv", newline='') as f:
            excel = list(csv.DictReader(f))
        assert len(excel) == 1
        assert excel[0]['commission'] == "3"
        assert excel[0]['transfer'] == "4"
        assert excel[0]['total'] == "7"

    async def test_page_limit_reaches_client(self, tmp_path, account):
        settings = ExportSettings(
            accounts=[account],
            pagination={'page_limit': 500},
            report={'output_dir': str(tmp_path)},
        )
        factory = stub_client_factory({"main": make_page(T0, 1)})
        captured = []

        def recording_factory(config, page_limit=1000):
            client = factory(config, page_limit=page_limit)
            captured.append(client)
            return client

        await IncomeExportService(settings, client_factory=recording_factory).run(T0, T1)

        assert captured[0].page_limit == 500
        assert captured[0].calls == [("main", T0, T1)]

    async def test_run_export_success(self, export_settings):
        service = IncomeExportService(
            export_settings, client_factory=stub_client_factory({"main": make_page(T0, 2)})
        )

        assert await run_export(service, T0, T1) == EXIT_OK

    async def test_run_export_is_cancelled_by_signal(self, export_settings):
        class HangingService:
            async def run(self, start_time, end_time):
                asyncio.get_running_loop().call_soon(os.kill, os.getpid(), signal.SIGTERM)
                await asyncio.Event().wait()

        previous = signal.getsignal(signal.SIGTERM)

        assert await run_export(HangingService(), T0, T1) == EXIT_INTERRUPTED
        assert signal.getsignal(signal.SIGTERM) == previous
