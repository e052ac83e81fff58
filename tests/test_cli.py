"""Tests for the command-line interface."""

import json

import pytest
from caretrack.cli import cli
from caretrack.models import BillingConfig, RateSchedule
from caretrack.rates import load_billing_config, save_beneficiaries_to_db
from click.testing import CliRunner

CONFIG_YAML = """
beneficiaries:
  - id: marie
    name: Marie Dupont
    copay_percentage: 20
    regular_rate: 15.0
    conventioned_rate: 12.0
"""

CSV_DATA = """id,beneficiary_id,caregiver_name,action,timestamp,is_training
e1,marie,Alice,check-in,2024-05-01T07:00:00Z,false
e2,marie,Alice,check-out,2024-05-01T15:00:00Z,false
e3,marie,Bob,check-out,2024-05-20T07:00:00Z,false
e4,marie,Alice,check-in,2024-04-30T20:00:00Z,false
e5,marie,Alice,check-out,2024-04-30T21:00:00Z,false
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path, runner):
    """A database loaded with one beneficiary and a few check-ins."""
    path = tmp_path / "test.db"
    config_file = tmp_path / "beneficiaries.yaml"
    config_file.write_text(CONFIG_YAML)
    csv_file = tmp_path / "check_ins.csv"
    csv_file.write_text(CSV_DATA)

    for args in (
        ["database", "init"],
        ["rates", "load", "--config", str(config_file)],
        ["import", "csv", "--file", str(csv_file)],
    ):
        result = runner.invoke(cli, ["--db-path", str(path)] + args)
        assert result.exit_code == 0, result.output
    return path


def test_database_init(tmp_path, runner):
    result = runner.invoke(cli, ["--db-path", str(tmp_path / "new.db"), "database", "init"])
    assert result.exit_code == 0
    assert "initialized" in result.output


def test_database_stats(db_path, runner):
    result = runner.invoke(cli, ["--db-path", str(db_path), "database", "stats"])
    assert result.exit_code == 0
    assert "marie" in result.output


def test_report_json(db_path, runner):
    """May 1st in Paris: 8 hours at double rate, April's session left out."""
    result = runner.invoke(
        cli, ["--db-path", str(db_path), "report", "--beneficiary", "marie", "--month", "2024-05", "--json"]
    )
    assert result.exit_code == 0, result.output

    report = json.loads(result.output)
    assert report["totals"]["pre_vat"] == 240.0
    assert report["totals"]["payer"]["pre_vat"] == 76.8
    assert report["totals"]["beneficiary"]["pre_vat"] == 163.2
    assert report["totals"]["vat"] == 13.2
    assert [d["kind"] for d in report["discrepancies"]] == ["orphan_checkout"]


def test_report_text(db_path, runner):
    result = runner.invoke(
        cli, ["--db-path", str(db_path), "report", "--beneficiary", "marie", "--month", "2024-05", "--text"]
    )
    assert result.exit_code == 0, result.output
    assert "Total excl. VAT: 240.00 EUR" in result.output


def test_report_csv_exports(db_path, runner, tmp_path):
    summary_csv = tmp_path / "summary.csv"
    detail_csv = tmp_path / "detail.csv"
    result = runner.invoke(
        cli,
        [
            "--db-path", str(db_path),
            "report", "--beneficiary", "marie", "--month", "2024-05",
            "--csv", str(summary_csv),
            "--detail-csv", str(detail_csv),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "240.00" in summary_csv.read_text()

    detail_lines = detail_csv.read_text().splitlines()
    # Header plus the three May events; April's visit is left out
    assert len(detail_lines) == 4
    assert detail_lines[1].startswith("2024-05-01,09:00:00,Alice,check-in")


def test_discrepancies(db_path, runner):
    result = runner.invoke(
        cli, ["--db-path", str(db_path), "discrepancies", "--beneficiary", "marie", "--month", "2024-05"]
    )
    assert result.exit_code == 0
    assert "orphan_checkout" in result.output
    assert "Bob" in result.output


def test_no_discrepancies(db_path, runner):
    result = runner.invoke(
        cli, ["--db-path", str(db_path), "discrepancies", "--beneficiary", "marie", "--month", "2024-04"]
    )
    assert result.exit_code == 0
    assert "No discrepancies" in result.output


def test_daily(db_path, runner):
    result = runner.invoke(cli, ["--db-path", str(db_path), "daily", "--beneficiary", "marie", "--month", "2024-05"])
    assert result.exit_code == 0
    assert "2024-05-01" in result.output
    assert "Fête du Travail" in result.output


def test_unknown_beneficiary(db_path, runner):
    result = runner.invoke(
        cli, ["--db-path", str(db_path), "report", "--beneficiary", "nobody", "--month", "2024-05"]
    )
    assert result.exit_code == 1
    assert "Unknown beneficiary" in result.output


def test_invalid_month(db_path, runner):
    result = runner.invoke(
        cli, ["--db-path", str(db_path), "report", "--beneficiary", "marie", "--month", "May"]
    )
    assert result.exit_code == 1
    assert "YYYY-MM" in result.output


def test_calendar(runner):
    result = runner.invoke(cli, ["calendar", "--month", "2024-05"])
    assert result.exit_code == 0
    assert "Fête du Travail" in result.output
    assert "+100%" in result.output


def test_calendar_unknown_country(runner):
    result = runner.invoke(cli, ["calendar", "--month", "2024-05", "--country", "XX"])
    assert result.exit_code == 1
    assert "XX" in result.output


def test_report_unknown_timezone(db_path, runner):
    """A stored beneficiary with a bad timezone is reported, not raised."""
    bad = BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), timezone="Mars/Olympus")
    save_beneficiaries_to_db([bad], db_path)

    for command in ("report", "discrepancies", "daily"):
        result = runner.invoke(
            cli, ["--db-path", str(db_path), command, "--beneficiary", "b1", "--month", "2024-05"]
        )
        assert result.exit_code == 1, command
        assert "Unknown timezone 'Mars/Olympus'" in result.output
        assert not isinstance(result.exception, KeyError)


def test_rates_load_malformed_yaml(db_path, runner, tmp_path):
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("beneficiaries: [ {id: b1\n")

    result = runner.invoke(cli, ["--db-path", str(db_path), "rates", "load", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "Invalid beneficiary config" in result.output


@pytest.mark.parametrize(
    "entry",
    [
        "timezone: Mars/Olympus",
        "country: XX",
        "copay_percentage: 150",
    ],
)
def test_rates_load_rejects_bad_config(db_path, runner, tmp_path, entry):
    """Nothing is stored when a beneficiary fails validation."""
    config_file = tmp_path / "bad.yaml"
    config_file.write_text(f"beneficiaries:\n  - id: b1\n    regular_rate: 10.0\n    {entry}\n")

    result = runner.invoke(cli, ["--db-path", str(db_path), "rates", "load", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "Invalid beneficiary config" in result.output
    with pytest.raises(ValueError, match="Unknown beneficiary"):
        load_billing_config("b1", db_path)
