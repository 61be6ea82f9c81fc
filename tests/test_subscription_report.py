import json

import pytest
from openpyxl import load_workbook

import subscription_report
import vcu_connection

SIMPLE = {
    "id": "sub-1",
    "status": "ACTIVE",
    "offer_name": "VMware Cloud on AWS",
    "offer_type": "TERM",
    "quantity": 3,
    "units": "hosts",
    "is_flexible": False,
    "seller": "VMware",
    "billing_frequency": "Upfront",
    "commitment_term": 12,
    "commitment_term_uom": "MONTHS",
    "region": "us-west-2",
    "start_date": "2023-01-31T00:00:00Z",
    "end_date": "2024-01-31T00:00:00Z",
}

BUNDLED = {
    "id": "sub-2",
    "status": "ACTIVE",
    "offer_name": "VMware Cloud Universal",
    "offer_type": "COMMIT",
    "quantity": 1,
    "units": "bundle",
    "is_flexible": True,
    "seller": "Reseller Inc",
    "billing_frequency": "Monthly",
    "commitment_term": 36,
    "commitment_term_uom": "MONTHS",
    "region": "eu-central-1",
    "start_date": "2023-02-01T00:00:00Z",
    "end_date": "2026-02-01T00:00:00Z",
    "context": {
        "vSphere+": "128 cores",
        "vSAN+": "20 TiB",
        "Tanzu Standard": "1.5 credits per hour",
    },
}


def test_build_subscription_record_simple():
    record = subscription_report.build_subscription_record(SIMPLE)
    assert record == {
        "id": "sub-1",
        "status": "ACTIVE",
        "quantity": 3,
        "units": "hosts",
        "type": "TERM",
        "flexible": False,
        "seller": "VMware",
        "billing_option": "Upfront",
        "term": "12 MONTHS",
        "location": "us-west-2",
        "start_date": "2023-01-31 00:00:00",
        "end_date": "2024-01-31 00:00:00",
    }


def test_build_subscription_record_missing_fields():
    record = subscription_report.build_subscription_record({"id": "sub-9"})
    assert record["id"] == "sub-9"
    assert record["term"] == ""
    assert record["start_date"] == ""
    assert record["quantity"] == ""


@pytest.mark.parametrize("value, expected", [
    ("5 units", (5, "units")),
    ("20 TiB", (20, "TiB")),
    ("1.5 credits per hour", (1.5, "credits per hour")),
    ("  7   hosts ", (7, "hosts")),
    ("12", (12, "")),
    ("many hosts", ("many", "hosts")),
    ("", ("", "")),
    (None, ("", "")),
    (4, (4, "")),
    ("nan units", ("nan", "units")),
    ("inf hosts", ("inf", "hosts")),
    ("1_000 cores", ("1_000", "cores")),
    (".5 TiB", (0.5, "TiB")),
])
def test_split_amount(value, expected):
    assert subscription_report.split_amount(value) == expected


def test_flatten_simple_subscription_is_one_row():
    assert len(subscription_report.flatten_subscription(SIMPLE, expand=True)) == 1


def test_flatten_bundled_without_expand_is_one_row():
    rows = subscription_report.flatten_subscription(BUNDLED, expand=False)
    assert len(rows) == 1
    assert rows[0]["type"] == "COMMIT"
    assert rows[0]["units"] == "bundle"


def test_flatten_bundled_expands_per_product():
    rows = subscription_report.flatten_subscription(BUNDLED, expand=True)

    assert [r["type"] for r in rows] == ["vSphere+", "vSAN+", "Tanzu Standard"]
    assert [(r["quantity"], r["units"]) for r in rows] == [
        (128, "cores"), (20, "TiB"), (1.5, "credits per hour")
    ]
    for row in rows:
        assert row["id"] == "sub-2"
        assert row["seller"] == "Reseller Inc"
        assert row["term"] == "36 MONTHS"
        assert row["location"] == "eu-central-1"
        assert row["flexible"] is True


def test_flatten_empty_context_falls_back_to_simple_row():
    rows = subscription_report.flatten_subscription(dict(BUNDLED, context={}), expand=True)
    assert len(rows) == 1


def test_get_subscriptions_requires_connection():
    with pytest.raises(RuntimeError):
        subscription_report.get_subscriptions()


def test_get_subscriptions(connected, cloud, logger):
    cloud.subscriptions = [SIMPLE, BUNDLED]

    records = subscription_report.get_subscriptions(logger=logger)
    assert [r["id"] for r in records] == ["sub-1", "sub-2"]
    assert cloud.requests[-1].url.path == "/vmc/api/orgs/org-1/subscriptions"

    expanded = subscription_report.get_subscriptions(expand=True, logger=logger)
    assert [r["id"] for r in expanded] == ["sub-1", "sub-2", "sub-2", "sub-2"]


@pytest.mark.parametrize("kwargs, expected", [
    ({"id": "SUB-2"}, ["sub-2"]),
    ({"name": "VMware Cloud on AWS"}, ["sub-1"]),
    ({"name": "unknown"}, []),
])
def test_get_subscriptions_filters(connected, cloud, logger, kwargs, expected):
    cloud.subscriptions = [SIMPLE, BUNDLED]
    records = subscription_report.get_subscriptions(logger=logger, **kwargs)
    assert [r["id"] for r in records] == expected


def test_get_subscriptions_unauthorized(connected, cloud, logger):
    cloud.access_token = "rotated"
    assert subscription_report.get_subscriptions(logger=logger) == []


def test_main_expands_and_exports(monkeypatch, tmp_path, cloud, client_factory, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(vcu_connection, "ENV_PATH", tmp_path / "missing.env")
    monkeypatch.setenv("VCU_REFRESH_TOKEN", "good-token")
    monkeypatch.setenv("VCU_ORG_ID", "org-1")
    monkeypatch.setattr("vcu_connection.create_http_client", client_factory)
    monkeypatch.setattr("subscription_report.create_http_client", client_factory)
    cloud.subscriptions = [SIMPLE, BUNDLED]

    subscription_report.main(["--id", "sub-2", "--expand", "--json-output", "subs.json"])

    assert "VCU Subscriptions" in capsys.readouterr().out
    saved = json.loads((tmp_path / "subs.json").read_text())
    assert [row["type"] for row in saved] == ["vSphere+", "vSAN+", "Tanzu Standard"]


def test_expanded_structured_context_exports_to_workbook(tmp_path, logger):
    """Context values that are not strings still export after expansion."""
    subscription = dict(BUNDLED, context={"vSphere+": {"count": 5}, "vSAN+": 20})
    rows = subscription_report.flatten_subscription(subscription, expand=True)
    target = tmp_path / "subs.xlsx"

    subscription_report.write_workbook(rows, subscription_report.COLUMNS, target, logger)

    worksheet = load_workbook(target).active
    quantity_col = [header for _, header in subscription_report.COLUMNS].index("Quantity")
    assert [row[quantity_col].value for row in worksheet.iter_rows(min_row=2)] == ['{"count": 5}', 20]
