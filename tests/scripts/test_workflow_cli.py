"""
Operator CLI (scripts/workflow_cli.py) against a real database file.
"""

import importlib.util
import json
from pathlib import Path
from uuid import uuid4

import pytest

from repair_kernel.domain.workflow import JobState

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "workflow_cli.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("workflow_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def run(cli, capsys, *argv):
    code = cli.main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestCatalogCommand:
    def test_json_lists_every_state(self, cli, capsys, catalog):
        code, out, _ = run(cli, capsys, "catalog", "--json")
        assert code == 0
        data = json.loads(out)
        assert data["checksum"] == catalog.checksum
        assert len(data["states"]) == 12
        assert data["states"][0]["allowed_next"] == ["IN_DIAGNOSIS", "CANCELLED"]

    def test_text_output(self, cli, capsys):
        code, out, _ = run(cli, capsys, "catalog")
        assert code == 0
        assert "IN_DIAGNOSIS" in out
        assert "after 2h to SUPERVISOR" in out

    def test_missing_catalog_file(self, cli, capsys, tmp_path):
        code, _, err = run(cli, capsys, "--catalog", str(tmp_path / "nope.yaml"), "catalog")
        assert code == 1
        assert "Cannot load catalog" in err


class TestAuditCommand:
    def test_json_export(self, cli, capsys, database_url, create_job, advance_to):
        job = create_job()
        advance_to(job, JobState.APPROVED)

        code, out, _ = run(cli, capsys, "--db-url", database_url, "audit", str(job.id), "--json")

        assert code == 0
        data = json.loads(out)
        assert data["job_number"] == job.job_number
        assert [t["to_state"] for t in data["transitions"]] == [
            "IN_DIAGNOSIS", "AWAITING_APPROVAL", "APPROVED"
        ]

    def test_text_export(self, cli, capsys, database_url, create_job, advance_to):
        job = create_job()
        advance_to(job, JobState.IN_DIAGNOSIS)
        code, out, _ = run(cli, capsys, "--db-url", database_url, "audit", str(job.id))
        assert code == 0
        assert "chain verified" in out

    def test_unknown_job(self, cli, capsys, database_url, db_engine):
        code, _, err = run(cli, capsys, "--db-url", database_url, "audit", str(uuid4()))
        assert code == 1
        assert "ERROR" in err

    def test_bad_uuid(self, cli, capsys, database_url, db_engine):
        code, _, err = run(cli, capsys, "--db-url", database_url, "audit", "not-a-uuid")
        assert code == 1
        assert "Invalid UUID" in err


class TestSweepCommand:
    def test_single_sweep(self, cli, capsys, database_url, create_job):
        create_job()
        code, out, _ = run(cli, capsys, "--db-url", database_url, "sweep")
        assert code == 0
        assert out.startswith("checked=1 ")


def test_analytics(cli, capsys, database_url, create_job):
    create_job()
    code, out, _ = run(cli, capsys, "--db-url", database_url, "analytics", "--from", "2000-01-01")
    assert code == 0
    assert "total_jobs: 1" in out
