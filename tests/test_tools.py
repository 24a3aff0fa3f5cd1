"""
Tests for the offline verifier and the management CLI.
"""

import json

import pytest

from codex_ledger.core import AuthorshipLedger, ChainLinker, Signer, WitnessNode
from codex_ledger.db import EventJournal, JsonlLedgerStore
from codex_ledger.schemas import EventType
from tools import manage
from tools.verify import EXIT_CODES, LogVerdict, main as verify_main, verify_log

from conftest import TEST_SECRET


@pytest.fixture
def keypair():
    return Signer.generate_keypair()


@pytest.fixture
def ledger_file(tmp_path, make_draft, keypair):
    """A JSON-lines ledger with two subjects, three entries."""
    private, _ = keypair
    path = tmp_path / "ledger.jsonl"
    ledger = AuthorshipLedger(
        JsonlLedgerStore(path),
        ChainLinker(TEST_SECRET),
        witnesses=[WitnessNode("primary-node", private)],
    )
    ledger.record_event(make_draft())
    ledger.record_event(make_draft(EventType.UPDATED, body="v2", minute=1))
    ledger.record_event(make_draft(subject_id="essay-2", author_id="grace", minute=2))
    return path


def _rewrite_line(path, index, **changes):
    lines = path.read_text().splitlines()
    record = json.loads(lines[index])
    record.update(changes)
    lines[index] = json.dumps(record)
    path.write_text("\n".join(lines) + "\n")


class TestVerifyLog:

    def test_intact(self, ledger_file, keypair):
        _, public = keypair
        report = verify_log(
            ledger_file,
            linker=ChainLinker(TEST_SECRET),
            witness_keys={"primary-node": public},
        )
        assert report.result == LogVerdict.VERIFIED
        assert report.entry_count == 3
        assert report.subject_count == 2
        assert not report.warnings

    def test_without_secret_warns(self, ledger_file):
        report = verify_log(ledger_file)
        assert report.result == LogVerdict.VERIFIED
        assert any("signatures not checked" in w for w in report.warnings)

    def test_tampered_entry(self, ledger_file):
        _rewrite_line(ledger_file, 1, author_id="mallory")

        report = verify_log(ledger_file, linker=ChainLinker(TEST_SECRET))

        assert report.result == LogVerdict.TAMPERED
        assert report.details["broken_chains"]["essay-1"]["index"] == 1
        assert "essay-2" not in report.details["broken_chains"]

    def test_wrong_secret(self, ledger_file):
        report = verify_log(ledger_file, linker=ChainLinker("not-the-secret"))
        assert report.result == LogVerdict.TAMPERED

    def test_unreadable_line(self, ledger_file):
        with open(ledger_file, "a") as f:
            f.write("not json\n")
        assert verify_log(ledger_file).result == LogVerdict.TAMPERED

    def test_truncated_file_is_incomplete(self, ledger_file):
        """A crash mid-append: earlier entries still verify."""
        data = ledger_file.read_bytes()
        ledger_file.write_bytes(data[:-40])

        report = verify_log(ledger_file, linker=ChainLinker(TEST_SECRET))

        assert report.result == LogVerdict.INCOMPLETE
        assert report.entry_count == 2
        assert any("unfinished write" in w for w in report.warnings)

    def test_missing_file(self, tmp_path):
        assert verify_log(tmp_path / "absent.jsonl").result == LogVerdict.INVALID_FORMAT

    def test_not_a_ledger(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("shopping list\neggs\n")
        assert verify_log(path).result == LogVerdict.INVALID_FORMAT


class TestVerifyCli:

    def test_exit_codes(self, ledger_file, monkeypatch, capsys):
        monkeypatch.setenv("LEDGER_SECRET_FOR_TEST", TEST_SECRET)
        assert verify_main([str(ledger_file), "--secret-env", "LEDGER_SECRET_FOR_TEST"]) == 0
        assert "[VERIFIED]" in capsys.readouterr().out

        _rewrite_line(ledger_file, 0, author_id="mallory")
        assert verify_main([str(ledger_file)]) == EXIT_CODES[LogVerdict.TAMPERED]

    def test_json_output(self, ledger_file, capsys):
        verify_main([str(ledger_file), "--json"])
        output = json.loads(capsys.readouterr().out)
        assert output["result"] == "VERIFIED"
        assert output["entry_count"] == 3

    def test_unset_secret_env(self, ledger_file, monkeypatch, capsys):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        assert verify_main([str(ledger_file), "--secret-env", "NOT_SET_ANYWHERE"]) == 3

    def test_witness_key_checked(self, ledger_file, capsys):
        _, stranger = Signer.generate_keypair()
        code = verify_main([str(ledger_file), "--witness-key", f"primary-node={stranger}"])
        assert code == EXIT_CODES[LogVerdict.TAMPERED]


class TestManageCli:

    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        monkeypatch.setattr("codex_ledger.observability.setup_logging", lambda: None)

    @pytest.fixture
    def env(self, monkeypatch, ledger_file, keypair):
        private, public = keypair
        for name in ("DATABASE_URL", "DATABASE_HOST", "CODEX_LEDGER_BACKEND", "CODEX_LEDGER_PRODUCTION"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("CODEX_LEDGER_PATH", str(ledger_file))
        monkeypatch.setenv("CODEX_LEDGER_SECRET", TEST_SECRET)
        monkeypatch.setenv("CODEX_LEDGER_WITNESS_PRIVATE_KEY", private)
        monkeypatch.setenv("CODEX_LEDGER_WITNESS_PUBLIC_KEY", public)
        return monkeypatch

    def test_no_command(self, capsys):
        assert manage.main([]) == 1

    def test_verify_chain_all(self, env, capsys):
        assert manage.main(["verify-chain"]) == 0
        out = capsys.readouterr().out
        assert "[OK] essay-1: 2 entries" in out
        assert "[OK] essay-2: 1 entries" in out

    def test_verify_chain_tampered(self, env, ledger_file, capsys):
        _rewrite_line(ledger_file, 1, author_id="mallory")
        assert manage.main(["verify-chain", "--subject", "essay-1"]) == 1
        assert "block_hash_mismatch at entry 1" in capsys.readouterr().out

    def test_stats_json(self, env, capsys):
        assert manage.main(["stats", "--json"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_entries"] == 3
        assert stats["unique_subjects"] == 2

    def test_export_history(self, env, tmp_path, capsys):
        output = tmp_path / "export.json"
        assert manage.main(["export-history", "essay-1", "-o", str(output)]) == 0
        exported = json.loads(output.read_text())
        assert [e["sequence"] for e in exported] == [1, 2]

    def test_export_unknown_subject(self, env, capsys):
        assert manage.main(["export-history", "missing"]) == 1

    def test_init_db_sqlite(self, env, tmp_path, capsys):
        env.setenv("CODEX_LEDGER_BACKEND", "sqlite")
        env.setenv("CODEX_LEDGER_SQLITE_PATH", str(tmp_path / "ledger.db"))
        assert manage.main(["init-db"]) == 0
        assert "[OK] Schema ready (sqlite)" in capsys.readouterr().out

    def test_verify_journal(self, tmp_path, make_entry, capsys):
        journal = EventJournal(tmp_path / "journal.jsonl")
        journal.append(make_entry().model_copy(update={"sequence": 1}))
        assert manage.main(["verify-journal", str(journal.path)]) == 0

    def test_generate_keys(self, capsys):
        assert manage.main(["generate-keys"]) == 0
        lines = dict(
            line.split("=", 1) for line in capsys.readouterr().out.splitlines() if "=" in line
        )
        assert len(lines["CODEX_LEDGER_SECRET"]) == 64
        assert Signer.validate_keypair(
            lines["CODEX_LEDGER_WITNESS_PRIVATE_KEY"], lines["CODEX_LEDGER_WITNESS_PUBLIC_KEY"]
        )

    def test_health_check(self, env, capsys):
        assert manage.main(["health-check"]) == 0
        assert "backend: jsonl" in capsys.readouterr().out
