"""
Tests for authorship certificates.

A certificate answers two questions that must never be conflated:
is it the certificate we issued, and does the chain still say the same?
"""

import pytest

from codex_ledger.core import (
    AuthorshipLedger,
    ChainLinker,
    Hasher,
    canonical_fields,
    parse_certificate,
)
from codex_ledger.errors import InvalidChain, MalformedCertificate, UnknownSubject
from codex_ledger.schemas import CertificateStatus, EventType


@pytest.fixture
def certified(ledger, make_draft):
    ledger.record_event(make_draft())
    ledger.record_event(make_draft(EventType.UPDATED, body="revised", minute=1))
    return ledger.issue_certificate("essay-1")


class TestIssue:

    def test_snapshot_fields(self, ledger, certified):
        chain = ledger.store.query()
        assert certified.subject_id == "essay-1"
        assert certified.original_author == "ada"
        assert certified.creation_date == chain[0].timestamp
        assert certified.chain_length == 2
        assert certified.chain_tip == chain[-1].block_hash
        assert len(certified.certificate_hash) == 64

    def test_unknown_subject(self, ledger):
        with pytest.raises(UnknownSubject):
            ledger.issue_certificate("missing")

    def test_broken_chain_refused(self, ledger, store, make_draft):
        ledger.record_event(make_draft())
        second = ledger.record_event(make_draft(EventType.UPDATED, body="v2", minute=1))
        store._entries[1] = second.model_copy(update={"author_id": "mallory"})

        with pytest.raises(InvalidChain) as exc_info:
            ledger.issue_certificate("essay-1")
        assert exc_info.value.broken_at.index == 1

    def test_each_issue_is_unique(self, ledger, certified):
        again = ledger.issue_certificate("essay-1")
        assert again.certificate_id != certified.certificate_id
        assert again.certificate_hash != certified.certificate_hash


class TestValidate:

    def test_fresh_certificate_valid(self, ledger, certified):
        result = ledger.validate_certificate(certified)
        assert result.valid
        assert result.status == CertificateStatus.VALID
        assert result.certificate_intact
        assert result.chain_still_valid
        assert result.verified_at >= certified.issued_at

    def test_json_round_trip_valid(self, ledger, certified):
        """A certificate handed back as JSON validates the same."""
        result = ledger.validate_certificate(certified.model_dump(mode="json"))
        assert result.status == CertificateStatus.VALID

    def test_stale_after_chain_grows(self, ledger, make_draft, certified):
        ledger.record_event(make_draft(EventType.UPDATED, body="third", minute=2))

        result = ledger.validate_certificate(certified)

        assert result.status == CertificateStatus.STALE
        assert result.certificate_intact
        assert not result.chain_still_valid
        assert result.chain_intact
        assert result.drifted
        assert result.current_chain_length == 3
        assert not result.valid

    @pytest.mark.parametrize("field,value", [
        ("original_author", "mallory"),
        ("chain_length", 7),
        ("chain_tip", "f" * 64),
    ])
    def test_edited_field_is_forged(self, ledger, certified, field, value):
        data = certified.model_dump(mode="json")
        data[field] = value

        result = ledger.validate_certificate(data)

        assert result.status == CertificateStatus.FORGED
        assert not result.certificate_intact
        assert not result.hash_match

    def test_unsealed_field_is_rejected(self, ledger, certified):
        """A claim added after issuance is covered by no hash or signature."""
        data = certified.model_dump(mode="json")
        data["transferred_to"] = "mallory"

        result = ledger.validate_certificate(data)

        assert result.status == CertificateStatus.MALFORMED
        assert not result.valid
        assert not result.certificate_intact
        assert "transferred_to" in result.detail

    def test_resealed_without_secret_is_forged(self, ledger, certified):
        """Recomputing the hash does not help without the signing secret."""
        forged = certified.model_copy(update={"original_author": "mallory"})
        forged = forged.model_copy(update={
            "certificate_hash": Hasher.hash_data(canonical_fields(forged)),
            "signature": ChainLinker("forger").mac(Hasher.canonicalize(canonical_fields(forged))),
        })

        result = ledger.validate_certificate(forged)

        assert result.hash_match
        assert not result.signature_match
        assert result.status == CertificateStatus.FORGED

    def test_other_secret_cannot_validate(self, store, certified):
        other = AuthorshipLedger(store, ChainLinker("a-different-secret"))
        result = other.validate_certificate(certified)
        assert result.status == CertificateStatus.FORGED

    def test_chain_broken(self, ledger, store, certified):
        store._entries[0] = store._entries[0].model_copy(update={"author_id": "mallory"})

        result = ledger.validate_certificate(certified)

        assert result.status == CertificateStatus.CHAIN_BROKEN
        assert result.certificate_intact
        assert result.broken_at.index == 0

    def test_forged_wins_over_broken_chain(self, ledger, store, certified):
        store._entries[0] = store._entries[0].model_copy(update={"author_id": "mallory"})
        forged = certified.model_copy(update={"chain_length": 9})
        assert ledger.validate_certificate(forged).status == CertificateStatus.FORGED

    def test_moved_subject_is_forged(self, ledger, certified):
        moved = certified.model_copy(update={"subject_id": "elsewhere"})
        result = ledger.validate_certificate(moved)
        assert result.status == CertificateStatus.FORGED

    @pytest.mark.parametrize("payload", [
        None,
        "a string",
        [1, 2, 3],
        {},
        {"subject_id": "essay-1"},
    ])
    def test_malformed(self, ledger, payload):
        result = ledger.validate_certificate(payload)
        assert result.status == CertificateStatus.MALFORMED
        assert not result.valid
        assert result.detail

    def test_parse_certificate(self, certified):
        assert parse_certificate(certified) is certified
        with pytest.raises(MalformedCertificate):
            parse_certificate(42)
