"""Tests for dispatch error decoding and address normalization."""

from stakenoter.errors import DispatchFailure
from stakenoter.reconcile.registry import normalize_address


class TestDispatchFailure:

    def test_module_error(self):
        failure = DispatchFailure.from_error_message(
            {"type": "Module", "name": "NotAuthorized", "pallet": "StakingScore", "docs": ["Not a noter", "account"]},
            block_hash="0xabc",
        )
        assert failure.is_module_error
        assert failure.module == "StakingScore"
        assert failure.name == "NotAuthorized"
        assert failure.docs == "Not a noter account"
        assert failure.block_hash == "0xabc"
        assert str(failure) == "StakingScore.NotAuthorized: Not a noter account"

    def test_module_error_without_docs(self):
        failure = DispatchFailure.from_error_message({"type": "Module", "name": "BadOrigin"})
        assert str(failure) == "BadOrigin"

    def test_non_module_error(self):
        failure = DispatchFailure.from_error_message({"type": "Other", "name": "BadOrigin"})
        assert not failure.is_module_error
        assert failure.message == "BadOrigin"

    def test_opaque_error(self):
        failure = DispatchFailure.from_error_message("Token.FundsUnavailable")
        assert not failure.is_module_error
        assert failure.message == "Token.FundsUnavailable"


class TestNormalizeAddress:

    def test_string_passes_through(self):
        assert normalize_address("5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY") == \
            "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"

    def test_raw_forms_agree(self):
        raw = bytes(range(32))
        from_bytes = normalize_address(raw)
        assert normalize_address(tuple(raw)) == from_bytes
        assert normalize_address("0x" + raw.hex()) == from_bytes
        assert from_bytes.startswith("5")

    def test_format_is_honored(self):
        raw = bytes(range(32))
        assert normalize_address(raw, 0) != normalize_address(raw, 42)
