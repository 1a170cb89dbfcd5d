"""
test_values.py - Unit tests for typed call values
"""

import pytest

from microlending import UInt, Principal, StringAscii, uint, principal, string_ascii, to_python
from microlending.values import UINT_MAX

from tests.helpers import DEPLOYER_ADDRESS, BORROWER_ADDRESS


class TestUInt:

    def test_create(self):
        assert uint(1000).value == 1000
        assert repr(uint(5)) == "u5"

    @pytest.mark.parametrize("value", [0, UINT_MAX])
    def test_bounds(self, value):
        assert uint(value).to_python() == value

    @pytest.mark.parametrize("value", [-1, UINT_MAX + 1])
    def test_out_of_range(self, value):
        with pytest.raises(ValueError, match="out of range"):
            uint(value)

    @pytest.mark.parametrize("value", [1.0, "1", True, None])
    def test_non_int(self, value):
        with pytest.raises(ValueError, match="requires an int"):
            uint(value)

    def test_equality_and_hash(self):
        assert uint(3) == UInt(3)
        assert len({uint(3), uint(3), uint(4)}) == 2


class TestPrincipal:

    def test_standard(self):
        p = principal(BORROWER_ADDRESS)
        assert p.to_python() == BORROWER_ADDRESS
        assert not p.is_contract

    def test_contract(self):
        p = principal(f"{DEPLOYER_ADDRESS}.micro-lending")
        assert p.is_contract

    @pytest.mark.parametrize("address", [
        "",
        "alice",
        "SP",
        "XT2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG",   # wrong prefix
        "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AO",   # O is not c32
        f"{DEPLOYER_ADDRESS}.1bad",
    ])
    def test_invalid(self, address):
        with pytest.raises(ValueError, match="Invalid principal"):
            principal(address)

    def test_repr(self):
        assert repr(principal(BORROWER_ADDRESS)) == f"'{BORROWER_ADDRESS}"


class TestStringAscii:

    def test_create(self):
        s = string_ascii("Business expansion")
        assert s.to_python() == "Business expansion"
        assert repr(s) == '"Business expansion"'

    def test_non_ascii(self):
        with pytest.raises(ValueError, match="ASCII"):
            string_ascii("naïve")

    def test_max_length(self):
        string_ascii("abc", max_length=3)
        with pytest.raises(ValueError, match="longer than 3"):
            string_ascii("abcd", max_length=3)

    def test_bound_not_part_of_equality(self):
        assert string_ascii("abc", max_length=10) == StringAscii("abc")
        assert hash(string_ascii("abc", max_length=10)) == hash(StringAscii("abc"))


class TestToPython:

    def test_nested(self):
        value = {'score': uint(720), 'tags': [string_ascii("a"), None], 'who': principal(BORROWER_ADDRESS)}
        assert to_python(value) == {'score': 720, 'tags': ["a", None], 'who': BORROWER_ADDRESS}

    def test_plain_values_pass_through(self):
        assert to_python(5) == 5
        assert to_python(None) is None

    def test_principal_type(self):
        assert isinstance(principal(BORROWER_ADDRESS), Principal)
