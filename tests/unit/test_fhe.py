"""
Tests for the Ciphertext Arithmetic Layer.

Tests cover:
1. Encrypted inputs and input proofs
2. Arithmetic, comparison and select
3. Access tags and operand checks
4. Security domains
"""

import pytest

from veil.core.errors import DomainMismatch, MalformedProof
from veil.core.fhe import (
    AccessControlList,
    Coprocessor,
    EncryptedBool,
    EncryptedValue,
    FheOps,
    FheType,
)
from veil.crypto import generate_keypair


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cop():
    return Coprocessor()


@pytest.fixture
def contract():
    return generate_keypair().address


@pytest.fixture
def user():
    return generate_keypair().address


@pytest.fixture
def ops(cop, contract):
    return FheOps(cop, contract)


def reveal(cop, value):
    """Test helper: open a ciphertext directly."""
    return cop.decrypt(value)


# =============================================================================
# Types
# =============================================================================


class TestTypes:
    """Tests for encrypted types."""

    def test_type_widths(self):
        assert FheType.EBOOL.bits == 1
        assert FheType.EUINT8.max_value == 255
        assert FheType.EUINT64.max_value == 2**64 - 1

    def test_for_bits(self):
        assert FheType.for_bits(32) == FheType.EUINT32
        with pytest.raises(ValueError):
            FheType.for_bits(12)

    def test_cannot_branch_on_ciphertext(self, ops):
        value = ops.as_encrypted(1, FheType.EUINT8)
        with pytest.raises(TypeError):
            bool(value)

    def test_comparison_result_is_encrypted_bool(self, ops):
        a = ops.as_encrypted(1, FheType.EUINT8)
        assert isinstance(ops.lt(a, 2), EncryptedBool)


# =============================================================================
# Inputs
# =============================================================================


class TestInputs:
    """Tests for encrypted inputs and their proofs."""

    def test_verified_input_granted_to_contract_and_user(self, cop, contract, user):
        enc = cop.encrypt_input(42, FheType.EUINT64, contract, user)
        value = cop.verify_input(enc.handle, enc.proof, contract, user, FheType.EUINT64)
        assert cop.acl.is_allowed(value.handle, contract)
        assert cop.acl.is_allowed(value.handle, user)
        assert reveal(cop, value) == 42

    def test_proof_bound_to_contract(self, cop, contract, user):
        enc = cop.encrypt_input(42, FheType.EUINT64, contract, user)
        other_contract = generate_keypair().address
        with pytest.raises(MalformedProof):
            cop.verify_input(enc.handle, enc.proof, other_contract, user, FheType.EUINT64)

    def test_proof_bound_to_user(self, cop, contract, user):
        enc = cop.encrypt_input(42, FheType.EUINT64, contract, user)
        with pytest.raises(MalformedProof):
            cop.verify_input(enc.handle, enc.proof, contract, generate_keypair().address, FheType.EUINT64)

    def test_wrong_declared_type(self, cop, contract, user):
        enc = cop.encrypt_input(42, FheType.EUINT8, contract, user)
        with pytest.raises(MalformedProof):
            cop.verify_input(enc.handle, enc.proof, contract, user, FheType.EUINT64)

    def test_tampered_proof(self, cop, contract, user):
        enc = cop.encrypt_input(42, FheType.EUINT64, contract, user)
        bad = bytes([enc.proof[0] ^ 1]) + enc.proof[1:]
        with pytest.raises(MalformedProof):
            cop.verify_input(enc.handle, bad, contract, user, FheType.EUINT64)

    def test_unknown_handle(self, cop, contract, user):
        enc = cop.encrypt_input(42, FheType.EUINT64, contract, user)
        with pytest.raises(MalformedProof):
            cop.verify_input(b"\x00" * 32, enc.proof, contract, user, FheType.EUINT64)

    def test_malformed_shapes(self, cop, contract, user):
        with pytest.raises(MalformedProof):
            cop.verify_input(b"short", b"\x00" * 65, contract, user, FheType.EUINT64)
        with pytest.raises(MalformedProof):
            cop.verify_input(b"\x00" * 32, b"short", contract, user, FheType.EUINT64)

    def test_proof_from_other_verifier(self, contract, user):
        cop_a = Coprocessor()
        cop_b = Coprocessor(key=cop_a.key)
        enc = cop_b.encrypt_input(1, FheType.EUINT8, contract, user)
        cop_a._ciphertexts.update(cop_b._ciphertexts)
        cop_a._types.update(cop_b._types)
        with pytest.raises(MalformedProof):
            cop_a.verify_input(enc.handle, enc.proof, contract, user, FheType.EUINT8)

    def test_input_out_of_range_rejected_at_encryption(self, cop, contract, user):
        with pytest.raises(ValueError):
            cop.encrypt_input(300, FheType.EUINT8, contract, user)


# =============================================================================
# Operations
# =============================================================================


class TestArithmetic:
    """Tests for arithmetic on ciphertexts."""

    def test_add(self, cop, ops):
        a = ops.as_encrypted(20, FheType.EUINT32)
        assert reveal(cop, ops.add(a, 22)) == 42

    def test_add_saturates(self, cop, ops):
        a = ops.as_encrypted(250, FheType.EUINT8)
        assert reveal(cop, ops.add(a, 10)) == 255

    def test_sub_saturates_at_zero(self, cop, ops):
        a = ops.as_encrypted(5, FheType.EUINT8)
        assert reveal(cop, ops.sub(a, 10)) == 0

    def test_sub_with_flag(self, cop, ops):
        a = ops.as_encrypted(5, FheType.EUINT8)
        diff, underflow = ops.sub_with_flag(a, 7)
        assert reveal(cop, diff) == 0
        assert reveal(cop, underflow) == 1
        diff, underflow = ops.sub_with_flag(a, 3)
        assert reveal(cop, diff) == 2
        assert reveal(cop, underflow) == 0

    def test_min_max(self, cop, ops):
        a = ops.as_encrypted(3, FheType.EUINT16)
        b = ops.as_encrypted(9, FheType.EUINT16)
        assert reveal(cop, ops.min(a, b)) == 3
        assert reveal(cop, ops.max(a, b)) == 9

    def test_results_are_fresh_handles(self, ops):
        a = ops.as_encrypted(3, FheType.EUINT16)
        assert ops.add(a, 0).handle != a.handle

    def test_arithmetic_on_bool_rejected(self, ops):
        t = ops.as_encrypted(1, FheType.EBOOL)
        with pytest.raises(DomainMismatch):
            ops.add(t, t)


class TestComparisonAndSelect:
    """Tests for comparisons and branchless selection."""

    @pytest.mark.parametrize("op,expected", [
        ("lt", 1), ("le", 1), ("gt", 0), ("ge", 0), ("eq", 0), ("ne", 1),
    ])
    def test_comparisons(self, cop, ops, op, expected):
        a = ops.as_encrypted(3, FheType.EUINT32)
        b = ops.as_encrypted(4, FheType.EUINT32)
        assert reveal(cop, getattr(ops, op)(a, b)) == expected

    def test_select(self, cop, ops):
        a = ops.as_encrypted(10, FheType.EUINT32)
        b = ops.as_encrypted(20, FheType.EUINT32)
        assert reveal(cop, ops.select(ops.lt(a, b), a, b)) == 10
        assert reveal(cop, ops.select(ops.gt(a, b), a, b)) == 20

    def test_select_with_scalar(self, cop, ops):
        a = ops.as_encrypted(10, FheType.EUINT32)
        assert reveal(cop, ops.select(ops.gt(a, 100), a, 0)) == 0

    def test_select_requires_bool_condition(self, ops):
        a = ops.as_encrypted(10, FheType.EUINT32)
        with pytest.raises(DomainMismatch):
            ops.select(a, a, a)

    def test_boolean_logic(self, cop, ops):
        t = ops.as_encrypted(1, FheType.EBOOL)
        f = ops.as_encrypted(0, FheType.EBOOL)
        assert reveal(cop, ops.and_(t, f)) == 0
        assert reveal(cop, ops.or_(t, f)) == 1
        assert reveal(cop, ops.not_(f)) == 1

    def test_bool_scalar_rejected(self, ops):
        a = ops.as_encrypted(1, FheType.EUINT8)
        with pytest.raises(TypeError):
            ops.add(a, True)


# =============================================================================
# Access tags and domains
# =============================================================================


class TestAccessControl:
    """Tests for access tags gating operand use."""

    def test_result_granted_to_caller_only(self, cop, ops, contract, user):
        a = ops.as_encrypted(1, FheType.EUINT8)
        result = ops.add(a, 1)
        assert cop.acl.allowed_principals(result.handle) == frozenset({contract})
        assert not cop.acl.is_allowed(result.handle, user)

    def test_operand_not_allowed(self, cop, ops, user):
        stranger_ops = FheOps(cop, user)
        a = ops.as_encrypted(1, FheType.EUINT8)
        with pytest.raises(DomainMismatch):
            stranger_ops.add(a, 1)

    def test_allow_extends_access(self, cop, ops, user):
        a = ops.as_encrypted(1, FheType.EUINT8)
        ops.allow(a, user)
        assert FheOps(cop, user).is_allowed(a, user)
        assert reveal(cop, FheOps(cop, user).add(a, 1)) == 2

    def test_only_holder_may_allow(self, cop, ops, user):
        a = ops.as_encrypted(1, FheType.EUINT8)
        with pytest.raises(DomainMismatch):
            FheOps(cop, user).allow(a, user)

    def test_acl_snapshot_restore(self):
        acl = AccessControlList()
        acl.allow(b"h" * 32, "0xa")
        snap = acl.snapshot()
        acl.allow(b"h" * 32, "0xb")
        acl.restore(snap)
        assert acl.allowed_principals(b"h" * 32) == frozenset({"0xa"})
        assert len(acl) == 1


class TestDomains:
    """Tests for security domain checks."""

    def test_mismatched_types(self, ops):
        a = ops.as_encrypted(1, FheType.EUINT8)
        b = ops.as_encrypted(1, FheType.EUINT16)
        with pytest.raises(DomainMismatch):
            ops.add(a, b)

    def test_foreign_key(self, ops, contract):
        foreign = FheOps(Coprocessor(), contract).as_encrypted(1, FheType.EUINT8)
        a = ops.as_encrypted(1, FheType.EUINT8)
        with pytest.raises(DomainMismatch):
            ops.add(a, foreign)

    def test_forged_type_tag(self, ops):
        a = ops.as_encrypted(1, FheType.EUINT8)
        forged = EncryptedValue(handle=a.handle, fhe_type=FheType.EUINT16, key_id=a.key_id)
        b = ops.as_encrypted(1, FheType.EUINT16)
        with pytest.raises(DomainMismatch):
            ops.add(forged, b)

    def test_non_encrypted_operand(self, cop, contract):
        with pytest.raises(DomainMismatch):
            cop.add(42, 42, contract)

    def test_decrypt_foreign_handle(self, cop, contract):
        foreign = FheOps(Coprocessor(), contract).as_encrypted(1, FheType.EUINT8)
        with pytest.raises(DomainMismatch):
            cop.decrypt(foreign)
