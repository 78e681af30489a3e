"""
Tests for the two-phase decryption oracle.

Tests cover:
1. Request / fulfil with correlation id
2. Authorization of requesters
3. Expiry
4. Signed results and callbacks
5. Audit trail
6. Signed user decryption
7. Concurrent callers
"""

import threading

import pytest

from veil.core.errors import InvalidArgument, InvalidStateTransition, MalformedProof, Unauthorized
from veil.core.fhe import DecryptionStatus, FheType
from veil.core.fhe.oracle import result_digest, user_decrypt_digest
from veil.core.runtime import Chain, Contract
from veil.crypto import generate_keypair, sign


# =============================================================================
# Fixtures
# =============================================================================


class Vault(Contract):
    """Holds a secret and asks the oracle to reveal it."""

    _state_fields = ("secret", "revealed", "request_id")

    def __init__(self, chain, address, owner, value):
        super().__init__(chain, address, owner)
        self.secret = self.fhe.as_encrypted(value, FheType.EUINT32)
        self.revealed = None
        self.request_id = None

    def request_reveal(self):
        ticket = self.chain.oracle.request_decryption(
            [self.secret], requester=self.address, callback=(self.address, "on_reveal"),
        )
        self.request_id = ticket.request_id
        return ticket.request_id

    def on_reveal(self, request_id, plaintexts, signature):
        oracle = self.chain.oracle
        self.require(self.msg_sender == oracle.address, Unauthorized("not the oracle"))
        self.require(request_id == self.request_id, InvalidStateTransition("stale"))
        self.require(oracle.verify_result(request_id, plaintexts, signature), MalformedProof("bad sig"))
        self.revealed = plaintexts[0]


@pytest.fixture
def chain():
    return Chain()


@pytest.fixture
def owner():
    return generate_keypair().address


@pytest.fixture
def vault(chain, owner):
    return chain.deploy(owner, Vault, 99)


# =============================================================================
# Tests
# =============================================================================


class TestTwoPhase:
    """Tests for request then fulfil."""

    def test_request_does_not_decrypt(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        ticket = chain.oracle.get_ticket(request_id)
        assert ticket.status == DecryptionStatus.PENDING
        assert ticket.result is None
        assert vault.revealed is None

    def test_fulfil_delivers_via_callback(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        assert chain.oracle.fulfill(request_id) == [99]
        assert vault.revealed == 99
        assert chain.oracle.get_ticket(request_id).status == DecryptionStatus.FULFILLED

    def test_request_ids_increase(self, chain, owner, vault):
        first = chain.transact(owner, vault.request_reveal).return_value
        second = chain.transact(owner, vault.request_reveal).return_value
        assert second == first + 1

    def test_stale_request_rejected_by_consumer(self, chain, owner, vault):
        first = chain.transact(owner, vault.request_reveal).return_value
        chain.transact(owner, vault.request_reveal)
        with pytest.raises(InvalidStateTransition):
            chain.oracle.fulfill(first)
        # The failed delivery is rolled back; the ticket stays pending
        assert chain.oracle.get_ticket(first).status == DecryptionStatus.PENDING
        assert vault.revealed is None

    def test_double_fulfil_rejected(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        chain.oracle.fulfill(request_id)
        with pytest.raises(InvalidStateTransition):
            chain.oracle.fulfill(request_id)

    def test_callback_only_from_oracle(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        digest = result_digest(request_id, [1])
        forged = sign(digest, generate_keypair().private_key)
        with pytest.raises(Unauthorized):
            chain.transact(owner, vault.on_reveal, request_id, [1], forged)

    def test_forged_signature_rejected(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        forged = sign(result_digest(request_id, [1]), generate_keypair().private_key)
        with pytest.raises(MalformedProof):
            chain.transact(chain.oracle.address, vault.on_reveal, request_id, [1], forged)

    def test_unknown_request(self, chain):
        with pytest.raises(InvalidArgument):
            chain.oracle.fulfill(12345)


class TestAuthorization:
    """Tests for requester access checks."""

    def test_requester_must_be_allowed(self, chain, owner, vault):
        with pytest.raises(Unauthorized):
            chain.oracle.request_decryption([vault.secret], requester=owner)

    def test_user_decrypt_for_allowed_principal(self, chain, owner, vault):
        chain.transact(vault.address, vault.fhe.allow, vault.secret, owner)
        assert chain.oracle.user_decrypt(vault.secret, owner) == 99

    def test_user_decrypt_denied(self, chain, owner, vault):
        with pytest.raises(Unauthorized):
            chain.oracle.user_decrypt(vault.secret, owner)

    def test_read_result_requester_only(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        chain.oracle.fulfill(request_id)
        assert chain.oracle.read_result(request_id, vault.address) == [99]
        with pytest.raises(Unauthorized):
            chain.oracle.read_result(request_id, owner)

    def test_read_result_before_fulfil(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        with pytest.raises(InvalidStateTransition):
            chain.oracle.read_result(request_id, vault.address)

    def test_empty_request(self, chain, vault):
        with pytest.raises(InvalidArgument):
            chain.oracle.request_decryption([], requester=vault.address)


class TestExpiry:
    """Tests for request expiry."""

    def test_expired_request_cannot_be_fulfilled(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        chain.mine(chain.config.decryption_timeout_blocks + 1)
        with pytest.raises(InvalidStateTransition):
            chain.oracle.fulfill(request_id)
        assert chain.oracle.get_ticket(request_id).status == DecryptionStatus.EXPIRED
        assert vault.revealed is None

    def test_fulfil_at_expiry_block(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        chain.mine(chain.config.decryption_timeout_blocks)
        chain.oracle.fulfill(request_id)
        assert vault.revealed == 99

    def test_expire_stale(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        chain.mine(chain.config.decryption_timeout_blocks + 1)
        assert chain.oracle.expire_stale() == [request_id]
        assert chain.oracle.pending() == []


class TestAudit:
    """Tests for the decryption audit trail."""

    def test_request_and_fulfil_audited(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        chain.oracle.fulfill(request_id)
        actions = [r.action for r in chain.oracle.audit_for(vault.secret.handle)]
        assert actions == ["requested", "fulfilled"]
        assert all(r.principal == vault.address for r in chain.oracle.audit_log)

    def test_reverted_request_not_audited(self, chain, owner, vault):
        def request_and_fail():
            vault.request_reveal()
            raise InvalidStateTransition("abort")

        with pytest.raises(InvalidStateTransition):
            chain.transact(owner, request_and_fail)
        assert chain.oracle.audit_log == []
        assert chain.oracle.tickets == {}

    def test_user_decrypt_audited(self, chain, owner, vault):
        chain.transact(vault.address, vault.fhe.allow, vault.secret, owner)
        chain.oracle.user_decrypt(vault.secret, owner)
        actions = [r.action for r in chain.oracle.audit_log]
        assert actions == ["requested", "user_decrypt", "fulfilled"]


class TestSignedUserDecrypt:
    """Tests for user decryption authenticated by the principal's key."""

    @pytest.fixture
    def holder(self, chain, vault):
        keypair = generate_keypair()
        chain.transact(vault.address, vault.fhe.allow, vault.secret, keypair.address)
        return keypair

    @staticmethod
    def signature_for(chain, value, keypair, signer=None):
        nonce = chain.oracle.user_decrypt_nonce(keypair.address)
        digest = user_decrypt_digest(value.handle, keypair.address, nonce)
        return sign(digest, (signer or keypair).private_key)

    def test_signed_decrypt(self, chain, vault, holder):
        signature = self.signature_for(chain, vault.secret, holder)
        assert chain.oracle.user_decrypt_signed(vault.secret, holder.address, signature) == 99
        assert chain.oracle.user_decrypt_nonce(holder.address) == 1
        actions = [r.action for r in chain.oracle.audit_log]
        assert actions == ["requested", "user_decrypt", "fulfilled"]

    def test_impersonation_rejected(self, chain, vault, holder):
        signature = self.signature_for(chain, vault.secret, holder, signer=generate_keypair())
        with pytest.raises(Unauthorized):
            chain.oracle.user_decrypt_signed(vault.secret, holder.address, signature)
        assert chain.oracle.audit_log == []
        assert chain.oracle.user_decrypt_nonce(holder.address) == 0

    def test_signature_not_replayable(self, chain, vault, holder):
        signature = self.signature_for(chain, vault.secret, holder)
        chain.oracle.user_decrypt_signed(vault.secret, holder.address, signature)
        with pytest.raises(Unauthorized):
            chain.oracle.user_decrypt_signed(vault.secret, holder.address, signature)

    def test_signature_bound_to_handle(self, chain, owner, vault, holder):
        other = chain.deploy(owner, Vault, 5)
        chain.transact(other.address, other.fhe.allow, other.secret, holder.address)
        signature = self.signature_for(chain, vault.secret, holder)
        with pytest.raises(Unauthorized):
            chain.oracle.user_decrypt_signed(other.secret, holder.address, signature)

    def test_valid_signature_still_needs_access(self, chain, vault):
        outsider = generate_keypair()
        signature = self.signature_for(chain, vault.secret, outsider)
        with pytest.raises(Unauthorized):
            chain.oracle.user_decrypt_signed(vault.secret, outsider.address, signature)
        assert chain.oracle.user_decrypt_nonce(outsider.address) == 0

    def test_missing_signature(self, chain, vault, holder):
        with pytest.raises(Unauthorized):
            chain.oracle.user_decrypt_signed(vault.secret, holder.address, None)

    def test_invalid_principal(self, chain, vault):
        with pytest.raises(InvalidArgument):
            chain.oracle.user_decrypt_signed(vault.secret, "alice", b"\x00" * 65)


class TestConcurrency:
    """The oracle shares the chain's single writer with transactions."""

    @staticmethod
    def run_workers(count, work):
        errors = []

        def worker(i):
            try:
                work(i)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return errors

    def test_parallel_user_decrypt(self, chain, owner, vault):
        chain.transact(vault.address, vault.fhe.allow, vault.secret, owner)
        results = []

        def work(_):
            for _ in range(50):
                results.append(chain.oracle.user_decrypt(vault.secret, owner))

        assert self.run_workers(8, work) == []
        assert results == [99] * 400
        assert len(chain.oracle.tickets) == 400
        assert len({r.request_id for r in chain.oracle.audit_log}) == 400
        assert all(t.status == DecryptionStatus.FULFILLED for t in chain.oracle.tickets.values())

    def test_request_delivered_once(self, chain, owner, vault):
        request_id = chain.transact(owner, vault.request_reveal).return_value
        delivered = []
        rejected = []

        def work(_):
            try:
                delivered.append(chain.oracle.fulfill(request_id))
            except InvalidStateTransition:
                rejected.append(request_id)

        assert self.run_workers(8, work) == []
        assert delivered == [[99]]
        assert len(rejected) == 7
        actions = [r.action for r in chain.oracle.audit_log]
        assert actions.count("fulfilled") == 1

    def test_parallel_requests_get_distinct_ids(self, chain, owner, vault):
        ids = []

        def work(_):
            for _ in range(25):
                ids.append(chain.transact(owner, vault.request_reveal).return_value)

        assert self.run_workers(8, work) == []
        assert sorted(ids) == list(range(1, 201))
        assert len(chain.oracle.pending()) == 200
