import threading
from contextlib import contextmanager
from types import SimpleNamespace

import pytest

from exwallet.models import TxStatus, hex_to_hash
from exwallet.withdraw import Withdraw


class FakeDB:
    def __init__(self, withdrawals=None, businesses=("b1",), fail_times=0, business_error=False):
        self.withdrawals = withdrawals if withdrawals is not None else {}
        self.fail_times = fail_times
        self.transactions = 0
        self.balance_updates = []
        self.withdraw_updates = []
        self.in_tx = False

        def query_business_list():
            if business_error:
                raise RuntimeError("db down")
            return [{"business_uid": uid} for uid in businesses]

        self.business = SimpleNamespace(query_business_list=query_business_list)
        self.withdraws = SimpleNamespace(
            un_send_withdraws_list=lambda uid: self.withdrawals.get(uid, []),
            update_withdraw_list_by_id=self._update_withdraws,
        )
        self.balances = SimpleNamespace(update_balance_list_by_two_address=self._update_balances)

    def _update_withdraws(self, uid, items):
        assert self.in_tx
        self.withdraw_updates.append((uid, [dict(item) for item in items]))

    def _update_balances(self, uid, items):
        assert self.in_tx
        self.balance_updates.append((uid, items))

    @contextmanager
    def transaction(self):
        self.transactions += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("deadlock")
        self.in_tx = True
        try:
            yield
        finally:
            self.in_tx = False


class FakeRpc:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []
        self.event = threading.Event()

    def send_tx(self, raw):
        self.sent.append(raw)
        self.event.set()
        if raw in self.failing:
            raise RuntimeError("rejected")
        return "0x" + raw[2:] * 2


def withdrawal(raw, amount=5):
    return {
        "tx_sign_hex": raw,
        "token_address": "0x" + "00" * 20,
        "from_address": "0x" + "22" * 20,
        "amount": amount,
        "status": TxStatus.SIGNED,
        "tx_hash": hex_to_hash(""),
    }


def make(db, rpc, **kwargs):
    kwargs.setdefault("retry_min", 0.0)
    kwargs.setdefault("retry_jitter", 0.0)
    return Withdraw(db, rpc, 0.01, **kwargs)


def test_process_once_broadcasts_and_updates():
    items = [withdrawal("0xab", 7)]
    db = FakeDB({"b1": items})
    rpc = FakeRpc()
    make(db, rpc).process_once()

    assert rpc.sent == ["0xab"]
    assert db.transactions == 1
    uid, balances = db.balance_updates[0]
    assert uid == "b1"
    assert balances == [
        {"token_address": "0x" + "00" * 20, "address": "0x" + "22" * 20, "lock_balance": 7}
    ]
    updated = db.withdraw_updates[0][1][0]
    assert updated["status"] is TxStatus.BROADCASTED
    assert updated["tx_hash"] == hex_to_hash("0xabab")


def test_failed_send_is_left_unchanged():
    items = [withdrawal("0x01"), withdrawal("0x02")]
    db = FakeDB({"b1": items})
    make(db, FakeRpc(failing={"0x01"})).process_once()

    assert len(db.balance_updates[0][1]) == 1
    statuses = [item["status"] for item in db.withdraw_updates[0][1]]
    assert statuses == [TxStatus.SIGNED, TxStatus.BROADCASTED]


def test_all_sends_fail_skips_balance_update():
    db = FakeDB({"b1": [withdrawal("0x01")]})
    make(db, FakeRpc(failing={"0x01"})).process_once()
    assert db.balance_updates == []
    assert len(db.withdraw_updates) == 1


def test_no_unsent_withdrawals_skips_persistence():
    db = FakeDB({})
    rpc = FakeRpc()
    make(db, rpc).process_once()
    assert rpc.sent == []
    assert db.transactions == 0


def test_business_query_error_is_tolerated():
    db = FakeDB({"b1": [withdrawal("0x01")]}, business_error=True)
    rpc = FakeRpc()
    make(db, rpc).process_once()
    assert rpc.sent == []


def test_persistence_is_retried():
    db = FakeDB({"b1": [withdrawal("0x01")]}, fail_times=2)
    make(db, FakeRpc()).process_once()
    assert db.transactions == 3
    assert len(db.withdraw_updates) == 1


def test_persistence_gives_up_after_attempts():
    db = FakeDB({"b1": [withdrawal("0x01")]}, fail_times=100)
    with pytest.raises(RuntimeError, match="deadlock"):
        make(db, FakeRpc(), retry_attempts=3).process_once()
    assert db.transactions == 3


def test_start_and_stop_loop():
    db = FakeDB({"b1": [withdrawal("0x01")]})
    rpc = FakeRpc()
    worker = make(db, rpc)
    worker.start()
    with pytest.raises(RuntimeError):
        worker.start()
    assert rpc.event.wait(5)
    worker.stop()
    assert "0x01" in rpc.sent
    assert db.withdraw_updates[0][0] == "b1"


def test_critical_error_triggers_shutdown_and_stop_raises():
    db = FakeDB({"b1": [withdrawal("0x01")]}, fail_times=100)
    causes = []
    done = threading.Event()

    def shutdown(cause):
        causes.append(cause)
        done.set()

    worker = make(db, FakeRpc(), shutdown=shutdown, retry_attempts=1)
    worker.start()
    assert done.wait(5)
    with pytest.raises(RuntimeError, match="failed to await withdraw"):
        worker.stop()
    assert "critical error in withdraw" in str(causes[0])