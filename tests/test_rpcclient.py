import pytest

from exwallet.models import BlockHeader, hex_to_hash
from exwallet.rpcclient import ChainsUnionError, ChainsUnionRpcClient


class FakeService:
    def __init__(self, **responses):
        self.responses = responses
        self.requests = []

    def _reply(self, name, request):
        self.requests.append((name, request))
        reply = self.responses[name]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def convert_address(self, request):
        return self._reply("convert_address", request)

    def get_block_header_by_number(self, request):
        return self._reply("get_block_header_by_number", request)

    def get_block_by_number(self, request):
        return self._reply("get_block_by_number", request)

    def get_tx_by_hash(self, request):
        return self._reply("get_tx_by_hash", request)

    def send_tx(self, request):
        return self._reply("send_tx", request)


def _client(**responses):
    service = FakeService(**responses)
    return ChainsUnionRpcClient(service, "Ethereum"), service


def test_export_address_success():
    client, service = _client(convert_address={"code": "SUCCESS", "address": "0xabc"})
    assert client.export_address_by_public_key("", "pubkey") == "0xabc"
    assert service.requests == [
        ("convert_address", {"chain": "Ethereum", "type": "", "public_key": "pubkey"})
    ]


def test_export_address_transport_failure_gives_empty():
    client, _ = _client(convert_address=ConnectionError("down"))
    assert client.export_address_by_public_key("", "pubkey") == ""


def test_export_address_error_code_gives_empty():
    client, _ = _client(convert_address={"code": "ERROR", "address": "0xabc"})
    assert client.export_address_by_public_key("", "pubkey") == ""


def test_get_latest_block_header():
    reply = {
        "code": "SUCCESS",
        "block_header": {"hash": "0xABCD", "parent_hash": "0x12", "number": "100", "time": 55},
    }
    client, service = _client(get_block_header_by_number=reply)
    header = client.get_block_header(None)
    assert header == BlockHeader(
        hash=hex_to_hash("0xabcd"), parent_hash=hex_to_hash("0x12"), number=100, timestamp=55
    )
    assert service.requests[0][1] == {"chain": "Ethereum", "network": "mainnet", "height": 0}


def test_get_block_header_at_height_sends_height():
    reply = {"code": "SUCCESS", "block_header": {"hash": "0x1", "parent_hash": "0x0", "number": "42"}}
    client, service = _client(get_block_header_by_number=reply)
    assert client.get_block_header(42).number == 42
    assert service.requests[0][1]["height"] == 42


def test_get_block_header_error_code_raises():
    client, _ = _client(get_block_header_by_number={"code": "ERROR", "msg": "no block"})
    with pytest.raises(ChainsUnionError):
        client.get_block_header(5)


def test_get_block_header_bad_number_raises():
    reply = {"code": "SUCCESS", "block_header": {"hash": "0x1", "parent_hash": "0x0", "number": "1e3"}}
    client, _ = _client(get_block_header_by_number=reply)
    with pytest.raises(ChainsUnionError):
        client.get_block_header(None)


def test_get_block_header_transport_error_propagates():
    client, _ = _client(get_block_header_by_number=ConnectionError("down"))
    with pytest.raises(ConnectionError):
        client.get_block_header(None)


def test_get_block_info_returns_transactions():
    txs = [{"hash": "0x1", "from": "0xa", "to": "0xb"}]
    client, service = _client(get_block_by_number={"code": "SUCCESS", "transactions": txs})
    assert client.get_block_info(9) == txs
    assert service.requests[0][1] == {"chain": "Ethereum", "height": 9, "view_tx": True}


def test_get_block_info_error_code_raises():
    client, _ = _client(get_block_by_number={"code": "ERROR"})
    with pytest.raises(ChainsUnionError):
        client.get_block_info(9)


def test_get_transaction_by_hash():
    tx = {"hash": "0xfeed", "value": "10"}
    client, service = _client(get_tx_by_hash={"code": "SUCCESS", "tx": tx})
    assert client.get_transaction_by_hash("0xfeed") == tx
    assert service.requests[0][1] == {"chain": "Ethereum", "network": "mainnet", "hash": "0xfeed"}


def test_send_tx_returns_hash():
    client, service = _client(send_tx={"code": "SUCCESS", "tx_hash": "0xdead"})
    assert client.send_tx("0xraw") == "0xdead"
    assert service.requests[0][1]["raw_tx"] == "0xraw"


def test_send_tx_without_reply_raises():
    client, _ = _client(send_tx=None)
    with pytest.raises(ChainsUnionError):
        client.send_tx("0xraw")


def test_send_tx_error_code_raises():
    client, _ = _client(send_tx={"code": "ERROR", "msg": "nonce too low"})
    with pytest.raises(ChainsUnionError, match="nonce too low"):
        client.send_tx("0xraw")