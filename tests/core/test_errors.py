import asyncio

import httpx
import pytest

from paycore.core.errors import (
    AlreadyProcessedError,
    ErrorKind,
    NoProviderAvailableError,
    SenderWalletMissingError,
    classify_provider_error,
)


class ProviderRpcError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


@pytest.mark.parametrize(
    "error,expected",
    [
        (ProviderRpcError("denied", code=4001), ErrorKind.USER_REJECTED),
        (Exception("User rejected the request."), ErrorKind.USER_REJECTED),
        (Exception("insufficient funds for gas * price + value"), ErrorKind.INSUFFICIENT_FUNDS),
        (Exception("Transaction simulation failed: Blockhash not found"), ErrorKind.BLOCKHASH_NOT_FOUND),
        (asyncio.TimeoutError(), ErrorKind.NETWORK_ERROR),
        (httpx.ConnectError("refused"), ErrorKind.NETWORK_ERROR),
        (Exception("something odd"), ErrorKind.UNKNOWN),
    ],
)
def test_classify_provider_error(error, expected):
    assert classify_provider_error(error) == expected


def test_error_code_in_dict_args():
    assert classify_provider_error(Exception({"code": 4001, "message": "x"})) == ErrorKind.USER_REJECTED


def test_typed_errors_keep_kind():
    assert classify_provider_error(NoProviderAvailableError("solana")) == ErrorKind.NO_PROVIDER_AVAILABLE


def test_error_context():
    error = SenderWalletMissingError("req-1", "solana")

    assert error.recoverable
    assert error.context.details == {"request_id": "req-1", "network": "solana"}
    assert error.next_actions == ("decline",)
    assert "solana" in error.message


def test_already_processed_message_includes_status():
    error = AlreadyProcessedError("req-1", "declined")

    assert error.kind == ErrorKind.ALREADY_PROCESSED
    assert "declined" in str(error)
