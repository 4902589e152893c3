from __future__ import annotations

import pytest

from shared.result import Result


def test_ok_result_exposes_value() -> None:
    result: Result[int, Exception] = Result.ok(3)

    assert result.is_ok()
    assert not result.is_missing()
    assert not result.is_err()
    assert result.unwrap() == 3


def test_missing_result_is_not_an_error() -> None:
    result: Result[int, Exception] = Result.missing()

    assert result.is_missing()
    assert not result.is_err()
    with pytest.raises(LookupError):
        result.unwrap()


def test_error_result_carries_exception() -> None:
    failure = ValueError("bad metadata")
    result: Result[int, Exception] = Result.err(failure)

    assert result.is_err()
    assert not result.is_missing()
    assert result.error is failure
    with pytest.raises(RuntimeError, match="bad metadata"):
        result.unwrap()
