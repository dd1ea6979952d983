"""Tests for Ok/Err results and secret wrappers."""

from __future__ import annotations

import pytest
from pydantic import SecretStr

from tether.core.errors import NotFound
from tether.core.result import Err, Ok, partition_results
from tether.core.secrets import SecretValue, reveal, to_secret


class TestResult:
    def test_ok(self):
        result = Ok(3)
        assert result.is_ok() and not result.is_err()
        assert result.unwrap() == 3
        assert result.map(lambda v: v * 2).unwrap() == 6

    def test_err_unwrap_reraises(self):
        error = NotFound("gone")
        result = Err(error)
        assert result.is_err()
        assert result.unwrap_or(0) == 0
        with pytest.raises(NotFound):
            result.unwrap()

    def test_partition(self):
        oks, errs = partition_results([Ok(1), Err(ValueError("x")), Ok(2)])
        assert oks == [1, 2]
        assert len(errs) == 1


class TestSecretValue:
    def test_never_printed(self):
        secret = SecretValue("tok")
        assert str(secret) == "[REDACTED]"
        assert "tok" not in repr(secret)
        assert secret.get_secret() == "tok"

    def test_to_secret(self):
        assert to_secret(None) is None
        assert to_secret("") is None
        assert to_secret(SecretStr("a")).get_secret() == "a"
        value = SecretValue("b")
        assert to_secret(value) is value
        assert reveal(to_secret("c")) == "c"
