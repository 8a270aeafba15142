"""Tests for credential masking and the logging filter."""

from __future__ import annotations

import logging
import sys

import pytest

from ziplinegate.sandbox.masking import (
    MASK,
    UNSERIALIZABLE,
    SecretMasker,
    SecretMaskingFilter,
    configure_logging,
    mask_token,
)


class TestMaskToken:
    def test_replaces_every_occurrence(self, token):
        text = f"auth={token} again {token}"
        assert mask_token(text, token) == f"auth={MASK} again {MASK}"

    def test_idempotent(self, token):
        once = mask_token(f"x {token} y", token)
        assert mask_token(once, token) == once

    @pytest.mark.parametrize("secret", [None, ""])
    def test_no_secret_is_passthrough(self, secret):
        assert mask_token("plain text", secret) == "plain text"

    def test_non_string_passthrough(self, token):
        assert mask_token(42, token) == 42


class TestSecretMasker:
    def test_nested_structures(self, masker, token):
        value = {"headers": {"authorization": token}, "items": [token, 1, None]}
        masked = masker.mask_value(value)
        assert masked == {"headers": {"authorization": MASK}, "items": [MASK, 1, None]}

    def test_primitives_untouched(self, masker):
        assert masker.mask_value(3) == 3
        assert masker.mask_value(None) is None
        assert masker.mask_value(True) is True

    def test_bytes_are_opaque(self, masker, token):
        assert masker.mask_value(token.encode()) == UNSERIALIZABLE

    def test_unserializable_structure(self, masker):
        assert masker.mask_value({"s": {1, 2}}) == UNSERIALIZABLE

    def test_arbitrary_object_uses_str(self, masker, token):
        class Holder:
            def __str__(self) -> str:
                return f"Holder({token})"

        assert masker.mask_value(Holder()) == f"Holder({MASK})"

    def test_secure_log(self, masker, token, caplog):
        logger = logging.getLogger("ziplinegate.test")
        with caplog.at_level(logging.INFO, logger="ziplinegate.test"):
            masker.secure_log(logger, logging.INFO, "calling with %s and %s", token, {"t": token})
        assert token not in caplog.text
        assert MASK in caplog.text

    def test_secure_log_rejoins_split_secret(self, masker, token, caplog):
        logger = logging.getLogger("ziplinegate.test")
        half = len(token) // 2
        with caplog.at_level(logging.INFO, logger="ziplinegate.test"):
            masker.secure_log(logger, logging.INFO, "%s%s", token[:half], token[half:])
        assert token not in caplog.text


class TestSecretMaskingFilter:
    def test_masks_rendered_message(self, masker, token):
        record = logging.LogRecord(
            "x", logging.INFO, __file__, 1, "token is %s", (token,), None
        )
        assert SecretMaskingFilter(masker).filter(record) is True
        assert record.getMessage() == f"token is {MASK}"

    def test_masks_exception_text(self, masker, token):
        try:
            raise RuntimeError(f"bad credential {token}")
        except RuntimeError:
            exc_info = sys.exc_info()
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, exc_info)
        SecretMaskingFilter(masker).filter(record)
        assert token not in record.exc_text
        assert MASK in record.exc_text

    def test_configure_logging_installs_filter(self, masker):
        root = logging.getLogger()
        handler = logging.StreamHandler()
        root.addHandler(handler)
        try:
            configure_logging("INFO", masker)
            assert any(isinstance(f, SecretMaskingFilter) for f in handler.filters)
        finally:
            root.removeHandler(handler)
