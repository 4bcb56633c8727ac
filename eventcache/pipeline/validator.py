"""
Record validator: structural, digest, signature and timestamp checks.

`validate` never raises for bad input. It returns either a `Record` or a
`Rejection` and leaves logging and counting to the caller.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Union

from pydantic import ValidationError

from eventcache.config import ValidatorConfig
from eventcache.domain.records import Record
from eventcache.domain.signing import compute_event_id, verify_signature
from eventcache.errors import RejectReason, Rejection

ValidationResult = Union[Record, Rejection]
SignatureVerifier = Callable[[str, str, str], bool]


def _first_error(exc: ValidationError) -> tuple[str, str]:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or "record"
    return field, error.get("msg", "invalid value")


class RecordValidator:
    """
    Check that a raw record is well formed, authentic and plausibly timed.

    Parameters
    ----------
    config : ValidatorConfig
        Clock skew allowance and whether to verify signatures.
    clock : callable
        Returns the current unix time; injectable for tests.
    verifier : callable
        `(pubkey, event_id, sig) -> bool` signature check.
    """

    def __init__(
        self,
        config: ValidatorConfig | None = None,
        clock: Callable[[], float] = time.time,
        verifier: SignatureVerifier = verify_signature,
    ) -> None:
        self.config = config or ValidatorConfig()
        self._clock = clock
        self._verifier = verifier

    def validate(self, raw: Any) -> ValidationResult:
        if isinstance(raw, Record):
            record = raw
        else:
            if not isinstance(raw, dict):
                return Rejection(
                    RejectReason.MALFORMED_RECORD, f"expected an object, got {type(raw).__name__}"
                )
            try:
                record = Record.model_validate(raw)
            except ValidationError as exc:
                field, message = _first_error(exc)
                return Rejection(RejectReason.MALFORMED_RECORD, message, field=field)

        if "\x00" in record.content or any("\x00" in value for tag in record.tags for value in tag):
            return Rejection(RejectReason.MALFORMED_RECORD, "NUL character in content or tags")

        try:
            expected_id = compute_event_id(
                record.pubkey, record.created_at, record.kind, record.tags, record.content
            )
        except UnicodeEncodeError:
            return Rejection(
                RejectReason.MALFORMED_RECORD,
                "content or tags are not valid UTF-8",
                field="content",
            )
        if expected_id != record.id:
            return Rejection(
                RejectReason.MALFORMED_RECORD,
                "identifier does not match content digest",
                field="id",
            )

        if self.config.verify_signatures and not self._verifier(
            record.pubkey, record.id, record.sig
        ):
            return Rejection(
                RejectReason.SIGNATURE_INVALID, "signature does not verify", field="sig"
            )

        if record.created_at < 0:
            return Rejection(
                RejectReason.TIMESTAMP_OUT_OF_RANGE, "negative timestamp", field="created_at"
            )
        skew = record.created_at - self._clock()
        if skew > self.config.max_clock_skew_seconds:
            return Rejection(
                RejectReason.TIMESTAMP_OUT_OF_RANGE,
                f"{int(skew)}s in the future (max {self.config.max_clock_skew_seconds}s)",
                field="created_at",
            )

        return record


__all__ = ["RecordValidator", "SignatureVerifier", "ValidationResult"]
