"""
Faults: Fault, FaultContext and the ingestion taxonomy.
"""

import pytest

from multair.faults import (
    Fault,
    FaultContext,
    FaultDomain,
    Severity,
    MultairFault,
    ConfigurationError,
    FormParsingError,
    RequestStreamError,
    FileFilterError,
    FileSizeLimitError,
    DirectoryCreationError,
    StorageError,
    StorageErrorKind,
)
from multair.faults.core import DOMAIN_DEFAULTS


# ============================================================================
# Fault
# ============================================================================

class TestFault:

    def test_requires_code_message_domain(self):
        with pytest.raises(TypeError):
            Fault(code="X", message="missing domain")

    def test_domain_defaults_apply(self):
        fault = Fault(code="X", message="bad", domain=FaultDomain.CONFIG)
        assert fault.severity == DOMAIN_DEFAULTS[FaultDomain.CONFIG]["severity"]
        assert fault.retryable is False

    def test_str_and_dict(self):
        fault = Fault(code="UPLOAD_REJECTED", message="nope", domain=FaultDomain.FILTER)
        assert str(fault) == "[UPLOAD_REJECTED] nope"
        data = fault.to_dict()
        assert data["code"] == "UPLOAD_REJECTED"
        assert data["domain"] == "filter"
        assert data["severity"] == "warn"

    def test_domain_equality(self):
        assert FaultDomain("storage") == FaultDomain.STORAGE
        assert FaultDomain.STORAGE == "storage"
        assert len({FaultDomain("io"), FaultDomain.IO}) == 1


# ============================================================================
# Taxonomy
# ============================================================================

class TestTaxonomy:

    def test_all_are_multair_faults(self):
        faults = [
            ConfigurationError("bad", "limits", 3),
            FormParsingError(),
            RequestStreamError(),
            FileFilterError(),
            FileSizeLimitError(),
            DirectoryCreationError(path="/x"),
            StorageError("boom", StorageErrorKind.DISK),
        ]
        for fault in faults:
            assert isinstance(fault, MultairFault)
            assert isinstance(fault, Fault)

    def test_configuration_error_carries_option(self):
        err = ConfigurationError("limits option must be a mapping", "limits", [1])
        assert err.option_name == "limits"
        assert err.option_value == [1]
        assert err.code == "INVALID_OPTION"
        assert err.severity == Severity.FATAL

    def test_cause_is_chained(self):
        cause = ValueError("bad header")
        err = FormParsingError("Form parsing error", cause=cause)
        assert err.cause is cause
        assert err.__cause__ is cause
        assert err.to_dict()["metadata"]["cause"] == "bad header"

    def test_request_stream_error_retryable(self):
        assert RequestStreamError().retryable is True
        assert FormParsingError().retryable is False

    def test_file_filter_error_context(self):
        err = FileFilterError("denied", filename="a.exe", field_name="upload")
        assert err.filename == "a.exe"
        assert err.field_name == "upload"
        assert err.metadata["filename"] == "a.exe"

    def test_file_size_limit_without_limit(self):
        err = FileSizeLimitError(filename="big.bin", field_name="doc")
        assert err.limit is None
        assert "limit" not in err.metadata

    def test_file_size_limit_with_limit(self):
        err = FileSizeLimitError(filename="big.bin", field_name="doc", limit=10)
        assert err.limit == 10
        assert err.metadata["limit"] == 10

    def test_directory_creation_error(self):
        cause = PermissionError("denied")
        err = DirectoryCreationError(path="/root/x", cause=cause)
        assert err.path == "/root/x"
        assert err.cause is cause
        assert err.public is False


class TestStorageError:

    @pytest.mark.parametrize("kind,code", [
        (StorageErrorKind.MEMORY, "MEMORY_STORAGE_ERROR"),
        (StorageErrorKind.DISK, "DISK_STORAGE_ERROR"),
        (StorageErrorKind.DELETION, "FILE_DELETION_ERROR"),
        (StorageErrorKind.CONNECTION, "RELAY_CONNECTION_ERROR"),
        (StorageErrorKind.RELAY_READ, "RELAY_READ_ERROR"),
        (StorageErrorKind.RELAY_WRITE, "RELAY_WRITE_ERROR"),
    ])
    def test_codes(self, kind, code):
        assert StorageError("x", kind).code == code

    def test_kind_from_string(self):
        err = StorageError("x", "relay-read", filename="a.txt")
        assert err.kind is StorageErrorKind.RELAY_READ
        assert err.metadata["kind"] == "relay-read"
        assert err.filename == "a.txt"

    def test_only_connection_failures_are_retryable(self):
        for kind in StorageErrorKind:
            assert StorageError("x", kind).retryable is (kind is StorageErrorKind.CONNECTION)


# ============================================================================
# FaultContext
# ============================================================================

class TestFaultContext:

    def test_capture(self):
        cause = OSError("disk full")
        try:
            raise StorageError("write failed", StorageErrorKind.DISK, cause=cause)
        except StorageError as err:
            ctx = FaultContext.capture(err, request_id="req-1", phase="storing")

        assert ctx.request_id == "req-1"
        assert ctx.phase == "storing"
        assert ctx.cause is cause
        assert len(ctx.trace_id) == 16
        assert "request=req-1" in str(ctx)

    def test_fingerprint_groups_by_code_and_phase(self):
        a = FaultContext.capture(FormParsingError(), phase="parsing")
        b = FaultContext.capture(FormParsingError("other message"), phase="parsing")
        c = FaultContext.capture(FormParsingError(), phase="storing")
        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != c.fingerprint()

    def test_to_dict(self):
        ctx = FaultContext.capture(FileSizeLimitError(filename="x"), request_id="r")
        data = ctx.to_dict()
        assert data["fault"]["code"] == "FILE_SIZE_LIMIT"
        assert data["request_id"] == "r"
        assert data["fingerprint"] == ctx.fingerprint()
