"""Tests for data models and structured errors."""

from datetime import datetime, timezone

import pytest

from image_slimmer_core.exceptions import (
    AnalyzerError,
    ErrorCode,
    as_analyzer_error,
    is_code,
)
from image_slimmer_core.models import Image, Layer


def make_layer(index: int, **overrides) -> Layer:
    values = dict(
        index=index,
        digest=f"sha256:{index:064x}",
        diff_id=f"sha256:{index + 100:064x}",
        media_type="application/vnd.oci.image.layer.v1.tar+gzip",
        compressed_size=100,
        uncompressed_size=300,
    )
    values.update(overrides)
    return Layer(**values)


def make_image(**overrides) -> Image:
    values = dict(
        reference="alpine:3.20",
        digest="sha256:" + "a" * 64,
        media_type="application/vnd.oci.image.manifest.v1+json",
        size=512,
        layers=(make_layer(0), make_layer(1)),
        loaded_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Image(**values)


class TestAnalyzerError:
    """Structured error behaviour."""

    def test_equality_by_code_only(self):
        """Test errors with the same code compare equal."""
        first = AnalyzerError(ErrorCode.TIMEOUT, "fetch", "a:1", "slow")
        second = AnalyzerError(ErrorCode.TIMEOUT, "build", "b:2", "other message")
        third = AnalyzerError(ErrorCode.UNKNOWN, "fetch", "a:1", "slow")

        assert first == second
        assert first != third
        assert len({first, second, third}) == 2

    def test_string_rendering(self):
        """Test the rendered message includes code, op and ref."""
        cause = RuntimeError("connection reset")
        error = AnalyzerError(ErrorCode.FETCH_FAILED, "fetch", "a:1", "network error", cause)

        assert str(error) == "[FETCH_FAILED] network error (op=fetch ref=a:1): connection reset"
        assert str(AnalyzerError(ErrorCode.NO_LAYERS, "build", "a:1", "empty")) == (
            "[NO_LAYERS] empty (op=build ref=a:1)"
        )

    def test_cause_is_chained(self):
        """Test the cause is kept for diagnostics."""
        cause = OSError("disk full")
        error = AnalyzerError(ErrorCode.LAYER_EXTRACT_FAILED, "filesystem", "", "write", cause)

        assert error.cause is cause
        assert error.__cause__ is cause

    def test_temporary_codes(self):
        """Test only TIMEOUT and FETCH_FAILED are temporary."""
        temporary = {
            code
            for code in ErrorCode
            if AnalyzerError(code, "op", "ref", "msg").temporary
        }
        assert temporary == {ErrorCode.TIMEOUT, ErrorCode.FETCH_FAILED}
        assert AnalyzerError(ErrorCode.TIMEOUT, "op", "ref", "msg").timeout

    def test_wrap_uses_code_as_message(self):
        """Test wrap() defaults the message to the code."""
        error = AnalyzerError.wrap(ErrorCode.SIZE_FAILED, "build", "a:1", ValueError("x"))

        assert error.message == "SIZE_FAILED"

    def test_metrics_attached_once(self):
        """Test attach_metrics keeps the first snapshot."""
        error = AnalyzerError(ErrorCode.UNKNOWN, "op", "ref", "msg")
        error.attach_metrics("first")
        error.attach_metrics("second")

        assert error.metrics == "first"

    def test_helpers_walk_cause_chain(self):
        """Test is_code and as_analyzer_error find wrapped errors."""
        inner = AnalyzerError(ErrorCode.UNAUTHORIZED, "fetch", "a:1", "denied")
        try:
            try:
                raise inner
            except AnalyzerError as e:
                raise RuntimeError("outer") from e
        except RuntimeError as e:
            outer = e

        assert as_analyzer_error(outer) is inner
        assert is_code(outer, ErrorCode.UNAUTHORIZED)
        assert not is_code(outer, ErrorCode.TIMEOUT)
        assert not is_code(ValueError("plain"), ErrorCode.UNKNOWN)
        assert as_analyzer_error(None) is None


class TestImageValidation:
    """Image.validate structural checks."""

    def test_valid_image(self):
        """Test a well formed image passes."""
        make_image().validate()

    def test_metadata_only_allows_empty_layers(self):
        """Test empty layers are accepted only in metadata-only mode."""
        image = make_image(layers=())

        image.validate(metadata_only=True)
        with pytest.raises(AnalyzerError) as exc_info:
            image.validate()
        assert exc_info.value.code is ErrorCode.VALIDATION_FAILED

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"reference": ""}, "reference is empty"),
            ({"digest": ""}, "digest is empty"),
            ({"size": 0}, "size is invalid"),
            ({"layers": (make_layer(0, digest=""),)}, "empty digest"),
            ({"layers": (make_layer(0, diff_id=""),)}, "empty diff id"),
            ({"layers": (make_layer(0, compressed_size=-1),)}, "compressed size"),
            ({"layers": (make_layer(0, uncompressed_size=-1),)}, "uncompressed size"),
            ({"layers": (make_layer(1),)}, "out of order"),
        ],
    )
    def test_violations(self, overrides, message):
        """Test each structural violation is reported."""
        with pytest.raises(AnalyzerError, match=message) as exc_info:
            make_image(**overrides).validate()

        assert exc_info.value.code is ErrorCode.VALIDATION_FAILED
        assert exc_info.value.operation == "validate"


def test_image_totals_and_dict():
    """Test aggregate sizes and deterministic rendering."""
    image = make_image()

    assert image.total_compressed_size == 200
    assert image.total_uncompressed_size == 600

    data = image.to_dict()
    assert data["reference"] == "alpine:3.20"
    assert [layer["index"] for layer in data["layers"]] == [0, 1]
    assert data["layers"][0]["diffId"] == make_layer(0).diff_id
    assert data["loadedAt"] == "2024-01-01T00:00:00+00:00"


def test_image_is_immutable():
    """Test images cannot be modified after creation."""
    image = make_image()

    with pytest.raises(AttributeError):
        image.digest = "sha256:" + "b" * 64  # type: ignore[misc]
