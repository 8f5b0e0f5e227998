"""Tests for threading header extraction and source priority."""

from __future__ import annotations

from typing import Any

from helpdesk.domain.errors import HeaderParseError
from helpdesk.email.embedded import END_SENTINEL, START_SENTINEL
from helpdesk.email.headers import (
    DEFAULT_SOURCES,
    HeaderContext,
    HeaderExtractor,
    extract_threading_headers,
    index_provider_headers,
)
from helpdesk.email.models import ProviderHeader

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _block(*lines: str) -> str:
    return "\n".join([START_SENTINEL, *lines, END_SENTINEL])


def _html(*lines: str) -> str:
    return f"<html><body><p>Thanks for reaching out!</p>{_block(*lines)}</body></html>"


def _headers(**values: str) -> list[dict[str, Any]]:
    return [{"name": name.replace("_", "-"), "value": value} for name, value in values.items()]


# ---------------------------------------------------------------------------
# Source priority
# ---------------------------------------------------------------------------


class TestSourcePriority:
    """Embedded beats namespaced beats standard, field by field."""

    def test_embedded_message_id_wins_over_standard(self) -> None:
        html = _html("Message-ID: <embedded@ours.example>")
        provider = _headers(**{"Message_ID": "<standard@provider.example>"})

        headers = extract_threading_headers(provider, html)

        assert headers.message_id == "<embedded@ours.example>"

    def test_namespaced_wins_over_standard(self) -> None:
        provider = [
            {"name": "Message-ID", "value": "<rewritten@outlook.example>"},
            {"name": "X-Message-ID-RFC2822", "value": "<original@ours.example>"},
        ]

        headers = extract_threading_headers(provider, "")

        assert headers.message_id == "<original@ours.example>"

    def test_embedded_wins_over_namespaced(self) -> None:
        provider = [{"name": "X-In-Reply-To-RFC2822", "value": "<namespaced@ours.example>"}]
        html = _html("In-Reply-To: <embedded@ours.example>")

        headers = extract_threading_headers(provider, html)

        assert headers.in_reply_to == "<embedded@ours.example>"

    def test_fields_resolve_independently(self) -> None:
        html = _html("Message-ID: <embedded@ours.example>")
        provider = [
            {"name": "In-Reply-To", "value": "<parent@customer.example>"},
            {"name": "X-Thread-Index", "value": "AdmZ1234"},
            {"name": "References", "value": "  <root@customer.example> <parent@customer.example>  "},
        ]

        headers = extract_threading_headers(provider, html)

        assert headers.message_id == "<embedded@ours.example>"
        assert headers.in_reply_to == "<parent@customer.example>"
        assert headers.thread_index == "AdmZ1234"
        assert headers.references == "<root@customer.example> <parent@customer.example>"

    def test_standard_headers_for_external_mail(self) -> None:
        provider = [
            {"name": "Message-ID", "value": "<m1@customer.example>"},
            {"name": "In-Reply-To", "value": "<m0@ours.example>"},
            {"name": "References", "value": "<m0@ours.example>"},
            {"name": "Thread-Index", "value": "AQHZabc="},
            {"name": "Thread-Topic", "value": "Order #42"},
        ]

        headers = extract_threading_headers(provider, "<p>plain reply</p>")

        assert headers.message_id == "<m1@customer.example>"
        assert headers.in_reply_to == "<m0@ours.example>"
        assert headers.references == "<m0@ours.example>"
        assert headers.thread_index == "AQHZabc="
        assert headers.thread_topic == "Order #42"

    def test_header_names_are_case_insensitive(self) -> None:
        provider = [{"name": "message-id", "value": "<lower@customer.example>"}]
        assert extract_threading_headers(provider, "").message_id == "<lower@customer.example>"

    def test_provider_message_id_is_last_resort(self) -> None:
        headers = extract_threading_headers(
            [], "", fallback_message_id="<graph-property@outlook.example>"
        )
        assert headers.message_id == "<graph-property@outlook.example>"

    def test_provider_message_id_does_not_override_header(self) -> None:
        provider = [{"name": "Message-ID", "value": "<header@customer.example>"}]
        headers = extract_threading_headers(
            provider, "", fallback_message_id="<graph-property@outlook.example>"
        )
        assert headers.message_id == "<header@customer.example>"

    def test_accepts_provider_header_models(self) -> None:
        provider = [ProviderHeader(name="Message-ID", value="<model@customer.example>")]
        assert extract_threading_headers(provider, None).message_id == "<model@customer.example>"


# ---------------------------------------------------------------------------
# Absence propagation
# ---------------------------------------------------------------------------


class TestAbsence:
    """Missing values stay None and never become empty strings."""

    def test_nothing_available(self) -> None:
        headers = extract_threading_headers([], "")

        assert headers.message_id is None
        assert headers.in_reply_to is None
        assert headers.references is None
        assert headers.thread_index is None
        assert headers.thread_topic is None

    def test_none_inputs(self) -> None:
        headers = extract_threading_headers(None, None)
        assert headers.message_id is None

    def test_blank_header_falls_through_to_next_source(self) -> None:
        provider = [
            {"name": "X-Message-ID-RFC2822", "value": "   "},
            {"name": "Message-ID", "value": "<standard@customer.example>"},
        ]
        assert extract_threading_headers(provider, "").message_id == "<standard@customer.example>"

    def test_blank_everywhere_is_absent(self) -> None:
        provider = [{"name": "In-Reply-To", "value": ""}]
        assert extract_threading_headers(provider, "").in_reply_to is None

    def test_malformed_entries_are_skipped(self) -> None:
        provider: list[Any] = [
            {"name": "Message-ID"},
            {"value": "<orphan@x>"},
            "garbage",
            {"name": "In-Reply-To", "value": "<ok@customer.example>"},
        ]
        headers = extract_threading_headers(provider, "")
        assert headers.message_id is None
        assert headers.in_reply_to == "<ok@customer.example>"


# ---------------------------------------------------------------------------
# Embedded block edge cases
# ---------------------------------------------------------------------------


class TestEmbeddedBlock:
    """Malformed or missing blocks fall through to the provider headers."""

    def test_unterminated_block_is_ignored(self) -> None:
        html = f"<p>hi</p>{START_SENTINEL}\nMessage-ID: <partial@ours.example>\n"
        provider = [{"name": "Message-ID", "value": "<standard@customer.example>"}]

        headers = extract_threading_headers(provider, html)

        assert headers.message_id == "<standard@customer.example>"

    def test_no_block_falls_through(self) -> None:
        provider = [{"name": "Message-ID", "value": "<standard@customer.example>"}]
        assert (
            extract_threading_headers(provider, "<p>no block</p>").message_id
            == "<standard@customer.example>"
        )

    def test_br_separated_lines(self) -> None:
        html = (
            f"{START_SENTINEL}Message-ID: <a@ours.example><br>"
            f"In-Reply-To: <b@ours.example><br/>{END_SENTINEL}"
        )
        headers = extract_threading_headers([], html)
        assert headers.message_id == "<a@ours.example>"
        assert headers.in_reply_to == "<b@ours.example>"

    def test_all_fields_from_block(self) -> None:
        html = _html(
            "Message-ID: <m2@ours.example>",
            "In-Reply-To: <m1@customer.example>",
            "References: <m0@ours.example> <m1@customer.example>",
            "Thread-Topic: Refund request",
            "Thread-Index: AdmZ1234",
        )
        headers = extract_threading_headers([], html)

        assert headers.message_id == "<m2@ours.example>"
        assert headers.in_reply_to == "<m1@customer.example>"
        assert headers.references == "<m0@ours.example> <m1@customer.example>"
        assert headers.thread_topic == "Refund request"
        assert headers.thread_index == "AdmZ1234"


# ---------------------------------------------------------------------------
# Custom sources and failure isolation
# ---------------------------------------------------------------------------


class TestHeaderExtractor:
    """The extractor is an ordered list of sources and never raises."""

    def test_failing_source_does_not_abort(self) -> None:
        def broken(ctx: HeaderContext) -> dict[str, str]:
            raise RuntimeError("boom")

        extractor = HeaderExtractor([broken, *DEFAULT_SOURCES])
        provider = [{"name": "Message-ID", "value": "<ok@customer.example>"}]

        assert extractor.extract(provider, "").message_id == "<ok@customer.example>"

    def test_parse_error_source_is_skipped(self) -> None:
        def malformed(ctx: HeaderContext) -> dict[str, str]:
            raise HeaderParseError("bad")

        def fallback(ctx: HeaderContext) -> dict[str, str]:
            return {"thread_topic": "Fallback topic"}

        extractor = HeaderExtractor([malformed, fallback])
        assert extractor.extract([], "").thread_topic == "Fallback topic"

    def test_custom_source_priority(self) -> None:
        def crm(ctx: HeaderContext) -> dict[str, str]:
            return {"message_id": "<crm@ours.example>"}

        extractor = HeaderExtractor([crm, *DEFAULT_SOURCES])
        provider = [{"name": "Message-ID", "value": "<standard@customer.example>"}]

        assert extractor.extract(provider, "").message_id == "<crm@ours.example>"

    def test_unknown_fields_from_source_are_ignored(self) -> None:
        def noisy(ctx: HeaderContext) -> dict[str, str]:
            return {"subject": "nope", "message_id": "<m@x>"}

        headers = HeaderExtractor([noisy]).extract([], "")
        assert headers.message_id == "<m@x>"


class TestIndexProviderHeaders:
    """Provider header lists are indexed by lower-cased name."""

    def test_first_occurrence_wins(self) -> None:
        indexed = index_provider_headers(
            [
                {"name": "Received", "value": "first"},
                {"name": "received", "value": "second"},
            ]
        )
        assert indexed == {"received": "first"}

    def test_empty(self) -> None:
        assert index_provider_headers(None) == {}
