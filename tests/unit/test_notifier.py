"""
Unit tests for Teams notifications.
"""
import json
import urllib.error
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from models.hold import Hold
from pipeline.notifier import TeamsNotifier


@pytest.fixture
def hold(make_document) -> Hold:
    return Hold(
        id="hold-1",
        document_id=make_document().id,
        reason="missing_po",
        details="No PO number found on the invoice",
        created_at=datetime(2024, 3, 15, tzinfo=timezone.utc),
    )


def _ok_response():
    response = MagicMock()
    response.getcode.return_value = 200
    response.__enter__.return_value = response
    return response


@pytest.mark.unit
class TestRenderCard:
    """Tests for the MessageCard template."""

    def test_render_is_valid_message_card(self):
        notifier = TeamsNotifier("https://example.test/hook", admin_ui_url="http://ap.local/")
        card = notifier.render_card(
            title="Invoice on hold",
            subtitle="Ace Supply",
            facts=[("Supplier", 'Ace "Quoted" Supply'), ("Amount", "$110.00")],
            theme_color="D13438",
            link="http://ap.local/holds/1",
        )

        assert card["@type"] == "MessageCard"
        assert card["summary"] == "Invoice on hold"
        facts = card["sections"][0]["facts"]
        assert facts[0] == {"name": "Supplier", "value": 'Ace "Quoted" Supply'}
        assert card["potentialAction"][0]["targets"][0]["uri"] == "http://ap.local/holds/1"

    def test_render_with_no_facts(self):
        notifier = TeamsNotifier("https://example.test/hook")
        card = notifier.render_card("t", "s", [], "FFFFFF", "http://x")
        assert card["sections"][0]["facts"] == []


@pytest.mark.unit
class TestDelivery:
    """Tests for sending cards."""

    def test_no_webhook_only_logs(self, make_document, hold):
        notifier = TeamsNotifier(None)
        with patch("urllib.request.urlopen") as mock_urlopen:
            result = notifier.send("title", "sub", [("a", "b")], "FFFFFF", "http://x")
            notifier.hold_created(make_document(), hold)
        assert result["status"] == "skipped"
        mock_urlopen.assert_not_called()

    def test_hold_created_posts_card(self, make_document, hold):
        notifier = TeamsNotifier("https://example.test/hook")
        with patch("urllib.request.urlopen", return_value=_ok_response()) as mock_urlopen:
            notifier.hold_created(make_document(), hold)

        request = mock_urlopen.call_args[0][0]
        assert request.full_url == "https://example.test/hook"
        assert request.get_method() == "POST"
        body = json.loads(request.data.decode("utf-8"))
        facts = {f["name"]: f["value"] for f in body["sections"][0]["facts"]}
        assert facts["Reason"] == "missing_po"
        assert facts["Amount"] == "$110.00"

    def test_variance_alert_posts_card(self, make_document, found_lookup):
        from pipeline.disposition import DispositionEngine

        doc = make_document()
        match = DispositionEngine().evaluate(doc, found_lookup(ordered_total=7000))
        notifier = TeamsNotifier("https://example.test/hook")
        with patch("urllib.request.urlopen", return_value=_ok_response()) as mock_urlopen:
            notifier.variance_alert(doc, match)

        body = json.loads(mock_urlopen.call_args[0][0].data.decode("utf-8"))
        facts = {f["name"]: f["value"] for f in body["sections"][0]["facts"]}
        assert facts["Variance"] == "$40.00"
        assert facts["Action"] == "draft_then_alert"

    def test_http_error_is_reported_not_raised(self):
        notifier = TeamsNotifier("https://example.test/hook")
        error = urllib.error.HTTPError("https://example.test/hook", 500, "boom", {}, None)
        with patch("urllib.request.urlopen", side_effect=error):
            result = notifier.send("t", "s", [], "FFFFFF", "http://x")
        assert result["status"] == "failed"
        assert result["status_code"] == 500

    def test_network_error_is_reported_not_raised(self):
        notifier = TeamsNotifier("https://example.test/hook")
        with patch("urllib.request.urlopen", side_effect=OSError("unreachable")):
            result = notifier.send("t", "s", [], "FFFFFF", "http://x")
        assert result == {"status": "failed", "error": "unreachable"}

    def test_missing_template_is_reported(self, temp_dir):
        notifier = TeamsNotifier("https://example.test/hook", template_dir=temp_dir)
        result = notifier.send("t", "s", [], "FFFFFF", "http://x")
        assert result["status"] == "failed"
