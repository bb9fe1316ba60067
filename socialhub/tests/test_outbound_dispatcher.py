"""
Tests for outbound message creation and dispatch
"""
import pytest
from celery.exceptions import Retry
from unittest.mock import Mock, patch

from socialhub.core.exceptions import DispatchError
from socialhub.db.models import ChannelType, Message, MessageDirection
from socialhub.integrations.base import PlatformAPIError
from socialhub.integrations.registry import ADAPTERS
from socialhub.services.outbound_dispatcher import (
    PLACEHOLDER_PREFIX,
    OutboundDispatcher,
    extract_provider_message_id,
)
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.messaging_tasks import send_outbound_message


def adapter_returning(response):
    adapter = Mock()
    adapter.send_message.return_value = response
    return adapter


class TestExtractProviderMessageId:

    def test_messenger_response(self):
        assert extract_provider_message_id({"recipient_id": "psid", "message_id": "m_1"}) == "m_1"

    def test_whatsapp_response(self):
        assert extract_provider_message_id({"messages": [{"id": "wamid.1"}]}) == "wamid.1"

    def test_no_id(self):
        assert extract_provider_message_id({}) is None


class TestCreateOutboundMessage:

    def test_creates_placeholder_message(self, test_db, tenant, conversation):
        dispatcher = OutboundDispatcher(test_db)
        message = dispatcher.create_outbound_message(tenant.id, conversation.id, "We deliver until 9pm", enqueue=False)

        assert message.direction == MessageDirection.OUT
        assert message.provider_message_id.startswith(PLACEHOLDER_PREFIX)
        assert message.body == "We deliver until 9pm"
        assert message.delivered_at is None

    def test_placeholders_are_unique(self, test_db, tenant, conversation):
        dispatcher = OutboundDispatcher(test_db)
        first = dispatcher.create_outbound_message(tenant.id, conversation.id, "one", enqueue=False)
        second = dispatcher.create_outbound_message(tenant.id, conversation.id, "two", enqueue=False)
        assert first.provider_message_id != second.provider_message_id

    def test_other_tenants_conversation_rejected(self, test_db, tenant, conversation):
        with pytest.raises(LookupError):
            OutboundDispatcher(test_db).create_outbound_message(tenant.id + 1, conversation.id, "hi", enqueue=False)

    def test_empty_message_rejected(self, test_db, tenant, conversation):
        with pytest.raises(ValueError):
            OutboundDispatcher(test_db).create_outbound_message(tenant.id, conversation.id, "", enqueue=False)

    def test_enqueues_dispatch(self, test_db, tenant, conversation):
        with patch("socialhub.services.outbound_dispatcher._enqueue_dispatch") as enqueue:
            message = OutboundDispatcher(test_db).create_outbound_message(tenant.id, conversation.id, "hi")
        enqueue.assert_called_once_with(message)


class TestDispatch:

    def test_success_replaces_placeholder(self, test_db, tenant, conversation):
        adapter = adapter_returning({"recipient_id": "psid-42", "message_id": "m_sent"})
        dispatcher = OutboundDispatcher(test_db, adapter_factory=lambda channel: adapter)
        message = dispatcher.create_outbound_message(tenant.id, conversation.id, "Hello", enqueue=False)

        dispatched = dispatcher.dispatch(message.id)

        assert dispatched.provider_message_id == "m_sent"
        assert dispatched.meta["response"]["message_id"] == "m_sent"
        adapter.send_message.assert_called_once_with("psid-42", "Hello", None)
        adapter.close.assert_called_once()

    def test_media_resolved_before_send(self, test_db, tenant, conversation):
        adapter = adapter_returning({"message_id": "m_sent"})
        dispatcher = OutboundDispatcher(test_db, adapter_factory=lambda channel: adapter)
        message = dispatcher.create_outbound_message(
            tenant.id, conversation.id, None, media=["https://cdn.example.com/menu.jpg"], enqueue=False,
        )

        dispatcher.dispatch(message.id)

        adapter.send_message.assert_called_once_with(
            "psid-42", None, {"type": "image", "url": "https://cdn.example.com/menu.jpg"},
        )

    def test_unresolvable_media_is_never_sent(self, test_db, tenant, conversation):
        adapter = adapter_returning({"message_id": "m_sent"})
        dispatcher = OutboundDispatcher(test_db, adapter_factory=lambda channel: adapter)
        message = dispatcher.create_outbound_message(tenant.id, conversation.id, None, media=[424242], enqueue=False)

        with pytest.raises(DispatchError, match="Media 424242 could not be resolved"):
            dispatcher.dispatch(message.id)

        adapter.send_message.assert_not_called()
        test_db.expire_all()
        message = test_db.get(Message, message.id)
        assert message.provider_message_id.startswith(PLACEHOLDER_PREFIX)
        assert message.meta["error"] == "Media 424242 could not be resolved"

    def test_failure_recorded_and_reraised(self, test_db, tenant, conversation):
        adapter = Mock()
        adapter.send_message.side_effect = PlatformAPIError('facebook_send_message failed: {"error":{"code":10}}', status_code=400)
        dispatcher = OutboundDispatcher(test_db, adapter_factory=lambda channel: adapter)
        message = dispatcher.create_outbound_message(tenant.id, conversation.id, "Hello", enqueue=False)

        with pytest.raises(PlatformAPIError):
            dispatcher.dispatch(message.id)

        test_db.expire_all()
        message = test_db.get(Message, message.id)
        assert message.provider_message_id.startswith(PLACEHOLDER_PREFIX)
        assert '"code":10' in message.meta["error"]
        assert "failed_at" in message.meta

    def test_already_dispatched_is_not_resent(self, test_db, tenant, conversation):
        adapter = adapter_returning({"message_id": "m_sent"})
        dispatcher = OutboundDispatcher(test_db, adapter_factory=lambda channel: adapter)
        message = dispatcher.create_outbound_message(tenant.id, conversation.id, "Hello", enqueue=False)

        dispatcher.dispatch(message.id)
        dispatcher.dispatch(message.id)

        assert adapter.send_message.call_count == 1

    def test_missing_message(self, test_db):
        with pytest.raises(DispatchError):
            OutboundDispatcher(test_db).dispatch(999)


class TestSendOutboundMessageTask:

    def _failing_message(self, test_db, tenant, conversation):
        return OutboundDispatcher(test_db).create_outbound_message(tenant.id, conversation.id, "Hello", enqueue=False)

    @pytest.mark.parametrize("retries,countdown", [(0, 60), (1, 300)])
    def test_platform_error_retries_with_backoff(self, test_db, tenant, conversation, retries, countdown):
        message = self._failing_message(test_db, tenant, conversation)
        adapter = Mock()
        adapter.send_message.side_effect = PlatformAPIError("facebook_send_message failed: 500")

        with patch.dict(ADAPTERS, {ChannelType.FACEBOOK: lambda channel, **kwargs: adapter}), \
                patch.object(PipelineTask, "retry", side_effect=Retry()) as retry:
            send_outbound_message.push_request(retries=retries)
            try:
                with pytest.raises(Retry):
                    send_outbound_message.run(message.id)
            finally:
                send_outbound_message.pop_request()

        assert retry.call_args.kwargs["countdown"] == countdown
        assert retry.call_args.kwargs["max_retries"] == 2

    def test_last_attempt_raises(self, test_db, tenant, conversation):
        message = self._failing_message(test_db, tenant, conversation)
        adapter = Mock()
        adapter.send_message.side_effect = PlatformAPIError("facebook_send_message failed: 500")

        with patch.dict(ADAPTERS, {ChannelType.FACEBOOK: lambda channel, **kwargs: adapter}), \
                patch.object(PipelineTask, "retry") as retry:
            send_outbound_message.push_request(retries=2)
            try:
                with pytest.raises(PlatformAPIError):
                    send_outbound_message.run(message.id)
            finally:
                send_outbound_message.pop_request()

        retry.assert_not_called()

    def test_missing_message_is_not_retried(self, test_db):
        with patch.object(PipelineTask, "retry") as retry:
            with pytest.raises(DispatchError):
                send_outbound_message.run(999)
        retry.assert_not_called()
