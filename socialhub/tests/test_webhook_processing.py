"""
Tests for webhook event processing: Meta and WhatsApp processors, the
processing tasks, replay and retention
"""
from datetime import datetime, timedelta, timezone

import pytest

from socialhub.core.exceptions import MalformedPayloadError
from socialhub.db.models import (
    ChannelStatus, ChannelType, Comment, CommentStatus, Conversation, Message, MessageDirection,
    UsageRecord, WebhookEvent, WebhookStatus,
)
from socialhub.services.meta_webhook_processor import MetaWebhookProcessor, infer_message_type
from socialhub.services.webhook_event_store import WebhookEventStore
from socialhub.services.whatsapp_webhook_processor import extract_content
from socialhub.tasks.maintenance_tasks import purge_processed_webhook_events
from socialhub.tasks.webhook_tasks import enqueue_webhook_event, process_meta_webhook, process_whatsapp_webhook
from socialhub.tests.conftest import make_channel
from socialhub.tests.test_webhooks_api import page_message_payload, whatsapp_payload


def store_event(db, provider, payload):
    return WebhookEventStore(db).accept(provider, "sha256=test", payload, enqueue=False)


def run(task, db, event):
    result = task(event.id)
    db.expire_all()
    return result


def add_outbound(db, conversation, provider_message_id):
    message = Message(
        conversation_id=conversation.id,
        provider_message_id=provider_message_id,
        direction=MessageDirection.OUT,
        body="Thanks for reaching out",
    )
    db.add(message)
    db.commit()
    return message


class TestMetaMessaging:

    def test_inbound_message_creates_conversation(self, test_db, facebook_channel):
        event = store_event(test_db, "facebook", page_message_payload(mid="m_1", text="Do you deliver?"))

        result = run(process_meta_webhook, test_db, event)

        assert result["status"] == WebhookStatus.PROCESSED
        assert event.status == WebhookStatus.PROCESSED
        assert event.processed_at is not None
        assert event.tenant_id == facebook_channel.tenant_id
        assert event.channel_id == facebook_channel.id

        conversation = test_db.query(Conversation).one()
        assert conversation.peer_id == "psid-42"
        assert conversation.last_message_at is not None

        message = test_db.query(Message).one()
        assert message.provider_message_id == "m_1"
        assert message.body == "Do you deliver?"
        assert message.type == "text"
        assert message.direction == MessageDirection.IN

    def test_same_message_in_two_events_is_stored_once(self, test_db, facebook_channel):
        payload = page_message_payload(mid="m_dup")
        first = store_event(test_db, "facebook", payload)
        second = store_event(test_db, "facebook", payload)

        run(process_meta_webhook, test_db, first)
        run(process_meta_webhook, test_db, second)

        assert second.status == WebhookStatus.PROCESSED
        assert test_db.query(Message).count() == 1
        assert test_db.query(Conversation).count() == 1
        assert test_db.query(UsageRecord).one().quantity == 1

    def test_processed_event_is_not_processed_again(self, test_db, facebook_channel):
        event = store_event(test_db, "facebook", page_message_payload())
        run(process_meta_webhook, test_db, event)

        assert run(process_meta_webhook, test_db, event)["status"] == "skipped"
        assert test_db.query(UsageRecord).one().quantity == 1

    def test_unknown_page_skipped_and_processed(self, test_db, facebook_channel):
        event = store_event(test_db, "facebook", page_message_payload(page_id="424242"))

        run(process_meta_webhook, test_db, event)

        assert event.status == WebhookStatus.PROCESSED
        assert event.channel_id is None
        assert test_db.query(Message).count() == 0

    def test_echo_messages_skipped(self, test_db, facebook_channel):
        payload = page_message_payload()
        payload["entry"][0]["messaging"][0]["message"]["is_echo"] = True
        event = store_event(test_db, "facebook", payload)

        run(process_meta_webhook, test_db, event)

        assert test_db.query(Message).count() == 0

    def test_attachment_message(self, test_db, facebook_channel):
        payload = page_message_payload()
        payload["entry"][0]["messaging"][0]["message"] = {
            "mid": "m_img",
            "attachments": [{"type": "image", "payload": {"url": "https://scontent.example.net/p.jpg"}}],
        }
        event = store_event(test_db, "facebook", payload)

        run(process_meta_webhook, test_db, event)

        message = test_db.query(Message).one()
        assert message.type == "image"
        assert message.media[0]["payload"]["url"] == "https://scontent.example.net/p.jpg"

    def test_message_without_mid_fails_event(self, test_db, facebook_channel):
        payload = page_message_payload()
        del payload["entry"][0]["messaging"][0]["message"]["mid"]
        event = store_event(test_db, "facebook", payload)

        with pytest.raises(MalformedPayloadError):
            run(process_meta_webhook, test_db, event)

        test_db.expire_all()
        assert event.status == WebhookStatus.FAILED
        assert "no mid" in event.error

    def test_missing_entry_fails_event(self, test_db):
        event = store_event(test_db, "facebook", {"object": "page"})

        with pytest.raises(MalformedPayloadError, match="missing entry field"):
            run(process_meta_webhook, test_db, event)

        test_db.expire_all()
        assert event.status == WebhookStatus.FAILED
        assert event.error == "Invalid webhook payload: missing entry field"

    def test_delivery_receipt_marks_outbound_delivered(self, test_db, facebook_channel, conversation):
        outbound = add_outbound(test_db, conversation, "m_out_1")
        payload = {
            "object": "page",
            "entry": [{"id": "1001", "messaging": [{
                "sender": {"id": "psid-42"},
                "recipient": {"id": "1001"},
                "delivery": {"mids": ["m_out_1"], "watermark": 1717000000000},
            }]}],
        }
        event = store_event(test_db, "facebook", payload)

        run(process_meta_webhook, test_db, event)

        assert test_db.get(Message, outbound.id).delivered_at is not None

    def test_read_watermark(self, test_db, facebook_channel, conversation):
        outbound = add_outbound(test_db, conversation, "m_out_2")

        def read_payload(watermark):
            return {
                "object": "page",
                "entry": [{"id": "1001", "messaging": [{
                    "sender": {"id": "psid-42"},
                    "recipient": {"id": "1001"},
                    "read": {"watermark": watermark},
                }]}],
            }

        # A watermark before the message was sent leaves it unread
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", read_payload(1000)))
        assert test_db.get(Message, outbound.id).read_at is None

        far_future = int(datetime(2100, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", read_payload(far_future)))
        assert test_db.get(Message, outbound.id).read_at is not None

    def test_instagram_object_resolves_instagram_channel(self, test_db, facebook_channel, instagram_channel):
        payload = {
            "object": "instagram",
            "entry": [{"id": "17841400000000000", "messaging": [{
                "sender": {"id": "igsid-9"},
                "recipient": {"id": "17841400000000000"},
                "message": {"mid": "ig_m_1", "text": "Open on Sundays?"},
            }]}],
        }
        event = store_event(test_db, "facebook", payload)

        run(process_meta_webhook, test_db, event)

        conversation = test_db.query(Conversation).one()
        assert conversation.channel_id == instagram_channel.id
        assert event.channel_id == instagram_channel.id

    def test_active_channel_preferred_for_shared_identifier(self, test_db, tenant):
        inactive = make_channel(test_db, tenant, ChannelType.FACEBOOK, {"page_id": "1001"}, status=ChannelStatus.REVOKED)
        active = make_channel(test_db, tenant, ChannelType.FACEBOOK, {"page_id": "1001"})
        event = store_event(test_db, "facebook", page_message_payload())

        run(process_meta_webhook, test_db, event)

        assert event.channel_id == active.id
        assert event.channel_id != inactive.id

    def test_infer_message_type(self):
        assert infer_message_type({"text": "hi"}) == "text"
        assert infer_message_type({"attachments": [{"type": "video"}]}) == "video"
        assert infer_message_type({"attachments": [{}]}) == "file"


class TestMetaComments:

    def feed_payload(self, **value):
        base = {
            "item": "comment",
            "verb": "add",
            "comment_id": "1001_555_1",
            "post_id": "1001_555",
            "parent_id": "1001_555",
            "message": "Love this!",
            "from": {"id": "u_1", "name": "Robin"},
            "created_time": 1717000000,
        }
        base.update(value)
        return {"object": "page", "entry": [{"id": "1001", "changes": [{"field": "feed", "value": base}]}]}

    def test_facebook_comment_stored_once(self, test_db, facebook_channel):
        payload = self.feed_payload()
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", payload))
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", payload))

        comment = test_db.query(Comment).one()
        assert comment.provider_comment_id == "1001_555_1"
        assert comment.provider_post_id == "1001_555"
        assert comment.message == "Love this!"
        assert comment.provider_username == "Robin"
        assert comment.is_reply is False
        assert comment.status == CommentStatus.VISIBLE

    def test_facebook_reply_links_parent(self, test_db, facebook_channel):
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", self.feed_payload()))
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", self.feed_payload(
            comment_id="1001_555_2", parent_id="1001_555_1", message="Thanks Robin",
        )))

        parent = test_db.query(Comment).filter(Comment.provider_comment_id == "1001_555_1").one()
        reply = test_db.query(Comment).filter(Comment.provider_comment_id == "1001_555_2").one()
        assert reply.is_reply is True
        assert reply.parent_id == parent.id

    def test_facebook_remove_and_edit(self, test_db, facebook_channel):
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", self.feed_payload()))
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", self.feed_payload(verb="edited", message="Love this!!")))
        assert test_db.query(Comment).one().message == "Love this!!"

        run(process_meta_webhook, test_db, store_event(test_db, "facebook", self.feed_payload(verb="remove")))
        assert test_db.query(Comment).one().status == CommentStatus.DELETED

    def test_instagram_comment(self, test_db, instagram_channel):
        payload = {
            "object": "instagram",
            "entry": [{"id": "17841400000000000", "changes": [{"field": "comments", "value": {
                "id": "ig_c_1",
                "text": "Where is this?",
                "from": {"id": "ig_u_1", "username": "robin.eats"},
                "media": {"id": "ig_media_1"},
            }}]}],
        }
        run(process_meta_webhook, test_db, store_event(test_db, "facebook", payload))

        comment = test_db.query(Comment).one()
        assert comment.channel_id == instagram_channel.id
        assert comment.provider_post_id == "ig_media_1"
        assert comment.provider_username == "robin.eats"

    def test_comment_for_unknown_page_skipped(self, test_db, tenant):
        event = store_event(test_db, "facebook", self.feed_payload())
        run(process_meta_webhook, test_db, event)

        assert event.status == WebhookStatus.PROCESSED
        assert test_db.query(Comment).count() == 0


class TestWhatsApp:

    def test_inbound_text_message(self, test_db, whatsapp_channel):
        event = store_event(test_db, "whatsapp", whatsapp_payload(phone_number_id="555", message_id="wamid.abc", sender="15551234", text="hi"))

        run(process_whatsapp_webhook, test_db, event)

        message = test_db.query(Message).one()
        assert message.provider_message_id == "wamid.abc"
        assert message.body == "hi"
        assert message.conversation.channel_id == whatsapp_channel.id
        assert message.conversation.peer_id == "15551234"
        assert test_db.query(UsageRecord).filter(UsageRecord.metric == "messages").one().quantity == 1

    def test_redelivered_message_ignored(self, test_db, whatsapp_channel):
        payload = whatsapp_payload()
        run(process_whatsapp_webhook, test_db, store_event(test_db, "whatsapp", payload))
        run(process_whatsapp_webhook, test_db, store_event(test_db, "whatsapp", payload))

        assert test_db.query(Message).count() == 1
        assert test_db.query(UsageRecord).one().quantity == 1

    def test_unknown_phone_number(self, test_db, whatsapp_channel):
        event = store_event(test_db, "whatsapp", whatsapp_payload(phone_number_id="000"))
        run(process_whatsapp_webhook, test_db, event)

        assert event.status == WebhookStatus.PROCESSED
        assert test_db.query(Message).count() == 0

    def status_payload(self, message_id, status, **extra):
        entry = {"id": message_id, "status": status, "recipient_id": "15551234", "timestamp": "1717000001"}
        entry.update(extra)
        return {"object": "whatsapp_business_account", "entry": [{"changes": [{"field": "messages", "value": {
            "metadata": {"phone_number_id": "555"},
            "statuses": [entry],
        }}]}]}

    def test_status_updates(self, test_db, whatsapp_channel):
        conversation = Conversation(tenant_id=whatsapp_channel.tenant_id, channel_id=whatsapp_channel.id, peer_id="15551234")
        test_db.add(conversation)
        test_db.commit()
        delivered = add_outbound(test_db, conversation, "wamid.out1")
        read = add_outbound(test_db, conversation, "wamid.out2")
        failed = add_outbound(test_db, conversation, "wamid.out3")

        run(process_whatsapp_webhook, test_db, store_event(test_db, "whatsapp", self.status_payload("wamid.out1", "delivered")))
        run(process_whatsapp_webhook, test_db, store_event(test_db, "whatsapp", self.status_payload("wamid.out2", "read")))
        run(process_whatsapp_webhook, test_db, store_event(test_db, "whatsapp", self.status_payload(
            "wamid.out3", "failed", errors=[{"code": 131047, "title": "Re-engagement message"}],
        )))

        delivered = test_db.get(Message, delivered.id)
        read = test_db.get(Message, read.id)
        failed = test_db.get(Message, failed.id)
        assert delivered.delivered_at is not None
        assert delivered.read_at is None
        assert read.read_at is not None
        assert read.delivered_at is not None
        assert failed.meta["error"][0]["code"] == 131047
        assert "failed_at" in failed.meta

    def test_status_for_other_channel_ignored(self, test_db, tenant, whatsapp_channel):
        other = make_channel(test_db, tenant, ChannelType.WHATSAPP, {"phone_number_id": "666"})
        conversation = Conversation(tenant_id=tenant.id, channel_id=other.id, peer_id="15551234")
        test_db.add(conversation)
        test_db.commit()
        message = add_outbound(test_db, conversation, "wamid.other")

        run(process_whatsapp_webhook, test_db, store_event(test_db, "whatsapp", self.status_payload("wamid.other", "delivered")))

        assert test_db.get(Message, message.id).delivered_at is None

    def test_extract_content(self):
        assert extract_content({"type": "text", "text": {"body": "hi"}}) == ("text", "hi", None)
        message_type, body, media = extract_content({"type": "image", "image": {"id": "media-1", "caption": "menu"}})
        assert message_type == "image"
        assert body == "menu"
        assert media == [{"id": "media-1", "caption": "menu"}]
        assert extract_content({"type": "location", "location": {}}) == ("location", None, None)


class TestReplayAndRetention:

    def test_replay_of_malformed_event_fails_again(self, test_db, facebook_channel):
        payload = page_message_payload()
        payload["entry"][0]["messaging"][0]["message"].pop("mid")
        event = store_event(test_db, "facebook", payload)
        with pytest.raises(MalformedPayloadError):
            run(process_meta_webhook, test_db, event)
        test_db.expire_all()
        assert event.status == WebhookStatus.FAILED

        # Replay runs the processing task eagerly
        WebhookEventStore(test_db).replay(event.id)
        test_db.expire_all()
        assert event.status == WebhookStatus.FAILED
        assert event.error is not None

    def test_replay_reprocesses_failed_event(self, test_db, facebook_channel):
        event = store_event(test_db, "facebook", page_message_payload(mid="m_replay"))
        event.status = WebhookStatus.FAILED
        event.error = "worker lost"
        test_db.commit()

        WebhookEventStore(test_db).replay(event.id)
        test_db.expire_all()

        assert event.status == WebhookStatus.PROCESSED
        assert event.error is None
        assert test_db.query(Message).filter(Message.provider_message_id == "m_replay").count() == 1

    def test_processed_event_cannot_be_replayed(self, test_db, facebook_channel):
        event = store_event(test_db, "facebook", page_message_payload())
        run(process_meta_webhook, test_db, event)

        with pytest.raises(ValueError, match="only failed or pending"):
            WebhookEventStore(test_db).replay(event.id, enqueue=False)

    def test_replay_unknown_event(self, test_db):
        with pytest.raises(LookupError):
            WebhookEventStore(test_db).replay(12345, enqueue=False)

    def test_enqueue_unknown_provider(self):
        with pytest.raises(ValueError):
            enqueue_webhook_event("tiktok", 1)

    def test_missing_event(self, test_db):
        assert process_meta_webhook(4242)["status"] == "missing"

    def test_purge_processed_events(self, test_db):
        now = datetime.now(timezone.utc)
        old_processed = WebhookEvent(provider="facebook", payload={}, status=WebhookStatus.PROCESSED, created_at=now - timedelta(days=45))
        old_failed = WebhookEvent(provider="facebook", payload={}, status=WebhookStatus.FAILED, created_at=now - timedelta(days=45))
        recent = WebhookEvent(provider="whatsapp", payload={}, status=WebhookStatus.PROCESSED, created_at=now - timedelta(days=2))
        test_db.add_all([old_processed, old_failed, recent])
        test_db.commit()
        kept_ids = {old_failed.id, recent.id}

        result = purge_processed_webhook_events()

        test_db.expire_all()
        assert result == {"deleted": 1}
        assert {event.id for event in test_db.query(WebhookEvent).all()} == kept_ids
