"""Tests for conversation and message history."""

import datetime
import json
from unittest.mock import create_autospec

import pytest

from ragchat import ChatHistory, RecordStore
from ragchat.history import (
    CONVERSATION_LIMIT,
    CONVERSATIONS_TABLE,
    MESSAGE_LIMIT,
    MESSAGES_TABLE,
    record_id,
)


@pytest.fixture
def store():
    return create_autospec(RecordStore, instance=True)


@pytest.fixture
def history(store):
    return ChatHistory(store)


def test_record_id_accepts_both_spellings():
    assert record_id({"Id": 3}) == 3
    assert record_id({"id": 4}) == 4
    assert record_id({}) is None


def test_list_conversations_newest_first(history, store):
    store.list_records.return_value = [{"Id": 2}, {"Id": 1}]

    assert history.list_conversations(7) == [{"Id": 2}, {"Id": 1}]
    store.list_records.assert_called_once_with(
        CONVERSATIONS_TABLE,
        where="(user_id,eq,7)",
        sort="-CreatedAt",
        limit=CONVERSATION_LIMIT,
    )


def test_create_conversation_defaults(history, store):
    store.create_record.return_value = {"Id": 11}

    assert history.create_conversation(7, "New Chat") == {"Id": 11}
    store.create_record.assert_called_once_with(
        CONVERSATIONS_TABLE,
        {
            "user_id": 7,
            "title": "New Chat",
            "model_used": "",
            "prompt_used": "",
            "message_count": 0,
            "is_archived": False,
        },
    )


def test_get_messages_in_timestamp_order(history, store):
    history.get_messages(11)

    store.list_records.assert_called_once_with(
        MESSAGES_TABLE,
        where="(conversation_id,eq,11)",
        sort="timestamp",
        limit=MESSAGE_LIMIT,
    )


def test_delete_conversation_removes_messages_first(history, store):
    store.list_records.return_value = [{"Id": 100}, {"id": 101}]

    history.delete_conversation(11)

    assert store.delete_record.call_args_list[0].args == (MESSAGES_TABLE, 100)
    assert store.delete_record.call_args_list[1].args == (MESSAGES_TABLE, 101)
    assert store.delete_record.call_args_list[-1].args == (CONVERSATIONS_TABLE, 11)
    assert store.delete_record.call_count == 3


def test_add_message_bumps_message_count(history, store):
    store.create_record.return_value = {"Id": 500}
    store.get_record.return_value = {"Id": 11, "message_count": 4}

    message = history.add_message(
        11, "assistant", "Paris.", model="llama", metadata={"tool": "search_internet"}
    )

    assert message == {"Id": 500}
    table, fields = store.create_record.call_args.args
    assert table == MESSAGES_TABLE
    assert fields["conversation_id"] == 11
    assert fields["role"] == "assistant"
    assert fields["model_used"] == "llama"
    assert json.loads(fields["metadata"]) == {"tool": "search_internet"}
    assert datetime.datetime.fromisoformat(fields["timestamp"]).tzinfo is not None
    store.update_record.assert_called_once_with(
        CONVERSATIONS_TABLE, 11, {"message_count": 5}
    )


def test_add_message_with_missing_count(history, store):
    store.get_record.return_value = {"Id": 11}

    history.add_message(11, "user", "Hi")

    assert store.create_record.call_args.args[1]["metadata"] == ""
    store.update_record.assert_called_once_with(
        CONVERSATIONS_TABLE, 11, {"message_count": 1}
    )
