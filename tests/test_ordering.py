from datetime import datetime, timedelta, timezone

from chatsync.realtime import ordering
from chatsync.schemas.conversation import ConversationListItem
from chatsync.schemas.message import Message


T0 = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)
NOW = datetime(2026, 3, 5, 15, 0, tzinfo=timezone.utc)


def item(cid, at):
    return ConversationListItem(id=cid, name=cid, last_message_at=at)


def msg(mid, at, sender="alice", status="sent"):
    return Message(id=mid, conversation_id="c1", sender_id=sender, content=mid, created_at=at, status=status)


class TestActivityOrdering:

    def test_most_recent_first(self):
        t1, t2, t3 = T0, T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)
        ordered = ordering.sort_by_activity([item("a", t1), item("c", t3), item("b", t2)])
        assert [i.last_message_at for i in ordered] == [t3, t2, t1]

    def test_ties_keep_input_order(self):
        ordered = ordering.sort_by_activity([item("x", T0), item("y", T0), item("z", T0 + timedelta(seconds=1))])
        assert [i.id for i in ordered] == ["z", "x", "y"]

    def test_items_without_activity_sink(self):
        ordered = ordering.sort_by_activity([item("none", None), item("old", T0)])
        assert [i.id for i in ordered] == ["old", "none"]

    def test_naive_timestamps_treated_as_utc(self):
        naive = item("naive", datetime(2026, 3, 5, 13, 0))
        aware = item("aware", T0)
        assert [i.id for i in ordering.sort_by_activity([aware, naive])] == ["naive", "aware"]


class TestMessageMerge:

    def test_insert_keeps_created_at_order(self):
        messages = []
        ordering.insert_message(messages, msg("m2", T0 + timedelta(seconds=2)))
        ordering.insert_message(messages, msg("m1", T0 + timedelta(seconds=1)))
        ordering.insert_message(messages, msg("m3", T0 + timedelta(seconds=3)))
        assert [m.id for m in messages] == ["m1", "m2", "m3"]

    def test_duplicate_id_is_ignored(self):
        messages = [msg("m1", T0)]
        assert ordering.insert_message(messages, msg("m1", T0 + timedelta(hours=1))) is False
        assert len(messages) == 1
        assert messages[0].created_at == T0

    def test_merge_counts_new_entries_only(self):
        messages = [msg("m1", T0)]
        added = ordering.merge_messages(messages, [msg("m1", T0), msg("m2", T0 + timedelta(seconds=1)), msg("m2", T0)])
        assert added == 1
        assert [m.id for m in messages] == ["m1", "m2"]

    def test_equal_timestamps_append_after_existing(self):
        messages = [msg("first", T0)]
        ordering.insert_message(messages, msg("second", T0))
        assert [m.id for m in messages] == ["first", "second"]

    def test_status_applies_by_id(self):
        messages = [msg("m1", T0)]
        assert ordering.apply_status(messages, "m1", "read") is True
        assert messages[0].status == "read"

    def test_unknown_status_target_dropped(self):
        messages = [msg("m1", T0)]
        assert ordering.apply_status(messages, "ghost", "read") is False
        assert messages[0].status == "sent"

    def test_read_is_not_reverted_by_late_sent(self):
        messages = [msg("m1", T0, status="read")]
        assert ordering.apply_status(messages, "m1", "sent") is False
        assert messages[0].status == "read"


class TestDayGrouping:

    def test_same_day_messages_share_today_separator(self):
        groups = ordering.group_by_day(
            [msg("m1", NOW - timedelta(hours=6)), msg("m2", NOW - timedelta(hours=1))],
            now=NOW,
            tz=timezone.utc,
        )
        assert len(groups) == 1
        assert groups[0].label == "Today"
        assert [m.id for m in groups[0].messages] == ["m1", "m2"]

    def test_yesterday_and_older_labels(self):
        groups = ordering.group_by_day(
            [
                msg("old", datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)),
                msg("yday", datetime(2026, 3, 4, 23, 0, tzinfo=timezone.utc)),
                msg("today", datetime(2026, 3, 5, 0, 30, tzinfo=timezone.utc)),
            ],
            now=NOW,
            tz=timezone.utc,
        )
        assert [g.label for g in groups] == ["Sunday, Mar 1", "Yesterday", "Today"]

    def test_label_uses_viewer_timezone(self):
        eastern = timezone(timedelta(hours=-5))
        # 02:00 UTC on the 5th is 21:00 on the 4th for this viewer
        label = ordering.day_label(datetime(2026, 3, 5, 2, 0, tzinfo=timezone.utc), now=NOW, tz=eastern)
        assert label == "Yesterday"

    def test_regrouping_reflects_new_messages(self):
        messages = [msg("m1", NOW - timedelta(days=1))]
        assert [g.label for g in ordering.group_by_day(messages, now=NOW, tz=timezone.utc)] == ["Yesterday"]
        ordering.insert_message(messages, msg("m2", NOW))
        assert [g.label for g in ordering.group_by_day(messages, now=NOW, tz=timezone.utc)] == ["Yesterday", "Today"]

    def test_undated_message_has_empty_label(self):
        assert ordering.day_label(None, now=NOW) == ""
