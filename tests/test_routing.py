"""Tests for tag routing (invoicer.routing)."""

from invoicer.recipients import RecipientIndex
from invoicer.routing import RoutedEntry, route


class TestRoute:
    def test_tagged_entry_to_matching_recipient(self, make_entry, make_recipient):
        index = RecipientIndex([make_recipient("acme"), make_recipient("beta", tags={"ops": "Ops"})])
        entry = make_entry(tags={"dev"}, message="Importer")
        result = route([entry], index)
        assert [r.entry for r in result.entries_for("acme")] == [entry]
        assert result.entries_for("beta") == []
        assert result.unrouted == []

    def test_label_from_recipient(self, make_entry, make_recipient):
        index = RecipientIndex([make_recipient("acme", tags={"dev": "Software development"})])
        result = route([make_entry(tags={"dev"}, message="Importer")], index)
        assert result.entries_for("acme")[0].description == "Software development"

    def test_name_tag_uses_message(self, make_entry, make_recipient):
        index = RecipientIndex([make_recipient("acme"), make_recipient("beta")])
        result = route([make_entry(tags={"beta"}, message="Call with Bob")], index)
        assert result.entries_for("beta")[0].description == "Call with Bob"

    def test_multiple_recipients_each_billed(self, make_entry, make_recipient):
        index = RecipientIndex([
            make_recipient("acme", tags={"dev": "Dev"}),
            make_recipient("CustomerB", tags={}),
        ])
        entry = make_entry(tags={"dev", "CustomerB"})
        result = route([entry], index)
        assert [r.entry for r in result.entries_for("acme")] == [entry]
        assert [r.entry for r in result.entries_for("CustomerB")] == [entry]

    def test_unmatched_tags_unrouted(self, make_entry, make_recipient, caplog):
        index = RecipientIndex([make_recipient("acme")])
        result = route([make_entry(tags={"hobby"}, message="Side project", row=5)], index)
        assert result.entries_for("acme") == []
        assert len(result.unrouted) == 1
        unrouted = result.unrouted[0]
        assert unrouted.tags == ("hobby",)
        assert unrouted.row == 5
        assert "Side project" in caplog.text

    def test_untagged_single_recipient(self, make_entry, make_recipient):
        index = RecipientIndex([make_recipient("acme")])
        result = route([make_entry(message="Misc")], index)
        routed = result.entries_for("acme")
        assert len(routed) == 1
        assert routed[0].label is None
        assert routed[0].description == "Misc"

    def test_untagged_several_recipients(self, make_entry, make_recipient):
        index = RecipientIndex([make_recipient("acme"), make_recipient("beta")])
        result = route([make_entry()], index)
        assert result.entries_for("acme") == []
        assert result.entries_for("beta") == []
        assert "untagged" in result.unrouted[0].reason
        assert "(untagged)" in str(result.unrouted[0])

    def test_every_recipient_has_a_list(self, make_recipient):
        index = RecipientIndex([make_recipient("acme"), make_recipient("beta")])
        result = route([], index)
        assert result.assignments == {"acme": [], "beta": []}

    def test_entry_order_preserved(self, make_entry, make_recipient):
        index = RecipientIndex([make_recipient("acme")])
        entries = [make_entry(tags={"dev"}, message=str(i)) for i in range(5)]
        result = route(entries, index)
        assert [r.entry.message for r in result.entries_for("acme")] == ["0", "1", "2", "3", "4"]


class TestRoutedEntry:
    def test_description_prefers_label(self, make_entry):
        assert RoutedEntry(make_entry(message="m"), "label").description == "label"
        assert RoutedEntry(make_entry(message="m")).description == "m"
