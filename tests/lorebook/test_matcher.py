"""Tests for storyforge.lorebook.matcher — tag index and text matching."""

from storyforge.lorebook import build_index, match_in_text, match_index_in_text, normalize


def test_normalize() -> None:
    assert normalize("  The Mage ") == "the mage"


class TestBuildIndex:
    def test_indexes_name_and_tags(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["Ally", "Red Cloak"])
        index = build_index([alice])
        assert set(index) == {"alice", "ally", "red cloak"}
        assert all(v is alice for v in index.values())

    def test_multi_word_tag_words_need_own_tag(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["The Mage"])
        index = build_index([alice])
        assert "the mage" in index
        assert "mage" not in index

    def test_word_indexed_when_also_standalone_tag(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["The Mage", "Mage"])
        assert build_index([alice])["mage"] is alice

    def test_disabled_entries_skipped(self, make_entry) -> None:
        ghost = make_entry("e1", "Ghost", tags=["ghost"], disabled=True)
        assert build_index([ghost]) == {}

    def test_blank_tags_ignored(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["", "  "])
        assert set(build_index([alice])) == {"alice"}


class TestMatchInText:
    def test_case_insensitive_substring(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["Alice"])
        assert match_in_text([alice], "ALICE walked in.") == [alice]
        # substring, not word boundary
        assert match_in_text([alice], "Malice grew.") == [alice]

    def test_no_match(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["Alice"])
        assert match_in_text([alice], "Bob walked in.") == []

    def test_disabled_never_matches(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["Alice"], disabled=True)
        assert match_in_text([alice], "Alice") == []

    def test_name_alone_does_not_match(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["the mage"])
        assert match_in_text([alice], "Alice smiled.") == []

    def test_input_order_and_no_duplicates(self, make_entry) -> None:
        bob = make_entry("e2", "Bob", tags=["Bob", "Bobby"])
        alice = make_entry("e1", "Alice", tags=["Alice"])
        result = match_in_text([bob, alice], "Alice met Bobby and Bob.")
        assert result == [bob, alice]

    def test_blank_tag_matches_nothing(self, make_entry) -> None:
        blank = make_entry("e1", "Blank", tags=[" "])
        assert match_in_text([blank], "anything at all") == []


class TestMatchIndexInText:
    def test_keyed_by_id(self, make_entry) -> None:
        alice = make_entry("e1", "Alice", tags=["The Mage"])
        bob = make_entry("e2", "Bob", tags=["Bob"])
        index = build_index([alice, bob])
        assert match_index_in_text(index, "The mage arrived.") == {"e1": alice}

    def test_name_matches_through_index(self, make_entry) -> None:
        alice = make_entry("e1", "Alice")
        index = build_index([alice])
        assert match_index_in_text(index, "Alice.") == {"e1": alice}
