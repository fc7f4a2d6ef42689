from board_monitor.whitelist import extract_sprint_tags, is_eligible


def test_tagged_title_in_whitelist_is_eligible():
    assert is_eligible("Fix bug [19]", ["19", "10"]) is True


def test_tagged_title_outside_whitelist_is_rejected():
    assert is_eligible("Fix bug [7]", ["19", "10"]) is False


def test_empty_whitelist_accepts_untagged_title():
    assert is_eligible("Fix bug", []) is True


def test_untagged_title_rejected_when_whitelist_set():
    assert is_eligible("Fix bug", ["19"]) is False


def test_any_of_several_tags_is_enough():
    assert is_eligible("Fix [19][7]", ["7"]) is True


def test_whitelist_entries_are_stripped():
    assert is_eligible("Review [19]", [" 19 ", ""]) is True
    assert is_eligible("Review", [" ", ""]) is True


def test_extract_sprint_tags_in_order():
    assert extract_sprint_tags("A [3] b [12] [x]") == ["3", "12"]
    assert extract_sprint_tags("") == []
