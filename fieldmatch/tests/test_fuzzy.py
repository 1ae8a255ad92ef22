import pytest

from fieldmatch.matching.fuzzy import TagIndex, best_similarity, find_matches, similarity
from fieldmatch.models import RemoteRecord


def test_identical_tags_score_100_case_insensitively():
    assert similarity("Email", "email") == 100
    assert similarity("", "email") == 0


def test_containment_scales_with_length_ratio():
    # floor(85 * 4 / 5)
    assert similarity("mail", "email") == 68
    assert similarity("email", "mail") == 68


def test_character_set_similarity_for_unrelated_strings():
    # {g,m,a,i,l} vs {e,m,a,i,l}: 4 shared of 6 distinct
    assert similarity("gmail", "email") == 46


@pytest.mark.parametrize("a,b", [("phone", "telephone"), ("street", "address"), ("zip", "postal")])
def test_similarity_is_symmetric(a, b):
    assert similarity(a, b) == similarity(b, a)


def test_best_similarity_returns_winning_tag():
    assert best_similarity(["gmail", "contact"], ["email", "gmail"]) == (100, "gmail")


def test_find_matches_applies_threshold():
    records = [RemoteRecord(id="r1", tags=("email",)), RemoteRecord(id="r2", tags=("gmail",))]

    matches = find_matches(records, ["gmail"])

    assert [(match.record.id, match.score, match.matched_tag) for match in matches] == [("r2", 100, "gmail")]


def test_find_matches_sorts_by_score_then_record_id():
    records = [
        RemoteRecord(id="b", tags=("mail",)),
        RemoteRecord(id="a", tags=("mail",)),
        RemoteRecord(id="c", tags=("email",)),
    ]

    matches = find_matches(records, ["email"], threshold=60)

    assert [(match.record.id, match.score) for match in matches] == [("c", 100), ("a", 68), ("b", 68)]


def test_find_matches_can_reuse_a_tag_index():
    records = [RemoteRecord(id="r1", tags=("email", "work")), RemoteRecord(id="r2", tags=("phone",))]
    index = TagIndex.from_dict(TagIndex.from_records(records).to_dict())

    assert index.record_ids() == {"r1", "r2"}
    matches = find_matches(records[:1], ["email"], index=index)

    assert [match.record.id for match in matches] == ["r1"]


def test_find_matches_handles_empty_inputs():
    assert find_matches([], ["email"]) == []
    assert find_matches([RemoteRecord(id="r1", tags=("email",))], []) == []


def test_zero_threshold_keeps_records_with_no_overlap():
    records = [RemoteRecord(id="r1", tags=("xyz",))]

    matches = find_matches(records, ["abc"], threshold=0)

    assert [(match.record.id, match.score, match.matched_tag) for match in matches] == [("r1", 0, "xyz")]
