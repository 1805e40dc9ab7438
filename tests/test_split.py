from uuid import uuid4

from utils.idempotency import IdempotencyKey, choose_weighted, IdempotencyChecker


def test_seventy_thirty_split_over_many_enrollments():
    counts = [0, 0]
    for _ in range(10000):
        counts[choose_weighted([70, 30], uuid4().hex, "split-1")] += 1

    share = counts[0] / 10000
    assert 0.67 <= share <= 0.73


def test_assignment_is_deterministic():
    ids = [f"enrollment-{i}" for i in range(500)]
    first = [choose_weighted([70, 30], i, "split-1") for i in ids]
    second = [choose_weighted([70, 30], i, "split-1") for i in ids]
    assert first == second


def test_independent_splits_in_one_graph():
    ids = [f"enrollment-{i}" for i in range(2000)]
    a = [choose_weighted([50, 50], i, "split-a") for i in ids]
    b = [choose_weighted([50, 50], i, "split-b") for i in ids]
    # Same enrollment does not land on the same side of every split
    assert a != b


def test_three_way_split_covers_every_branch():
    seen = {choose_weighted([1, 1, 1], f"e{i}", "s") for i in range(300)}
    assert seen == {0, 1, 2}


def test_stable_bucket_range():
    for i in range(100):
        assert 0 <= IdempotencyKey.stable_bucket(7, i) < 7


def test_idempotency_checker_is_bounded():
    checker = IdempotencyChecker(max_keys=2)
    assert checker.check_and_mark("a") is False
    assert checker.check_and_mark("a") is True
    checker.check_and_mark("b")
    checker.check_and_mark("c")
    # "a" was evicted
    assert checker.check_and_mark("a") is False
