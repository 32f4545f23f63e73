import asyncio

import pytest

from dialoglab.quiz import (
    AttemptTracker,
    ImageQuiz,
    OutcomeKind,
    QuizInactive,
    QuizLog,
    RunNotReady,
    ScoreBoard,
    VocabRunStore,
    VocabStats,
    match_objects,
    normalize_objects,
    submit_answer,
)


class TestAttemptTracker:
    def test_first_try_correct_scores_ten(self):
        tracker = AttemptTracker()
        outcome = submit_answer(tracker, " Menu ", "menu")
        assert outcome.kind is OutcomeKind.CORRECT
        assert outcome.points == 10
        assert tracker.resolved

    def test_second_try_correct_scores_five(self):
        tracker = AttemptTracker()
        assert submit_answer(tracker, "meal", "menu").kind is OutcomeKind.RETRY
        assert tracker.hint_available
        outcome = submit_answer(tracker, "menu", "menu")
        assert outcome.kind is OutcomeKind.CORRECT
        assert outcome.points == 5
        assert not tracker.hint_available

    def test_two_misses_reveal_the_answer(self):
        tracker = AttemptTracker()
        submit_answer(tracker, "meal", "menu")
        outcome = submit_answer(tracker, "many", "menu")
        assert outcome.kind is OutcomeKind.FINAL_INCORRECT
        assert outcome.revealed == "menu"
        assert outcome.needs_tts
        assert outcome.points == 0

    def test_resolved_tracker_ignores_further_answers(self):
        tracker = AttemptTracker()
        submit_answer(tracker, "menu", "menu")
        outcome = submit_answer(tracker, "menu", "menu")
        assert outcome.kind is OutcomeKind.ALREADY_RESOLVED
        assert tracker.attempt_count == 1

    def test_no_hint_before_first_attempt(self):
        assert not AttemptTracker().hint_available


def test_scoreboard_tracks_streaks():
    board = ScoreBoard()
    for given in ("bill", "bill"):
        board.apply(submit_answer(AttemptTracker(), given, "bill"))
    tracker = AttemptTracker()
    board.apply(submit_answer(tracker, "x", "table"))
    board.apply(submit_answer(tracker, "y", "table"))
    assert board.as_dict() == {"score": 20, "streak": 0, "bestStreak": 2, "correct": 2, "wrong": 1}


def test_vocab_run_must_resolve_before_advancing():
    store = VocabRunStore()
    run = store.start([{"de": "der Tisch", "en": "table"}, {"de": "die Rechnung", "en": "bill"}], "restaurant", "easy")
    assert store.get(run.id) is run

    with pytest.raises(RunNotReady):
        run.advance()
    run.answer(run.current["en"])
    run.advance()
    assert run.view()["position"] == 2
    run.answer("wrong")
    run.answer("still wrong")
    assert run.advance() is None
    assert run.finished
    assert run.view()["correct"] == 1
    assert run.view()["wrong"] == 1

    store.discard(run.id)
    assert store.get(run.id) is None


def test_vocab_stats_orders_difficult_words():
    stats = VocabStats()
    for correct in (False, False):
        stats.record("receipt", "die Quittung", correct)
    for correct in (False, True, True):
        stats.record("price", "der Preis", correct)
    stats.record("size", "die Größe", False)

    summary = stats.summary()
    assert summary["totalAttempts"] == 6
    assert summary["totalErrors"] == 4
    assert [w["english"] for w in summary["difficultWords"]] == ["receipt", "price"]


def test_vocab_stats_ties_break_on_attempts():
    stats = VocabStats()
    for _ in range(2):
        stats.record("gate", "das Gate", False)
    for _ in range(4):
        stats.record("flight", "der Flug", False)
    assert [w["english"] for w in stats.difficult_words()] == ["flight", "gate"]


def test_normalize_objects_dedupes():
    assert normalize_objects([" Apple", "apple", "", "Chairs"]) == ["apple", "chairs"]


@pytest.mark.parametrize(
    "phrase, expected",
    [
        ("I see two apples", ["apple"]),
        ("there is a chair", ["chairs"]),
        ("a red APPLE and some chairs", ["apple", "chairs"]),
        ("a dog", []),
        ("", []),
    ],
)
def test_match_objects(phrase, expected):
    assert match_objects(phrase, ["apple", "chairs"]) == expected


class TestImageQuiz:
    @pytest.mark.asyncio
    async def test_objects_are_credited_once(self):
        quiz = ImageQuiz()
        await quiz.start("http://img/1.png", ["Apple", "chairs"])

        first = await quiz.check("anna", "I see an apple")
        assert first.as_dict() == {
            "active": True,
            "found": ["apple"],
            "alreadyFound": [],
            "points": 10,
            "foundCount": 1,
            "totalObjects": 2,
        }
        again = await quiz.check("anna", "apple")
        assert again.found == []
        assert again.already_found == ["apple"]
        assert again.points == 0
        assert quiz.found_by("anna") == {"apple"}

    @pytest.mark.asyncio
    async def test_students_are_scored_separately(self):
        quiz = ImageQuiz()
        await quiz.start("http://img/1.png", ["apple", "chairs"])
        results = await asyncio.gather(
            quiz.check("anna", "apple"),
            quiz.check("ben", "apple and chairs"),
            quiz.check("anna", "apple"),
        )
        assert sum(r.points for r in results) == 30
        view = quiz.teacher_view()
        assert view["results"]["anna"] == {"found": ["apple"], "points": 10}
        assert view["results"]["ben"] == {"found": ["apple", "chairs"], "points": 20}

    @pytest.mark.asyncio
    async def test_check_needs_a_running_quiz(self):
        quiz = ImageQuiz()
        with pytest.raises(QuizInactive):
            await quiz.check("anna", "apple")
        await quiz.start("http://img/1.png", ["apple"])
        results = await quiz.end()
        assert results["objects"] == ["apple"]
        assert not quiz.public_view()["active"]
        with pytest.raises(QuizInactive):
            await quiz.check("anna", "apple")

    @pytest.mark.asyncio
    async def test_restart_clears_credits(self):
        quiz = ImageQuiz()
        await quiz.start("http://img/1.png", ["apple"])
        await quiz.check("anna", "apple")
        await quiz.start("http://img/2.png", ["lamp"])
        assert quiz.found_by("anna") == set()
        assert quiz.public_view() == {"active": True, "imageUrl": "http://img/2.png", "totalObjects": 1}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestVocabRunEviction:
    WORDS = [{"de": "der Tisch", "en": "table"}]

    def test_idle_runs_are_evicted(self):
        clock = FakeClock()
        store = VocabRunStore(ttl_seconds=60, clock=clock)
        abandoned = [store.start(self.WORDS, "restaurant", "easy") for _ in range(50)]
        clock.now += 61
        fresh = store.start(self.WORDS, "restaurant", "easy")
        assert len(store) == 1
        assert store.get(abandoned[0].id) is None
        assert store.get(fresh.id) is fresh

    def test_reading_a_run_keeps_it_alive(self):
        clock = FakeClock()
        store = VocabRunStore(ttl_seconds=60, clock=clock)
        run = store.start(self.WORDS, "restaurant", "easy")
        for _ in range(3):
            clock.now += 45
            assert store.get(run.id) is run
        clock.now += 61
        assert store.evict_idle() == 1
        assert store.get(run.id) is None


class TestQuizLog:
    def test_groups_by_student_and_image(self):
        log = QuizLog()
        first = log.record("Mia", "http://img/1.png", "What is it?", "An apple.")
        again = log.record("Mia", "http://img/1.png", "What colour?", "Red.")
        other_image = log.record("Mia", "http://img/2.png", "What is it?", "A lamp.")
        assert first == again != other_image
        assert [q["answer"] for q in log.get(first)["questions"]] == ["An apple.", "Red."]
        assert len(log) == 2

    def test_returns_copies(self):
        log = QuizLog()
        session_id = log.record("Leo", "http://img/1.png", "Q", "A")
        log.get(session_id)["questions"].clear()
        assert len(log.get(session_id)["questions"]) == 1

    def test_oldest_groups_are_dropped(self):
        log = QuizLog(max_sessions=2)
        oldest = log.record("a", "img", "q", "a")
        log.record("b", "img", "q", "a")
        log.record("c", "img", "q", "a")
        assert len(log) == 2
        assert log.get(oldest) is None
        assert log.record("a", "img", "q", "a") != oldest
