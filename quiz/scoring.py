from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class ScoreResult:
    percentage: int
    correct_count: int
    total: int
    # question id -> answered correctly
    breakdown: Dict[int, bool] = field(default_factory=dict)

    def to_dict(self):
        return {
            "percentage": self.percentage,
            "correctCount": self.correct_count,
            "total": self.total,
            "breakdown": {str(question_id): correct for question_id, correct in self.breakdown.items()},
        }


def percentage_of(correct_count: int, total: int) -> int:
    if total == 0:
        return 0
    # round half up so 2/3 -> 67 and 1/8 -> 13
    return int(100 * correct_count / total + 0.5)


def score_answers(questions, answers) -> ScoreResult:
    """
    Score ``answers`` (question id -> submitted value) against ``questions``.

    A submitted value is correct only when it is exactly the question's
    correct answer: case sensitive, no trimming. Unanswered questions count
    as wrong.
    """
    questions = list(questions)
    breakdown = {}
    correct_count = 0
    for question in questions:
        submitted = answers.get(question.id)
        correct = submitted is not None and submitted == question.correct_answer
        breakdown[question.id] = correct
        if correct:
            correct_count += 1

    total = len(questions)

    return ScoreResult(
        percentage=percentage_of(correct_count, total),
        correct_count=correct_count,
        total=total,
        breakdown=breakdown,
    )
