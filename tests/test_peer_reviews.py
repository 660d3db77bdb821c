from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from botocore.exceptions import ClientError

from backend.peer_reviews import create_review, list_reviews, review_id_for
from classcast.errors import RecordConflictError, RecordNotFoundError
from coursework.models import ModelValidationError
from memory_dynamo import MemoryTable

_NOW = "2026-09-05T12:00:00Z"


class CreateReviewTests(unittest.TestCase):
    def setUp(self) -> None:
        self.responses = MemoryTable("peer-responses", "reviewId")
        self.submissions = MemoryTable("submissions", "submissionId").seed(
            {"submissionId": "s1", "studentId": "author", "assignmentId": "a1", "courseId": "c1", "maxScore": Decimal("20")}
        )
        self.users = MemoryTable("users", "userId").seed(
            {"userId": "rev-1", "firstName": "Ada", "lastName": "Lovelace"},
            {"userId": "rev-2", "email": "rev2@example.com"},
        )

    def _create(self, payload: dict) -> dict:
        return create_review(
            peer_responses_table=self.responses,
            submissions_table=self.submissions,
            users_table=self.users,
            payload=payload,
            clock=lambda: _NOW,
        )

    def test_create_review_appends_summary_to_submission(self) -> None:
        item = self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": 15.5, "feedback": "Clear audio"})

        review_id = review_id_for("s1", "rev-1")
        self.assertEqual(item["reviewId"], review_id)
        self.assertTrue(review_id.startswith("review-"))
        self.assertEqual(item["reviewerName"], "Ada Lovelace")
        self.assertEqual(item["score"], Decimal("15.5"))
        self.assertEqual(item["maxScore"], 20)
        self.assertEqual(item["responseType"], "text")
        self.assertEqual(item["courseId"], "c1")
        self.assertIn(review_id, self.responses.rows)

        summaries = self.submissions.rows["s1"]["peerReviews"]
        self.assertEqual(len(summaries), 1)
        self.assertEqual(summaries[0]["reviewerName"], "Ada Lovelace")

        self._create({"submissionId": "s1", "reviewerId": "rev-2", "score": 10, "feedback": "Fine"})
        self.assertEqual(len(self.submissions.rows["s1"]["peerReviews"]), 2)
        self.assertEqual(self.responses.rows[review_id_for("s1", "rev-2")]["reviewerName"], "rev2@example.com")

    def test_video_response_marks_type(self) -> None:
        item = self._create(
            {
                "submissionId": "s1",
                "reviewerId": "rev-1",
                "score": 5,
                "feedback": "See video",
                "videoResponse": {"videoUrl": "https://x.test/r.webm"},
            }
        )
        self.assertEqual(item["responseType"], "video")
        self.assertEqual(item["videoResponse"], {"videoUrl": "https://x.test/r.webm"})

    def test_unknown_reviewer_name(self) -> None:
        item = self._create({"submissionId": "s1", "reviewerId": "stranger", "score": 1, "feedback": "ok"})
        self.assertEqual(item["reviewerName"], "Unknown Reviewer")

    def test_rejects_self_review_and_duplicates(self) -> None:
        with self.assertRaisesRegex(ValueError, "cannot review their own submission"):
            self._create({"submissionId": "s1", "reviewerId": "author", "score": 1, "feedback": "mine"})

        self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": 1, "feedback": "first"})
        with self.assertRaises(RecordConflictError):
            self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": 2, "feedback": "again"})

    def test_score_bounds_and_required_fields(self) -> None:
        with self.assertRaisesRegex(ModelValidationError, "score must be between 0 and 20"):
            self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": 21, "feedback": "too high"})
        with self.assertRaisesRegex(ValueError, "score must be a number"):
            self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": "5", "feedback": "text"})
        with self.assertRaisesRegex(ValueError, "feedback is required"):
            self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": 5})
        with self.assertRaises(RecordNotFoundError):
            self._create({"submissionId": "missing", "reviewerId": "rev-1", "score": 5, "feedback": "x"})
        self.assertEqual(self.responses.rows, {})

    def test_second_review_for_same_pair_is_rejected_by_put_condition(self) -> None:
        payload = {"submissionId": "s1", "reviewerId": "rev-1", "score": 3, "feedback": "first"}
        with patch("backend.peer_reviews.scan_all", return_value=[]):
            self._create(payload)
            with self.assertRaisesRegex(RecordConflictError, "already reviewed"):
                self._create({**payload, "feedback": "racing"})

        self.assertEqual(len(self.responses.rows), 1)
        self.assertEqual(self.responses.rows[review_id_for("s1", "rev-1")]["feedback"], "first")
        self.assertEqual(len(self.submissions.rows["s1"]["peerReviews"]), 1)

    def test_review_ids_are_stable_per_pair(self) -> None:
        self.assertEqual(review_id_for("s1", "rev-1"), review_id_for("s1", "rev-1"))
        self.assertNotEqual(review_id_for("s1", "rev-1"), review_id_for("s1", "rev-2"))
        self.assertNotEqual(review_id_for("s1", "rev-1"), review_id_for("s2", "rev-1"))

    def test_non_finite_numbers_are_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "score must be a number"):
            self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": float("nan"), "feedback": "x"})
        with self.assertRaisesRegex(ValueError, "score must be a number"):
            self._create({"submissionId": "s1", "reviewerId": "rev-1", "score": float("inf"), "feedback": "x"})
        self.assertEqual(self.responses.rows, {})

        item = self._create(
            {"submissionId": "s1", "reviewerId": "rev-1", "score": 50, "maxScore": float("nan"), "feedback": "x"}
        )
        self.assertEqual(item["maxScore"], 100)


class ListReviewsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.responses = MemoryTable("peer-responses", "reviewId").seed(
            {"reviewId": "r1", "submissionId": "s1", "reviewerId": "u1", "submittedAt": "2026-09-01T00:00:00Z"},
            {"reviewId": "r2", "submissionId": "s1", "reviewerId": "u2", "submittedAt": "2026-09-02T00:00:00Z"},
            {"reviewId": "r3", "submissionId": "s2", "reviewerId": "u1", "submittedAt": "2026-09-03T00:00:00Z"},
        )

    def test_lists_newest_first_by_submission_or_reviewer(self) -> None:
        by_submission = list_reviews(self.responses, submission_id="s1")
        self.assertEqual([row["reviewId"] for row in by_submission["reviews"]], ["r2", "r1"])
        self.assertEqual(by_submission["count"], 2)

        by_reviewer = list_reviews(self.responses, reviewer_id="u1")
        self.assertEqual([row["reviewId"] for row in by_reviewer["reviews"]], ["r3", "r1"])

    def test_requires_a_filter(self) -> None:
        with self.assertRaisesRegex(ValueError, "submissionId or reviewerId is required"):
            list_reviews(self.responses)

    def test_missing_table_returns_no_reviews(self) -> None:
        self.responses.fail_next["scan"] = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "no table"}}, "Scan"
        )
        with self.assertLogs("backend.peer_reviews", level="WARNING"):
            result = list_reviews(self.responses, submission_id="s1")
        self.assertEqual(result, {"reviews": [], "count": 0})

    def test_other_client_errors_propagate(self) -> None:
        self.responses.fail_next["scan"] = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}}, "Scan"
        )
        with self.assertRaises(ClientError):
            list_reviews(self.responses, reviewer_id="u1")


if __name__ == "__main__":
    unittest.main()
