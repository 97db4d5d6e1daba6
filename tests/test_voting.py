"""
Tests for the voting module.
"""

import pytest

from agent_orchestrator.voting import (
    Ballot,
    format_vote_summary,
    group_by_output,
    hash_output,
    normalize_output,
    tally,
)


class TestNormalizeOutput:
    """Tests for output normalization."""

    def test_strips_trailing_whitespace(self):
        """Should strip trailing whitespace from lines."""
        assert normalize_output("line one   \nline two\t") == "line one\nline two"

    def test_normalizes_line_endings(self):
        """CRLF and LF compare equal."""
        assert normalize_output("a\r\nb") == "a\nb"

    def test_removes_empty_lines_at_edges(self):
        """Should remove empty lines at start and end."""
        assert normalize_output("\n\ncontent\n\n") == "content"

    def test_preserves_inner_blank_lines(self):
        """Blank lines inside the output are kept."""
        assert normalize_output("a\n\nb") == "a\n\nb"


class TestHashOutput:
    """Tests for output hashing."""

    def test_equivalent_outputs_same_hash(self):
        """Outputs differing only in whitespace hash the same."""
        assert hash_output("result\n") == hash_output("result   \r\n\n")

    def test_different_outputs_different_hash(self):
        """Different outputs should produce different hashes."""
        assert hash_output("a") != hash_output("b")

    def test_hash_length(self):
        """Hashes are 16 hex characters."""
        assert len(hash_output("anything")) == 16


class TestGroupByOutput:
    """Tests for grouping ballots."""

    def test_groups_identical_outputs(self):
        """Identical outputs share a group."""
        groups = group_by_output([
            Ballot("a", "x"),
            Ballot("b", "x"),
            Ballot("c", "y"),
        ])
        assert len(groups) == 2
        assert groups[0].voters == ["a", "b"]
        assert groups[0].weight == 2.0

    def test_failed_ballots_ignored(self):
        """Failed ballots join no group."""
        groups = group_by_output([Ballot("a", "x", succeeded=False), Ballot("b", "y")])
        assert [g.voters for g in groups] == [["b"]]

    def test_sorted_by_weight(self):
        """A single heavy voter outranks two light ones."""
        groups = group_by_output([
            Ballot("light-1", "x", weight=0.8),
            Ballot("light-2", "x", weight=0.8),
            Ballot("heavy", "y", weight=2.0),
        ])
        assert groups[0].voters == ["heavy"]

    def test_confidence_scales_weight(self):
        """A half-confident ballot counts half."""
        groups = group_by_output([Ballot("a", "x", weight=2.0, confidence=0.5)])
        assert groups[0].weight == 1.0


class TestTally:
    """Tests for quorum decisions."""

    def test_quorum_reached(self):
        """Weighted success at or above the fraction accepts the result."""
        result = tally([
            Ballot("a", "x", weight=1.5),
            Ballot("b", "x", weight=1.0),
            Ballot("c", "", weight=1.0, succeeded=False),
        ])
        assert result.quorum_reached is True
        assert result.winner.output == "x"
        assert result.success_fraction == pytest.approx(0.7143, abs=1e-4)
        assert result.confidence == 1.0

    def test_quorum_boundary_inclusive(self):
        """Exactly the quorum fraction is enough."""
        result = tally([Ballot("a", "x"), Ballot("b", "", succeeded=False)], quorum_fraction=0.5)
        assert result.quorum_reached is True

    def test_quorum_not_reached(self):
        """Too little successful weight yields no winner."""
        result = tally([
            Ballot("a", "x", weight=0.8),
            Ballot("b", "", weight=1.5, succeeded=False),
        ])
        assert result.quorum_reached is False
        assert result.winner is None

    def test_empty_ballots(self):
        """No ballots, no quorum."""
        result = tally([])
        assert result.quorum_reached is False
        assert result.total_votes == 0
        assert result.success_fraction == 0.0

    def test_split_vote_confidence(self):
        """Confidence is the winner's share of successful weight."""
        result = tally([Ballot("a", "x"), Ballot("b", "x"), Ballot("c", "y"), Ballot("d", "z")])
        assert result.winner.output == "x"
        assert result.confidence == 0.5

    def test_strict_quorum(self):
        """A higher fraction can reject a majority."""
        result = tally([Ballot("a", "x"), Ballot("b", "x"), Ballot("c", "", succeeded=False)], quorum_fraction=0.75)
        assert result.quorum_reached is False


class TestFormatVoteSummary:
    """Tests for the human-readable summary."""

    def test_marks_winner(self):
        """The winning group is marked with an arrow."""
        summary = format_vote_summary(tally([Ballot("a", "x"), Ballot("b", "y", weight=0.5)]))
        assert "Quorum: Yes" in summary
        assert "→ Group 1: 1 votes" in summary
        assert "[a]" in summary

    def test_no_quorum(self):
        """Without quorum no group is marked."""
        summary = format_vote_summary(tally([Ballot("a", "x", succeeded=False)]))
        assert "Quorum: No" in summary
        assert "→" not in summary
