"""
Weighted voting and quorum logic for comparing agent outputs.
"""

import hashlib
from dataclasses import dataclass, field


@dataclass
class Ballot:
    """One agent's contribution to a vote."""

    voter: str
    output: str
    weight: float = 1.0
    succeeded: bool = True
    confidence: float = 1.0


@dataclass
class VoteGroup:
    """A group of voters with identical output."""

    output_hash: str
    output: str
    voters: list[str] = field(default_factory=list)
    weight: float = 0.0

    @property
    def vote_count(self) -> int:
        return len(self.voters)


@dataclass
class VoteResult:
    """Result of a weighted vote over agent outputs."""

    groups: list[VoteGroup]
    winner: VoteGroup | None
    total_votes: int
    total_weight: float
    success_fraction: float  # weighted, 0.0 to 1.0
    quorum_reached: bool
    confidence: float  # winning group's share of successful weight


def normalize_output(output: str) -> str:
    """
    Normalize an output for comparison.

    - Strip trailing whitespace
    - Normalize line endings
    - Remove empty lines at start/end
    """
    lines = [line.rstrip() for line in output.replace("\r\n", "\n").split("\n")]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def hash_output(output: str) -> str:
    """Create a hash of a normalized output for grouping."""
    return hashlib.sha256(normalize_output(output).encode()).hexdigest()[:16]


def group_by_output(ballots: list[Ballot]) -> list[VoteGroup]:
    """
    Group successful ballots by their output.

    Returns:
        List of VoteGroups, heaviest first
    """
    groups: dict[str, VoteGroup] = {}
    for ballot in ballots:
        if not ballot.succeeded:
            continue
        output_hash = hash_output(ballot.output)
        if output_hash not in groups:
            groups[output_hash] = VoteGroup(output_hash=output_hash, output=ballot.output)
        group = groups[output_hash]
        group.voters.append(ballot.voter)
        group.weight += ballot.weight * ballot.confidence

    return sorted(groups.values(), key=lambda g: (g.weight, g.vote_count), reverse=True)


def tally(ballots: list[Ballot], quorum_fraction: float = 0.5) -> VoteResult:
    """
    Decide whether enough weighted agents succeeded to accept a result.

    The success fraction is the confidence-scaled weight of successful
    ballots over the weight of all ballots. Failed ballots count toward the
    total but contribute nothing.

    Args:
        ballots: One ballot per dispatched agent
        quorum_fraction: Minimum success fraction to accept

    Returns:
        VoteResult; winner is the heaviest output group when quorum is reached
    """
    total_weight = sum(b.weight for b in ballots)
    if not ballots or total_weight <= 0:
        return VoteResult(
            groups=[],
            winner=None,
            total_votes=len(ballots),
            total_weight=total_weight,
            success_fraction=0.0,
            quorum_reached=False,
            confidence=0.0,
        )

    success_weight = sum(b.weight * b.confidence for b in ballots if b.succeeded)
    success_fraction = success_weight / total_weight
    groups = group_by_output(ballots)

    quorum_reached = bool(groups) and success_fraction >= quorum_fraction
    winner = groups[0] if quorum_reached else None
    confidence = groups[0].weight / success_weight if groups and success_weight > 0 else 0.0

    return VoteResult(
        groups=groups,
        winner=winner,
        total_votes=len(ballots),
        total_weight=total_weight,
        success_fraction=round(success_fraction, 4),
        quorum_reached=quorum_reached,
        confidence=round(confidence, 4),
    )


def format_vote_summary(result: VoteResult) -> str:
    """Format vote result as a human-readable summary."""
    lines = []
    lines.append(f"Total votes: {result.total_votes}")
    lines.append(f"Quorum: {'Yes' if result.quorum_reached else 'No'}")
    lines.append(f"Success fraction: {result.success_fraction:.1%}")
    lines.append(f"Confidence: {result.confidence:.1%}")
    lines.append("")
    lines.append("Vote distribution:")

    for i, group in enumerate(result.groups):
        marker = "→" if group == result.winner else " "
        lines.append(
            f"  {marker} Group {i + 1}: {group.vote_count} votes "
            f"(weight {group.weight:.2f}) "
            f"[{', '.join(group.voters)}]"
        )

    return "\n".join(lines)
