import pytest

from intentmatch.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from intentmatch.models import DisputeStatus, MatchStatus, Vote, VoteChoice
from intentmatch.services.disputes import DisputeService
from intentmatch.services.matches import MatchService
from intentmatch.services.matching import MatchingService
from intentmatch.services.resolver_client import ResolverClient, Verdict, parse_verdict


class FakeResolver:
    def __init__(self, verdict: Verdict | None):
        self.verdict = verdict
        self.calls = []

    def analyze(self, reason, evidence):
        self.calls.append((reason, evidence))
        return self.verdict


@pytest.fixture
def match(db, config, make_intent):
    need = make_intent("need", "alice")
    offer = make_intent("offer", "bob")
    match, _ = MatchService(db, config).create_match(need, offer, 80)
    return match


@pytest.fixture
def voting_dispute(db, config, match):
    service = DisputeService(db, config)
    dispute = service.create_dispute(match.id, "alice", "Work not delivered", ["chat log"])
    return service.open_voting(dispute.id)


def test_create_dispute_marks_match(db, config, match):
    dispute = DisputeService(db, config).create_dispute(match.id, "bob", "Late delivery", "timestamps")

    assert dispute.status == DisputeStatus.OPEN
    assert dispute.tier == 1
    assert dispute.evidence == ["timestamps"]
    assert match.status == MatchStatus.DISPUTED


def test_create_dispute_requires_party_and_reason(db, config, match):
    service = DisputeService(db, config)
    with pytest.raises(UnauthorizedError):
        service.create_dispute(match.id, "mallory", "I was not involved", [])
    with pytest.raises(ValidationError):
        service.create_dispute(match.id, "alice", "  ", [])
    with pytest.raises(NotFoundError):
        service.create_dispute(999, "alice", "Missing", [])
    assert match.status == MatchStatus.PROPOSED


def test_high_confidence_verdict_auto_resolves(db, config, match):
    resolved = []
    resolver = FakeResolver(Verdict(resolution="refund", confidence=95, analysis="No delivery proof"))
    service = DisputeService(db, config, resolver=resolver, on_resolved=resolved.append)

    dispute = service.create_dispute(match.id, "alice", "Work not delivered", ["chat log"])

    assert resolver.calls == [("Work not delivered", ["chat log"])]
    assert dispute.status == DisputeStatus.RESOLVED
    assert dispute.resolution == "refund"
    assert dispute.ai_confidence == 95
    assert dispute.resolved_at is not None
    assert resolved == [dispute]


def test_low_confidence_verdict_opens_voting(db, config, match):
    resolver = FakeResolver(Verdict(resolution="split", confidence=70))
    dispute = DisputeService(db, config, resolver=resolver).create_dispute(match.id, "alice", "Partial work", [])

    assert dispute.status == DisputeStatus.VOTING
    assert dispute.tier == 2
    assert dispute.ai_confidence == 70
    assert dispute.resolution is None


def test_missing_verdict_leaves_dispute_open(db, config, match):
    dispute = DisputeService(db, config, resolver=FakeResolver(None)).create_dispute(match.id, "alice", "?", [])
    assert dispute.status == DisputeStatus.OPEN


def test_vote_requires_reputation_of_sixty(db, config, voting_dispute, make_agent):
    make_agent("low", reputation=59.0)
    make_agent("ok", reputation=60.0)
    service = DisputeService(db, config)

    with pytest.raises(UnauthorizedError):
        service.cast_vote(voting_dispute.id, "low", "refund")
    assert db.query(Vote).count() == 0

    vote = service.cast_vote(voting_dispute.id, "ok", "refund", "evidence is clear")
    assert vote.weight == 60.0
    assert vote.choice == VoteChoice.REFUND


def test_vote_validation(db, config, match, voting_dispute, make_agent):
    make_agent("voter", reputation=80.0)
    service = DisputeService(db, config)

    with pytest.raises(ValidationError):
        service.cast_vote(voting_dispute.id, "voter", "abstain")
    with pytest.raises(NotFoundError):
        service.cast_vote(voting_dispute.id, "ghost", "uphold")

    service.cast_vote(voting_dispute.id, "voter", "uphold")
    with pytest.raises(InvalidStateError):
        service.cast_vote(voting_dispute.id, "voter", "refund")


def test_vote_only_while_voting(db, config, match, make_agent):
    make_agent("voter", reputation=80.0)
    service = DisputeService(db, config)
    dispute = service.create_dispute(match.id, "alice", "Not delivered", [])

    with pytest.raises(InvalidStateError, match="not open for voting"):
        service.cast_vote(dispute.id, "voter", "refund")


def test_update_retract_and_tally(db, config, voting_dispute, make_agent):
    make_agent("v1", reputation=70.0)
    make_agent("v2", reputation=90.0)
    service = DisputeService(db, config)

    first = service.cast_vote(voting_dispute.id, "v1", "uphold")
    second = service.cast_vote(voting_dispute.id, "v2", "uphold")

    updated = service.update_vote(first.id, "refund", "changed my mind")
    assert updated.choice == VoteChoice.REFUND
    assert updated.updated_at is not None
    assert updated.weight == 70.0

    tally = service.tally(voting_dispute.id)
    assert tally["totals"] == {"uphold": 90.0, "refund": 70.0, "split": 0.0}
    assert tally["leading"] == "uphold"
    assert tally["votes"] == 2

    assert service.retract_vote(second.id) == {"vote_id": second.id, "status": "retracted"}
    assert service.tally(voting_dispute.id)["leading"] == "refund"

    service.resolve_dispute(voting_dispute.id, "refund")
    with pytest.raises(InvalidStateError):
        service.update_vote(first.id, "split")
    with pytest.raises(InvalidStateError):
        service.retract_vote(first.id)


def test_resolve_is_terminal(db, config, voting_dispute):
    service = DisputeService(db, config)
    service.resolve_dispute(voting_dispute.id, "split")

    with pytest.raises(InvalidStateError):
        service.resolve_dispute(voting_dispute.id, "refund")
    with pytest.raises(InvalidStateError):
        service.open_voting(voting_dispute.id)


def test_resolved_dispute_frees_the_agent_pair(db, config, match, voting_dispute, make_intent):
    matching = MatchingService(db, config)
    need = make_intent("need", "alice", title="follow-up work")

    blocked = matching.run_matching_pass(need.id)
    assert [(o.match_id, o.created) for o in blocked] == [(match.id, False)]

    DisputeService(db, config).resolve_dispute(voting_dispute.id, "refund")
    db.refresh(match)
    assert match.status == MatchStatus.DISPUTED
    assert match.active_pair_key is None

    outcomes = matching.run_matching_pass(need.id)
    assert len(outcomes) == 1
    assert outcomes[0].created
    assert outcomes[0].match_id != match.id


def test_escalation_follows_policy(db, config, voting_dispute):
    with pytest.raises(InvalidStateError):
        DisputeService(db, config).escalate(voting_dispute.id)

    escalating = DisputeService(db, config, escalation_policy=lambda dispute, votes: not votes)
    dispute = escalating.escalate(voting_dispute.id)

    assert dispute.tier == 3
    assert dispute.status == DisputeStatus.OPEN


def test_parse_verdict():
    verdict = parse_verdict('{"resolution": "Refund", "confidence": 120, "analysis": "clear"}')
    assert verdict == Verdict(resolution="refund", confidence=100.0, analysis="clear")

    assert parse_verdict("not json") is None
    assert parse_verdict('{"resolution": "maybe", "confidence": 50}') is None
    assert parse_verdict('{"resolution": "split"}') is None


def test_resolver_client_disabled_without_base_url():
    client = ResolverClient(base_url="")
    assert not client.enabled
    assert client.analyze("reason", []) is None
