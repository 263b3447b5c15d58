"""
Tests for the routing engine: auto-reply hand-off, least-loaded
assignment and negative-spike escalation
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from social_inbox.db.models import Notification
from social_inbox.services.notification_service import NotificationService
from social_inbox.services.routing_service import RoutingEngine
from social_inbox.tests.conftest import RecordingScheduler
from social_inbox.tests.factories import make_interaction


def engine_for(db_session, hook=None, now=None):
    scheduler = RecordingScheduler()
    notifications = NotificationService(db_session, schedule_delivery=scheduler)
    engine = RoutingEngine(db_session, notifications=notifications, auto_reply_hook=hook, now=now)
    return engine, scheduler


class TestAssignment:

    def test_least_loaded_agent_wins(self, db_session, organization, make_user):
        agent_a, agent_b, agent_c = make_user(name="A"), make_user(name="B"), make_user(name="C")
        for _ in range(2):
            make_interaction(db_session, organization.id, assigned_to=agent_a.id, status="assigned")
        make_interaction(db_session, organization.id, assigned_to=agent_c.id, status="assigned")
        interaction = make_interaction(db_session, organization.id)
        engine, scheduler = engine_for(db_session)

        outcome = engine.route(interaction)

        assert outcome.decision == "assigned"
        assert outcome.assigned_to == agent_b.id
        db_session.refresh(interaction)
        assert interaction.assigned_to == agent_b.id
        assert interaction.status == "assigned"
        assert interaction.assignment_reason == "ai_unable"
        assert interaction.assigned_at is not None

        notification = db_session.query(Notification).filter(Notification.type == "assignment").one()
        assert notification.user_id == agent_b.id
        assert notification.interaction_id == interaction.id
        assert scheduler.calls == [notification.id]

    def test_resolved_work_does_not_count_as_load(self, db_session, organization, make_user):
        agent_a, agent_b = make_user(), make_user()
        make_interaction(db_session, organization.id, assigned_to=agent_a.id, status="resolved")
        make_interaction(db_session, organization.id, assigned_to=agent_b.id, status="assigned")
        engine, _ = engine_for(db_session)

        assert engine.agent_loads(organization.id) == {agent_a.id: 0, agent_b.id: 1}

    def test_tie_goes_to_lowest_id(self, db_session, organization, make_user):
        first, second = make_user(), make_user()
        engine, _ = engine_for(db_session)

        outcome = engine.route(make_interaction(db_session, organization.id))

        assert outcome.assigned_to == min(first.id, second.id)

    def test_inactive_agents_and_managers_are_skipped(self, db_session, organization, make_user):
        make_user(is_active=False)
        make_user(role="manager")
        active = make_user()
        engine, _ = engine_for(db_session)

        assert engine.route(make_interaction(db_session, organization.id)).assigned_to == active.id

    def test_no_agents_leaves_interaction_unassigned(self, db_session, organization):
        interaction = make_interaction(db_session, organization.id)
        engine, _ = engine_for(db_session)

        outcome = engine.route(interaction)

        assert outcome.decision == "unassigned"
        assert outcome.errors
        db_session.refresh(interaction)
        assert interaction.assigned_to is None
        assert interaction.status == "unread"

    def test_already_assigned_is_left_alone(self, db_session, organization, make_user):
        owner, other = make_user(), make_user()
        interaction = make_interaction(db_session, organization.id, assigned_to=owner.id, status="assigned")
        engine, scheduler = engine_for(db_session)

        outcome = engine.route(interaction)

        assert outcome.decision == "already_assigned"
        assert outcome.assigned_to == owner.id
        assert scheduler.calls == []


class TestAutoReply:

    def test_eligible_interaction_goes_to_hook(self, db_session, organization, make_user):
        make_user()
        hook = Mock()
        interaction = make_interaction(
            db_session, organization.id, auto_reply_eligible=True,
            ai_suggestion={"content": "Thanks!", "confidence": 0.8}
        )
        engine, _ = engine_for(db_session, hook=hook)

        outcome = engine.route(interaction)

        assert outcome.decision == "auto_reply"
        hook.assert_called_once_with(interaction)
        db_session.refresh(interaction)
        assert interaction.assigned_to is None

    def test_eligible_without_draft_is_assigned(self, db_session, organization, make_user):
        agent = make_user()
        interaction = make_interaction(db_session, organization.id, auto_reply_eligible=True, ai_suggestion=None)
        engine, _ = engine_for(db_session, hook=Mock())

        assert engine.route(interaction).assigned_to == agent.id

    def test_hook_failure_is_recorded(self, db_session, organization):
        interaction = make_interaction(
            db_session, organization.id, auto_reply_eligible=True, ai_suggestion={"content": "Hi"}
        )
        engine, _ = engine_for(db_session, hook=Mock(side_effect=RuntimeError("send failed")))

        outcome = engine.route(interaction)

        assert outcome.decision == "auto_reply"
        assert len(outcome.errors) == 1


class TestNegativeSpike:

    def _negative(self, db_session, organization, **overrides):
        values = dict(sentiment="negative", post_id="post-1")
        values.update(overrides)
        return make_interaction(db_session, organization.id, **values)

    def test_third_negative_comment_escalates_once(self, db_session, organization, make_user):
        make_user()
        make_user(role="admin")
        manager = make_user(role="manager")
        engine, _ = engine_for(db_session)

        outcomes = []
        interactions = []
        for _ in range(4):
            interaction = self._negative(db_session, organization)
            interactions.append(interaction)
            outcomes.append(engine.route(interaction))

        assert [o.escalated for o in outcomes] == [False, False, True, True]
        assert [o.spike_count for o in outcomes] == [1, 2, 3, 4]

        for interaction in interactions:
            db_session.refresh(interaction)
        assert [i.priority for i in interactions[:3]] == ["normal", "normal", "urgent"]
        assert interactions[2].urgency == "urgent"

        spikes = db_session.query(Notification).filter(Notification.type == "negative_spike").all()
        assert len(spikes) == 1
        assert spikes[0].user_id == manager.id
        assert spikes[0].post_id == "post-1"
        assert outcomes[2].notified_user_id == manager.id
        assert outcomes[3].notified_user_id is None

    def test_admin_notified_without_manager(self, db_session, organization, make_user):
        admin = make_user(role="admin")
        engine, _ = engine_for(db_session)

        for _ in range(3):
            outcome = engine.route(self._negative(db_session, organization))

        assert outcome.notified_user_id == admin.id

    def test_comments_outside_window_do_not_count(self, db_session, organization, make_user):
        make_user(role="manager")
        old = datetime.now(timezone.utc) - timedelta(hours=30)
        self._negative(db_session, organization, received_at=old)
        self._negative(db_session, organization, received_at=old)
        engine, _ = engine_for(db_session)

        outcome = engine.route(self._negative(db_session, organization))

        assert outcome.spike_count == 1
        assert outcome.escalated is False

    def test_other_posts_and_types_are_separate(self, db_session, organization, make_user):
        make_user(role="manager")
        self._negative(db_session, organization, post_id="post-2")
        self._negative(db_session, organization, type="dm", post_id="post-1")
        self._negative(db_session, organization, sentiment="neutral")
        engine, _ = engine_for(db_session)

        outcome = engine.route(self._negative(db_session, organization))

        assert outcome.spike_count == 1
        assert outcome.escalated is False

    def test_positive_comment_is_not_checked(self, db_session, organization):
        engine, _ = engine_for(db_session)
        outcome = engine.route(make_interaction(db_session, organization.id, sentiment="positive", post_id="post-1"))
        assert outcome.spike_count == 0
