"""
Integration tests for API routes.
Tests the access blueprint and the main app routes through the test client.
"""
import json
from datetime import timedelta

import pytest

from arena.errors import AggregationUnavailable
from arena.models import db, AccessCode, utcnow


def _as(user):
    return {'X-User-Id': str(user.id)}


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['database'] == 'connected'
        assert data['events'] == 'disabled'


class TestIdentity:
    """Tests for caller resolution."""

    def test_missing_header(self, client, db_session):
        response = client.post('/api/v1/access-codes/redeem', json={'code': 'ABCD1234'})
        assert response.status_code == 401
        assert response.get_json()['kind'] == 'Unauthenticated'

    def test_malformed_header(self, client, db_session):
        response = client.post('/api/v1/waitlist', headers={'X-User-Id': 'bob'})
        assert response.status_code == 401

    def test_unknown_user(self, client, db_session):
        response = client.post('/api/v1/waitlist', headers={'X-User-Id': '999999'})
        assert response.status_code == 401

    def test_role_is_read_from_database(self, client, player):
        """Claiming to be an admin is not possible without the stored role."""
        response = client.get('/api/v1/access-codes', headers=_as(player))
        assert response.status_code == 403
        assert response.get_json()['kind'] == 'Forbidden'


class TestAccessCodeRoutes:
    """Tests for /api/v1/access-codes endpoints."""

    def test_generate(self, client, admin):
        response = client.post('/api/v1/access-codes', json={'quantity': 3, 'expiry_days': 30},
                               headers=_as(admin))
        assert response.status_code == 201

        data = response.get_json()
        assert data['count'] == 3
        assert all(c['state'] == 'active' for c in data['codes'])
        assert all(c['expires_at'] is not None for c in data['codes'])

    def test_generate_invalid_quantity(self, client, admin):
        response = client.post('/api/v1/access-codes', json={'quantity': 0}, headers=_as(admin))
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'InvalidQuantity'

    def test_generate_invalid_expiry(self, client, admin):
        response = client.post('/api/v1/access-codes', json={'quantity': 1, 'expiry_days': 0},
                               headers=_as(admin))
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'InvalidExpiry'

    def test_validate_and_redeem(self, client, admin, make_user):
        code = client.post('/api/v1/access-codes', json={'quantity': 1},
                           headers=_as(admin)).get_json()['codes'][0]['code']
        newcomer = make_user('Newcomer', approved=False)

        response = client.post('/api/v1/access-codes/validate', json={'code': code.lower()})
        assert response.status_code == 200
        assert response.get_json()['ok'] is True

        response = client.post('/api/v1/access-codes/redeem', json={'code': code},
                               headers=_as(newcomer))
        assert response.status_code == 200
        assert response.get_json()['approved'] is True

        response = client.post('/api/v1/access-codes/redeem', json={'code': code},
                               headers=_as(make_user('Late')))
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'CodeAlreadyUsed'

    def test_validate_unknown(self, client, db_session):
        response = client.post('/api/v1/access-codes/validate', json={'code': 'ZZZZZZZZ'})
        assert response.status_code == 404
        assert response.get_json()['kind'] == 'CodeNotFound'

    def test_non_string_codes(self, client, make_user):
        newcomer = make_user('Newcomer', approved=False)
        for body in ({'code': 12345678}, {'code': ['ABCD1234']}, {'code': {'value': 'ABCD1234'}}):
            response = client.post('/api/v1/access-codes/validate', json=body)
            assert response.status_code == 404
            assert response.get_json()['kind'] == 'CodeNotFound'

            response = client.post('/api/v1/access-codes/redeem', json=body, headers=_as(newcomer))
            assert response.status_code == 404
            assert response.get_json()['kind'] == 'CodeNotFound'

    def test_redeem_expired(self, client, admin, make_user):
        code = client.post('/api/v1/access-codes', json={'quantity': 1},
                           headers=_as(admin)).get_json()['codes'][0]
        stored = db.session.get(AccessCode, code['id'])
        stored.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()

        response = client.post('/api/v1/access-codes/redeem', json={'code': code['code']},
                               headers=_as(make_user('Newcomer', approved=False)))
        assert response.status_code == 410
        assert response.get_json()['kind'] == 'CodeExpired'

    def test_list_and_revoke(self, client, admin):
        created = client.post('/api/v1/access-codes', json={'quantity': 2},
                              headers=_as(admin)).get_json()['codes']

        response = client.delete(f"/api/v1/access-codes/{created[0]['id']}", headers=_as(admin))
        assert response.status_code == 200

        listing = client.get('/api/v1/access-codes?state=active', headers=_as(admin)).get_json()
        assert [c['id'] for c in listing['codes']] == [created[1]['id']]

    def test_referrals(self, client, player, make_user):
        code = client.post('/api/v1/access-codes', json={'quantity': 1},
                           headers=_as(player)).get_json()['codes'][0]
        friend = make_user('Friend', approved=False)
        client.post('/api/v1/access-codes/redeem', json={'code': code['code']}, headers=_as(friend))

        data = client.get(f'/api/v1/users/{player.id}/referrals', headers=_as(player)).get_json()
        assert data['referral_count'] == 1
        assert data['referrals'][0]['referred_user_id'] == friend.id

    def test_referrals_hidden_from_others(self, client, player, make_user):
        other = make_user('Other')
        response = client.get(f'/api/v1/users/{player.id}/referrals', headers=_as(other))
        assert response.status_code == 403


class TestWaitlistRoutes:
    """Tests for /api/v1/waitlist endpoints."""

    def test_join_and_approve(self, client, admin, make_user):
        newcomer = make_user('Newcomer', approved=False)

        response = client.post('/api/v1/waitlist', headers=_as(newcomer))
        assert response.status_code == 201
        entry_id = response.get_json()['id']

        listing = client.get('/api/v1/waitlist?status=pending', headers=_as(admin)).get_json()
        assert listing['count'] == 1

        response = client.post(f'/api/v1/waitlist/{entry_id}/approve', headers=_as(admin))
        assert response.status_code == 200
        assert response.get_json()['status'] == 'approved'

    def test_approved_user_cannot_join(self, client, player):
        response = client.post('/api/v1/waitlist', headers=_as(player))
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'AlreadyApproved'


class TestTournamentRoutes:
    """Tests for tournament endpoints."""

    def test_create_and_start(self, client, admin):
        response = client.post('/api/v1/tournaments', json={'name': 'Clip Clash', 'game': 'Apex'},
                               headers=_as(admin))
        assert response.status_code == 201
        tournament_id = response.get_json()['tournament_id']
        assert response.get_json()['status'] == 'upcoming'

        response = client.post(f'/api/v1/tournaments/{tournament_id}/start', headers=_as(admin))
        assert response.status_code == 200
        assert response.get_json()['status'] == 'active'

    def test_create_requires_admin(self, client, player):
        response = client.post('/api/v1/tournaments', json={'name': 'Nope'}, headers=_as(player))
        assert response.status_code == 403

    def test_create_bad_schedule(self, client, admin):
        response = client.post('/api/v1/tournaments',
                               json={'name': 'Cup', 'starts_at': 'next tuesday'},
                               headers=_as(admin))
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'InvalidSchedule'

    def test_create_with_non_string_name(self, client, admin):
        response = client.post('/api/v1/tournaments', json={'name': 5}, headers=_as(admin))
        assert response.status_code == 400
        data = response.get_json()
        assert data['kind'] == 'InvalidField'
        assert data['details']['field'] == 'name'

    def test_invalid_transition(self, client, admin, upcoming_tournament):
        response = client.post(f'/api/v1/tournaments/{upcoming_tournament.tournament_id}/end',
                               headers=_as(admin))
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'InvalidTransition'

    def test_get_missing(self, client, db_session):
        response = client.get('/api/v1/tournaments/nowhere-cup')
        assert response.status_code == 404

    def test_list(self, client, active_tournament, upcoming_tournament):
        data = client.get('/api/v1/tournaments?status=active').get_json()
        assert data['count'] == 1
        assert data['tournaments'][0]['tournament_id'] == active_tournament.tournament_id

    def test_list_unknown_status(self, client, active_tournament):
        response = client.get('/api/v1/tournaments?status=bogus')
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'InvalidFilter'


class TestSubmissionRoutes:
    """Tests for submission endpoints."""

    def test_submit_and_moderate(self, client, admin, player, active_tournament):
        response = client.post(
            f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions',
            json={'title': 'Ninja defuse', 'clip_url': 'https://clips.example.com/defuse.mp4'},
            headers=_as(player)
        )
        assert response.status_code == 201
        submission = response.get_json()
        assert submission['status'] == 'pending'

        response = client.post(f"/api/v1/submissions/{submission['id']}/moderate",
                               json={'status': 'approved'}, headers=_as(admin))
        assert response.status_code == 200
        assert response.get_json()['status'] == 'approved'

    def test_duplicate_submission(self, client, player, active_tournament):
        url = f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions'
        body = {'title': 'Clip', 'clip_url': 'https://clips.example.com/a.mp4'}

        assert client.post(url, json=body, headers=_as(player)).status_code == 201
        response = client.post(url, json=body, headers=_as(player))
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'DuplicateSubmission'

    def test_submit_with_non_string_title(self, client, player, active_tournament):
        response = client.post(
            f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions',
            json={'title': 5, 'clip_url': 'https://clips.example.com/five.mp4'},
            headers=_as(player)
        )
        assert response.status_code == 400
        data = response.get_json()
        assert data['kind'] == 'InvalidField'
        assert data['details']['field'] == 'title'

    def test_submit_to_upcoming(self, client, player, upcoming_tournament):
        response = client.post(
            f'/api/v1/tournaments/{upcoming_tournament.tournament_id}/submissions',
            json={'title': 'Early', 'clip_url': 'https://clips.example.com/early.mp4'},
            headers=_as(player)
        )
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'TournamentNotActive'

    def test_moderate_requires_status(self, client, admin, approved_submission):
        response = client.post(f'/api/v1/submissions/{approved_submission.id}/moderate',
                               json={}, headers=_as(admin))
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'MissingField'

    def test_moderate_by_non_admin(self, client, player, approved_submission):
        response = client.post(f'/api/v1/submissions/{approved_submission.id}/moderate',
                               json={'status': 'rejected'}, headers=_as(player))
        assert response.status_code == 403

    def test_public_listing_only_approved(self, client, make_submission, make_user,
                                          active_tournament):
        approved = make_submission(make_user('A'), status='approved')
        make_submission(make_user('B'), status='pending')

        data = client.get(f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions').get_json()
        assert [s['id'] for s in data['submissions']] == [approved.id]

    def test_admin_listing_by_status(self, client, admin, make_submission, make_user,
                                     active_tournament):
        make_submission(make_user('A'), status='approved')
        pending = make_submission(make_user('B'), status='pending')

        data = client.get(
            f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions?status=pending',
            headers=_as(admin)
        ).get_json()
        assert [s['id'] for s in data['submissions']] == [pending.id]

    def test_get_missing_submission(self, client, db_session):
        response = client.get('/api/v1/submissions/4040')
        assert response.status_code == 404
        assert response.get_json()['kind'] == 'SubmissionNotFound'


class TestVotingRoutes:
    """Tests for vote, like and leaderboard endpoints."""

    def test_vote_flow(self, client, approved_submission, voters):
        url = f'/api/v1/submissions/{approved_submission.id}/vote'

        assert client.post(url, json={'rank': 1}, headers=_as(voters[0])).get_json()['score'] == 3
        assert client.post(url, json={'rank': 2}, headers=_as(voters[1])).get_json()['score'] == 5
        assert client.post(url, json={'rank': 3}, headers=_as(voters[1])).get_json()['score'] == 4

        response = client.delete(url, headers=_as(voters[0]))
        assert response.status_code == 200
        assert response.get_json()['score'] == 1

    def test_invalid_rank(self, client, approved_submission, voters):
        response = client.post(f'/api/v1/submissions/{approved_submission.id}/vote',
                               json={'rank': 5}, headers=_as(voters[0]))
        assert response.status_code == 400
        assert response.get_json()['kind'] == 'InvalidRank'

    def test_vote_on_pending(self, client, make_submission, make_user, voters):
        pending = make_submission(make_user('Author'), status='pending')
        response = client.post(f'/api/v1/submissions/{pending.id}/vote',
                               json={'rank': 1}, headers=_as(voters[0]))
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'SubmissionNotApproved'

    def test_retract_missing(self, client, approved_submission, voters):
        response = client.delete(f'/api/v1/submissions/{approved_submission.id}/vote',
                                 headers=_as(voters[0]))
        assert response.status_code == 404
        assert response.get_json()['kind'] == 'VoteNotFound'

    def test_like_toggle(self, client, approved_submission, voters):
        url = f'/api/v1/submissions/{approved_submission.id}/like'

        assert client.post(url, headers=_as(voters[0])).get_json() == {
            'submission_id': approved_submission.id, 'liked': True, 'likes': 1
        }
        assert client.post(url, headers=_as(voters[0])).get_json()['liked'] is False

    def test_votable_listing(self, client, approved_submission, active_tournament, voters):
        client.post(f'/api/v1/submissions/{approved_submission.id}/vote',
                    json={'rank': 2}, headers=_as(voters[0]))

        data = client.get(f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions',
                          headers=_as(voters[0])).get_json()
        assert data['submissions'][0]['my_rank'] == 2
        assert data['submissions'][0]['position'] == 1

    def test_leaderboard(self, client, approved_submission, player, voters):
        for voter in voters:
            client.post(f'/api/v1/submissions/{approved_submission.id}/vote',
                        json={'rank': 1}, headers=_as(voter))

        data = client.get('/api/v1/leaderboard').get_json()
        assert data['entries'][0]['user_id'] == player.id
        assert data['entries'][0]['total_votes_received'] == 3
        assert [e['rank'] for e in data['entries']] == list(range(1, data['count'] + 1))

        me = client.get('/api/v1/leaderboard/me', headers=_as(player)).get_json()
        assert me['rank'] == 1

    def test_leaderboard_limit(self, client, voters):
        data = client.get('/api/v1/leaderboard?limit=2').get_json()
        assert data['count'] == 2

    def test_leaderboard_unavailable(self, mocker, client, db_session):
        mocker.patch('arena.leaderboard.LeaderboardService.compute_leaderboard',
                     side_effect=AggregationUnavailable())

        response = client.get('/api/v1/leaderboard')
        assert response.status_code == 503
        assert response.get_json()['kind'] == 'AggregationUnavailable'


class TestEndToEnd:
    """Full flows through the API."""

    def test_submit_approve_vote_retract(self, client, admin, player, voters, active_tournament):
        response = client.post(
            f'/api/v1/tournaments/{active_tournament.tournament_id}/submissions',
            json={'title': 'Clutch 1v4', 'clip_url': 'https://clips.example.com/clutch.mp4'},
            headers=_as(player)
        )
        submission_id = response.get_json()['id']
        assert response.get_json()['status'] == 'pending'

        client.post(f'/api/v1/submissions/{submission_id}/moderate',
                    json={'status': 'approved'}, headers=_as(admin))

        url = f'/api/v1/submissions/{submission_id}/vote'
        for voter, rank in zip(voters, (1, 2, 3)):
            client.post(url, json={'rank': rank}, headers=_as(voter))
        assert client.get(f'/api/v1/submissions/{submission_id}').get_json()['score'] == 6

        client.delete(url, headers=_as(voters[0]))
        assert client.get(f'/api/v1/submissions/{submission_id}').get_json()['score'] == 3

    def test_vote_replace(self, client, approved_submission, voters):
        url = f'/api/v1/submissions/{approved_submission.id}/vote'

        client.post(url, json={'rank': 1}, headers=_as(voters[0]))
        response = client.post(url, json={'rank': 2}, headers=_as(voters[0]))

        assert response.get_json() == {'submission_id': approved_submission.id, 'rank': 2, 'score': 2}
