from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLE_USER = 'user'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_USER, ROLE_ADMIN)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    approved = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self):
        return {
            'id': self.id,
            'display_name': self.display_name,
            'role': self.role,
            'approved': self.approved,
            'created_at': _iso(self.created_at),
        }


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    game = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='upcoming')
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    # Timestamps
    starts_at = db.Column(db.DateTime, nullable=True)
    ends_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    submissions = db.relationship('Submission', back_populates='tournament', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'name': self.name,
            'game': self.game,
            'description': self.description,
            'status': self.status,
            'created_by': self.created_by,
            'starts_at': _iso(self.starts_at),
            'ends_at': _iso(self.ends_at),
            'created_at': _iso(self.created_at),
        }


class Submission(db.Model):
    __tablename__ = 'submissions'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    clip_url = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='pending')
    # Cached sum of vote points; written only by the voting engine
    score = db.Column(db.Integer, nullable=False, default=0)
    moderated_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    moderated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    tournament = db.relationship('Tournament', back_populates='submissions')
    author = db.relationship('User', foreign_keys=[user_id])
    votes = db.relationship('Vote', back_populates='submission', cascade='all, delete-orphan')
    likes = db.relationship('Like', back_populates='submission', cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'tournament_id', name='unique_submission_per_tournament'),
        db.CheckConstraint('score >= 0', name='non_negative_score'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament.tournament_id if self.tournament else None,
            'user_id': self.user_id,
            'title': self.title,
            'clip_url': self.clip_url,
            'description': self.description,
            'status': self.status,
            'score': self.score,
            'moderated_by': self.moderated_by,
            'moderated_at': _iso(self.moderated_at),
            'created_at': _iso(self.created_at),
        }


class Vote(db.Model):
    __tablename__ = 'votes'

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey('submissions.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    rank = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    submission = db.relationship('Submission', back_populates='votes')

    __table_args__ = (
        db.UniqueConstraint('voter_id', 'submission_id', name='unique_vote_per_submission'),
        db.CheckConstraint('rank BETWEEN 1 AND 3', name='valid_rank'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'submission_id': self.submission_id,
            'voter_id': self.voter_id,
            'rank': self.rank,
            'updated_at': _iso(self.updated_at),
        }


class Like(db.Model):
    __tablename__ = 'likes'

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey('submissions.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    submission = db.relationship('Submission', back_populates='likes')

    __table_args__ = (
        db.UniqueConstraint('submission_id', 'user_id', name='unique_like'),
    )


class AccessCode(db.Model):
    __tablename__ = 'access_codes'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    # NULL means the code never expires (self-service referral codes)
    expires_at = db.Column(db.DateTime, nullable=True)
    used_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    issuer = db.relationship('User', foreign_keys=[created_by])

    @property
    def is_used(self) -> bool:
        return self.used_by is not None or self.used_at is not None

    def is_expired(self, now: datetime = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    @property
    def state(self) -> str:
        if self.is_used:
            return 'used'
        if self.is_expired():
            return 'expired'
        return 'active'

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'created_by': self.created_by,
            'expires_at': _iso(self.expires_at),
            'used_by': self.used_by,
            'used_at': _iso(self.used_at),
            'state': self.state,
            'created_at': _iso(self.created_at),
        }


class Referral(db.Model):
    __tablename__ = 'user_referrals'

    id = db.Column(db.Integer, primary_key=True)
    referrer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    referred_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    access_code_id = db.Column(db.Integer, db.ForeignKey('access_codes.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint('referrer_id', 'referred_user_id', name='unique_referral'),
    )

    def to_dict(self):
        return {
            'referrer_id': self.referrer_id,
            'referred_user_id': self.referred_user_id,
            'access_code_id': self.access_code_id,
            'created_at': _iso(self.created_at),
        }


class WaitlistEntry(db.Model):
    __tablename__ = 'waitlist_entries'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, approved
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', foreign_keys=[user_id])

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'display_name': self.user.display_name if self.user else None,
            'status': self.status,
            'approved_by': self.approved_by,
            'approved_at': _iso(self.approved_at),
            'created_at': _iso(self.created_at),
        }
