import logging
from datetime import timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy import and_, delete, func, or_, update
from sqlalchemy.exc import IntegrityError

from shared.events import Event, EventType, code_redeemed_event
from shared.pubsub import EventPublisher

from .errors import (
    AccountNotApproved,
    CodeAlreadyUsed,
    CodeExpired,
    CodeNotFound,
    InvalidExpiry,
    InvalidQuantity,
    StorageUnavailable,
    UserNotFound,
    ValidationError,
)
from .identity import Caller, require_admin
from .models import db, AccessCode, Referral, User, WaitlistEntry, utcnow
from .name_generator import generate_access_code, normalize_access_code
from .storage import transaction

logger = logging.getLogger(__name__)

CODE_GENERATION_ATTEMPTS = 3
CODE_STATES = ('active', 'used', 'expired')


class _CodeCollision(Exception):
    """A generated code hit the unique constraint; the batch is retried."""


class AccessCodeLedger:
    """
    Issues, validates and redeems single-use access codes.

    Redemption is decided by one conditional UPDATE guarded on
    ``used_by IS NULL``; whichever caller's update touches the row wins and
    every other caller gets ``CodeAlreadyUsed``.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    # ==================== Issuing ====================

    def generate(self, quantity, expiry_days: Optional[int], issuer: Caller) -> List[AccessCode]:
        """
        Generate ``quantity`` codes.

        Admin batches expire ``expiry_days`` from now. Approved ordinary users
        get self-service referral codes that never expire.
        """
        max_batch = current_app.config.get('MAX_CODES_PER_BATCH', 100)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity(quantity)
        if quantity > max_batch:
            raise InvalidQuantity(quantity, maximum=max_batch)

        expires_at = None
        if issuer.is_admin:
            if expiry_days is None:
                expiry_days = current_app.config.get('DEFAULT_CODE_EXPIRY_DAYS', 30)
            if isinstance(expiry_days, bool) or not isinstance(expiry_days, int) or expiry_days < 1:
                raise InvalidExpiry(expiry_days)
            expires_at = utcnow() + timedelta(days=expiry_days)

        for attempt in range(1, CODE_GENERATION_ATTEMPTS + 1):
            try:
                with transaction('generate access codes'):
                    codes = self._insert_batch(quantity, expires_at, issuer)
                break
            except _CodeCollision:
                logger.warning(f"Access code collision, retrying batch (attempt {attempt})")
        else:
            raise StorageUnavailable('generate access codes')

        logger.info(f"User {issuer.user_id} ({issuer.role}) generated {len(codes)} access code(s)")
        self.publisher.publish_global(Event(
            type=EventType.CODES_GENERATED,
            data={'issuer_id': issuer.user_id, 'count': len(codes)}
        ))
        return codes

    def _insert_batch(self, quantity: int, expires_at, issuer: Caller) -> List[AccessCode]:
        user = db.session.get(User, issuer.user_id)
        if user is None:
            raise UserNotFound(issuer.user_id)
        if not issuer.is_admin and not user.approved:
            raise AccountNotApproved(user.id)

        length = current_app.config.get('ACCESS_CODE_LENGTH', 8)
        candidates = set()
        while len(candidates) < quantity:
            candidates.add(generate_access_code(length))

        taken = {
            row.code for row in
            AccessCode.query.filter(AccessCode.code.in_(candidates)).all()
        }
        if taken:
            raise _CodeCollision()

        codes = [
            AccessCode(code=code, created_by=user.id, expires_at=expires_at)
            for code in sorted(candidates)
        ]
        db.session.add_all(codes)
        try:
            db.session.flush()
        except IntegrityError as e:
            raise _CodeCollision() from e
        return codes

    # ==================== Validation & redemption ====================

    def validate(self, code: str) -> AccessCode:
        """Return the code row if it can still be redeemed."""
        normalized = normalize_access_code(code)
        access_code = self._lookup(normalized)
        self._check_redeemable(access_code, normalized)
        return access_code

    def _lookup(self, normalized: str) -> AccessCode:
        if not normalized:
            raise CodeNotFound(normalized)
        access_code = AccessCode.query.filter_by(code=normalized).first()
        if access_code is None:
            raise CodeNotFound(normalized)
        return access_code

    def _check_redeemable(self, access_code: AccessCode, normalized: str) -> None:
        if access_code.is_used:
            raise CodeAlreadyUsed(normalized)
        if access_code.is_expired():
            raise CodeExpired(normalized)

    def redeem(self, code: str, redeemer_id: int) -> int:
        """
        Redeem ``code`` for ``redeemer_id`` and return the access code id.

        The redeemer is approved, a pending waitlist entry is closed and a
        referral is recorded when the issuer is an ordinary user, all in the
        same transaction as the redemption itself.
        """
        normalized = normalize_access_code(code)
        referrer_id = None

        with transaction('redeem access code') as session:
            redeemer = session.get(User, redeemer_id)
            if redeemer is None:
                raise UserNotFound(redeemer_id)

            access_code = self._lookup(normalized)
            self._check_redeemable(access_code, normalized)

            now = utcnow()
            result = session.execute(
                update(AccessCode)
                .where(
                    AccessCode.id == access_code.id,
                    AccessCode.used_by.is_(None),
                    or_(AccessCode.expires_at.is_(None), AccessCode.expires_at > now)
                )
                .values(used_by=redeemer.id, used_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                if access_code.is_expired(now):
                    raise CodeExpired(normalized)
                logger.warning(f"Access code {access_code.id} redeemed concurrently; user {redeemer.id} lost")
                raise CodeAlreadyUsed(normalized)

            redeemer.approved = True
            entry = WaitlistEntry.query.filter_by(user_id=redeemer.id, status='pending').first()
            if entry is not None:
                entry.status = 'approved'
                entry.approved_at = now

            issuer = access_code.issuer
            if issuer is not None and not issuer.is_admin and issuer.id != redeemer.id:
                referrer_id = issuer.id
                already = Referral.query.filter_by(
                    referrer_id=issuer.id,
                    referred_user_id=redeemer.id
                ).first()
                if already is None:
                    session.add(Referral(
                        referrer_id=issuer.id,
                        referred_user_id=redeemer.id,
                        access_code_id=access_code.id
                    ))
            access_code_id = access_code.id

        logger.info(f"Access code {access_code_id} redeemed by user {redeemer_id}")
        self.publisher.publish_global(code_redeemed_event(access_code_id, redeemer_id, referrer_id))
        return access_code_id

    # ==================== Administration ====================

    def list_codes(self, caller: Caller, state: str = None) -> List[AccessCode]:
        require_admin(caller)
        query = AccessCode.query
        now = utcnow()

        if state == 'used':
            query = query.filter(AccessCode.used_by.isnot(None))
        elif state == 'active':
            query = query.filter(
                AccessCode.used_by.is_(None),
                or_(AccessCode.expires_at.is_(None), AccessCode.expires_at > now)
            )
        elif state == 'expired':
            query = query.filter(
                AccessCode.used_by.is_(None),
                and_(AccessCode.expires_at.isnot(None), AccessCode.expires_at <= now)
            )
        elif state is not None:
            raise ValidationError('InvalidFilter', f"state must be one of {', '.join(CODE_STATES)}")

        return query.order_by(AccessCode.created_at.desc(), AccessCode.id.desc()).all()

    def list_user_codes(self, user_id: int) -> List[AccessCode]:
        return (
            AccessCode.query
            .filter_by(created_by=user_id)
            .order_by(AccessCode.created_at.desc(), AccessCode.id.desc())
            .all()
        )

    def revoke(self, code_id: int, caller: Caller) -> None:
        """Delete an unused code. Used codes stay as the redemption record."""
        require_admin(caller)
        with transaction('revoke access code') as session:
            access_code = session.get(AccessCode, code_id)
            if access_code is None:
                raise CodeNotFound(code_id)
            result = session.execute(
                delete(AccessCode)
                .where(AccessCode.id == code_id, AccessCode.used_by.is_(None))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise CodeAlreadyUsed(access_code.code)
            session.expunge(access_code)
        logger.info(f"Access code {code_id} revoked by user {caller.user_id}")

    # ==================== Referrals ====================

    def referral_count(self, user_id: int) -> int:
        return db.session.execute(
            db.select(func.count(Referral.id)).where(Referral.referrer_id == user_id)
        ).scalar_one()

    def list_referrals(self, user_id: int) -> List[Referral]:
        return (
            Referral.query
            .filter_by(referrer_id=user_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
            .all()
        )
