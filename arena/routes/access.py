from flask import Blueprint, jsonify, request, current_app

from arena.app import json_body
from arena.errors import Forbidden
from arena.identity import resolve_caller

bp = Blueprint('access', __name__, url_prefix='/api/v1')


# --- Access codes ---

@bp.route('/access-codes', methods=['POST'])
def generate_codes():
    """Admins issue expiring batches; approved users issue referral codes."""
    caller = resolve_caller()
    data = json_body()

    codes = current_app.access_codes.generate(
        quantity=data.get('quantity', 1),
        expiry_days=data.get('expiry_days'),
        issuer=caller
    )
    return jsonify({
        'codes': [c.to_dict() for c in codes],
        'count': len(codes)
    }), 201


@bp.route('/access-codes', methods=['GET'])
def list_codes():
    caller = resolve_caller()
    codes = current_app.access_codes.list_codes(caller, state=request.args.get('state'))
    return jsonify({
        'codes': [c.to_dict() for c in codes],
        'count': len(codes)
    })


@bp.route('/access-codes/<int:code_id>', methods=['DELETE'])
def revoke_code(code_id):
    caller = resolve_caller()
    current_app.access_codes.revoke(code_id, caller)
    return jsonify({'message': 'Access code revoked'})


@bp.route('/access-codes/validate', methods=['POST'])
def validate_code():
    access_code = current_app.access_codes.validate(json_body().get('code'))
    return jsonify({
        'ok': True,
        'code': access_code.code,
        'expires_at': access_code.to_dict()['expires_at']
    })


@bp.route('/access-codes/redeem', methods=['POST'])
def redeem_code():
    caller = resolve_caller()
    access_code_id = current_app.access_codes.redeem(json_body().get('code'), caller.user_id)
    return jsonify({'access_code_id': access_code_id, 'approved': True})


# --- Referrals ---

@bp.route('/users/<int:user_id>/referrals', methods=['GET'])
def user_referrals(user_id):
    caller = resolve_caller()
    if caller.user_id != user_id and not caller.is_admin:
        raise Forbidden("Referrals are only visible to their owner")

    ledger = current_app.access_codes
    return jsonify({
        'user_id': user_id,
        'referral_count': ledger.referral_count(user_id),
        'referrals': [r.to_dict() for r in ledger.list_referrals(user_id)],
        'codes': [c.to_dict() for c in ledger.list_user_codes(user_id)]
    })


# --- Waitlist ---

@bp.route('/waitlist', methods=['POST'])
def join_waitlist():
    caller = resolve_caller()
    entry = current_app.waitlist.join(caller.user_id)
    return jsonify(entry.to_dict()), 201


@bp.route('/waitlist', methods=['GET'])
def list_waitlist():
    caller = resolve_caller()
    entries = current_app.waitlist.list_entries(caller, status=request.args.get('status'))
    return jsonify({
        'entries': [e.to_dict() for e in entries],
        'count': len(entries)
    })


@bp.route('/waitlist/<int:entry_id>/approve', methods=['POST'])
def approve_waitlist_entry(entry_id):
    caller = resolve_caller()
    entry = current_app.waitlist.approve(entry_id, caller)
    return jsonify(entry.to_dict())


@bp.route('/waitlist/<int:entry_id>', methods=['DELETE'])
def remove_waitlist_entry(entry_id):
    caller = resolve_caller()
    current_app.waitlist.remove(entry_id, caller)
    return jsonify({'message': 'Waitlist entry removed'})
