"""
Clip Arena - Tournament Integrity & Access Core

Responsibilities:
- Access code ledger (issue, validate, redeem, referrals)
- Waitlist for accounts without a code
- Tournament registry
- Submission moderation lifecycle
- Ranked voting and score aggregation
- Global leaderboard
"""
