import random
import secrets
import string

# Curated word lists for generating friendly tournament slugs
ADJECTIVES = [
    'swift', 'brave', 'mighty', 'golden', 'silver', 'crimson', 'azure', 'emerald',
    'fierce', 'noble', 'royal', 'epic', 'legendary', 'cosmic', 'stellar', 'radiant',
    'thunder', 'frost', 'flame', 'shadow', 'mystic', 'iron', 'steel', 'diamond',
    'blazing', 'rising', 'wild', 'primal', 'cunning', 'bold', 'fearless', 'glorious'
]

NOUNS = [
    'dragon', 'phoenix', 'griffin', 'titan', 'warrior', 'champion', 'knight', 'ninja',
    'sentinel', 'guardian', 'ranger', 'hunter', 'vanguard', 'falcon', 'raven', 'wolf',
    'tiger', 'panther', 'cobra', 'viper', 'kraken', 'leviathan', 'colossus', 'tempest'
]

CLIP_DESCRIPTORS = [
    'cup', 'clash', 'showdown', 'highlights', 'frenzy', 'invitational',
    'masters', 'open', 'series', 'circuit', 'gauntlet', 'rumble'
]

# Uppercase only: codes are compared case-insensitively by uppercasing input
ACCESS_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_tournament_slug() -> str:
    """Generate a friendly tournament slug like 'crimson-phoenix-cup-3f9a'"""
    adj = random.choice(ADJECTIVES)
    noun = random.choice(NOUNS)
    descriptor = random.choice(CLIP_DESCRIPTORS)
    return f"{adj}-{noun}-{descriptor}-{secrets.token_hex(2)}"


def generate_access_code(length: int = 8) -> str:
    """Random uppercase alphanumeric code from a cryptographic RNG."""
    if length < 4:
        raise ValueError(f"Access codes need at least 4 characters, got {length}")
    return ''.join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))


def normalize_access_code(code) -> str:
    """Uppercased code, or '' for anything that cannot be a code."""
    if isinstance(code, bool) or not isinstance(code, (str, int)):
        return ''
    return str(code).strip().upper()
