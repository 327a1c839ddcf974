# ordertrack/identity.py

from uuid import uuid4


def generate_id() -> str:
    """
    36-char UUID v4 (8-4-4-4-12). uuid4 draws from os.urandom, so ids are not
    predictable from earlier ones.
    """
    return str(uuid4())
